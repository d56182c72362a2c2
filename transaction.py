"""
transaction.py
===============
Staged-commit wrapper giving a block of simulated calls all-or-nothing
semantics.

On entry the ``__dict__`` of every registered state object is deep-copied.
If the block raises, or the post-check fails, the snapshots are restored and
nothing the block did survives. Transactions nest: an inner transaction that
rolls back leaves the outer one free to continue.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Callable, Dict, Iterable, Optional

from config import get_logger
from errors import TransactionError

logger = get_logger(__name__)


class Transaction:
    def __init__(
        self,
        objects: Iterable[object],
        name: Optional[str] = None,
        post_check: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.objects = list(objects)
        self.name = name or "tx"
        self.post_check = post_check
        self.committed = False
        self.rolled_back = False
        self._snapshots: Dict[int, dict] = {}

    def __enter__(self) -> "Transaction":
        self._snapshots = {id(obj): deepcopy(obj.__dict__) for obj in self.objects}
        logger.debug("tx %s: begin (%d objects)", self.name, len(self.objects))
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self._rollback()
            logger.debug("tx %s: rolled back on %s: %s", self.name, exc_type.__name__, exc)
            return False  # re-raise
        if self.post_check and not self.post_check():
            self._rollback()
            raise TransactionError(f"Post-check failed for transaction {self.name}")
        self.committed = True
        logger.debug("tx %s: committed", self.name)
        return False

    def _rollback(self) -> None:
        for obj in self.objects:
            snap = self._snapshots.get(id(obj))
            if snap is not None:
                obj.__dict__.clear()
                obj.__dict__.update(deepcopy(snap))
        self.rolled_back = True
