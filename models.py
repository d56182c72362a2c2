"""
models.py
==========
Value types for one liquidation unit.

Everything here except ``UnitOutcome`` is built fresh for each unit and
dropped when the unit commits or aborts. ``UnitOutcome`` is the diagnostic
record kept after the fact.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from eth_utils import to_normalized_address

NO_DEBT = 0  # flash loan mode: repay in full, open no debt position


def _addresses(values: Sequence[str]) -> Tuple[str, ...]:
    return tuple(to_normalized_address(v) for v in values)


@dataclass(frozen=True)
class FlashRequest:
    """Borrow request handed to the lending pool."""
    asset: str
    amount: int
    mode: int = NO_DEBT

    def __post_init__(self) -> None:
        object.__setattr__(self, "asset", to_normalized_address(self.asset))
        if self.amount <= 0:
            raise ValueError(f"flash loan amount must be positive, got {self.amount}")


@dataclass(frozen=True)
class LiquidationInstruction:
    """
    What to liquidate and how to route the seized collateral.

    Addresses are normalized to lowercase hex so that an instruction compares
    equal to its decoded payload.
    """
    collateral_asset: str
    borrower: str
    swap_path: Tuple[str, ...] = ()
    swap_pairs: Tuple[str, ...] = ()
    swap_extras: Tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "collateral_asset", to_normalized_address(self.collateral_asset))
        object.__setattr__(self, "borrower", to_normalized_address(self.borrower))
        object.__setattr__(self, "swap_path", _addresses(self.swap_path))
        object.__setattr__(self, "swap_pairs", _addresses(self.swap_pairs))
        object.__setattr__(self, "swap_extras", tuple(bytes(e) for e in self.swap_extras))

    @property
    def hops(self) -> int:
        return max(len(self.swap_path) - 1, 0)


@dataclass(frozen=True)
class RepaymentObligation:
    principal: int
    fee: int

    def __post_init__(self) -> None:
        if self.principal < 0 or self.fee < 0:
            raise ValueError("principal and fee must be non-negative")

    @property
    def total_due(self) -> int:
        return self.principal + self.fee


@dataclass(frozen=True)
class SettlementResult:
    final_balance: int
    total_due: int

    @property
    def profit(self) -> int:
        return self.final_balance - self.total_due


class UnitState(Enum):
    IDLE = "idle"
    LOAN_REQUESTED = "loan_requested"
    LIQUIDATING = "liquidating"
    SWAPPING = "swapping"
    SETTLING = "settling"
    REPAID = "repaid"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (UnitState.REPAID, UnitState.ABORTED)


@dataclass
class UnitOutcome:
    """What happened in one unit. Survives rollback; used for reporting."""
    unit_id: str
    debt_asset: str
    collateral_asset: str
    borrower: str
    amount: int
    state: UnitState = UnitState.IDLE
    fee: int = 0
    total_due: int = 0
    received_wrapped: bool = False
    amount_out: int = 0
    final_balance: int = 0
    profit: int = 0
    swap_error: Optional[str] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["state"] = self.state.value
        return d
