"""
swap_router.py
===============
Simulated multi-hop swap collaborator over constant-product pairs.

Pair reserves are simply the pair's balances in the ledger, so pairs carry
no state of their own and roll back with everything else.

Route convention: ``len(pairs) == len(extras) == len(path) - 1``. Hop ``i``
trades ``path[i]`` for ``path[i + 1]`` in ``pairs[i]``. Each extras blob is
either empty or the ABI encoding of a single ``uint256``: the minimum output
that hop alone must produce.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from chain import Chain, derive_address, normalize
from config import get_logger
from errors import Revert

logger = get_logger(__name__)

BPS = 10_000


@dataclass(frozen=True)
class Pair:
    token0: str
    token1: str
    fee_bps: int
    address: str

    def has(self, token: str) -> bool:
        return token in (self.token0, self.token1)

    def other(self, token: str) -> str:
        if token == self.token0:
            return self.token1
        if token == self.token1:
            return self.token0
        raise Revert(f"token {token} not in pair {self.address}")


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    """Constant-product output for an exact input, fee taken from the input."""
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    amount_in_with_fee = amount_in * (BPS - fee_bps)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * BPS + amount_in_with_fee
    return numerator // denominator


def hop_floor(extra: bytes) -> int:
    """Per-hop minimum output carried in a routing extras blob (0 if empty)."""
    if not extra:
        return 0
    try:
        (floor,) = abi_decode(["uint256"], bytes(extra))
    except DecodingError as exc:
        raise Revert(f"malformed routing extra: {exc}") from exc
    return floor


class SwapRouter:
    def __init__(self, chain: Chain, address: Optional[str] = None) -> None:
        self.chain = chain
        self.address = normalize(address) if address else derive_address("swap-router")
        self._pairs: Dict[str, Pair] = {}
        chain.deploy(self)

    # ── Pairs ───────────────────────────────────────────────────────────────

    def create_pair(self, token_a: str, token_b: str, fee_bps: int = 30) -> Pair:
        token_a, token_b = normalize(token_a), normalize(token_b)
        if token_a == token_b:
            raise ValueError("pair tokens must differ")
        if not 0 <= fee_bps < BPS:
            raise ValueError(f"fee out of range: {fee_bps}")
        token0, token1 = sorted((token_a, token_b))
        address = derive_address(f"pair:{token0}:{token1}:{fee_bps}")
        if address in self._pairs:
            raise Revert(f"pair already exists: {address}")
        pair = Pair(token0=token0, token1=token1, fee_bps=fee_bps, address=address)
        self._pairs[address] = pair
        return pair

    def pair(self, address: str) -> Pair:
        pair = self._pairs.get(normalize(address))
        if pair is None:
            raise Revert(f"unknown pair {address}")
        return pair

    def find_pair(self, token_a: str, token_b: str) -> Optional[Pair]:
        """Cheapest pair trading token_a against token_b, if any."""
        token_a, token_b = normalize(token_a), normalize(token_b)
        matches = [p for p in self._pairs.values() if p.has(token_a) and p.has(token_b)]
        return min(matches, key=lambda p: p.fee_bps) if matches else None

    def pairs(self) -> List[Pair]:
        return list(self._pairs.values())

    def reserves(self, pair: Pair, token_in: str) -> tuple:
        """(reserve_in, reserve_out) for a trade entering with token_in."""
        token_out = pair.other(token_in)
        ledger = self.chain.ledger
        return ledger.balance_of(token_in, pair.address), ledger.balance_of(token_out, pair.address)

    # ── Quoting ─────────────────────────────────────────────────────────────

    def _route(self, path: Sequence[str], pairs: Sequence[str]) -> List[Pair]:
        if len(path) < 2:
            raise Revert("path needs at least two tokens")
        if len(pairs) != len(path) - 1:
            raise Revert(f"{len(path) - 1} hop(s) but {len(pairs)} pair(s)")
        route = []
        for i, pair_address in enumerate(pairs):
            pair = self.pair(pair_address)
            if path[i] == path[i + 1]:
                raise Revert(f"hop {i} swaps {path[i]} for itself")
            if not (pair.has(path[i]) and pair.has(path[i + 1])):
                raise Revert(f"pair {pair.address} does not trade {path[i]} -> {path[i + 1]}")
            if pair in route:
                raise Revert(f"pair {pair.address} used twice in one route")
            route.append(pair)
        return route

    def get_amounts_out(self, amount_in: int, path: Sequence[str], pairs: Sequence[str]) -> List[int]:
        path = [normalize(t) for t in path]
        route = self._route(path, pairs)
        amounts = [amount_in]
        for i, pair in enumerate(route):
            reserve_in, reserve_out = self.reserves(pair, path[i])
            amounts.append(get_amount_out(amounts[-1], reserve_in, reserve_out, pair.fee_bps))
        return amounts

    # ── Swapping ────────────────────────────────────────────────────────────

    def swap_exact_in_for_min_out(
        self,
        sender: str,
        path: Sequence[str],
        pairs: Sequence[str],
        extras: Sequence[bytes],
        amount_in: int,
        min_out: int,
        recipient: str,
        deadline: int,
    ) -> int:
        """
        Pull ``amount_in`` of ``path[0]`` from ``sender`` and route it to
        ``recipient``. Reverts past ``deadline``, on a misaligned route, when
        any hop falls below its floor, or when the final output is below
        ``min_out``.
        """
        if self.chain.now > deadline:
            raise Revert(f"swap expired: now={self.chain.now} deadline={deadline}")
        if len(extras) != len(pairs):
            raise Revert(f"{len(pairs)} pair(s) but {len(extras)} extras blob(s)")
        if amount_in <= 0:
            raise Revert("swap amount must be positive")

        path = [normalize(t) for t in path]
        route = self._route(path, pairs)
        amounts = self.get_amounts_out(amount_in, path, pairs)

        for i, extra in enumerate(extras):
            floor = hop_floor(extra)
            if amounts[i + 1] < floor:
                raise Revert(f"hop {i} output {amounts[i + 1]} below floor {floor}")
        if amounts[-1] < min_out:
            raise Revert(f"insufficient output amount: {amounts[-1]} < {min_out}")

        recipient = normalize(recipient)
        with self.chain.atomic("router_swap"):
            self.chain.token(path[0]).transfer_from(self.address, sender, route[0].address, amount_in)
            for i, pair in enumerate(route):
                to = route[i + 1].address if i + 1 < len(route) else recipient
                self.chain.ledger.move(path[i + 1], pair.address, to, amounts[i + 1])

        logger.debug(
            "swap %d -> %d over %d hop(s) for %s", amount_in, amounts[-1], len(route), recipient,
        )
        return amounts[-1]
