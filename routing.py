"""
routing.py
===========
Route coherence checks run before any external effect.

A route is coherent with a repayment asset when:

  - an empty path means the collateral already is the repayment asset;
  - a non-empty path has at least one hop, starts at the collateral (or its
    wrapped representation) and ends at the repayment asset;
  - there is exactly one pair and one extras blob per hop.
"""

from __future__ import annotations

from typing import Optional, Sequence

from errors import PathMismatchError
from models import LiquidationInstruction


def receive_wrapped(collateral: str, swap_path: Sequence[str]) -> bool:
    """Take the wrapped collateral only when a swap will convert it."""
    return len(swap_path) > 0 and swap_path[0] != collateral


def validate_path(
    instruction: LiquidationInstruction,
    repayment_asset: str,
    wrapped_collateral: Optional[str] = None,
) -> None:
    repayment_asset = repayment_asset.lower()
    path = instruction.swap_path

    if not path:
        if instruction.collateral_asset != repayment_asset:
            raise PathMismatchError(
                f"empty swap path but collateral {instruction.collateral_asset} "
                f"is not the repayment asset {repayment_asset}"
            )
        if instruction.swap_pairs or instruction.swap_extras:
            raise PathMismatchError("pairs or extras given without a swap path")
        return

    if path[-1] != repayment_asset:
        raise PathMismatchError(
            f"swap path ends at {path[-1]}, expected repayment asset {repayment_asset}"
        )
    if len(path) < 2:
        raise PathMismatchError("swap path needs at least two assets")

    heads = {instruction.collateral_asset}
    if wrapped_collateral:
        heads.add(wrapped_collateral.lower())
    if path[0] not in heads:
        raise PathMismatchError(
            f"swap path starts at {path[0]}, which is neither the collateral nor its wrapped form"
        )

    hops = instruction.hops
    if len(instruction.swap_pairs) != hops or len(instruction.swap_extras) != hops:
        raise PathMismatchError(
            f"{hops} hop(s) need {hops} pair(s) and extras, got "
            f"{len(instruction.swap_pairs)} pair(s) and {len(instruction.swap_extras)} extras"
        )
