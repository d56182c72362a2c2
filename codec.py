"""
codec.py
=========
Instruction payload codec.

The payload carried through the flash-loan callback is the ABI encoding of

    (address collateral, address borrower, address[] path,
     address[] pairs, bytes[] extras)

so it is byte-compatible with what an on-chain receiver would decode.
"""

from __future__ import annotations

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError, EncodingError

from errors import DecodeError
from models import LiquidationInstruction

PAYLOAD_TYPES = ["address", "address", "address[]", "address[]", "bytes[]"]


def encode(instruction: LiquidationInstruction) -> bytes:
    try:
        return abi_encode(
            PAYLOAD_TYPES,
            [
                instruction.collateral_asset,
                instruction.borrower,
                list(instruction.swap_path),
                list(instruction.swap_pairs),
                list(instruction.swap_extras),
            ],
        )
    except EncodingError as exc:
        raise ValueError(f"instruction cannot be encoded: {exc}") from exc


def decode(payload: bytes) -> LiquidationInstruction:
    """Decode a payload; raises DecodeError on anything malformed."""
    if not isinstance(payload, (bytes, bytearray)):
        raise DecodeError(f"payload must be bytes, got {type(payload).__name__}")
    try:
        collateral, borrower, path, pairs, extras = abi_decode(PAYLOAD_TYPES, bytes(payload))
    except (DecodingError, OverflowError, ValueError) as exc:
        raise DecodeError(f"malformed instruction payload: {exc}") from exc
    return LiquidationInstruction(
        collateral_asset=collateral,
        borrower=borrower,
        swap_path=tuple(path),
        swap_pairs=tuple(pairs),
        swap_extras=tuple(extras),
    )
