import pytest
from eth_abi import encode as abi_encode
from hypothesis import given, settings, strategies

import codec
from chain import derive_address
from errors import DecodeError
from models import LiquidationInstruction

addresses = strategies.binary(min_size=20, max_size=20).map(lambda b: "0x" + b.hex())


@given(
    collateral=addresses,
    borrower=addresses,
    path=strategies.lists(addresses, max_size=5),
    pairs=strategies.lists(addresses, max_size=5),
    extras=strategies.lists(strategies.binary(max_size=96), max_size=5),
)
@settings(max_examples=200)
def test_round_trip(collateral, borrower, path, pairs, extras):
    instruction = LiquidationInstruction(
        collateral_asset=collateral,
        borrower=borrower,
        swap_path=tuple(path),
        swap_pairs=tuple(pairs),
        swap_extras=tuple(extras),
    )
    assert codec.decode(codec.encode(instruction)) == instruction


def test_empty_sequences_survive():
    instruction = LiquidationInstruction(
        collateral_asset=derive_address("token:X"), borrower=derive_address("borrower"),
    )
    decoded = codec.decode(codec.encode(instruction))
    assert decoded.swap_path == ()
    assert decoded.swap_pairs == ()
    assert decoded.swap_extras == ()
    assert decoded.hops == 0


def test_checksummed_input_decodes_lowercase():
    checksummed = "0x52908400098527886E0F7030069857D2E4169EE7"
    instruction = LiquidationInstruction(collateral_asset=checksummed, borrower=checksummed)
    decoded = codec.decode(codec.encode(instruction))
    assert decoded.collateral_asset == checksummed.lower()


def test_payload_matches_abi_layout():
    a, b = derive_address("a"), derive_address("b")
    instruction = LiquidationInstruction(
        collateral_asset=a, borrower=b, swap_path=(a, b), swap_pairs=(b,), swap_extras=(b"\x01",),
    )
    expected = abi_encode(codec.PAYLOAD_TYPES, [a, b, [a, b], [b], [b"\x01"]])
    assert codec.encode(instruction) == expected


@pytest.mark.parametrize("cut", [0, 31, 100, 200])
def test_truncated_payload(cut):
    a = derive_address("a")
    payload = codec.encode(LiquidationInstruction(a, a, (a, a), (a,), (b"",)))
    with pytest.raises(DecodeError):
        codec.decode(payload[:cut])


def test_dirty_address_padding():
    a = derive_address("a")
    payload = bytearray(codec.encode(LiquidationInstruction(a, a)))
    payload[0] = 0xFF
    with pytest.raises(DecodeError):
        codec.decode(bytes(payload))


@pytest.mark.parametrize("payload", ["0x00", None, 42, [0] * 32])
def test_non_bytes_payload(payload):
    with pytest.raises(DecodeError):
        codec.decode(payload)
