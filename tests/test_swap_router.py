import pytest
from eth_abi import encode as abi_encode

from errors import Revert
from swap_router import SwapRouter, get_amount_out, hop_floor

RESERVE = 1_000_000


@pytest.fixture
def tokens(chain):
    return [chain.create_token(s, 0) for s in ("A", "B", "C")]


@pytest.fixture
def router(chain):
    return SwapRouter(chain)


@pytest.fixture
def pairs(router, tokens):
    a, b, c = tokens
    ab = router.create_pair(a.address, b.address, 30)
    bc = router.create_pair(b.address, c.address, 30)
    for pair, (t0, t1) in ((ab, (a, b)), (bc, (b, c))):
        t0.mint(pair.address, RESERVE)
        t1.mint(pair.address, RESERVE)
    return ab, bc


@pytest.fixture
def trader(accounts, tokens, router):
    a = tokens[0]
    a.mint(accounts[0], 10_000)
    a.approve(accounts[0], router.address, 10_000)
    return accounts[0]


def swap(router, chain, trader, path, pairs, amount=1_000, min_out=0, extras=None, deadline=None):
    return router.swap_exact_in_for_min_out(
        trader,
        [t.address for t in path],
        [p.address for p in pairs],
        extras if extras is not None else [b""] * len(pairs),
        amount,
        min_out,
        trader,
        chain.now + 3 if deadline is None else deadline,
    )


def test_amount_out_math():
    assert get_amount_out(1000, 10_000, 10_000, 30) == 906
    assert get_amount_out(1000, 10_000, 10_000, 0) == 909
    assert get_amount_out(0, 10_000, 10_000, 30) == 0
    assert get_amount_out(1000, 0, 10_000, 30) == 0


def test_hop_floor():
    assert hop_floor(b"") == 0
    assert hop_floor(abi_encode(["uint256"], [123])) == 123
    with pytest.raises(Revert):
        hop_floor(b"\x01")


def test_two_hop_swap_matches_quote(chain, router, tokens, pairs, trader):
    a, b, c = tokens
    quote = router.get_amounts_out(1_000, [a.address, b.address, c.address], [p.address for p in pairs])

    out = swap(router, chain, trader, tokens, pairs)

    assert out == quote[-1]
    assert c.balance_of(trader) == out
    assert a.balance_of(trader) == 9_000
    assert b.balance_of(pairs[0].address) == RESERVE - quote[1]
    assert b.balance_of(pairs[1].address) == RESERVE + quote[1]
    assert chain.ledger.is_consistent()


def test_reverse_direction(chain, router, tokens, pairs, trader):
    a, b, _ = tokens
    swap(router, chain, trader, [a, b], pairs[:1])
    b.approve(trader, router.address, b.balance_of(trader))
    out = swap(router, chain, trader, [b, a], pairs[:1], amount=b.balance_of(trader))
    assert 0 < out < 1_000


def test_expired_deadline(chain, router, tokens, pairs, trader):
    with pytest.raises(Revert, match="expired"):
        swap(router, chain, trader, tokens, pairs, deadline=chain.now - 1)
    assert tokens[0].balance_of(trader) == 10_000


def test_min_out_enforced(chain, router, tokens, pairs, trader):
    with pytest.raises(Revert, match="insufficient output"):
        swap(router, chain, trader, tokens, pairs, min_out=1_000)
    assert tokens[0].balance_of(trader) == 10_000


def test_hop_floor_enforced(chain, router, tokens, pairs, trader):
    extras = [abi_encode(["uint256"], [999]), b""]
    with pytest.raises(Revert, match="hop 0"):
        swap(router, chain, trader, tokens, pairs, extras=extras)


def test_extras_must_align(chain, router, tokens, pairs, trader):
    with pytest.raises(Revert, match="extras"):
        swap(router, chain, trader, tokens, pairs, extras=[b""])


def test_pair_must_trade_hop(chain, router, tokens, pairs, trader):
    a, _, c = tokens
    with pytest.raises(Revert, match="does not trade"):
        swap(router, chain, trader, [a, c], pairs[:1])


def test_pair_used_twice(chain, router, tokens, pairs, trader):
    a, b, _ = tokens
    with pytest.raises(Revert, match="used twice"):
        swap(router, chain, trader, [a, b, a], [pairs[0], pairs[0]])


def test_needs_allowance(chain, router, tokens, pairs, accounts):
    tokens[0].mint(accounts[1], 1_000)
    with pytest.raises(Revert, match="allowance"):
        swap(router, chain, accounts[1], tokens, pairs)


def test_pair_registry(router, tokens, pairs):
    a, b, c = tokens
    cheap = router.create_pair(a.address, b.address, 5)
    assert router.find_pair(b.address, a.address) == cheap
    assert router.find_pair(a.address, c.address) is None
    with pytest.raises(Revert):
        router.create_pair(b.address, a.address, 30)
    with pytest.raises(ValueError):
        router.create_pair(a.address, a.address)
