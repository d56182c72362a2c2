import os
import tempfile

# config reads these at import time
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="flash-liquidator-tests-")
os.environ.pop("LIQUIDATION_FEED_URL", None)
os.environ.pop("SWAP_FAILURE_POLICY", None)
os.environ.pop("PROFIT_POLICY", None)

from dataclasses import dataclass  # noqa: E402

import pytest  # noqa: E402

from chain import Chain, Token, derive_address  # noqa: E402
from errors import Revert  # noqa: E402
from lending_pool import LendingPool, PriceOracle  # noqa: E402
from liquidator import FlashLiquidator, ProfitPolicy, SwapFailurePolicy  # noqa: E402

PRICE = 100_000_000  # 1.00 in oracle base units
START = 1_000


class ScriptedRouter:
    """Router double: takes the whole input and pays a fixed amount of the last token."""

    def __init__(self, chain, payout, fail=None, report=None):
        self.chain = chain
        self.address = derive_address("scripted-router")
        self.payout = payout
        self.fail = fail
        self.report = report
        self.calls = []
        chain.deploy(self)

    def swap_exact_in_for_min_out(self, sender, path, pairs, extras, amount_in, min_out, recipient, deadline):
        self.calls.append({
            "path": list(path), "amount_in": amount_in, "min_out": min_out,
            "recipient": recipient, "deadline": deadline,
        })
        if self.fail:
            raise Revert(self.fail)
        self.chain.token(path[0]).transfer_from(self.address, sender, self.address, amount_in)
        self.chain.token(path[-1]).transfer(self.address, recipient, self.payout)
        return self.payout if self.report is None else self.report


@dataclass
class Market:
    chain: Chain
    oracle: PriceOracle
    pool: LendingPool
    router: ScriptedRouter
    liquidator: FlashLiquidator
    owner: str
    borrower: str
    x: Token
    y: Token
    z: Token

    def snapshot(self):
        ledger = self.chain.ledger
        return (
            {t: dict(b) for t, b in ledger.balances.items()},
            {t: dict(a) for t, a in ledger.allowances.items()},
            dict(ledger.total_supply),
        )


def _supply(pool, token, holder, amount):
    token.mint(holder, amount)
    token.approve(holder, pool.address, amount)
    pool.supply(holder, token.address, amount)


@pytest.fixture
def make_market():
    """
    Debt asset X, collateral Y, unrelated Z; all priced 1.00, zero decimals.

    Default position: 10,000 Y supplied, 7,000 X borrowed, then Y drops to
    0.80 (health factor ~0.91). With ``same_asset=True`` the borrower also
    pledges 1,000 X, borrows 8,000 X, and Y drops to 0.50.
    """
    def build(
        premium_bps=50,
        x_bonus_bps=10500,
        payout=1050,
        fail=None,
        report=None,
        same_asset=False,
        swap_policy=SwapFailurePolicy.STRICT,
        profit_policy=ProfitPolicy.NON_NEGATIVE,
    ):
        chain = Chain(timestamp=START)
        oracle = PriceOracle()
        pool = LendingPool(chain, oracle, premium_bps=premium_bps, close_factor_bps=5000)
        x, y, z = (chain.create_token(s, 0) for s in ("X", "Y", "Z"))
        for token in (x, y, z):
            oracle.set_price(token.address, PRICE)
        pool.init_reserve(x.address, 8000, x_bonus_bps)
        pool.init_reserve(y.address, 8000, 10500)
        x.mint(pool.address, 1_000_000)

        borrower = derive_address("borrower:test")
        if same_asset:
            _supply(pool, x, borrower, 1_000)
            _supply(pool, y, borrower, 10_000)
            pool.borrow(borrower, x.address, 8_000)
            oracle.set_price(y.address, PRICE // 2)
        else:
            _supply(pool, y, borrower, 10_000)
            pool.borrow(borrower, x.address, 7_000)
            oracle.set_price(y.address, PRICE * 8 // 10)

        router = ScriptedRouter(chain, payout, fail=fail, report=report)
        x.mint(router.address, payout)
        owner = derive_address("owner")
        liquidator = FlashLiquidator(
            chain, pool, router, owner,
            swap_policy=swap_policy, profit_policy=profit_policy,
        )
        return Market(chain, oracle, pool, router, liquidator, owner, borrower, x, y, z)

    return build


@pytest.fixture
def market(make_market):
    return make_market()


@pytest.fixture
def chain():
    return Chain(timestamp=START)


@pytest.fixture
def accounts():
    return [derive_address(f"account:{i}") for i in range(5)]
