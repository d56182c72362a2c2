"""
sandbox.py
===========
Builds a small, self-contained market to run liquidations against.

Reads the ``SANDBOX`` block of config: tokens and oracle prices, lending
reserves and their liquidity, constant-product pairs (wrapped tokens are
backed by real supplies to the pool), borrower positions, and the price
shocks that push those positions under water.

Can be run standalone:
    python sandbox.py
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_utils import is_address
from tabulate import tabulate

from chain import Chain, Token, derive_address, normalize
from config import LIQUIDATION, SANDBOX, get_logger
from job_feed import LiquidationJob
from lending_pool import BPS, WAD, LendingPool, PriceOracle
from liquidator import FlashLiquidator, ProfitPolicy, SwapFailurePolicy
from models import LiquidationInstruction
from swap_router import Pair, SwapRouter

logger = get_logger(__name__)


@dataclass
class Sandbox:
    chain: Chain
    oracle: PriceOracle
    pool: LendingPool
    router: SwapRouter
    liquidator: FlashLiquidator
    owner: str
    tokens: Dict[str, Token] = field(default_factory=dict)       # symbol -> token
    pairs: Dict[str, Pair] = field(default_factory=dict)          # "A/B" -> pair
    borrowers: Dict[str, str] = field(default_factory=dict)       # label -> address
    positions: List[Dict[str, Any]] = field(default_factory=list)

    def resolve(self, name: str) -> str:
        """Token symbol, pair name ("A/B"), borrower label or address -> address."""
        if is_address(name):
            return normalize(name)
        if name in self.tokens:
            return self.tokens[name].address
        if name in self.pairs:
            return self.pairs[name].address
        if name in self.borrowers:
            return self.borrowers[name]
        raise ValueError(f"unknown name {name!r}")

    def symbol_of(self, address: str) -> str:
        for symbol, token in self.tokens.items():
            if token.address == address:
                return symbol
        return address[:10]

    def route(self, symbols: Sequence[str]) -> Tuple[List[str], List[str]]:
        """Path and per-hop pairs for a list of token symbols."""
        path = [self.tokens[s].address for s in symbols]
        pairs = []
        for a, b in zip(symbols, symbols[1:]):
            pair = self.pairs.get(f"{a}/{b}")
            if pair is None:
                raise ValueError(f"no pair for {a}/{b}")
            pairs.append(pair.address)
        return path, pairs

    def demo_instruction(self, label: str) -> LiquidationJob:
        """A job for one configured borrower: half its first debt, its configured route."""
        position = next(p for p in self.positions if p["borrower"] == label)
        debt_symbol, debt_whole = next(iter(position["borrow"].items()))
        collateral_symbol = next(iter(position["supply"]))
        debt_token = self.tokens[debt_symbol]
        route = position.get("route", [])
        path, pairs = self.route(route) if route else ([], [])
        instruction = LiquidationInstruction(
            collateral_asset=self.tokens[collateral_symbol].address,
            borrower=self.borrowers[label],
            swap_path=tuple(path),
            swap_pairs=tuple(pairs),
            swap_extras=tuple(b"" for _ in pairs),
        )
        amount = debt_token.units(debt_whole) * self.pool.close_factor_bps // BPS
        return LiquidationJob(
            job_id=f"demo-{label}",
            debt_asset=debt_token.address,
            amount=amount,
            instruction=instruction,
            metadata={"source": "sandbox"},
        )

    def demo_jobs(self) -> List[LiquidationJob]:
        return [self.demo_instruction(label) for label in self.borrowers]

    def print_positions(self) -> None:
        rows = []
        for label, address in self.borrowers.items():
            collateral_value, debt_value = self.pool.account_values(address)
            hf = self.pool.health_factor(address)
            rows.append([
                label,
                address[:10],
                f"{collateral_value / 1e8:,.2f}",
                f"{debt_value / 1e8:,.2f}",
                f"{hf / WAD:.4f}" if debt_value else "inf",
            ])
        print(tabulate(rows, headers=["Borrower", "Address", "Coll (adj $)", "Debt $", "HF"], tablefmt="simple"))


def _fund(box: Sandbox, token: Token, holder: str, amount: int, underlying: Dict[str, Token]) -> None:
    """Give ``holder`` ``amount`` of ``token``; wrapped tokens are minted through a real supply."""
    if token.address in underlying:
        raw = underlying[token.address]
        lp = derive_address("liquidity-provider")
        raw.mint(lp, amount)
        raw.approve(lp, box.pool.address, amount)
        box.pool.supply(lp, raw.address, amount, on_behalf_of=holder)
    else:
        token.mint(holder, amount)


def build_sandbox(
    market: Optional[Dict[str, Any]] = None,
    swap_policy: Optional[SwapFailurePolicy] = None,
    profit_policy: Optional[ProfitPolicy] = None,
) -> Sandbox:
    market = market or SANDBOX
    chain = Chain(timestamp=market.get("start_time", 0))
    oracle = PriceOracle()
    pool = LendingPool(chain, oracle)
    router = SwapRouter(chain)
    owner = derive_address(LIQUIDATION["owner_label"])
    liquidator = FlashLiquidator(
        chain, pool, router, owner, swap_policy=swap_policy, profit_policy=profit_policy,
    )
    box = Sandbox(
        chain=chain, oracle=oracle, pool=pool, router=router,
        liquidator=liquidator, owner=owner,
        positions=list(market.get("positions", [])),
    )

    for symbol, cfg in market["tokens"].items():
        token = chain.create_token(symbol, cfg["decimals"])
        oracle.set_price(token.address, cfg["price"])
        box.tokens[symbol] = token

    underlying: Dict[str, Token] = {}
    for symbol, cfg in market.get("reserves", {}).items():
        reserve = pool.init_reserve(box.tokens[symbol].address, **cfg)
        wrapped = chain.token(reserve.wrapped)
        box.tokens[f"a{symbol}"] = wrapped
        underlying[wrapped.address] = box.tokens[symbol]

    for symbol, whole in market.get("pool_liquidity", {}).items():
        token = box.tokens[symbol]
        token.mint(pool.address, token.units(whole))

    for cfg in market.get("pairs", []):
        a, b = (box.tokens[s] for s in cfg["tokens"])
        pair = router.create_pair(a.address, b.address, cfg.get("fee_bps", 30))
        box.pairs[f"{a.symbol}/{b.symbol}"] = pair
        box.pairs[f"{b.symbol}/{a.symbol}"] = pair
        for token, whole in zip((a, b), cfg["reserves"]):
            _fund(box, token, pair.address, token.units(whole), underlying)

    for position in box.positions:
        label = position["borrower"]
        borrower = derive_address(f"borrower:{label}")
        box.borrowers[label] = borrower
        for symbol, whole in position.get("supply", {}).items():
            token = box.tokens[symbol]
            token.mint(borrower, token.units(whole))
            token.approve(borrower, pool.address, token.units(whole))
            pool.supply(borrower, token.address, token.units(whole))
        for symbol, whole in position.get("borrow", {}).items():
            pool.borrow(borrower, box.tokens[symbol].address, box.tokens[symbol].units(whole))

    for symbol, price in market.get("price_shocks", {}).items():
        oracle.set_price(box.tokens[symbol].address, price)

    logger.info(
        "sandbox ready | tokens=%d pairs=%d borrowers=%d",
        len(box.tokens), len(router.pairs()), len(box.borrowers),
    )
    return box


if __name__ == "__main__":
    box = build_sandbox()
    print("\n[Sandbox] borrower positions after price shocks\n")
    box.print_positions()
    print()
