"""
lending_pool.py
================
Simulated lending collaborator.

Models the parts of an Aave-style pool the liquidator talks to:

  - reserves, each with a wrapped (interest-bearing) token minted on supply
    and a debt token minted on borrow;
  - a price oracle used to value positions;
  - ``flash_loan``: lend, call the receiver back, pull principal + premium;
  - ``liquidation_call``: repay part of an unhealthy borrower's debt in
    exchange for their collateral plus a bonus, paid either as the raw asset
    or as the wrapped token.

Every entry point runs in its own transaction, so a refused call leaves no
trace, the way a reverted contract call does.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from chain import MAX_UINT256, Chain, derive_address, normalize
from config import LIQUIDATION, get_logger
from errors import Revert
from models import NO_DEBT

logger = get_logger(__name__)

WAD = 10**18
BPS = 10_000


class PriceOracle:
    """Asset prices in base units (8 decimals) per whole token."""

    def __init__(self) -> None:
        self.prices: Dict[str, int] = {}

    def set_price(self, asset: str, price: int) -> None:
        if price <= 0:
            raise ValueError(f"price must be positive, got {price}")
        self.prices[normalize(asset)] = price

    def get_price(self, asset: str) -> int:
        price = self.prices.get(normalize(asset))
        if price is None:
            raise Revert(f"no price for {asset}")
        return price


@dataclass(frozen=True)
class ReserveConfig:
    asset: str
    wrapped: str
    debt_token: str
    decimals: int
    liquidation_threshold_bps: int
    liquidation_bonus_bps: int


class LendingPool:
    """
    Parameters
    ----------
    chain            : host the pool lives on
    oracle           : price source for health checks and liquidation math
    premium_bps      : flash loan premium (9 = 0.09%)
    close_factor_bps : max share of a borrower's debt one liquidation repays
    """

    def __init__(
        self,
        chain: Chain,
        oracle: PriceOracle,
        address: Optional[str] = None,
        premium_bps: int = LIQUIDATION["flash_premium_bps"],
        close_factor_bps: int = LIQUIDATION["close_factor_bps"],
    ) -> None:
        self.chain = chain
        self.oracle = oracle
        self.address = normalize(address) if address else derive_address("lending-pool")
        self.premium_bps = premium_bps
        self.close_factor_bps = close_factor_bps
        self._reserves: Dict[str, ReserveConfig] = {}
        chain.deploy(self)

    # ── Reserves ────────────────────────────────────────────────────────────

    def init_reserve(
        self,
        asset: str,
        liquidation_threshold_bps: int = 8000,
        liquidation_bonus_bps: int = 10500,
    ) -> ReserveConfig:
        token = self.chain.token(asset)
        if token.address in self._reserves:
            raise Revert(f"reserve already initialised: {token.symbol}")
        if liquidation_bonus_bps < BPS:
            raise ValueError("liquidation bonus must be at least 100%")
        wrapped = self.chain.create_token(f"a{token.symbol}", token.decimals)
        debt = self.chain.create_token(f"variableDebt{token.symbol}", token.decimals)
        reserve = ReserveConfig(
            asset=token.address,
            wrapped=wrapped.address,
            debt_token=debt.address,
            decimals=token.decimals,
            liquidation_threshold_bps=liquidation_threshold_bps,
            liquidation_bonus_bps=liquidation_bonus_bps,
        )
        self._reserves[token.address] = reserve
        logger.info("reserve %s initialised (wrapped=%s)", token.symbol, wrapped.symbol)
        return reserve

    def reserve(self, asset: str) -> ReserveConfig:
        reserve = self._reserves.get(normalize(asset))
        if reserve is None:
            raise Revert(f"no reserve for {asset}")
        return reserve

    def reserves(self) -> List[ReserveConfig]:
        return list(self._reserves.values())

    def wrapped_token_of(self, asset: str) -> Optional[str]:
        reserve = self._reserves.get(normalize(asset))
        return reserve.wrapped if reserve else None

    # ── Positions ───────────────────────────────────────────────────────────

    def _value(self, reserve: ReserveConfig, amount: int) -> int:
        return amount * self.oracle.get_price(reserve.asset) // 10 ** reserve.decimals

    def account_values(self, user: str) -> Tuple[int, int]:
        """(threshold-weighted collateral value, debt value) in base units."""
        user = normalize(user)
        collateral_value = 0
        debt_value = 0
        for reserve in self._reserves.values():
            supplied = self.chain.ledger.balance_of(reserve.wrapped, user)
            owed = self.chain.ledger.balance_of(reserve.debt_token, user)
            if supplied:
                collateral_value += (
                    self._value(reserve, supplied) * reserve.liquidation_threshold_bps // BPS
                )
            if owed:
                debt_value += self._value(reserve, owed)
        return collateral_value, debt_value

    def health_factor(self, user: str) -> int:
        """WAD-scaled; below 1e18 means liquidatable."""
        collateral_value, debt_value = self.account_values(user)
        if debt_value == 0:
            return MAX_UINT256
        return collateral_value * WAD // debt_value

    def supply(self, sender: str, asset: str, amount: int, on_behalf_of: Optional[str] = None) -> None:
        reserve = self.reserve(asset)
        on_behalf_of = normalize(on_behalf_of or sender)
        with self.chain.atomic("supply"):
            self.chain.token(reserve.asset).transfer_from(self.address, sender, self.address, amount)
            self.chain.token(reserve.wrapped).mint(on_behalf_of, amount)

    def borrow(self, sender: str, asset: str, amount: int) -> None:
        reserve = self.reserve(asset)
        with self.chain.atomic("borrow"):
            self.chain.token(reserve.debt_token).mint(sender, amount)
            self.chain.token(reserve.asset).transfer(self.address, sender, amount)
            if self.health_factor(sender) < WAD:
                raise Revert("borrow would leave position under-collateralized")

    # ── Flash loans ─────────────────────────────────────────────────────────

    def flash_loan(
        self,
        sender: str,
        receiver: str,
        assets: Sequence[str],
        amounts: Sequence[int],
        modes: Sequence[int],
        on_behalf_of: str,
        params: bytes,
        referral_code: int = 0,
    ) -> bool:
        """
        Lend ``amounts`` of ``assets`` to ``receiver`` for the duration of its
        ``on_loan_received`` callback, then pull principal + premium back.
        Only mode 0 (no residual debt) is supported.
        """
        if not assets or not (len(assets) == len(amounts) == len(modes)):
            raise Revert("inconsistent flash loan parameters")
        if any(mode != NO_DEBT for mode in modes):
            raise Revert("only no-debt flash loans are supported")

        receiver = normalize(receiver)
        receiver_contract = self.chain.contract_at(receiver)
        reserves = [self.reserve(a) for a in assets]
        premiums = [amount * self.premium_bps // BPS for amount in amounts]

        with self.chain.atomic("flash_loan"):
            for reserve, amount in zip(reserves, amounts):
                self.chain.token(reserve.asset).transfer(self.address, receiver, amount)

            ok = receiver_contract.on_loan_received(
                self.address,
                [r.asset for r in reserves],
                list(amounts),
                premiums,
                normalize(sender),
                params,
            )
            if ok is not True:
                raise Revert("invalid flash loan executor return")

            for reserve, amount, premium in zip(reserves, amounts, premiums):
                self.chain.token(reserve.asset).transfer_from(
                    self.address, receiver, self.address, amount + premium
                )

        logger.info(
            "flash loan repaid | receiver=%s | assets=%d | premiums=%s | referral=%d",
            receiver, len(reserves), premiums, referral_code,
        )
        return True

    # ── Liquidation ─────────────────────────────────────────────────────────

    def _collateral_for_debt(self, collateral: ReserveConfig, debt: ReserveConfig, debt_amount: int) -> int:
        debt_price = self.oracle.get_price(debt.asset)
        collateral_price = self.oracle.get_price(collateral.asset)
        return (
            debt_amount * debt_price * 10 ** collateral.decimals * collateral.liquidation_bonus_bps
            // (collateral_price * 10 ** debt.decimals * BPS)
        )

    def _debt_for_collateral(self, collateral: ReserveConfig, debt: ReserveConfig, collateral_amount: int) -> int:
        debt_price = self.oracle.get_price(debt.asset)
        collateral_price = self.oracle.get_price(collateral.asset)
        return (
            collateral_amount * collateral_price * 10 ** debt.decimals * BPS
            // (debt_price * 10 ** collateral.decimals * collateral.liquidation_bonus_bps)
        )

    def liquidation_call(
        self,
        sender: str,
        collateral_asset: str,
        debt_asset: str,
        user: str,
        debt_to_cover: int,
        receive_wrapped: bool,
    ) -> bool:
        """
        Repay up to ``debt_to_cover`` of ``user``'s debt and hand the caller
        the matching collateral plus bonus.

        Returns False when the position cannot be liquidated (unknown reserve,
        healthy position, nothing owed or nothing pledged). Reverts when the
        caller has not authorized the pool to pull the repayment.
        """
        user = normalize(user)
        try:
            collateral = self.reserve(collateral_asset)
            debt = self.reserve(debt_asset)
        except Revert as exc:
            logger.warning("liquidation refused: %s", exc.reason)
            return False

        health = self.health_factor(user)
        if health >= WAD:
            logger.info("liquidation refused: %s is healthy (hf=%.4f)", user, health / WAD)
            return False

        ledger = self.chain.ledger
        user_debt = ledger.balance_of(debt.debt_token, user)
        user_collateral = ledger.balance_of(collateral.wrapped, user)
        if user_debt == 0 or user_collateral == 0:
            logger.info("liquidation refused: %s has no debt or collateral in this pair", user)
            return False

        debt_amount = min(debt_to_cover, user_debt * self.close_factor_bps // BPS)
        collateral_amount = self._collateral_for_debt(collateral, debt, debt_amount)
        if collateral_amount > user_collateral:
            collateral_amount = user_collateral
            debt_amount = self._debt_for_collateral(collateral, debt, collateral_amount)
        if debt_amount == 0 or collateral_amount == 0:
            logger.info("liquidation refused: amount rounds to zero")
            return False

        with self.chain.atomic("liquidation_call"):
            self.chain.token(debt.asset).transfer_from(self.address, sender, self.address, debt_amount)
            self.chain.token(debt.debt_token).burn(user, debt_amount)
            if receive_wrapped:
                ledger.move(collateral.wrapped, user, sender, collateral_amount)
            else:
                self.chain.token(collateral.wrapped).burn(user, collateral_amount)
                self.chain.token(collateral.asset).transfer(self.address, sender, collateral_amount)

        logger.info(
            "liquidated %s | repaid=%d | seized=%d (%s) | hf_before=%.4f",
            user, debt_amount, collateral_amount,
            "wrapped" if receive_wrapped else "raw", health / WAD,
        )
        return True
