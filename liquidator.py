"""
liquidator.py
==============
Flash-loan liquidation orchestrator.

One unit of work:

    request_liquidation (owner only)
      → validate route, encode instruction
      → lending pool flash loan
          → on_loan_received (pool only)
              decode → liquidate → swap (if routed) → settle
      → pool pulls principal + premium

The whole unit runs inside one transaction: any error that escapes the
callback rolls back the loan, the liquidation and every transfer.

Can be run standalone against the sandbox market:
    python liquidator.py
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Optional, Sequence

import codec
from chain import Chain, derive_address, normalize
from config import LIQUIDATION, get_logger
from errors import (
    InsufficientRepaymentError,
    InvalidCallbackError,
    LiquidationFailedError,
    LiquidatorError,
    NoProfitError,
    Revert,
    SwapFailedError,
    TransactionError,
    UnauthorizedError,
)
from lending_pool import LendingPool
from models import (
    FlashRequest,
    LiquidationInstruction,
    RepaymentObligation,
    SettlementResult,
    UnitOutcome,
    UnitState,
)
from routing import receive_wrapped, validate_path
from swap_router import SwapRouter

logger = get_logger(__name__)


class SwapFailurePolicy(Enum):
    STRICT = "strict"   # router failure aborts the unit at the swap
    SOFT = "soft"       # router failure is logged; settlement decides


class ProfitPolicy(Enum):
    NON_NEGATIVE = "non_negative"
    POSITIVE = "positive"


class FlashLiquidator:
    """
    Liquidates under-collateralized positions with borrowed capital.

    Parameters
    ----------
    chain           : host the contract lives on
    pool            : lending collaborator (flash loans + liquidation)
    router          : swap collaborator
    owner           : only address allowed to start a unit; receives profit
    swap_policy     : what to do when the router fails (default from config)
    profit_policy   : whether zero profit settles (default from config)
    deadline_window : seconds added to ``chain.now`` for the swap deadline
    """

    def __init__(
        self,
        chain: Chain,
        pool: LendingPool,
        router: SwapRouter,
        owner: str,
        address: Optional[str] = None,
        swap_policy: Optional[SwapFailurePolicy] = None,
        profit_policy: Optional[ProfitPolicy] = None,
        deadline_window: int = LIQUIDATION["deadline_window"],
        referral_code: int = LIQUIDATION["referral_code"],
    ) -> None:
        self.chain = chain
        self.pool = pool
        self.router = router
        self.owner = normalize(owner)
        self.address = normalize(address) if address else derive_address("flash-liquidator")
        self.swap_policy = swap_policy or SwapFailurePolicy(LIQUIDATION["swap_failure_policy"])
        self.profit_policy = profit_policy or ProfitPolicy(LIQUIDATION["profit_policy"])
        self.deadline_window = deadline_window
        self.referral_code = referral_code

        self.state = UnitState.IDLE
        self.last_outcome: Optional[UnitOutcome] = None
        self._outcome: Optional[UnitOutcome] = None
        chain.deploy(self)

    def _set_state(self, state: UnitState) -> None:
        logger.debug("unit state %s -> %s", self.state.value, state.value)
        self.state = state
        if self._outcome is not None:
            self._outcome.state = state

    # ── Initiation ──────────────────────────────────────────────────────────

    def request_liquidation(
        self,
        sender: str,
        debt_asset: str,
        amount: int,
        instruction: LiquidationInstruction,
    ) -> UnitOutcome:
        """
        Start one unit: borrow ``amount`` of ``debt_asset`` and liquidate as
        ``instruction`` says. Raises on abort; the ledger is then exactly as
        it was before the call.
        """
        if normalize(sender) != self.owner:
            raise UnauthorizedError(f"{sender} is not the owner")

        request = FlashRequest(asset=debt_asset, amount=amount)
        validate_path(
            instruction,
            request.asset,
            self.pool.wrapped_token_of(instruction.collateral_asset),
        )
        payload = codec.encode(instruction)

        outcome = UnitOutcome(
            unit_id=str(uuid.uuid4()),
            debt_asset=request.asset,
            collateral_asset=instruction.collateral_asset,
            borrower=instruction.borrower,
            amount=request.amount,
            metadata={
                "hops": instruction.hops,
                "swap_policy": self.swap_policy.value,
                "profit_policy": self.profit_policy.value,
                "started_at": self.chain.now,
            },
        )
        self._outcome = outcome
        self._set_state(UnitState.LOAN_REQUESTED)

        try:
            with self.chain.atomic(f"unit:{outcome.unit_id[:8]}"):
                self.pool.flash_loan(
                    self.address,
                    self.address,
                    [request.asset],
                    [request.amount],
                    [request.mode],
                    self.address,
                    payload,
                    self.referral_code,
                )
        except Exception as exc:
            outcome.reason = f"{type(exc).__name__}: {exc}"
            self._set_state(UnitState.ABORTED)
            expected = isinstance(exc, (LiquidatorError, Revert, TransactionError))
            logger.log(
                logging.WARNING if expected else logging.ERROR,
                "unit %s aborted at %s | borrower=%s | %s",
                outcome.unit_id[:8], self._last_phase(outcome), outcome.borrower, outcome.reason,
                exc_info=not expected,
            )
            raise
        else:
            self._set_state(UnitState.REPAID)
            logger.info(
                "unit %s repaid | borrower=%s | borrowed=%d fee=%d | out=%d | profit=%d",
                outcome.unit_id[:8], outcome.borrower, outcome.amount, outcome.fee,
                outcome.amount_out, outcome.profit,
            )
        finally:
            self.last_outcome = outcome
            self._outcome = None
        return outcome

    @staticmethod
    def _last_phase(outcome: UnitOutcome) -> str:
        return outcome.metadata.get("phase", UnitState.LOAN_REQUESTED.value)

    # ── Callback ────────────────────────────────────────────────────────────

    def on_loan_received(
        self,
        sender: str,
        assets: Sequence[str],
        amounts: Sequence[int],
        premiums: Sequence[int],
        initiator: str,
        payload: bytes,
    ) -> bool:
        """Called by the pool once the borrowed funds have arrived."""
        if normalize(sender) != self.pool.address:
            raise InvalidCallbackError(f"callback from {sender}, expected the lending pool")
        if normalize(initiator) != self.address:
            raise InvalidCallbackError(f"loan initiated by {initiator}, not by this contract")
        if not (len(assets) == len(amounts) == len(premiums) == 1):
            raise InvalidCallbackError("expected exactly one borrowed asset")
        outcome = self._outcome
        if outcome is None or self.state is not UnitState.LOAN_REQUESTED:
            raise InvalidCallbackError("no unit waiting for a loan")

        instruction = codec.decode(payload)
        asset = normalize(assets[0])
        if asset != outcome.debt_asset or amounts[0] != outcome.amount:
            raise InvalidCallbackError(
                f"received {amounts[0]} of {asset}, requested {outcome.amount} of {outcome.debt_asset}"
            )
        obligation = RepaymentObligation(principal=amounts[0], fee=premiums[0])
        outcome.fee = obligation.fee
        outcome.total_due = obligation.total_due

        validate_path(instruction, asset, self.pool.wrapped_token_of(instruction.collateral_asset))

        self._enter(UnitState.LIQUIDATING)
        outcome.received_wrapped = self.liquidate(
            instruction.collateral_asset,
            asset,
            instruction.borrower,
            obligation.principal,
            instruction.swap_path,
        )

        if instruction.swap_path:
            self._enter(UnitState.SWAPPING)
            outcome.amount_out = self._swap_under_policy(instruction, obligation.total_due)

        self._enter(UnitState.SETTLING)
        final_balance = self.chain.token(asset).balance_of(self.address)
        outcome.final_balance = final_balance
        outcome.profit = self.settle(final_balance, obligation.total_due, self.owner, asset)
        return True

    def _enter(self, state: UnitState) -> None:
        self._set_state(state)
        if self._outcome is not None:
            self._outcome.metadata["phase"] = state.value

    # ── Liquidation step ────────────────────────────────────────────────────

    def liquidate(
        self,
        collateral: str,
        repayment_asset: str,
        borrower: str,
        amount: int,
        swap_path: Sequence[str] = (),
    ) -> bool:
        """
        Repay ``amount`` of the borrower's debt through the pool. Returns
        whether the collateral arrived in its wrapped form.
        """
        wrapped = receive_wrapped(collateral, swap_path)
        # the pool pulls the repayment; authorize exactly what it may take
        self.chain.token(repayment_asset).approve(self.address, self.pool.address, amount)
        try:
            ok = self.pool.liquidation_call(
                self.address, collateral, repayment_asset, borrower, amount, wrapped,
            )
        except Revert as exc:
            raise LiquidationFailedError(f"liquidation reverted: {exc.reason}") from exc
        if not ok:
            raise LiquidationFailedError(f"pool refused to liquidate {borrower}")
        return wrapped

    # ── Swap step ───────────────────────────────────────────────────────────

    def swap(
        self,
        path: Sequence[str],
        pairs: Sequence[str],
        extras: Sequence[bytes],
        min_out: int,
    ) -> int:
        """
        Trade the contract's entire balance of ``path[0]`` into ``path[-1]``.

        The router enforces ``min_out`` itself; the result is checked again
        here, both as reported and as the observed balance delta. Runs in a
        nested transaction so a failed swap leaves no allowance or partial
        transfer behind.
        """
        token_in = self.chain.token(path[0])
        token_out = self.chain.token(path[-1])
        amount_in = token_in.balance_of(self.address)
        if amount_in == 0:
            raise SwapFailedError(f"no {token_in.symbol} to swap")

        try:
            with self.chain.atomic("swap"):
                before = token_out.balance_of(self.address)
                if token_out.address == token_in.address:
                    # round trip: the input leaves the balance being measured
                    before -= amount_in
                token_in.approve(self.address, self.router.address, amount_in)
                amount_out = self.router.swap_exact_in_for_min_out(
                    self.address,
                    list(path),
                    list(pairs),
                    list(extras),
                    amount_in,
                    min_out,
                    self.address,
                    self.chain.now + self.deadline_window,
                )
                received = token_out.balance_of(self.address) - before
                if received != amount_out:
                    raise SwapFailedError(
                        f"router reported {amount_out} {token_out.symbol} but balance grew by {received}"
                    )
                if amount_out < min_out:
                    raise SwapFailedError(f"swap returned {amount_out}, below floor {min_out}")
        except Revert as exc:
            raise SwapFailedError(f"router reverted: {exc.reason}") from exc

        logger.debug("swapped %d %s -> %d %s", amount_in, token_in.symbol, amount_out, token_out.symbol)
        return amount_out

    def _swap_under_policy(self, instruction: LiquidationInstruction, min_out: int) -> int:
        try:
            return self.swap(
                instruction.swap_path,
                instruction.swap_pairs,
                instruction.swap_extras,
                min_out,
            )
        except SwapFailedError as exc:
            if self.swap_policy is SwapFailurePolicy.STRICT:
                raise
            logger.warning("swap failed, continuing to settlement (soft policy): %s", exc)
            if self._outcome is not None:
                self._outcome.swap_error = str(exc)
            return 0

    # ── Settlement step ─────────────────────────────────────────────────────

    def settle(self, final_balance: int, total_due: int, beneficiary: str, asset: str) -> int:
        """Pay out the surplus and authorize the pool to pull ``total_due``."""
        result = SettlementResult(final_balance=final_balance, total_due=total_due)
        if final_balance < total_due:
            raise InsufficientRepaymentError(final_balance, total_due)
        if self.profit_policy is ProfitPolicy.POSITIVE and result.profit <= 0:
            raise NoProfitError(f"profit {result.profit} is not positive")

        token = self.chain.token(asset)
        if result.profit > 0:
            token.transfer(self.address, beneficiary, result.profit)
        token.approve(self.address, self.pool.address, total_due)
        return result.profit


if __name__ == "__main__":
    from sandbox import build_sandbox

    box = build_sandbox()
    print(f"\n[Liquidator] sandbox market with {len(box.borrowers)} borrower(s)\n")
    for label, address in box.borrowers.items():
        hf = box.pool.health_factor(address)
        print(f"  {label:<8} {address}  hf={hf / 10**18:.4f}")
    job = box.demo_instruction("alice")
    outcome = box.liquidator.request_liquidation(box.owner, job.debt_asset, job.amount, job.instruction)
    print("\nOutcome:")
    for k, v in outcome.to_dict().items():
        print(f"  {k}: {v}")
