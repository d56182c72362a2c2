"""
errors.py
==========
Exception hierarchy for the flash-loan liquidator.

Two families:

  - ``LiquidatorError`` and its subclasses are raised by the orchestrator.
    Any of them escaping the flash-loan callback aborts the whole unit.
  - ``Revert`` is raised by the simulated collaborators (tokens, lending
    pool, swap router) when they refuse a call, the way a contract call
    reverts on chain.
"""


class LiquidatorError(Exception):
    """Base class for all orchestrator errors."""
    pass


class DecodeError(LiquidatorError):
    """Instruction payload is truncated or type-mismatched."""
    pass


class PathMismatchError(LiquidatorError):
    """Swap route is inconsistent with the asset that must be repaid."""
    pass


class LiquidationFailedError(LiquidatorError):
    """The lending pool's liquidation primitive reported failure."""
    pass


class SwapFailedError(LiquidatorError):
    """Router failed or returned less than the minimum output."""
    pass


class InsufficientRepaymentError(LiquidatorError):
    """Balance after the swap does not cover principal plus fee."""

    def __init__(self, final_balance: int, total_due: int) -> None:
        super().__init__(
            f"balance {final_balance} below amount owed {total_due}"
        )
        self.final_balance = final_balance
        self.total_due = total_due


class NoProfitError(LiquidatorError):
    """Profit is not strictly positive under the positive-profit policy."""
    pass


class UnauthorizedError(LiquidatorError):
    """Initiation attempted by someone other than the owner."""
    pass


class InvalidCallbackError(LiquidatorError):
    """Callback invoked by an unexpected caller or with an unexpected loan."""
    pass


class Revert(Exception):
    """A simulated collaborator refused the call."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class TransactionError(Exception):
    """A transaction's post-check failed; its effects were rolled back."""
    pass
