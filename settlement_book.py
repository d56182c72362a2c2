"""
settlement_book.py
===================
Persistent record of every liquidation unit the runner attempted.

Repaid units add their profit to the per-asset totals; aborted units are kept
with their diagnostic reason. Nothing here takes part in a unit's
transaction: it records outcomes after the fact.

State is persisted to: data/settlements.json
"""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from config import DATA_DIR, SETTLEMENTS_FILE, get_logger
from models import UnitOutcome, UnitState

logger = get_logger(__name__)


@dataclass(frozen=True)
class SettlementRecord:
    """Immutable record of one finished unit."""
    record_id: str
    unit_id: str
    status: str
    debt_asset: str
    collateral_asset: str
    borrower: str
    amount: int
    fee: int
    total_due: int
    amount_out: int
    final_balance: int
    profit: int
    received_wrapped: bool
    timestamp: str
    swap_error: Optional[str] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SettlementRecord":
        return cls(**d)


@dataclass
class AssetState:
    """Running totals for one repayment asset."""
    asset: str
    symbol: str = ""
    realized_profit: int = 0
    total_fees_paid: int = 0
    total_borrowed: int = 0
    units_repaid: int = 0
    units_aborted: int = 0
    daily_profit: Dict[str, int] = field(default_factory=dict)
    monthly_profit: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        total = self.units_repaid + self.units_aborted
        if total == 0:
            return 0.0
        return self.units_repaid / total

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AssetState":
        return cls(**d)


class SettlementBook:
    """
    Central ledger of unit outcomes.
    All outcomes the runner sees pass through here.
    """

    def __init__(self, settlements_file: str = SETTLEMENTS_FILE) -> None:
        self.settlements_file = settlements_file
        os.makedirs(os.path.dirname(settlements_file) or DATA_DIR, exist_ok=True)
        self._states: Dict[str, AssetState] = {}
        self._history: List[Dict[str, Any]] = []
        self._load_or_init()

    def _load_or_init(self) -> None:
        if os.path.exists(self.settlements_file):
            try:
                self.load_state()
                return
            except (json.JSONDecodeError, KeyError, TypeError) as exc:
                logger.warning("Settlement file corrupt (%s); reinitialising.", exc)
        self._states = {}
        self._history = []
        self.save_state()

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _today_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d")

    @staticmethod
    def _month_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m")

    def _get_state(self, asset: str, symbol: str = "") -> AssetState:
        if asset not in self._states:
            self._states[asset] = AssetState(asset=asset, symbol=symbol)
        state = self._states[asset]
        if symbol and not state.symbol:
            state.symbol = symbol
        return state

    def record(self, outcome: UnitOutcome, symbol: str = "") -> SettlementRecord:
        """Record a finished unit. Outcomes still in flight are refused."""
        if not outcome.state.terminal:
            raise ValueError(f"unit {outcome.unit_id} has not finished ({outcome.state.value})")

        repaid = outcome.state is UnitState.REPAID
        record = SettlementRecord(
            record_id=str(uuid.uuid4()),
            unit_id=outcome.unit_id,
            status=outcome.state.value,
            debt_asset=outcome.debt_asset,
            collateral_asset=outcome.collateral_asset,
            borrower=outcome.borrower,
            amount=outcome.amount,
            fee=outcome.fee,
            total_due=outcome.total_due,
            amount_out=outcome.amount_out,
            final_balance=outcome.final_balance,
            profit=outcome.profit if repaid else 0,
            received_wrapped=outcome.received_wrapped,
            timestamp=self._now_iso(),
            swap_error=outcome.swap_error,
            reason=outcome.reason,
            metadata=dict(outcome.metadata),
        )

        state = self._get_state(outcome.debt_asset, symbol)
        if repaid:
            state.realized_profit += record.profit
            state.total_fees_paid += record.fee
            state.total_borrowed += record.amount
            state.units_repaid += 1
        else:
            state.units_aborted += 1
        self._record_profit_snapshot(state)
        self._history.append(record.to_dict())
        self.save_state()
        return record

    def get_profit(self, asset: str) -> Dict[str, Any]:
        state = self._get_state(asset)
        return {
            "realized_profit": state.realized_profit,
            "total_fees_paid": state.total_fees_paid,
            "total_borrowed": state.total_borrowed,
            "units_repaid": state.units_repaid,
            "units_aborted": state.units_aborted,
            "success_rate": round(state.success_rate * 100, 2),
        }

    def get_summary(self) -> Dict[str, Any]:
        assets_summary = {}
        for asset, state in self._states.items():
            assets_summary[asset] = {"symbol": state.symbol, **self.get_profit(asset)}
        return {
            "timestamp": self._now_iso(),
            "units_repaid": sum(s.units_repaid for s in self._states.values()),
            "units_aborted": sum(s.units_aborted for s in self._states.values()),
            "assets": assets_summary,
            "history_count": len(self._history),
        }

    def get_history(
        self, asset: Optional[str] = None, status: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        history = self._history
        if asset:
            history = [r for r in history if r["debt_asset"] == asset]
        if status:
            history = [r for r in history if r["status"] == status]
        return history[-limit:]

    def _record_profit_snapshot(self, state: AssetState) -> None:
        state.daily_profit[self._today_str()] = state.realized_profit
        state.monthly_profit[self._month_str()] = state.realized_profit

    def print_table(self, limit: int = 15) -> None:
        """Print the most recent units."""
        rows = []
        for r in self.get_history(limit=limit):
            symbol = self._get_state(r["debt_asset"]).symbol or r["debt_asset"][:10]
            rows.append([
                r["unit_id"][:8],
                r["status"],
                symbol,
                r["borrower"][:10],
                f"{r['amount']:,}",
                f"{r['fee']:,}",
                f"{r['amount_out']:,}",
                f"{r['profit']:,}",
                (r["reason"] or "")[:40],
            ])
        headers = ["Unit", "Status", "Asset", "Borrower", "Borrowed", "Fee", "Out", "Profit", "Reason"]
        print("\n" + "─" * 90)
        print("  FLASH LIQUIDATIONS")
        print("─" * 90)
        if rows:
            print(tabulate(rows, headers=headers, tablefmt="simple"))
        else:
            print("  No liquidation units recorded.")
        print("─" * 90 + "\n")

    def save_state(self) -> None:
        payload: Dict[str, Any] = {
            "saved_at": self._now_iso(),
            "states": {a: s.to_dict() for a, s in self._states.items()},
            "history": self._history,
        }
        tmp = self.settlements_file + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, default=str)
            os.replace(tmp, self.settlements_file)
        except OSError as exc:
            logger.error("Failed to save settlements: %s", exc)

    def load_state(self) -> None:
        with open(self.settlements_file, "r", encoding="utf-8") as f:
            payload: Dict[str, Any] = json.load(f)
        self._states = {
            asset: AssetState.from_dict(sdict)
            for asset, sdict in payload.get("states", {}).items()
        }
        self._history = payload.get("history", [])

    def reset_asset(self, asset: str) -> None:
        symbol = self._states[asset].symbol if asset in self._states else ""
        self._states[asset] = AssetState(asset=asset, symbol=symbol)
        self.save_state()

    def reset_all(self) -> None:
        self._states = {}
        self._history = []
        self.save_state()


if __name__ == "__main__":
    book = SettlementBook()
    print(json.dumps(book.get_summary(), indent=2, default=str))
    book.print_table()
