import dataclasses
import json

import pytest

from models import UnitOutcome, UnitState
from settlement_book import SettlementBook

USDC = "0x" + "11" * 20
DAI = "0x" + "22" * 20


def outcome(state, asset=USDC, profit=0, **kw):
    return UnitOutcome(
        unit_id=kw.pop("unit_id", "unit-" + state.value),
        debt_asset=asset,
        collateral_asset="0x" + "33" * 20,
        borrower="0x" + "44" * 20,
        amount=1_000,
        state=state,
        fee=5,
        total_due=1_005,
        profit=profit,
        **kw,
    )


@pytest.fixture
def book(tmp_path):
    return SettlementBook(str(tmp_path / "settlements.json"))


def test_repaid_unit_counts_profit(book):
    record = book.record(outcome(UnitState.REPAID, profit=45, amount_out=1_050), "USDC")
    assert record.status == "repaid"
    assert record.profit == 45
    profit = book.get_profit(USDC)
    assert profit["realized_profit"] == 45
    assert profit["total_fees_paid"] == 5
    assert profit["units_repaid"] == 1
    assert profit["success_rate"] == 100.0


def test_aborted_unit_keeps_reason(book):
    book.record(outcome(UnitState.ABORTED, profit=45, reason="SwapFailedError: router down"))
    (row,) = book.get_history(status="aborted")
    assert row["profit"] == 0
    assert row["reason"] == "SwapFailedError: router down"
    assert book.get_profit(USDC)["units_aborted"] == 1
    assert book.get_profit(USDC)["realized_profit"] == 0


def test_unfinished_unit_refused(book):
    with pytest.raises(ValueError):
        book.record(outcome(UnitState.SWAPPING))
    assert book.get_history() == []


def test_state_survives_reload(book):
    book.record(outcome(UnitState.REPAID, profit=45), "USDC")
    book.record(outcome(UnitState.REPAID, asset=DAI, profit=7), "DAI")

    again = SettlementBook(book.settlements_file)

    summary = again.get_summary()
    assert summary["units_repaid"] == 2
    assert summary["assets"][DAI]["symbol"] == "DAI"
    assert [r["debt_asset"] for r in again.get_history()] == [USDC, DAI]
    assert again.get_history(asset=DAI)[0]["profit"] == 7


def test_corrupt_file_reinitialised(tmp_path):
    path = tmp_path / "settlements.json"
    path.write_text("{not json")
    book = SettlementBook(str(path))
    assert book.get_summary()["history_count"] == 0
    assert json.loads(path.read_text())["history"] == []


def test_reset(book):
    book.record(outcome(UnitState.REPAID, profit=45), "USDC")
    book.reset_asset(USDC)
    assert book.get_profit(USDC)["realized_profit"] == 0
    assert book.get_summary()["assets"][USDC]["symbol"] == "USDC"
    book.reset_all()
    assert book.get_summary()["assets"] == {}
    assert book.get_history() == []


def test_print_table(book, capsys):
    book.print_table()
    assert "No liquidation units recorded" in capsys.readouterr().out
    book.record(outcome(UnitState.REPAID, profit=45), "USDC")
    book.print_table()
    out = capsys.readouterr().out
    assert "repaid" in out
    assert "USDC" in out


def test_records_are_frozen(book):
    record = book.record(outcome(UnitState.REPAID, profit=45), "USDC")
    with pytest.raises(dataclasses.FrozenInstanceError):
        record.profit = 0
