import csv
import json
from dataclasses import replace

import pytest
from eth_abi import encode as abi_encode

import runner
from sandbox import build_sandbox
from settlement_book import SettlementBook


@pytest.fixture
def box():
    return build_sandbox()


@pytest.fixture
def book(tmp_path):
    return SettlementBook(str(tmp_path / "settlements.json"))


@pytest.fixture
def feed(monkeypatch):
    jobs = []
    monkeypatch.setattr(runner, "next_jobs", lambda resolve: list(jobs))
    return jobs


def test_cycle_runs_new_jobs_once(box, book, feed):
    feed.extend(box.demo_jobs())
    seen = set()

    result = runner.run_cycle(box, book, seen)

    assert result["jobs_run"] == 2
    assert result["repaid"] == 2
    assert seen == {"demo-alice", "demo-bob"}
    assert book.get_summary()["units_repaid"] == 2
    assert book.get_profit(box.tokens["USDC"].address)["realized_profit"] > 0

    again = runner.run_cycle(box, book, seen)
    assert again["jobs_seen"] == 2
    assert again["jobs_run"] == 0


def test_cycle_respects_job_limit(box, book, feed):
    feed.extend(box.demo_jobs())
    result = runner.run_cycle(box, book, set(), max_jobs=1)
    assert result["jobs_run"] == 1


def test_aborted_unit_is_recorded(box, book, feed):
    job = box.demo_instruction("bob")
    greedy = (abi_encode(["uint256"], [2**200]), b"")
    job.instruction = replace(job.instruction, swap_extras=greedy)
    feed.append(job)

    result = runner.run_cycle(box, book, set())

    (row,) = result["results"]
    assert row["status"] == "aborted"
    assert "SwapFailedError" in row["reason"]
    (record,) = book.get_history(status="aborted")
    assert record["unit_id"] == box.liquidator.last_outcome.unit_id


def test_rejected_job_is_not_recorded(box, book, feed):
    job = box.demo_instruction("alice")
    ins = job.instruction
    # stops one hop short of the debt asset
    job.instruction = replace(
        ins, swap_path=ins.swap_path[:-1], swap_pairs=ins.swap_pairs[:-1], swap_extras=(b"",),
    )
    feed.append(job)

    result = runner.run_cycle(box, book, set())

    assert result["rejected"] == 1
    assert book.get_history() == []


def test_feed_failure_is_contained(box, book, monkeypatch):
    def broken(resolve):
        raise ConnectionError("feed down")

    monkeypatch.setattr(runner, "next_jobs", broken)
    result = runner.run_cycle(box, book, set())
    assert result["jobs_run"] == 0
    assert "feed down" in result["error"]


def test_snapshot_and_cycle_log(box, book, feed, tmp_path, monkeypatch):
    monkeypatch.setattr(runner, "DASHBOARD_FILE", str(tmp_path / "snapshot.json"))
    monkeypatch.setattr(runner, "CYCLE_LOG", str(tmp_path / "cycle_log.csv"))
    feed.extend(box.demo_jobs())

    result = runner.run_cycle(box, book, set())
    runner.save_snapshot(book, result)
    runner.append_cycle_log(1, 0.5, result)
    runner.append_cycle_log(2, 0.1, {})

    snapshot = json.loads((tmp_path / "snapshot.json").read_text())
    assert snapshot["summary"]["units_repaid"] == 2
    assert len(snapshot["settlements"]) == 2
    with open(tmp_path / "cycle_log.csv", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0][:3] == ["timestamp", "cycle", "elapsed_s"]
    assert rows[1][1:] == ["1", "0.5", "2", "2", "2", "0"]
    assert len(rows) == 3


def test_unexpected_error_is_recorded_as_aborted(box, book, feed, monkeypatch):
    def broken(*args):
        raise RuntimeError("boom")

    monkeypatch.setattr(box.liquidator, "settle", broken)
    feed.append(box.demo_instruction("alice"))

    result = runner.run_cycle(box, book, set())

    (row,) = result["results"]
    assert row["status"] == "aborted"
    assert row["reason"] == "RuntimeError: boom"
    assert len(book.get_history(status="aborted")) == 1
