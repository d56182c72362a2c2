"""
runner.py
=========
Continuous liquidation runner. Each cycle pulls the latest jobs from the
decision process, runs every job it has not seen before as one flash-loan
unit against the sandbox market, and records the outcome.

Designed to be launched once and left running:
    nohup python3 runner.py &

Writes results to data/dashboard_snapshot.json and data/settlements.json
after every cycle, and appends a one-line summary to data/cycle_log.csv.
If no feed URL is configured and data/jobs.json does not exist, the
sandbox's demo jobs are written there on first start.

Ctrl+C to stop gracefully.
"""

from __future__ import annotations

import csv
import json
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Set

# ── Project imports ──────────────────────────────────────────────────────────
from config import API, DATA_DIR, JOBS_FILE, RUNNER, get_logger
from job_feed import LiquidationJob, next_jobs, save_jobs
from sandbox import Sandbox, build_sandbox
from settlement_book import SettlementBook

logger = get_logger("runner")

os.makedirs(DATA_DIR, exist_ok=True)
DASHBOARD_FILE = os.path.join(DATA_DIR, "dashboard_snapshot.json")
CYCLE_LOG = os.path.join(DATA_DIR, "cycle_log.csv")
PID_FILE = os.path.join(DATA_DIR, "runner.pid")

MIN_CYCLE_GAP = RUNNER["min_cycle_gap"]


# ── Snapshot save ────────────────────────────────────────────────────────────

def save_snapshot(book: SettlementBook, cycle_result: Dict[str, Any]) -> None:
    snapshot = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "summary": book.get_summary(),
        "cycle_result": cycle_result,
        "settlements": book.get_history(limit=50),
    }
    tmp = DASHBOARD_FILE + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(snapshot, f, indent=2, default=str)
    os.replace(tmp, DASHBOARD_FILE)


def append_cycle_log(cycle_num: int, elapsed_s: float, result: Dict[str, Any]) -> None:
    """Append one row to the CSV cycle log for historical tracking."""
    file_exists = os.path.exists(CYCLE_LOG)
    with open(CYCLE_LOG, "a", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        if not file_exists:
            writer.writerow([
                "timestamp", "cycle", "elapsed_s", "jobs_seen", "jobs_run",
                "repaid", "aborted",
            ])
        writer.writerow([
            datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            cycle_num,
            f"{elapsed_s:.1f}",
            result.get("jobs_seen", 0),
            result.get("jobs_run", 0),
            result.get("repaid", 0),
            result.get("aborted", 0),
        ])


# ── Single cycle ─────────────────────────────────────────────────────────────

def run_job(box: Sandbox, book: SettlementBook, job: LiquidationJob) -> Dict[str, Any]:
    """Run one job as one unit and record it, whatever happens."""
    liquidator = box.liquidator
    symbol = box.symbol_of(job.debt_asset)
    previous = liquidator.last_outcome
    try:
        outcome = liquidator.request_liquidation(
            box.owner, job.debt_asset, job.amount, job.instruction,
        )
    except Exception as exc:
        outcome = liquidator.last_outcome
        if outcome is previous:
            # refused before a unit started: bad route or amount
            logger.warning("Job %s rejected: %s", job.job_id, exc)
            return {"job_id": job.job_id, "status": "rejected", "reason": str(exc)}
        book.record(outcome, symbol)
        return {"job_id": job.job_id, "status": outcome.state.value, "reason": outcome.reason}
    book.record(outcome, symbol)
    return {"job_id": job.job_id, "status": outcome.state.value, "profit": outcome.profit}


def run_cycle(
    box: Sandbox,
    book: SettlementBook,
    seen: Set[str],
    max_jobs: int = RUNNER["max_jobs_per_cycle"],
) -> Dict[str, Any]:
    try:
        jobs = next_jobs(box.resolve)
    except Exception as exc:
        logger.error("Job feed failed: %s", exc)
        return {"error": str(exc), "jobs_seen": 0, "jobs_run": 0}

    fresh = [j for j in jobs if j.job_id not in seen][:max_jobs]
    results: List[Dict[str, Any]] = []
    for job in fresh:
        seen.add(job.job_id)
        results.append(run_job(box, book, job))

    return {
        "jobs_seen": len(jobs),
        "jobs_run": len(fresh),
        "repaid": sum(1 for r in results if r["status"] == "repaid"),
        "aborted": sum(1 for r in results if r["status"] == "aborted"),
        "rejected": sum(1 for r in results if r["status"] == "rejected"),
        "results": results,
    }


# ── Main loop ────────────────────────────────────────────────────────────────

def main() -> None:
    if os.path.exists(PID_FILE):
        try:
            with open(PID_FILE) as f:
                old_pid = int(f.read().strip())
            os.kill(old_pid, 0)
            print(f"[ERROR] Runner already active (PID {old_pid}). Exiting.")
            sys.exit(1)
        except (OSError, ValueError):
            pass

    with open(PID_FILE, "w") as f:
        f.write(str(os.getpid()))

    box = build_sandbox()
    book = SettlementBook()
    seen: Set[str] = set()

    if not API["job_feed"] and not os.path.exists(JOBS_FILE):
        save_jobs(box.demo_jobs(), JOBS_FILE)
        logger.info("Seeded %s with sandbox demo jobs", JOBS_FILE)

    print(f"\n{'═' * 60}")
    print("  FLASH LIQUIDATOR — CONTINUOUS RUNNER")
    print(f"  Jobs from : {API['job_feed'] or JOBS_FILE}")
    print(f"  Swap pol. : {box.liquidator.swap_policy.value}")
    print(f"  Profit    : {box.liquidator.profit_policy.value}")
    print(f"  Min gap   : {MIN_CYCLE_GAP}s between cycles")
    print(f"  PID       : {os.getpid()}")
    print(f"{'═' * 60}\n")

    cycle_num = 0

    try:
        while True:
            cycle_num += 1
            cycle_start = time.perf_counter()
            now_str = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
            print(f"[Cycle {cycle_num}] {now_str}")

            try:
                result = run_cycle(box, book, seen)
            except Exception as exc:
                logger.error("Cycle %d crashed: %s", cycle_num, exc, exc_info=True)
                print(f"  [CYCLE ERROR] {exc}")
                time.sleep(30)
                continue

            try:
                save_snapshot(book, result)
            except OSError as exc:
                logger.error("Snapshot save failed: %s", exc)

            elapsed = time.perf_counter() - cycle_start
            try:
                append_cycle_log(cycle_num, elapsed, result)
            except OSError as exc:
                logger.error("Cycle log append failed: %s", exc)

            print(
                f"  Done in {elapsed:.1f}s | jobs: {result.get('jobs_run', 0)} new "
                f"| repaid: {result.get('repaid', 0)} aborted: {result.get('aborted', 0)}"
            )
            if result.get("jobs_run"):
                book.print_table(limit=result["jobs_run"])

            remaining = MIN_CYCLE_GAP - elapsed
            if remaining > 0:
                print(f"  Cooling down {remaining:.0f}s...\n")
                time.sleep(remaining)
            else:
                print()

    except KeyboardInterrupt:
        print("\n[Interrupted] Saving final state...")
        save_snapshot(book, {})
        print("[OK] Stopped. State saved.")
    finally:
        if os.path.exists(PID_FILE):
            os.remove(PID_FILE)


if __name__ == "__main__":
    main()
