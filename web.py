"""
web.py
======
Flask server exposing what the liquidation runner has done.

Serves:
  - /api/data        → latest dashboard_snapshot.json written by runner.py
  - /api/settlements → recorded units, filterable by ?status= and ?asset=
  - /api/health      → runner liveness and snapshot age

Read-only: it never touches the simulated ledger, only the files the
runner writes.
"""

import json
import os
from datetime import datetime, timezone

from flask import Flask, jsonify, request

from config import DATA_DIR, SETTLEMENTS_FILE

app = Flask(__name__)

DASHBOARD_SNAPSHOT = os.path.join(DATA_DIR, "dashboard_snapshot.json")
PID_FILE = os.path.join(DATA_DIR, "runner.pid")


def _read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _no_cache(resp):
    resp.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    resp.headers["Access-Control-Allow-Origin"] = "*"
    return resp


@app.route("/api/data")
def api_data():
    if not os.path.exists(DASHBOARD_SNAPSHOT):
        return jsonify({
            "error": "No data available yet — runner may not be started",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }), 503

    try:
        return _no_cache(jsonify(_read_json(DASHBOARD_SNAPSHOT)))
    except (json.JSONDecodeError, OSError) as exc:
        return jsonify({
            "error": f"Failed to read snapshot: {exc}",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }), 500


@app.route("/api/settlements")
def api_settlements():
    """Recorded units, newest last."""
    if not os.path.exists(SETTLEMENTS_FILE):
        return jsonify([]), 503

    try:
        history = _read_json(SETTLEMENTS_FILE).get("history", [])
    except (json.JSONDecodeError, OSError):
        return jsonify([]), 500

    status = request.args.get("status")
    asset = request.args.get("asset")
    if status:
        history = [r for r in history if r.get("status") == status]
    if asset:
        history = [r for r in history if r.get("debt_asset") == asset.lower()]
    try:
        limit = int(request.args.get("limit", 100))
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400
    return _no_cache(jsonify(history[-limit:] if limit > 0 else []))


@app.route("/api/health")
def health():
    runner_alive = False
    if os.path.exists(PID_FILE):
        try:
            with open(PID_FILE) as f:
                pid = int(f.read().strip())
            os.kill(pid, 0)
            runner_alive = True
        except (OSError, ValueError):
            runner_alive = False

    snapshot_age = None
    if os.path.exists(DASHBOARD_SNAPSHOT):
        try:
            ts = _read_json(DASHBOARD_SNAPSHOT).get("timestamp", "")
            if ts:
                snap_time = datetime.fromisoformat(ts.replace("Z", "+00:00"))
                age_sec = (datetime.now(timezone.utc) - snap_time).total_seconds()
                snapshot_age = round(age_sec, 1)
        except (json.JSONDecodeError, OSError, ValueError):
            snapshot_age = None

    return jsonify({
        "status": "healthy",
        "runner_alive": runner_alive,
        "snapshot_age_seconds": snapshot_age,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 10000))
    debug = os.environ.get("FLASK_DEBUG", "false").lower() == "true"
    print(f"Starting Flash Liquidator API on port {port}")
    print(f"  Data dir: {DATA_DIR}")
    print(f"  Snapshot file: {DASHBOARD_SNAPSHOT}")
    app.run(host="0.0.0.0", port=port, debug=debug)
