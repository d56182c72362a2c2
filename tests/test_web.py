import json
import os
from datetime import datetime, timezone

import pytest

import web


@pytest.fixture
def files(tmp_path, monkeypatch):
    paths = {
        "snapshot": tmp_path / "dashboard_snapshot.json",
        "settlements": tmp_path / "settlements.json",
        "pid": tmp_path / "runner.pid",
    }
    monkeypatch.setattr(web, "DASHBOARD_SNAPSHOT", str(paths["snapshot"]))
    monkeypatch.setattr(web, "SETTLEMENTS_FILE", str(paths["settlements"]))
    monkeypatch.setattr(web, "PID_FILE", str(paths["pid"]))
    return paths


@pytest.fixture
def client(files):
    web.app.config["TESTING"] = True
    return web.app.test_client()


def test_data_before_runner_starts(client):
    resp = client.get("/api/data")
    assert resp.status_code == 503
    assert "error" in resp.get_json()


def test_data_serves_snapshot(client, files):
    files["snapshot"].write_text(json.dumps({"timestamp": "x", "summary": {"units_repaid": 3}}))
    resp = client.get("/api/data")
    assert resp.status_code == 200
    assert resp.get_json()["summary"]["units_repaid"] == 3
    assert resp.headers["Cache-Control"].startswith("no-cache")


def test_data_corrupt_snapshot(client, files):
    files["snapshot"].write_text("{")
    assert client.get("/api/data").status_code == 500


def test_settlements_filtering(client, files):
    history = [
        {"unit_id": "1", "status": "repaid", "debt_asset": "0xaa"},
        {"unit_id": "2", "status": "aborted", "debt_asset": "0xbb"},
        {"unit_id": "3", "status": "repaid", "debt_asset": "0xbb"},
    ]
    files["settlements"].write_text(json.dumps({"history": history}))

    assert [r["unit_id"] for r in client.get("/api/settlements").get_json()] == ["1", "2", "3"]
    assert [r["unit_id"] for r in client.get("/api/settlements?status=repaid").get_json()] == ["1", "3"]
    assert [r["unit_id"] for r in client.get("/api/settlements?asset=0xBB").get_json()] == ["2", "3"]
    assert [r["unit_id"] for r in client.get("/api/settlements?limit=1").get_json()] == ["3"]
    assert client.get("/api/settlements?limit=many").status_code == 400


def test_settlements_missing(client):
    assert client.get("/api/settlements").status_code == 503


def test_health(client, files):
    body = client.get("/api/health").get_json()
    assert body["runner_alive"] is False
    assert body["snapshot_age_seconds"] is None

    files["pid"].write_text(str(os.getpid()))
    files["snapshot"].write_text(json.dumps({"timestamp": datetime.now(timezone.utc).isoformat()}))
    body = client.get("/api/health").get_json()
    assert body["runner_alive"] is True
    assert 0 <= body["snapshot_age_seconds"] < 60
