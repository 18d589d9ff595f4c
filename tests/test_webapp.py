from __future__ import annotations

import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import at, scripted_probe
from focusdebt.config import TrackerSettings
from focusdebt.db import SqliteStore
from focusdebt.models import AppSubject, UsageInterval
from focusdebt.webapp import create_app


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "focusdebt.db"


@pytest.fixture
def client(db_path):
    settings = TrackerSettings(
        tracking_interval=timedelta(milliseconds=10),
        probe_timeout=timedelta(milliseconds=200),
        focus_apps=["code"],
    )
    app = create_app(
        db_path=db_path,
        settings=settings,
        probe_factory=lambda: scripted_probe("code"),
    )
    with TestClient(app) as client:
        yield client


def test_status_reports_idle_tracker(client, db_path) -> None:
    response = client.get("/api/status")

    assert response.status_code == 200
    body = response.json()
    assert body["tracking"] is False
    assert body["database_path"] == str(db_path)
    assert body["settings"]["focus_apps"] == ["code"]


def test_session_lifecycle(client) -> None:
    response = client.post("/api/session/start", json={"name": "api-session"})
    assert response.status_code == 200
    assert response.json()["session"]["name"] == "api-session"
    assert client.get("/api/status").json()["tracking"] is True

    live = client.get("/api/session/live")
    assert live.status_code == 200
    assert live.json()["session"]["end"] is None
    assert "efficiency_pct" in live.json()["summary"]
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        if client.get("/api/session/live").json()["summary"]["total_seconds"] > 0:
            break
        time.sleep(0.01)

    conflict = client.post("/api/session/start", json={"name": "second"})
    assert conflict.status_code == 409

    stopped = client.post("/api/session/stop")
    assert stopped.status_code == 200
    assert stopped.json()["session"]["end"] is not None
    assert client.post("/api/session/stop").status_code == 404
    assert client.get("/api/session/live").status_code == 404

    detail = client.get("/api/sessions/api-session")
    assert detail.status_code == 200
    assert detail.json()["session"]["intervals"]
    assert detail.json()["summary"]["efficiency_pct"] == 100


def test_duplicate_session_name_conflicts(client, db_path) -> None:
    with SqliteStore(db_path) as store:
        store.open_session("taken", at(0))

    response = client.post("/api/session/start", json={"name": "taken"})

    assert response.status_code == 409
    assert "already exists" in response.json()["detail"]


def test_blank_name_is_rejected(client) -> None:
    assert client.post("/api/session/start", json={"name": "  "}).status_code == 400


def test_unknown_fields_are_rejected(client) -> None:
    response = client.post("/api/session/start", json={"name": "x", "force": True})
    assert response.status_code == 422


def test_recorded_sessions_are_listed(client, db_path) -> None:
    with SqliteStore(db_path) as store:
        session_id = store.open_session("recorded", at(0))
        store.append_intervals(
            session_id, [UsageInterval(AppSubject("code"), at(0), at(60), True)]
        )
        store.close_session(session_id, at(60))

    sessions = client.get("/api/sessions").json()["sessions"]
    assert [s["name"] for s in sessions] == ["recorded"]
    assert "intervals" not in sessions[0]

    detail = client.get("/api/sessions/recorded").json()
    assert detail["summary"]["total_seconds"] == 60.0
    assert client.get("/api/sessions/missing").status_code == 404


def test_dashboard_server_is_configured_from_settings(db_path) -> None:
    from focusdebt.server_runner import build_server

    server = build_server(
        host="127.0.0.1",
        port=9876,
        db_path=db_path,
        settings=TrackerSettings(),
        log_level="WARNING",
    )

    assert server.config.host == "127.0.0.1"
    assert server.config.port == 9876
    assert server.config.app.state.db_path == db_path
