"""
Tests for the FastAPI application (no database).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

import app.main as app_main
from ccpi.database import Alert, reading_from_output


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(app_main, "db", None)
    # no context manager, so the lifespan (and its database) never starts
    return TestClient(app_main.app)


class FakeDatabase:
    @asynccontextmanager
    async def session(self):
        yield None


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_evaluate_defaults(client):
    response = client.post("/api/ccpi/evaluate", json={})
    assert response.status_code == 200
    data = response.json()
    assert data["ccpi"] == 0
    assert data["regime"]["name"] == "Low Risk"
    assert data["totalIndicators"] == 38
    assert len(data["defaultedIndicators"]) == 38


def test_evaluate_crash_snapshot(client):
    response = client.post("/api/ccpi/evaluate", json={
        "indicators": {
            "qqq_daily_return": -6.5,
            "vix": 40,
            "put_call_ratio": 1.4,
            "yield_curve": -0.3,
        },
        "timestamp": "2025-03-10T21:00:00+00:00",
    })
    data = response.json()
    assert data["totalBonus"] == 75
    assert data["ccpi"] == 88
    assert data["regime"]["level"] == 5
    assert data["timestamp"] == "2025-03-10T21:00:00+00:00"
    assert data["confidence"] == data["certainty"]


def test_evaluate_single_policy(client):
    response = client.post("/api/ccpi/evaluate", json={
        "indicators": {"yield_curve": -0.6},
        "yield_curve_policy": "single",
    })
    data = response.json()
    assert data["yieldCurvePolicy"] == "single"
    assert data["pillars"]["momentum"] == 0


def test_evaluate_rejects_unknown_policy(client):
    response = client.post("/api/ccpi/evaluate", json={"yield_curve_policy": "triple"})
    assert response.status_code == 422


def test_evaluate_tolerates_malformed_values(client):
    response = client.post("/api/ccpi/evaluate", json={"indicators": {"vix": "n/a", "spx_pe": None}})
    assert response.status_code == 200
    assert "vix" in response.json()["defaultedIndicators"]


def test_indicator_registry(client):
    data = client.get("/api/ccpi/indicators").json()
    assert data["total"] == 38
    names = {i["name"]: i for i in data["indicators"]}
    assert names["vix"]["pillar"] == "momentum"
    assert names["yield_curve"]["pillar"] == "riskAppetite"


def test_current_without_database(client):
    assert client.get("/api/ccpi/current").status_code == 503
    assert client.get("/api/ccpi/history").status_code == 503
    assert client.get("/api/alerts").status_code == 503


def test_current_with_no_readings(client, monkeypatch):
    async def no_reading(session):
        return None

    monkeypatch.setattr(app_main, "db", FakeDatabase())
    monkeypatch.setattr(app_main, "get_latest_reading", no_reading)
    assert client.get("/api/ccpi/current").status_code == 404


def test_current_returns_stored_reading(client, monkeypatch, calculator, make_snapshot):
    output = calculator.evaluate(make_snapshot(vix=40))
    reading = reading_from_output(output)

    async def latest(session):
        return reading

    monkeypatch.setattr(app_main, "db", FakeDatabase())
    monkeypatch.setattr(app_main, "get_latest_reading", latest)

    data = client.get("/api/ccpi/current").json()
    assert data["ccpi"] == output.ccpi
    assert data["regime"]["name"] == output.regime.name
    assert data["pillars"]["momentum"] == output.pillar_values["momentum"]


def test_history(client, monkeypatch, calculator, make_snapshot):
    readings = [reading_from_output(calculator.evaluate(make_snapshot(vix=v))) for v in (14, 40)]

    async def timerange(session, start, end):
        return readings

    monkeypatch.setattr(app_main, "db", FakeDatabase())
    monkeypatch.setattr(app_main, "get_readings_for_timerange", timerange)

    data = client.get("/api/ccpi/history", params={"hours": 48}).json()
    assert data["data_points"] == 2
    assert [h["regime_level"] for h in data["history"]] == [r.regime_level for r in readings]


def test_history_rejects_bad_window(client):
    assert client.get("/api/ccpi/history", params={"hours": 0}).status_code == 422


def test_alerts(client, monkeypatch):
    alert = Alert(
        id=1,
        triggered_at=datetime(2025, 3, 10, 21, 0, tzinfo=timezone.utc),
        alert_type="REGIME_CHANGE",
        ccpi=88,
        regime_level=5,
        previous_regime_level=2,
        message="CCPI 88: Crash Watch",
        discord_sent=True,
    )

    async def recent(session, limit):
        return [alert]

    monkeypatch.setattr(app_main, "db", FakeDatabase())
    monkeypatch.setattr(app_main, "get_recent_alerts", recent)

    data = client.get("/api/alerts").json()
    assert data["alerts"][0]["alert_type"] == "REGIME_CHANGE"
    assert data["alerts"][0]["previous_regime_level"] == 2
