"""
Tests for the /v1/athletes profile and trends endpoints.

The Celery enqueue is patched out; trend reads use FakeRedis.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from main import app
from services.trend_cache import CACHE_TTL_S, history_key, sparkline_key
from services.trend_engine import SPARKLINE_DAYS


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def enqueue():
    with patch("tasks.trend_tasks.enqueue_trend_recompute", return_value=True) as mock:
        yield mock


def _rides_payload():
    now = datetime.now(timezone.utc)
    rides = []
    for i in range(8):
        rides.append({
            "start_time": (now - timedelta(days=20 - i * 2)).isoformat(),
            "duration_seconds": 3600 if i % 2 else 1200,
            "average_power": 240 if i % 2 else 265,
            "average_hr": 150,
            "max_hr": 175 + i,
        })
    return rides


class TestProfileEndpoints:
    def test_unknown_athlete_is_404(self, client):
        response = client.get("/v1/athletes/nobody/profile")

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_update_estimates_and_enqueues_trends(self, client, enqueue):
        response = client.post("/v1/athletes/a1/profile/update", json={
            "activities": _rides_payload(), "weight_kg": 72, "age": 34, "sex": "male",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["ftp_source"] == "computed"
        assert body["max_hr_source"] == "computed"
        assert len(body["power_zones"]) == 7
        assert body["data_quality"]["sample_size"] == 8
        enqueue.assert_called_once()

        fetched = client.get("/v1/athletes/a1/profile").json()
        assert fetched["ftp"] == body["ftp"]

    def test_update_without_activities_keeps_defaults(self, client, enqueue):
        response = client.post("/v1/athletes/a1/profile/update", json={"weight_kg": 80})

        assert response.status_code == 200
        assert response.json()["ftp"] == 200
        assert response.json()["ftp_source"] == "coggan"

    def test_manual_ftp_then_estimate(self, client, enqueue):
        response = client.put("/v1/athletes/a1/profile/ftp", json={"ftp": 305})
        assert response.status_code == 200
        assert response.json()["ftp_source"] == "manual"

        updated = client.post("/v1/athletes/a1/profile/update", json={
            "activities": _rides_payload(),
        }).json()
        assert updated["ftp"] == 305
        assert updated["ftp_source"] == "manual"

    def test_manual_ftp_invalidates_sparkline(self, client, fake_redis):
        key = sparkline_key("a1", "ftp", SPARKLINE_DAYS)
        fake_redis.setex(key, 300, "[240.0, 250.0]")

        client.put("/v1/athletes/a1/profile/ftp", json={"ftp": 280})

        assert fake_redis.get(key) is None

    def test_invalid_manual_ftp(self, client):
        response = client.put("/v1/athletes/a1/profile/ftp", json={"ftp": -5})

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_FTP"

    def test_invalid_manual_max_hr(self, client):
        response = client.put("/v1/athletes/a1/profile/max-hr", json={"max_hr": 260})
        assert response.status_code == 422

    def test_clear_override(self, client):
        client.put("/v1/athletes/a1/profile/max-hr", json={"max_hr": 192})
        response = client.delete("/v1/athletes/a1/profile/overrides/max-hr")

        assert response.status_code == 200
        assert response.json()["max_hr_source"] == "computed"
        assert response.json()["max_hr"] == 192

    def test_clear_override_unknown_metric(self, client):
        client.put("/v1/athletes/a1/profile/ftp", json={"ftp": 250})
        response = client.delete("/v1/athletes/a1/profile/overrides/vo2max")
        assert response.status_code == 422

    def test_clear_override_unknown_athlete(self, client):
        response = client.delete("/v1/athletes/nobody/profile/overrides/ftp")
        assert response.status_code == 404


class TestTrendsEndpoint:
    def test_missing_enqueues_recompute(self, client, enqueue, fake_redis):
        response = client.get("/v1/athletes/a1/trends?weeks=12")

        body = response.json()
        assert response.status_code == 200
        assert body["state"] == "missing"
        assert body["points"] == []
        assert body["recompute_enqueued"] is True
        assert enqueue.call_args[0][:2] == ("a1", 12)

    def test_fresh_served_without_enqueue(self, client, enqueue, fake_redis):
        point = {
            "date": datetime.now(timezone.utc).isoformat(),
            "ftp": 251.0, "vo2max": 48.0, "confidence": 0.8, "activity_count": 14,
        }
        fake_redis.setex(history_key("a1", 26), CACHE_TTL_S, json.dumps({
            "payload": [point],
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }))

        body = client.get("/v1/athletes/a1/trends").json()

        assert body["state"] == "fresh"
        assert body["points"][0]["ftp"] == 251.0
        assert body["recompute_enqueued"] is False
        enqueue.assert_not_called()

    def test_weeks_bounds(self, client):
        assert client.get("/v1/athletes/a1/trends?weeks=0").status_code == 422
        assert client.get("/v1/athletes/a1/trends?weeks=105").status_code == 422

    def test_enqueue_failure_is_not_fatal(self, client, fake_redis):
        with patch("tasks.trend_tasks.enqueue_trend_recompute", side_effect=ConnectionError("broker down")):
            response = client.get("/v1/athletes/a1/trends")

        assert response.status_code == 200
        assert response.json()["recompute_enqueued"] is False
