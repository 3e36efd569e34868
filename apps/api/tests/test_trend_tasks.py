"""
Tests for the trend recompute Celery task and its enqueue helper.

The task body is run in-process via .run(); no broker is involved.
"""

import json
from unittest.mock import patch

import pytest

from core.config import settings
from services.scoring_engine import configure_providers
from services.trend_cache import _cooldown_key, _lock_key, history_key, sparkline_key
from services.trend_engine import SPARKLINE_DAYS
from tasks.trend_tasks import enqueue_trend_recompute, recompute_performance_trends_task


class StaticHistory:
    def __init__(self, activities):
        self._activities = activities

    def activities(self, days_back, limit):
        return self._activities


class TestRecomputeTask:
    def test_synthetic_without_history_provider(self, fake_redis):
        result = recompute_performance_trends_task.run("a1", 8, 250.0, 52.0, 70.0)

        assert result["status"] == "success"
        assert result["points"] == 8
        assert result["synthetic"] is True

        entry = json.loads(fake_redis.get(history_key("a1", 8)))
        assert len(entry["payload"]) == 8
        assert entry["payload"][-1]["ftp"] == 250.0

        ftp_line = json.loads(fake_redis.get(sparkline_key("a1", "ftp", SPARKLINE_DAYS)))
        assert len(ftp_line) == SPARKLINE_DAYS
        assert ftp_line[-1] == 250.0
        assert fake_redis._ttls[sparkline_key("a1", "vo2max", SPARKLINE_DAYS)] == settings.SPARKLINE_CACHE_TTL_S

    def test_real_history(self, fake_redis, ride_history):
        configure_providers(activity_history=lambda athlete_id: StaticHistory(ride_history))

        result = recompute_performance_trends_task.run("a1", 4)

        assert result["synthetic"] is False
        payload = json.loads(fake_redis.get(history_key("a1", 4)))["payload"]
        assert all(p["ftp"] > 0 for p in payload)

    def test_lock_held_skips(self, fake_redis):
        fake_redis.set(_lock_key("a1"), "1")

        result = recompute_performance_trends_task.run("a1")

        assert result == {"status": "skipped", "reason": "lock_held"}
        assert fake_redis.get(history_key("a1", 26)) is None

    def test_lock_released_after_run(self, fake_redis):
        recompute_performance_trends_task.run("a1", 2)
        assert fake_redis.get(_lock_key("a1")) is None

    def test_lock_released_on_failure(self, fake_redis):
        with patch("tasks.trend_tasks.write_trend_cache", side_effect=RuntimeError("write failed")):
            with pytest.raises(RuntimeError):
                recompute_performance_trends_task.run("a1", 2)

        assert fake_redis.get(_lock_key("a1")) is None


class TestEnqueue:
    def test_enqueues_once_per_cooldown(self, fake_redis):
        with patch.object(recompute_performance_trends_task, "apply_async") as apply_async:
            assert enqueue_trend_recompute("a1", 12, current_ftp=260.0) is True
            assert enqueue_trend_recompute("a1", 12) is False

        apply_async.assert_called_once_with(
            args=["a1", 12, 260.0, None, None],
            queue=settings.TREND_TASK_QUEUE,
        )
        assert fake_redis.get(_cooldown_key("a1")) is not None

    def test_no_enqueue_without_redis(self):
        with patch.object(recompute_performance_trends_task, "apply_async") as apply_async:
            assert enqueue_trend_recompute("a1") is False
        apply_async.assert_not_called()
