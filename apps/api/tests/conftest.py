"""
Pytest configuration and fixtures

Redis is never required: by default every cache lookup sees "Redis
unavailable". Tests that exercise cache behavior request fake_redis.
Process-wide singletons (profile store, coordinators, provider registry)
are reset after every test.
"""
import pytest
import sys
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.athlete_profile import ActivitySample
from services.athlete_profile_service import reset_profile_service
from services.calculation_coordinator import shutdown_coordinators
from services.scoring_engine import configure_providers

REDIS_PATCH_TARGETS = (
    "core.cache.get_redis_client",
    "services.trend_cache.get_redis_client",
)


class FakeRedis:
    """Minimal in-memory Redis mock for unit tests."""

    def __init__(self):
        self._store: dict = {}
        self._ttls: dict = {}

    def get(self, key):
        return self._store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self._store:
            return False
        self._store[key] = value
        if ex:
            self._ttls[key] = ex
        return True

    def setex(self, key, ttl, value):
        self._store[key] = value
        self._ttls[key] = ttl

    def delete(self, *keys):
        for k in keys:
            self._store.pop(k, None)
            self._ttls.pop(k, None)

    def exists(self, key):
        return key in self._store

    def expire(self, key, ttl):
        self._ttls[key] = ttl

    def ping(self):
        return True


def _patch_redis(client):
    patchers = [patch(target, return_value=client) for target in REDIS_PATCH_TARGETS]
    for p in patchers:
        p.start()
    return patchers


@pytest.fixture(autouse=True)
def no_redis():
    """Default: Redis unavailable everywhere."""
    patchers = _patch_redis(None)
    yield
    for p in patchers:
        p.stop()


@pytest.fixture
def fake_redis(no_redis):
    """Provide a FakeRedis and patch get_redis_client to return it."""
    r = FakeRedis()
    patchers = _patch_redis(r)
    yield r
    for p in patchers:
        p.stop()


@pytest.fixture(autouse=True)
def reset_singletons():
    yield
    reset_profile_service()
    shutdown_coordinators(wait=True)
    configure_providers()


@pytest.fixture
def now():
    return datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)


def make_activity(
    start_time: datetime,
    duration_seconds: float,
    power: float = None,
    normalized_power: float = None,
    average_hr: float = None,
    max_hr: float = None,
    activity_type: str = "ride",
    activity_id: str = None,
) -> ActivitySample:
    return ActivitySample(
        start_time=start_time,
        duration_seconds=duration_seconds,
        average_power=power,
        normalized_power=normalized_power,
        average_hr=average_hr,
        max_hr=max_hr,
        activity_type=activity_type,
        activity_id=activity_id,
    )


@pytest.fixture
def ride_history(now):
    """Six weeks of mixed rides with power and heart rate, newest last."""
    activities = []
    for i in range(24):
        start = now - timedelta(days=42 - i * 1.75)
        if i % 4 == 0:
            activities.append(make_activity(start, 3600, power=240, normalized_power=250,
                                            average_hr=158, max_hr=176))
        elif i % 4 == 1:
            activities.append(make_activity(start, 1200, power=270, average_hr=165, max_hr=180))
        elif i % 4 == 2:
            activities.append(make_activity(start, 300, power=330, average_hr=170, max_hr=184))
        else:
            activities.append(make_activity(start, 5400, power=200, normalized_power=215,
                                            average_hr=145, max_hr=168))
    return activities


@pytest.fixture
def activity():
    """Factory for ActivitySample."""
    return make_activity
