"""
Trend Cache Service

Redis-backed store for historical performance series (weekly FTP/VO2max
snapshots and 30-day sparklines).

- Read: fresh / stale / missing / refreshing
- Write: payload plus generated_at metadata
- Dedupe: enqueue cooldown + in-flight recompute lock

The trends endpoint only ever reads here and enqueues a recompute on a
miss; the Celery task is the only writer.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple

from redis.exceptions import RedisError

from core.cache import cache_key, get_redis_client
from core.config import settings

logger = logging.getLogger(__name__)

STALE_MAX_S = 60 * 60             # served as stale up to an hour
CACHE_TTL_S = STALE_MAX_S         # Redis hard expiry
ENQUEUE_COOLDOWN_S = 60


class TrendState(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"
    REFRESHING = "refreshing"


def history_key(athlete_id: str, weeks: int) -> str:
    return cache_key("trend:history", athlete_id, weeks)


def sparkline_key(athlete_id: str, metric: str, days: int) -> str:
    return cache_key("trend:sparkline", athlete_id, metric, days)


def _lock_key(athlete_id: str) -> str:
    return cache_key("trend:lock", athlete_id)


def _cooldown_key(athlete_id: str) -> str:
    return cache_key("trend:cooldown", athlete_id)


def read_trend_cache(
    key: str,
    athlete_id: str,
    fresh_ttl_s: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Tuple[Optional[Any], TrendState]:
    """
    Read a cached series with staleness semantics.

    Returns (payload_or_none, state). Never computes anything.
    """
    r = get_redis_client()
    if not r:
        return None, TrendState.MISSING

    try:
        raw = r.get(key)
    except RedisError as e:
        logger.warning(f"Redis read error for trend cache {key}: {e}")
        return None, TrendState.MISSING

    if not raw:
        return None, _missing_state(r, athlete_id)

    try:
        entry = json.loads(raw)
        generated_at = datetime.fromisoformat(entry["generated_at"])
    except (ValueError, TypeError, KeyError):
        logger.warning(f"Discarding malformed trend cache entry {key}")
        return None, TrendState.MISSING

    fresh_ttl_s = fresh_ttl_s if fresh_ttl_s is not None else settings.TREND_CACHE_TTL_S
    age_s = ((now or datetime.now(timezone.utc)) - generated_at).total_seconds()
    payload = entry.get("payload")

    if age_s < fresh_ttl_s:
        return payload, TrendState.FRESH
    if age_s < STALE_MAX_S:
        return payload, TrendState.STALE
    return None, _missing_state(r, athlete_id)


def write_trend_cache(key: str, payload: Any, now: Optional[datetime] = None) -> bool:
    """Store a computed series. Returns False when Redis is unavailable."""
    r = get_redis_client()
    if not r:
        return False

    entry = {
        "payload": payload,
        "generated_at": (now or datetime.now(timezone.utc)).isoformat(),
    }
    serialized = json.dumps(entry, default=str)
    try:
        r.setex(key, CACHE_TTL_S, serialized)
    except RedisError as e:
        logger.error(f"Redis setex failed for trend cache {key}: {e}", exc_info=True)
        raise RuntimeError(f"Trend cache write failed for {key}: {e}") from e

    logger.info(f"Trend series cached at {key} (bytes={len(serialized)})")
    return True


def should_enqueue_recompute(athlete_id: str) -> bool:
    """Cooldown check before enqueueing a recompute."""
    r = get_redis_client()
    if not r:
        return False

    try:
        if r.exists(_cooldown_key(athlete_id)):
            logger.debug(f"Trend recompute skipped (cooldown): {athlete_id}")
            return False
        return True
    except RedisError as e:
        logger.warning(f"Enqueue check error for {athlete_id}: {e}")
        return True  # fail open


def set_enqueue_cooldown(athlete_id: str) -> None:
    r = get_redis_client()
    if not r:
        return
    try:
        r.setex(_cooldown_key(athlete_id), ENQUEUE_COOLDOWN_S, "1")
    except RedisError as e:
        logger.debug(f"Could not set trend cooldown for {athlete_id}: {e}")


def acquire_recompute_lock(athlete_id: str) -> bool:
    """
    In-flight lock for one athlete's recompute.
    Returns False if another recompute already holds it.
    """
    r = get_redis_client()
    if not r:
        return True  # fail open

    try:
        acquired = r.set(_lock_key(athlete_id), "1", nx=True, ex=settings.TREND_LOCK_TTL_S)
        return bool(acquired)
    except RedisError:
        return True  # fail open


def release_recompute_lock(athlete_id: str) -> None:
    r = get_redis_client()
    if not r:
        return
    try:
        r.delete(_lock_key(athlete_id))
    except RedisError as e:
        logger.debug(f"Could not release trend lock for {athlete_id}: {e}")


def _missing_state(r, athlete_id: str) -> TrendState:
    try:
        locked = bool(r.exists(_lock_key(athlete_id)))
    except RedisError:
        locked = False
    return TrendState.REFRESHING if locked else TrendState.MISSING
