"""
Performance Trend Celery Task

Recomputes an athlete's historical performance series (weekly FTP/VO2max
snapshots and 30-day sparklines) and writes them to the trend cache. The
trends endpoint never calls this directly; it reads the cache and enqueues
a recompute via enqueue_trend_recompute() when the entry is stale or
missing.

Task contract:
- Deduplicated via Redis lock (fails open when Redis is down)
- Enqueue cooldown per athlete
- Retry: up to 3 attempts with exponential backoff on cache write failure
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from celery import Task

from tasks import celery_app
from core.cache import set_cache
from core.config import settings
from core.logging import context_logger
from services.scoring_engine import TREND_HISTORY_DAYS, TREND_HISTORY_LIMIT, build_engine
from services.trend_cache import (
    acquire_recompute_lock,
    history_key,
    release_recompute_lock,
    should_enqueue_recompute,
    set_enqueue_cooldown,
    sparkline_key,
    write_trend_cache,
)
from services.trend_engine import (
    HISTORY_WEEKS,
    SPARKLINE_DAYS,
    TrendMetric,
    detect_significant_changes,
    historical_performance,
    sparkline,
)

logger = logging.getLogger(__name__)

TASK_HARD_TIMEOUT_S = 120


@celery_app.task(
    name="tasks.recompute_performance_trends",
    bind=True,
    autoretry_for=(RuntimeError,),
    retry_backoff=True,
    retry_backoff_max=60,
    max_retries=3,
    time_limit=TASK_HARD_TIMEOUT_S,
    soft_time_limit=TASK_HARD_TIMEOUT_S - 10,
)
def recompute_performance_trends_task(
    self: Task,
    athlete_id: str,
    weeks: int = HISTORY_WEEKS,
    current_ftp: Optional[float] = None,
    current_vo2: Optional[float] = None,
    weight_kg: Optional[float] = None,
) -> Dict:
    """Rebuild and cache the trend series for one athlete."""
    log = context_logger(__name__, athlete_id=athlete_id, weeks=weeks, task_id=self.request.id)
    if not acquire_recompute_lock(athlete_id):
        log.info("Trend recompute skipped (lock held)")
        return {"status": "skipped", "reason": "lock_held"}

    try:
        now = datetime.now(timezone.utc)
        engine = build_engine(athlete_id)
        activities = engine.fetch_activities(TREND_HISTORY_DAYS, TREND_HISTORY_LIMIT)

        points = historical_performance(
            activities, weeks, now=now,
            current_ftp=current_ftp, current_vo2=current_vo2, weight_kg=weight_kg,
        )
        write_trend_cache(history_key(athlete_id, weeks), [p.to_dict() for p in points], now=now)

        for metric, current in ((TrendMetric.FTP, current_ftp), (TrendMetric.VO2MAX, current_vo2)):
            values = sparkline(
                activities, metric, SPARKLINE_DAYS, now=now,
                current_value=current, weight_kg=weight_kg,
            )
            set_cache(
                sparkline_key(athlete_id, metric.value, SPARKLINE_DAYS),
                values,
                ttl=settings.SPARKLINE_CACHE_TTL_S,
            )

        changes = detect_significant_changes(points)
        for change in changes:
            log.info(
                f"{change.phase.value} phase: "
                f"{change.change_watts:+.0f}W over 2 weeks ending {change.date.date()}"
            )

        log.info(f"Trend recompute finished: {len(points)} points, {len(changes)} significant changes")
        return {
            "status": "success",
            "points": len(points),
            "synthetic": activities is None,
            "significant_changes": len(changes),
        }
    finally:
        release_recompute_lock(athlete_id)


def enqueue_trend_recompute(
    athlete_id: str,
    weeks: int = HISTORY_WEEKS,
    current_ftp: Optional[float] = None,
    current_vo2: Optional[float] = None,
    weight_kg: Optional[float] = None,
) -> bool:
    """
    Fire-and-forget enqueue for a trend recompute. Respects the cooldown.

    Called by the trends endpoint on a stale or missing cache entry and
    after profile updates.
    """
    if not should_enqueue_recompute(athlete_id):
        return False

    set_enqueue_cooldown(athlete_id)
    recompute_performance_trends_task.apply_async(
        args=[athlete_id, weeks, current_ftp, current_vo2, weight_kg],
        queue=settings.TREND_TASK_QUEUE,
    )
    logger.info(f"Trend recompute enqueued for {athlete_id} ({weeks} weeks)")
    return True
