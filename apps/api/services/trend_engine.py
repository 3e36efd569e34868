"""
Trend Engine

Replays the simplified FTP estimator at historical snapshot points for
charting:

    historical_performance   weekly snapshots, 90-day trailing window
    sparkline                daily points, 30-day trailing window

Point-in-time constraint: a snapshot at date D only ever sees activities
with windowStart <= start_time <= D, so adding later activities never
changes it.

A synthetic progression is produced only when activity history is
unavailable (None). An empty history is real data and yields current-value
points with zero confidence. Synthetic series are seeded, so the same
inputs always give the same series, and the last point is always the
current value.
"""

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from core.cache import get_cache, set_cache
from core.config import settings
from services.athlete_profile import ActivitySample, as_utc
from services.performance_estimator import historical_ftp, vo2max_from_ftp
from services import trend_cache

logger = logging.getLogger(__name__)

HISTORY_WEEKS = 26
HISTORY_WINDOW_DAYS = 90
SPARKLINE_DAYS = 30
SPARKLINE_WINDOW_DAYS = 30
CONFIDENCE_FULL_SAMPLE = 20
DEFAULT_VO2MAX = 45.0

SIGNIFICANT_CHANGE_WATTS = 5.0
SIGNIFICANT_CHANGE_LOOKBACK = 2
SIGNIFICANT_CHANGE_MIN_CONFIDENCE = 0.5

# metric -> (start ratio, daily noise amplitude, weekly cycle amplitude)
SYNTHETIC_SPARKLINE = {
    "ftp": (0.96, 0.015, 0.01),
    "vo2max": (0.97, 0.02, 0.015),
}
# metric -> (start ratio, gain across the series)
SYNTHETIC_HISTORY = {
    "ftp": (0.90, 0.10),
    "vo2max": (0.92, 0.08),
}


class TrendMetric(str, Enum):
    FTP = "ftp"
    VO2MAX = "vo2max"


class TrainingPhase(str, Enum):
    BUILD = "build"
    RECOVERY = "recovery"


@dataclass(frozen=True)
class PerformanceSnapshot:
    date: datetime
    ftp: float
    vo2max: float
    confidence: float
    activity_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "ftp": self.ftp,
            "vo2max": self.vo2max,
            "confidence": self.confidence,
            "activity_count": self.activity_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceSnapshot":
        return cls(
            date=datetime.fromisoformat(data["date"]),
            ftp=float(data["ftp"]),
            vo2max=float(data["vo2max"]),
            confidence=float(data["confidence"]),
            activity_count=int(data["activity_count"]),
        )


@dataclass(frozen=True)
class SignificantChange:
    date: datetime
    change_watts: float
    phase: TrainingPhase


# ----------------------------------------------------------------------
# Point-in-time snapshots
# ----------------------------------------------------------------------

def window_activities(
    activities: Sequence[ActivitySample],
    snapshot_date: datetime,
    window_days: int,
) -> List[ActivitySample]:
    """Activities that existed at `snapshot_date` within the trailing window."""
    snapshot_date = as_utc(snapshot_date)
    window_start = snapshot_date - timedelta(days=window_days)
    return [a for a in activities if window_start <= as_utc(a.start_time) <= snapshot_date]


def snapshot_at(
    activities: Sequence[ActivitySample],
    snapshot_date: datetime,
    current_ftp: float,
    current_vo2: float,
    weight_kg: float,
    window_days: int = HISTORY_WINDOW_DAYS,
) -> PerformanceSnapshot:
    in_window = window_activities(activities, snapshot_date, window_days)
    power_count = sum(1 for a in in_window if a.average_power and a.average_power > 0)
    confidence = min(1.0, power_count / CONFIDENCE_FULL_SAMPLE)

    ftp = historical_ftp(in_window)
    if ftp is None or ftp <= 0:
        return PerformanceSnapshot(snapshot_date, current_ftp, current_vo2, 0.0, len(in_window))
    return PerformanceSnapshot(
        snapshot_date, ftp, vo2max_from_ftp(ftp, weight_kg), confidence, len(in_window)
    )


def _resolve_defaults(current_ftp, current_vo2, weight_kg):
    return (
        current_ftp if current_ftp else settings.DEFAULT_FTP_WATTS,
        current_vo2 if current_vo2 else DEFAULT_VO2MAX,
        weight_kg if weight_kg else settings.DEFAULT_ATHLETE_WEIGHT_KG,
    )


def historical_performance(
    activities: Optional[Sequence[ActivitySample]],
    weeks: int = HISTORY_WEEKS,
    now: Optional[datetime] = None,
    current_ftp: Optional[float] = None,
    current_vo2: Optional[float] = None,
    weight_kg: Optional[float] = None,
) -> List[PerformanceSnapshot]:
    """
    Weekly snapshots, oldest first, the last one at `now`.

    Each snapshot uses the 90 days of activities ending at its own date.
    """
    now = as_utc(now) if now else datetime.now(timezone.utc)
    current_ftp, current_vo2, weight_kg = _resolve_defaults(current_ftp, current_vo2, weight_kg)

    if activities is None:
        logger.warning("Activity history unavailable; using synthetic performance history")
        return synthetic_history(current_ftp, current_vo2, weeks, now)

    activities = list(activities)
    points = [
        snapshot_at(
            activities,
            now - timedelta(weeks=weeks - week - 1),
            current_ftp,
            current_vo2,
            weight_kg,
        )
        for week in range(weeks)
    ]
    if points:
        logger.info(
            f"Historical performance: {len(points)} weekly snapshots from "
            f"{len(activities)} activities, FTP {points[0].ftp:.0f}W -> {points[-1].ftp:.0f}W"
        )
    return points


def sparkline(
    activities: Optional[Sequence[ActivitySample]],
    metric: TrendMetric,
    days: int = SPARKLINE_DAYS,
    now: Optional[datetime] = None,
    current_value: Optional[float] = None,
    weight_kg: Optional[float] = None,
) -> List[float]:
    """Daily values for `metric`, oldest first, each from a 30-day trailing window."""
    metric = TrendMetric(metric)
    now = as_utc(now) if now else datetime.now(timezone.utc)
    weight_kg = weight_kg if weight_kg else settings.DEFAULT_ATHLETE_WEIGHT_KG
    if not current_value:
        current_value = settings.DEFAULT_FTP_WATTS if metric == TrendMetric.FTP else DEFAULT_VO2MAX

    if activities is None:
        logger.warning(f"Activity history unavailable; using synthetic {metric.value} sparkline")
        return synthetic_sparkline(metric, current_value, days)

    activities = list(activities)
    values = []
    for offset in range(days - 1, -1, -1):
        in_window = window_activities(activities, now - timedelta(days=offset), SPARKLINE_WINDOW_DAYS)
        ftp = historical_ftp(in_window)
        if ftp is None:
            values.append(current_value)
        elif metric == TrendMetric.FTP:
            values.append(ftp)
        else:
            values.append(vo2max_from_ftp(ftp, weight_kg))
    return values


# ----------------------------------------------------------------------
# Synthetic fallback
# ----------------------------------------------------------------------

def synthetic_sparkline(metric: TrendMetric, current: float, days: int = SPARKLINE_DAYS) -> List[float]:
    """Gradual climb to `current` with bounded noise and a weekly cycle."""
    metric = TrendMetric(metric)
    start_ratio, noise_amp, cycle_amp = SYNTHETIC_SPARKLINE[metric.value]
    rng = random.Random(f"{metric.value}:{days}:{current:.4f}")

    start = current * start_ratio
    gain = current - start
    values = []
    for day in range(days - 1):
        noise = rng.uniform(-noise_amp, noise_amp) * current
        weekly = math.sin(day / 7.0 * math.pi * 2) * current * cycle_amp
        values.append(start + gain * day / days + noise + weekly)
    if days > 0:
        values.append(current)
    return values


def synthetic_history(
    current_ftp: float,
    current_vo2: float,
    weeks: int = HISTORY_WEEKS,
    now: Optional[datetime] = None,
) -> List[PerformanceSnapshot]:
    now = as_utc(now) if now else datetime.now(timezone.utc)
    ftp_start, ftp_gain = SYNTHETIC_HISTORY["ftp"]
    vo2_start, vo2_gain = SYNTHETIC_HISTORY["vo2max"]

    points = []
    for week in range(weeks):
        date = now - timedelta(weeks=weeks - week - 1)
        if week == weeks - 1:
            points.append(PerformanceSnapshot(date, current_ftp, current_vo2, 0.0, 0))
            continue
        progress = week / weeks
        points.append(PerformanceSnapshot(
            date,
            current_ftp * ftp_start + current_ftp * ftp_gain * progress,
            current_vo2 * vo2_start + current_vo2 * vo2_gain * progress,
            0.0,
            0,
        ))
    return points


# ----------------------------------------------------------------------
# Annotations
# ----------------------------------------------------------------------

def detect_significant_changes(
    points: Sequence[PerformanceSnapshot],
    threshold_watts: float = SIGNIFICANT_CHANGE_WATTS,
    lookback: int = SIGNIFICANT_CHANGE_LOOKBACK,
    min_confidence: float = SIGNIFICANT_CHANGE_MIN_CONFIDENCE,
) -> List[SignificantChange]:
    """FTP shifts of at least `threshold_watts` against the point `lookback` weeks earlier."""
    changes = []
    for i in range(lookback, len(points)):
        change = points[i].ftp - points[i - lookback].ftp
        if abs(change) >= threshold_watts and points[i].confidence >= min_confidence:
            phase = TrainingPhase.BUILD if change > 0 else TrainingPhase.RECOVERY
            changes.append(SignificantChange(points[i].date, change, phase))
    return changes


# ----------------------------------------------------------------------
# Cache-aside
# ----------------------------------------------------------------------

def get_cached_history(
    athlete_id: str,
    activities: Optional[Sequence[ActivitySample]],
    weeks: int = HISTORY_WEEKS,
    now: Optional[datetime] = None,
    current_ftp: Optional[float] = None,
    current_vo2: Optional[float] = None,
    weight_kg: Optional[float] = None,
) -> List[PerformanceSnapshot]:
    """Fresh cached history if present, else recompute and store."""
    key = trend_cache.history_key(athlete_id, weeks)
    cached, state = trend_cache.read_trend_cache(key, athlete_id, now=now)
    if cached is not None and state == trend_cache.TrendState.FRESH:
        return [PerformanceSnapshot.from_dict(p) for p in cached]

    points = historical_performance(
        activities, weeks, now=now,
        current_ftp=current_ftp, current_vo2=current_vo2, weight_kg=weight_kg,
    )
    try:
        trend_cache.write_trend_cache(key, [p.to_dict() for p in points], now=now)
    except RuntimeError as e:
        logger.warning(f"Serving uncached history for {athlete_id}: {e}")
    return points


def get_cached_sparkline(
    athlete_id: str,
    activities: Optional[Sequence[ActivitySample]],
    metric: TrendMetric,
    days: int = SPARKLINE_DAYS,
    now: Optional[datetime] = None,
    current_value: Optional[float] = None,
    weight_kg: Optional[float] = None,
) -> List[float]:
    metric = TrendMetric(metric)
    key = trend_cache.sparkline_key(athlete_id, metric.value, days)
    cached = get_cache(key)
    if cached is not None:
        return cached

    values = sparkline(
        activities, metric, days, now=now, current_value=current_value, weight_kg=weight_kg
    )
    set_cache(key, values, ttl=settings.SPARKLINE_CACHE_TTL_S)
    return values
