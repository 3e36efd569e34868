"""
Sleep Score

Comprehensive multi-factor sleep quality, 0-100:

    performance   (0.30) - hours slept vs sleep need, capped at 100
    efficiency    (0.22) - asleep / in bed
    stage quality (0.32) - deep + REM share of sleep
    disturbances  (0.14) - wake events
    timing        (0.02) - bedtime / wake-time consistency vs baseline

Every component defaults to 50 when its inputs are missing, so the blend
always produces a value. Recovery substitutes this score for the plain
duration ratio whenever it is available.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from services.score_types import CompositeScore, ScoreType, clamp, truncate_score
from services.sub_scores import NEUTRAL_SUB_SCORE

logger = logging.getLogger(__name__)

SLEEP_COMPONENT_WEIGHTS = {
    "performance": 0.30,
    "efficiency": 0.22,
    "stage_quality": 0.32,
    "disturbances": 0.14,
    "timing": 0.02,
}

DEFAULT_SLEEP_NEED_HOURS = 8.0
MIN_SLEEP_NEED_HOURS = 4.0
MAX_SLEEP_NEED_HOURS = 12.0

# (deep + REM) / asleep
OPTIMAL_RESTORATIVE_SHARE = 0.40
ADEQUATE_RESTORATIVE_SHARE = 0.30

# (max wake events, score)
DISTURBANCE_BANDS = ((2, 100), (5, 75), (8, 50))
DISTURBANCE_FLOOR = 25

# (max mean deviation in minutes, score)
TIMING_BANDS = ((30, 100), (60, 75), (90, 50))
TIMING_FLOOR = 25


@dataclass
class SleepInputs:
    """One night of sleep. Durations in hours, deviations in minutes."""
    sleep_duration: Optional[float] = None
    time_in_bed: Optional[float] = None
    sleep_need: Optional[float] = None
    deep_sleep_duration: Optional[float] = None
    rem_sleep_duration: Optional[float] = None
    core_sleep_duration: Optional[float] = None
    awake_duration: Optional[float] = None
    wake_events: Optional[int] = None
    bedtime_deviation_minutes: Optional[float] = None
    wake_time_deviation_minutes: Optional[float] = None
    hrv_overnight: Optional[float] = None
    hrv_baseline: Optional[float] = None
    date: Optional[datetime] = None

    def to_snapshot(self) -> Dict[str, Optional[float]]:
        return {k: v for k, v in self.__dict__.items() if k != "date"}


def effective_sleep_need(sleep_need: Optional[float]) -> float:
    """Sleep need in hours, defaulting to 8 h outside the 4-12 h range."""
    if sleep_need is None or not (MIN_SLEEP_NEED_HOURS <= sleep_need <= MAX_SLEEP_NEED_HOURS):
        return DEFAULT_SLEEP_NEED_HOURS
    return sleep_need


def performance_component(duration: Optional[float], need: Optional[float]) -> int:
    if duration is None or duration <= 0:
        return NEUTRAL_SUB_SCORE
    need_hours = effective_sleep_need(need)
    return int(min(100.0, duration / need_hours * 100.0))


def efficiency_component(duration: Optional[float], time_in_bed: Optional[float]) -> int:
    if duration is None or time_in_bed is None or time_in_bed <= 0:
        return NEUTRAL_SUB_SCORE
    return int(clamp(duration / time_in_bed * 100.0, 0.0, 100.0))


def stage_quality_component(
    duration: Optional[float],
    deep: Optional[float],
    rem: Optional[float],
) -> int:
    if duration is None or duration <= 0 or deep is None or rem is None:
        return NEUTRAL_SUB_SCORE

    share = (deep + rem) / duration
    if share >= OPTIMAL_RESTORATIVE_SHARE:
        return 100
    if share >= ADEQUATE_RESTORATIVE_SHARE:
        return max(50, int(50 + (share - ADEQUATE_RESTORATIVE_SHARE) * 500))
    return int(max(0.0, share * 166.67))


def disturbance_component(wake_events: Optional[int]) -> int:
    if wake_events is None:
        return NEUTRAL_SUB_SCORE
    for max_events, score in DISTURBANCE_BANDS:
        if wake_events <= max_events:
            return score
    return DISTURBANCE_FLOOR


def timing_component(
    bedtime_deviation: Optional[float],
    wake_time_deviation: Optional[float],
) -> int:
    if bedtime_deviation is None or wake_time_deviation is None:
        return NEUTRAL_SUB_SCORE
    mean_deviation = (abs(bedtime_deviation) + abs(wake_time_deviation)) / 2
    for max_minutes, score in TIMING_BANDS:
        if mean_deviation <= max_minutes:
            return score
    return TIMING_FLOOR


class SleepScoreCalculator:
    """Blend sleep components into a Sleep composite score."""

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        self.weights = weights or SLEEP_COMPONENT_WEIGHTS.copy()

    def components(self, inputs: SleepInputs) -> Dict[str, int]:
        return {
            "performance": performance_component(inputs.sleep_duration, inputs.sleep_need),
            "efficiency": efficiency_component(inputs.sleep_duration, inputs.time_in_bed),
            "stage_quality": stage_quality_component(
                inputs.sleep_duration,
                inputs.deep_sleep_duration,
                inputs.rem_sleep_duration,
            ),
            "disturbances": disturbance_component(inputs.wake_events),
            "timing": timing_component(
                inputs.bedtime_deviation_minutes,
                inputs.wake_time_deviation_minutes,
            ),
        }

    def quality_score(self, inputs: SleepInputs) -> int:
        """Comprehensive sleep quality as a plain integer (what Recovery consumes)."""
        components = self.components(inputs)
        blend = sum(components[name] * self.weights.get(name, 0.0) for name in components)
        return truncate_score(clamp(blend, 0.0, 100.0))

    def compute(
        self,
        inputs: SleepInputs,
        calculated_at: Optional[datetime] = None,
    ) -> CompositeScore:
        components = self.components(inputs)
        blend = sum(components[name] * self.weights.get(name, 0.0) for name in components)

        flags = {}
        if inputs.sleep_duration is None:
            flags["missing_sleep_data"] = True
            logger.info("Sleep score computed without sleep duration; components neutral")

        return CompositeScore.build(
            ScoreType.SLEEP,
            blend,
            sub_scores=components,
            inputs=inputs.to_snapshot(),
            weights=self.weights,
            flags=flags,
            calculated_at=calculated_at or datetime.now(timezone.utc),
        )


def calculate_sleep(inputs: SleepInputs) -> CompositeScore:
    """Sleep composite with the default component weights."""
    return SleepScoreCalculator().compute(inputs)
