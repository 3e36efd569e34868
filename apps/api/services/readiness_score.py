"""
Readiness Score

Composite of Recovery, Sleep and inverted Strain ("load readiness"):

    with sleep:     Recovery 0.40 | Sleep 0.35 | Load 0.25
    without sleep:  the sleep weight is spread proportionally onto Recovery
                    and Load, so the two always sum to exactly 1.0

Load readiness maps strain (0-18) to 0-100 over four linear segments, each
steeper than the last: light days barely cost readiness, heavy days cost a
lot.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from services.score_types import CompositeScore, ScoreType, clamp

logger = logging.getLogger(__name__)

READINESS_WEIGHTS = {
    "recovery": 0.40,
    "sleep": 0.35,
    "load": 0.25,
}

# (strain upper bound, score at segment start, points lost across segment, segment width)
LOAD_READINESS_SEGMENTS = (
    (5.5, 100.0, 30.0, 5.5),
    (9.0, 70.0, 20.0, 3.5),
    (14.0, 50.0, 20.0, 5.0),
)
LOAD_READINESS_TAIL = (30.0, 30.0, 4.0)  # start score, points lost, width


def load_readiness(strain: Optional[float]) -> int:
    """Invert strain into a 0-100 readiness contribution."""
    if strain is None or strain <= 0:
        return 100

    lower = 0.0
    for upper, start, drop, width in LOAD_READINESS_SEGMENTS:
        if strain < upper:
            return int(start - (strain - lower) / width * drop)
        lower = upper
    start, drop, width = LOAD_READINESS_TAIL
    return max(0, int(start - (strain - lower) / width * drop))


class ReadinessCalculator:
    """Blend recovery, sleep and load readiness with availability-aware weights."""

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        self.weights = weights or READINESS_WEIGHTS.copy()

    def effective_weights(self, has_sleep: bool) -> Dict[str, float]:
        if has_sleep:
            return dict(self.weights)

        recovery = self.weights["recovery"]
        load = self.weights["load"]
        recovery_share = recovery / (recovery + load)
        # Load takes the remainder so the pair sums to exactly 1.0.
        return {"recovery": recovery_share, "sleep": 0.0, "load": 1.0 - recovery_share}

    def compute(
        self,
        recovery_score: float,
        sleep_score: Optional[float],
        strain_score: float,
    ) -> CompositeScore:
        has_sleep = sleep_score is not None
        weights = self.effective_weights(has_sleep)

        components = {
            "recovery": int(clamp(recovery_score, 0, 100)),
            "sleep": int(clamp(sleep_score, 0, 100)) if has_sleep else None,
            "load": load_readiness(strain_score),
        }
        total = sum(
            value * weights[name] for name, value in components.items() if value is not None
        )

        flags = {} if has_sleep else {"sleep_weight_redistributed": True}
        return CompositeScore.build(
            ScoreType.READINESS,
            total,
            sub_scores={k: v for k, v in components.items() if v is not None},
            inputs={
                "recovery_score": recovery_score,
                "sleep_score": sleep_score,
                "strain_score": strain_score,
            },
            weights=weights,
            flags=flags,
            calculated_at=datetime.now(timezone.utc),
        )


def calculate_readiness(
    recovery: CompositeScore,
    sleep: Optional[CompositeScore],
    strain: CompositeScore,
) -> CompositeScore:
    """Readiness from already-computed composite scores."""
    return ReadinessCalculator().compute(
        recovery.score,
        sleep.score if sleep is not None else None,
        strain.score,
    )
