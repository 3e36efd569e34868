"""
Composite score adjusters.

Anomaly handling runs as an explicit pipeline after the base weighted blend:

    blend -> AlcoholAdjuster -> IllnessAnnotator -> clamp(blend - penalty)

Each adjuster sees the same read-only AdjusterContext and returns an
AdjusterOutcome (numeric penalty plus metadata flags). Only the alcohol
adjuster ever moves the number; illness changes how a score should be read,
not the score itself.
"""

import logging
from dataclasses import dataclass, field
from datetime import date as date_type
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# Overnight HRV drop (%) -> base penalty points, most severe first
ALCOHOL_HRV_DROP_PENALTIES = (
    (-35.0, 12.0),
    (-25.0, 8.0),
    (-20.0, 5.0),
)
ALCOHOL_LOW_HRV_SUBSCORE = 40
ALCOHOL_LOW_HRV_PENALTY = 3.0

# Sleep-quality mitigation
EXCELLENT_SLEEP_SCORE = 80
GOOD_SLEEP_SCORE = 65
POOR_SLEEP_SCORE = 40
EXCELLENT_SLEEP_MULTIPLIER = 0.70
GOOD_SLEEP_MULTIPLIER = 0.85
POOR_SLEEP_COMPOUND_PENALTY = 3.0

# RHR corroboration
ALCOHOL_RHR_SUBSCORE_THRESHOLD = 30
ALCOHOL_RHR_PENALTY = 2.0

MAX_ALCOHOL_PENALTY = 15.0

ILLNESS_SIGNIFICANT_CONFIDENCE = 0.5


class IllnessSeverity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


@dataclass(frozen=True)
class IllnessIndicator:
    """Output of the external illness-detection collaborator."""
    severity: IllnessSeverity
    confidence: float
    signals: Sequence[str] = ()
    recommendation: Optional[str] = None
    date: Optional[date_type] = None

    @property
    def is_significant(self) -> bool:
        return (
            self.severity != IllnessSeverity.LOW
            and self.confidence >= ILLNESS_SIGNIFICANT_CONFIDENCE
        )


@dataclass(frozen=True)
class AdjusterContext:
    """Read-only view of what an adjuster may look at."""
    blended_score: float
    sub_scores: Dict[str, float]
    hrv: Optional[float] = None
    overnight_hrv: Optional[float] = None
    hrv_baseline: Optional[float] = None
    sleep_score: Optional[float] = None
    illness: Optional[IllnessIndicator] = None


@dataclass
class AdjusterOutcome:
    penalty: float = 0.0
    flags: Dict[str, Any] = field(default_factory=dict)


class ScoreAdjuster(Protocol):
    name: str

    def apply(self, context: AdjusterContext) -> AdjusterOutcome:
        ...


class AlcoholAdjuster:
    """
    Compound-effect detector for a suppressed overnight HRV.

    Runs only when the comprehensive sleep score is known; sleep duration
    alone is not enough to attribute the HRV drop.
    """

    name = "alcohol"

    def base_penalty(self, hrv_change_pct: float, hrv_sub_score: float) -> float:
        for threshold, penalty in ALCOHOL_HRV_DROP_PENALTIES:
            if hrv_change_pct < threshold:
                return penalty
        if hrv_sub_score < ALCOHOL_LOW_HRV_SUBSCORE:
            return ALCOHOL_LOW_HRV_PENALTY
        return 0.0

    def sleep_modified(self, penalty: float, sleep_score: Optional[float]) -> float:
        if penalty <= 0 or sleep_score is None:
            return penalty
        if sleep_score >= EXCELLENT_SLEEP_SCORE:
            return penalty * EXCELLENT_SLEEP_MULTIPLIER
        if sleep_score >= GOOD_SLEEP_SCORE:
            return penalty * GOOD_SLEEP_MULTIPLIER
        if sleep_score < POOR_SLEEP_SCORE:
            return penalty + POOR_SLEEP_COMPOUND_PENALTY
        return penalty

    def apply(self, context: AdjusterContext) -> AdjusterOutcome:
        if context.sleep_score is None:
            return AdjusterOutcome(flags={"alcohol_check_skipped": "no_sleep_data"})

        hrv = context.overnight_hrv if context.overnight_hrv is not None else context.hrv
        baseline = context.hrv_baseline
        if hrv is None or baseline is None or baseline <= 0:
            return AdjusterOutcome()

        hrv_change_pct = (hrv - baseline) / baseline * 100.0
        hrv_sub = context.sub_scores.get("hrv", 50)
        penalty = self.base_penalty(hrv_change_pct, hrv_sub)
        penalty = self.sleep_modified(penalty, context.sleep_score)

        if penalty > 0 and context.sub_scores.get("rhr", 100) < ALCOHOL_RHR_SUBSCORE_THRESHOLD:
            penalty += ALCOHOL_RHR_PENALTY

        penalty = min(penalty, MAX_ALCOHOL_PENALTY)
        if penalty <= 0:
            return AdjusterOutcome()

        logger.debug(
            f"Alcohol compound effect: hrv_change={hrv_change_pct:.1f}% penalty={penalty:.1f}"
        )
        return AdjusterOutcome(
            penalty=penalty,
            flags={
                "alcohol_detected": True,
                "alcohol_penalty": round(penalty, 2),
                "overnight_hrv_change_pct": round(hrv_change_pct, 1),
            },
        )


class IllnessAnnotator:
    """Attach the illness indicator as metadata; the score is untouched."""

    name = "illness"

    def apply(self, context: AdjusterContext) -> AdjusterOutcome:
        illness = context.illness
        if illness is None:
            return AdjusterOutcome()
        return AdjusterOutcome(
            flags={
                "illness_detected": illness.is_significant,
                "illness_severity": illness.severity.value,
                "illness_confidence": round(illness.confidence, 2),
                "illness_signals": list(illness.signals),
                "illness_recommendation": illness.recommendation,
            }
        )


DEFAULT_ADJUSTERS: List[ScoreAdjuster] = [AlcoholAdjuster(), IllnessAnnotator()]


def apply_adjusters(
    context: AdjusterContext,
    adjusters: Optional[Sequence[ScoreAdjuster]] = None,
) -> AdjusterOutcome:
    """Run adjusters in order, summing penalties and merging flags."""
    total = AdjusterOutcome()
    for adjuster in adjusters if adjusters is not None else DEFAULT_ADJUSTERS:
        outcome = adjuster.apply(context)
        total.penalty += outcome.penalty
        total.flags.update(outcome.flags)
    return total
