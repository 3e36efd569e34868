"""
Composite score value objects.

A CompositeScore is created once per calculation cycle and never mutated;
a refresh produces a new instance. Bands are ordered enumerations derived
from the numeric score by fixed cut points.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


class ScoreType(str, Enum):
    RECOVERY = "recovery"
    SLEEP = "sleep"
    STRAIN = "strain"
    READINESS = "readiness"


class OrderedBand(str, Enum):
    """String enum whose declaration order is best-to-worst (or low-to-high)."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)


class RecoveryBand(OrderedBand):
    OPTIMAL = "optimal"
    GOOD = "good"
    FAIR = "fair"
    PAY_ATTENTION = "pay_attention"


class SleepBand(OrderedBand):
    OPTIMAL = "optimal"
    GOOD = "good"
    FAIR = "fair"
    PAY_ATTENTION = "pay_attention"


class StrainBand(OrderedBand):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    EXTREME = "extreme"


class ReadinessBand(OrderedBand):
    FULLY_READY = "fully_ready"
    READY = "ready"
    COMPROMISED = "compromised"
    NOT_READY = "not_ready"


# Score domains
PERCENT_SCORE_MAX = 100.0
STRAIN_SCORE_MAX = 18.0

# Strain cut points on the 0-18 scale
STRAIN_BAND_THRESHOLDS = (4.5, 9.0, 14.4)


# Absorbs float error from weight products such as 0.35 * 70.
_ROUNDING_EPSILON = 1e-9


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with ties going up (82.5 -> 83)."""
    return math.floor(value + 0.5 + _ROUNDING_EPSILON)


def truncate_score(value: float) -> int:
    """Drop the fractional part of a non-negative score (97.6 -> 97)."""
    return int(value + _ROUNDING_EPSILON)


def recovery_band(score: float) -> RecoveryBand:
    if score >= 80:
        return RecoveryBand.OPTIMAL
    if score >= 60:
        return RecoveryBand.GOOD
    if score >= 40:
        return RecoveryBand.FAIR
    return RecoveryBand.PAY_ATTENTION


def sleep_band(score: float) -> SleepBand:
    if score >= 80:
        return SleepBand.OPTIMAL
    if score >= 60:
        return SleepBand.GOOD
    if score >= 40:
        return SleepBand.FAIR
    return SleepBand.PAY_ATTENTION


def strain_band(score: float) -> StrainBand:
    low, moderate, high = STRAIN_BAND_THRESHOLDS
    if score < low:
        return StrainBand.LOW
    if score < moderate:
        return StrainBand.MODERATE
    if score < high:
        return StrainBand.HIGH
    return StrainBand.EXTREME


def readiness_band(score: float) -> ReadinessBand:
    if score >= 80:
        return ReadinessBand.FULLY_READY
    if score >= 60:
        return ReadinessBand.READY
    if score >= 40:
        return ReadinessBand.COMPROMISED
    return ReadinessBand.NOT_READY


BAND_FOR_SCORE_TYPE = {
    ScoreType.RECOVERY: recovery_band,
    ScoreType.SLEEP: sleep_band,
    ScoreType.STRAIN: strain_band,
    ScoreType.READINESS: readiness_band,
}

BAND_ENUM_FOR_SCORE_TYPE = {
    ScoreType.RECOVERY: RecoveryBand,
    ScoreType.SLEEP: SleepBand,
    ScoreType.STRAIN: StrainBand,
    ScoreType.READINESS: ReadinessBand,
}


def score_domain(score_type: ScoreType) -> float:
    return STRAIN_SCORE_MAX if score_type == ScoreType.STRAIN else PERCENT_SCORE_MAX


def _frozen(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class CompositeScore:
    """Immutable result of one Recovery, Sleep, Strain or Readiness calculation."""
    score_type: ScoreType
    score: float
    band: OrderedBand
    sub_scores: Mapping[str, float] = field(default_factory=dict)
    inputs: Mapping[str, Any] = field(default_factory=dict)
    weights: Mapping[str, float] = field(default_factory=dict)
    flags: Mapping[str, Any] = field(default_factory=dict)
    calculated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    illness_detected: bool = False
    illness_severity: Optional[str] = None
    strategy: str = "rule_based"

    def __post_init__(self):
        # Mappings are read-only views over private copies.
        object.__setattr__(self, "sub_scores", _frozen(self.sub_scores))
        object.__setattr__(self, "inputs", _frozen(self.inputs))
        object.__setattr__(self, "weights", _frozen(self.weights))
        object.__setattr__(self, "flags", _frozen(self.flags))

    @classmethod
    def build(
        cls,
        score_type: ScoreType,
        raw_score: float,
        **kwargs: Any,
    ) -> "CompositeScore":
        """
        Clamp to the score type's domain and derive the band.

        Strain keeps one decimal, readiness rounds half up, and recovery
        and sleep are truncated to whole points.
        """
        score = clamp(float(raw_score), 0.0, score_domain(score_type))
        if score_type == ScoreType.STRAIN:
            score = round(score, 1)
        elif score_type == ScoreType.READINESS:
            score = float(round_half_up(score))
        else:
            score = float(truncate_score(score))
        band = BAND_FOR_SCORE_TYPE[score_type](score)
        return cls(score_type=score_type, score=score, band=band, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score_type": self.score_type.value,
            "score": self.score,
            "band": self.band.value,
            "sub_scores": dict(self.sub_scores),
            "inputs": dict(self.inputs),
            "weights": dict(self.weights),
            "flags": dict(self.flags),
            "calculated_at": self.calculated_at.isoformat(),
            "illness_detected": self.illness_detected,
            "illness_severity": self.illness_severity,
            "strategy": self.strategy,
            "schema_version": 2,
        }
