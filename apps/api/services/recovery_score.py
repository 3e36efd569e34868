"""
Recovery Score

Weighted blend of five sub-scores, then the adjuster pipeline:

    HRV 0.30 | RHR 0.20 | Sleep 0.30 | Respiratory 0.10 | Form 0.10

Without sleep data the sleep weight is redistributed proportionally over the
other four inputs (it is never scored as a neutral 50). The comprehensive
sleep score replaces the plain duration ratio whenever it is supplied.

Scoring goes through a strategy interface. RuleBasedRecoveryStrategy is the
system of record; LearnedModelRecoveryStrategy wraps an optional external
predictor and falls back to the rules whenever the model has nothing to say.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol, Sequence

from core.config import settings
from services.score_adjusters import (
    AdjusterContext,
    IllnessIndicator,
    ScoreAdjuster,
    apply_adjusters,
)
from services.score_types import CompositeScore, ScoreType, clamp
from services.sub_scores import (
    NEUTRAL_SUB_SCORE,
    form_sub_score,
    hrv_sub_score,
    respiratory_sub_score,
    rhr_sub_score,
    sleep_duration_sub_score,
)

logger = logging.getLogger(__name__)

RECOVERY_WEIGHTS = {
    "hrv": 0.30,
    "rhr": 0.20,
    "sleep": 0.30,
    "respiratory": 0.10,
    "form": 0.10,
}


@dataclass
class RecoveryInputs:
    """Today's recovery signals and their rolling baselines."""
    hrv: Optional[float] = None
    overnight_hrv: Optional[float] = None
    hrv_baseline: Optional[float] = None
    rhr: Optional[float] = None
    rhr_baseline: Optional[float] = None
    sleep_duration: Optional[float] = None       # hours
    sleep_baseline: Optional[float] = None       # hours (sleep need)
    sleep_score: Optional[float] = None          # comprehensive 0-100
    respiratory_rate: Optional[float] = None
    respiratory_baseline: Optional[float] = None
    atl: Optional[float] = None
    ctl: Optional[float] = None
    recent_strain: Optional[float] = None        # yesterday's TSS
    illness: Optional[IllnessIndicator] = None

    @property
    def has_sleep_data(self) -> bool:
        return self.sleep_score is not None or (
            self.sleep_duration is not None and self.sleep_duration > 0
        )

    def to_snapshot(self) -> Dict[str, Optional[float]]:
        snapshot = asdict(self)
        snapshot.pop("illness", None)
        return snapshot


def redistribute_weights(weights: Dict[str, float], dropped: str) -> Dict[str, float]:
    """
    Drop one input and spread its weight proportionally over the rest.

    The last remaining key absorbs rounding so the result sums to exactly 1.0.
    """
    remaining = {k: v for k, v in weights.items() if k != dropped and v > 0}
    total = sum(remaining.values())
    if total <= 0:
        return {k: 0.0 for k in weights}

    redistributed = {k: v / total for k, v in remaining.items()}
    keys = list(redistributed)
    redistributed[keys[-1]] = 1.0 - sum(redistributed[k] for k in keys[:-1])
    redistributed[dropped] = 0.0
    return redistributed


class RecoveryScoringStrategy(Protocol):
    name: str

    def score(self, inputs: RecoveryInputs) -> CompositeScore:
        ...


class RuleBasedRecoveryStrategy:
    """Deterministic recovery scoring from sub-score curves and adjusters."""

    name = "rule_based"

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        adjusters: Optional[Sequence[ScoreAdjuster]] = None,
    ):
        self.weights = weights or RECOVERY_WEIGHTS.copy()
        self.adjusters = adjusters

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------

    def _sleep_sub_score(self, inputs: RecoveryInputs) -> int:
        if inputs.sleep_score is not None:
            return int(clamp(inputs.sleep_score, 0, 100))
        return sleep_duration_sub_score(inputs.sleep_duration, inputs.sleep_baseline)

    def sub_scores(self, inputs: RecoveryInputs) -> Dict[str, int]:
        hrv_value = inputs.hrv if inputs.hrv is not None else inputs.overnight_hrv
        return {
            "hrv": hrv_sub_score(hrv_value, inputs.hrv_baseline),
            "rhr": rhr_sub_score(inputs.rhr, inputs.rhr_baseline),
            "sleep": (
                self._sleep_sub_score(inputs) if inputs.has_sleep_data else NEUTRAL_SUB_SCORE
            ),
            "respiratory": respiratory_sub_score(
                inputs.respiratory_rate, inputs.respiratory_baseline
            ),
            "form": form_sub_score(inputs.atl, inputs.ctl, inputs.recent_strain),
        }

    def effective_weights(self, inputs: RecoveryInputs) -> Dict[str, float]:
        if inputs.has_sleep_data:
            return dict(self.weights)
        return redistribute_weights(self.weights, "sleep")

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(self, inputs: RecoveryInputs) -> CompositeScore:
        sub_scores = self.sub_scores(inputs)
        weights = self.effective_weights(inputs)
        blend = sum(sub_scores[k] * weights.get(k, 0.0) for k in sub_scores)

        context = AdjusterContext(
            blended_score=blend,
            sub_scores=dict(sub_scores),
            hrv=inputs.hrv,
            overnight_hrv=inputs.overnight_hrv,
            hrv_baseline=inputs.hrv_baseline,
            sleep_score=(
                clamp(inputs.sleep_score, 0.0, 100.0) if inputs.sleep_score is not None else None
            ),
            illness=inputs.illness,
        )
        outcome = apply_adjusters(context, self.adjusters)

        flags = dict(outcome.flags)
        if not inputs.has_sleep_data:
            flags["sleep_weight_redistributed"] = True

        illness = inputs.illness
        return CompositeScore.build(
            ScoreType.RECOVERY,
            clamp(blend - outcome.penalty, 0.0, 100.0),
            sub_scores=sub_scores,
            inputs=inputs.to_snapshot(),
            weights=weights,
            flags=flags,
            calculated_at=datetime.now(timezone.utc),
            illness_detected=bool(illness and illness.is_significant),
            illness_severity=illness.severity.value if illness else None,
            strategy=self.name,
        )


RecoveryPredictor = Callable[[RecoveryInputs], Optional[float]]


class LearnedModelRecoveryStrategy:
    """
    Recovery from an external learned model.

    The predictor is an optional collaborator returning a 0-100 score or
    None. Sub-scores, flags and bands still come from the rule-based path so
    the result stays explainable.
    """

    name = "learned_model"

    def __init__(
        self,
        predictor: RecoveryPredictor,
        fallback: Optional[RuleBasedRecoveryStrategy] = None,
    ):
        self.predictor = predictor
        self.fallback = fallback or RuleBasedRecoveryStrategy()

    def score(self, inputs: RecoveryInputs) -> CompositeScore:
        rule_based = self.fallback.score(inputs)
        try:
            predicted = self.predictor(inputs)
        except Exception as e:
            logger.warning(f"Learned recovery model failed, using rule-based score: {e}")
            return rule_based

        if predicted is None:
            return rule_based

        return CompositeScore.build(
            ScoreType.RECOVERY,
            predicted,
            sub_scores=rule_based.sub_scores,
            inputs=rule_based.inputs,
            weights=rule_based.weights,
            flags={**rule_based.flags, "rule_based_score": rule_based.score},
            calculated_at=rule_based.calculated_at,
            illness_detected=rule_based.illness_detected,
            illness_severity=rule_based.illness_severity,
            strategy=self.name,
        )


def select_recovery_strategy(
    predictor: Optional[RecoveryPredictor] = None,
    enabled: Optional[bool] = None,
) -> RecoveryScoringStrategy:
    """Pick the recovery strategy from the capability flag."""
    if enabled is None:
        enabled = settings.LEARNED_RECOVERY_MODEL_ENABLED
    if enabled and predictor is not None:
        return LearnedModelRecoveryStrategy(predictor)
    return RuleBasedRecoveryStrategy()


def calculate_recovery(
    inputs: RecoveryInputs,
    strategy: Optional[RecoveryScoringStrategy] = None,
) -> CompositeScore:
    return (strategy or RuleBasedRecoveryStrategy()).score(inputs)
