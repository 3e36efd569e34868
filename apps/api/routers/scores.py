"""
Composite Scores API Router

Endpoints:
- POST /v1/scores/recovery
- POST /v1/scores/sleep
- POST /v1/scores/strain
- POST /v1/scores/readiness

Calculations never fail on missing data; the only error surfaced is a
calculation that failed or timed out with no previous score to fall back on.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, status

from core.exceptions import APIException, ValidationError
from schemas import (
    CompositeScoreResponse,
    ReadinessRequest,
    RecoveryRequest,
    SleepRequest,
    StrainRequest,
)
from services.band_migration import decode_composite
from services.muscle_groups import parse_muscle_groups
from services.recovery_score import RecoveryInputs
from services.score_adjusters import IllnessIndicator, IllnessSeverity
from services.score_types import CompositeScore, ScoreType
from services.scoring_engine import ScoringEngine, build_engine
from services.sleep_score import SleepInputs
from services.strain_score import HeartRateSample, StrainInputs

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/scores", tags=["Scores"])

ANONYMOUS_ATHLETE = "anonymous"


def _engine(athlete_id: Optional[str]) -> ScoringEngine:
    return build_engine(athlete_id or ANONYMOUS_ATHLETE)


def _respond(score: Optional[CompositeScore], score_type: ScoreType) -> Dict[str, Any]:
    if score is None:
        raise APIException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{score_type.value} score unavailable",
            error_code="SCORE_UNAVAILABLE",
        )
    return score.to_dict()


@router.post("/recovery", response_model=CompositeScoreResponse)
def calculate_recovery_score(body: RecoveryRequest) -> Dict[str, Any]:
    fields = body.model_dump(exclude={"athlete_id", "illness"})
    illness = None
    if body.illness is not None:
        illness = IllnessIndicator(
            severity=IllnessSeverity(body.illness.severity),
            confidence=body.illness.confidence,
            signals=tuple(body.illness.signals),
            recommendation=body.illness.recommendation,
        )
    score = _engine(body.athlete_id).calculate_recovery(RecoveryInputs(**fields, illness=illness))
    return _respond(score, ScoreType.RECOVERY)


@router.post("/sleep", response_model=CompositeScoreResponse)
def calculate_sleep_score(body: SleepRequest) -> Dict[str, Any]:
    inputs = SleepInputs(**body.model_dump(exclude={"athlete_id"}))
    return _respond(_engine(body.athlete_id).calculate_sleep(inputs), ScoreType.SLEEP)


@router.post("/strain", response_model=CompositeScoreResponse)
def calculate_strain_score(body: StrainRequest) -> Dict[str, Any]:
    fields = body.model_dump(exclude={"athlete_id", "heart_rate_samples", "muscle_groups"})
    inputs = StrainInputs(
        heart_rate_samples=[
            HeartRateSample(time=s.time, hr=s.hr, power=s.power) for s in body.heart_rate_samples
        ],
        muscle_groups=parse_muscle_groups(body.muscle_groups),
        **fields,
    )
    return _respond(_engine(body.athlete_id).calculate_strain(inputs), ScoreType.STRAIN)


def _resolve_component(
    score_type: ScoreType,
    payload: Optional[Dict[str, Any]],
    value: Optional[float],
) -> Optional[CompositeScore]:
    """Stored payload wins over a plain value; legacy band names are migrated."""
    if payload is not None:
        try:
            decoded = decode_composite({"score_type": score_type.value, **payload})
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid stored {score_type.value} score: {e}", field=score_type.value)
        if decoded.score_type != score_type:
            raise ValidationError(
                f"Expected a {score_type.value} score, got {decoded.score_type.value}",
                field=score_type.value,
            )
        return decoded
    if value is not None:
        return CompositeScore.build(score_type, value)
    return None


@router.post("/readiness", response_model=CompositeScoreResponse)
def calculate_readiness_score(body: ReadinessRequest) -> Dict[str, Any]:
    recovery = _resolve_component(ScoreType.RECOVERY, body.recovery, body.recovery_score)
    sleep = _resolve_component(ScoreType.SLEEP, body.sleep, body.sleep_score)
    strain = _resolve_component(ScoreType.STRAIN, body.strain, body.strain_score)
    if recovery is None:
        raise ValidationError("A recovery score is required", field="recovery")
    if strain is None:
        raise ValidationError("A strain score is required", field="strain")

    score = _engine(body.athlete_id).calculate_readiness(recovery, sleep, strain)
    return _respond(score, ScoreType.READINESS)
