"""
Athlete Profile & Trends API Router

Endpoints:
- GET    /v1/athletes/{athlete_id}/profile
- POST   /v1/athletes/{athlete_id}/profile/update
- PUT    /v1/athletes/{athlete_id}/profile/ftp
- PUT    /v1/athletes/{athlete_id}/profile/max-hr
- DELETE /v1/athletes/{athlete_id}/profile/overrides/{metric}
- GET    /v1/athletes/{athlete_id}/trends

The trends endpoint only reads the trend cache; a stale or missing entry
enqueues a background recompute and returns whatever is cached.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query

from core.cache import delete_cache
from core.exceptions import ManualOverrideError, NotFoundError, ValidationError
from schemas import (
    AthleteProfileResponse,
    ManualFTPRequest,
    ManualMaxHRRequest,
    ProfileUpdateRequest,
    TrendResponse,
)
from services.athlete_profile import ActivitySample, AthleteProfileSnapshot, ProfileMetric, Sex
from services.athlete_profile_service import get_profile_service
from services.scoring_engine import build_engine
from services.trend_cache import TrendState, history_key, read_trend_cache, sparkline_key
from services.trend_engine import HISTORY_WEEKS, SPARKLINE_DAYS, TrendMetric

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/athletes", tags=["Athlete Profile"])


def _enqueue_trends(athlete_id: str, weeks: int, snapshot: Optional[AthleteProfileSnapshot] = None) -> bool:
    from tasks.trend_tasks import enqueue_trend_recompute

    try:
        return enqueue_trend_recompute(
            athlete_id,
            weeks,
            current_ftp=snapshot.ftp if snapshot else None,
            current_vo2=snapshot.vo2max if snapshot else None,
            weight_kg=snapshot.weight_kg if snapshot else None,
        )
    except Exception as e:
        logger.warning(f"Could not enqueue trend recompute for {athlete_id}: {e}")
        return False


def _invalidate_ftp_sparkline(athlete_id: str) -> None:
    # The sparkline ends at the current FTP, so a new FTP source invalidates it.
    delete_cache(sparkline_key(athlete_id, TrendMetric.FTP.value, SPARKLINE_DAYS))


@router.get("/{athlete_id}/profile", response_model=AthleteProfileResponse)
def get_profile(athlete_id: str) -> Dict[str, Any]:
    snapshot = get_profile_service().get_snapshot(athlete_id)
    if snapshot is None:
        raise NotFoundError("Athlete profile", athlete_id)
    return snapshot.to_dict()


@router.post("/{athlete_id}/profile/update", response_model=AthleteProfileResponse)
def update_profile(athlete_id: str, body: ProfileUpdateRequest) -> Dict[str, Any]:
    """Re-estimate FTP and HR zones. Manual overrides are left alone."""
    service = get_profile_service()
    service.ensure_profile(
        athlete_id,
        weight_kg=body.weight_kg,
        age=body.age,
        sex=Sex(body.sex) if body.sex else None,
        resting_hr=body.resting_hr,
    )

    activities = None
    if body.activities is not None:
        activities = [ActivitySample(**a.model_dump()) for a in body.activities]

    snapshot = build_engine(athlete_id).update_athlete_profile(activities)
    _enqueue_trends(athlete_id, HISTORY_WEEKS, snapshot)
    return snapshot.to_dict()


@router.put("/{athlete_id}/profile/ftp", response_model=AthleteProfileResponse)
def set_manual_ftp(athlete_id: str, body: ManualFTPRequest) -> Dict[str, Any]:
    try:
        snapshot = get_profile_service().set_manual_ftp(athlete_id, body.ftp, body.power_zones)
    except ManualOverrideError as e:
        raise ValidationError(str(e), field="ftp")
    _invalidate_ftp_sparkline(athlete_id)
    return snapshot.to_dict()


@router.put("/{athlete_id}/profile/max-hr", response_model=AthleteProfileResponse)
def set_manual_max_hr(athlete_id: str, body: ManualMaxHRRequest) -> Dict[str, Any]:
    try:
        snapshot = get_profile_service().set_manual_max_hr(athlete_id, body.max_hr, body.hr_zones)
    except ManualOverrideError as e:
        raise ValidationError(str(e), field="max_hr")
    return snapshot.to_dict()


@router.delete("/{athlete_id}/profile/overrides/{metric}", response_model=AthleteProfileResponse)
def clear_override(athlete_id: str, metric: str) -> Dict[str, Any]:
    try:
        profile_metric = ProfileMetric(metric.replace("-", "_"))
    except ValueError:
        raise ValidationError(f"Unknown profile metric: {metric}", field="metric")
    try:
        snapshot = get_profile_service().reset_to_computed(athlete_id, profile_metric)
    except KeyError:
        raise NotFoundError("Athlete profile", athlete_id)
    if profile_metric == ProfileMetric.FTP:
        _invalidate_ftp_sparkline(athlete_id)
    return snapshot.to_dict()


@router.get("/{athlete_id}/trends", response_model=TrendResponse)
def get_trends(
    athlete_id: str,
    weeks: int = Query(HISTORY_WEEKS, ge=1, le=104),
) -> Dict[str, Any]:
    payload, state = read_trend_cache(history_key(athlete_id, weeks), athlete_id)

    enqueued = False
    if state in (TrendState.STALE, TrendState.MISSING):
        snapshot = get_profile_service().get_snapshot(athlete_id)
        enqueued = _enqueue_trends(athlete_id, weeks, snapshot)

    return {
        "athlete_id": athlete_id,
        "weeks": weeks,
        "state": state.value,
        "points": payload or [],
        "recompute_enqueued": enqueued,
    }
