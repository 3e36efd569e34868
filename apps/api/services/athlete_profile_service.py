"""
Athlete Profile Service

Owns every AthleteProfile. All writes (automatic estimation, manual
overrides, imports, resets) serialize on a single lock; reads return
immutable snapshots and never wait on estimation.
"""

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from services.athlete_profile import (
    ActivitySample,
    AthleteProfile,
    AthleteProfileSnapshot,
    MetricSource,
    ProfileMetric,
    Sex,
)
from services.performance_estimator import (
    LTHR_VALID_RANGE,
    PerformanceEstimator,
    adaptive_hr_zones,
    default_ftp,
    default_vo2max,
    percentage_hr_zones,
    power_zones,
)
from core.exceptions import ManualOverrideError

logger = logging.getLogger(__name__)

MAX_HR_MIN = 100
MAX_HR_MAX = 230
ZONE_COUNT = 7


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_zones(metric: str, zones: Optional[List[float]]) -> Optional[List[float]]:
    if zones is None:
        return None
    zones = [float(z) for z in zones]
    if len(zones) != ZONE_COUNT:
        raise ManualOverrideError(metric, zones, f"expected {ZONE_COUNT} zone boundaries")
    if any(b < a for a, b in zip(zones, zones[1:])):
        raise ManualOverrideError(metric, zones, "zone boundaries must be ascending")
    return zones


def hr_zones_for(max_hr: float, lthr: Optional[float]) -> List[float]:
    if lthr:
        low, high = LTHR_VALID_RANGE
        if low <= lthr / max_hr <= high:
            return adaptive_hr_zones(max_hr, lthr)
    return percentage_hr_zones(max_hr)


class AthleteProfileService:
    """Single writer for athlete profiles."""

    def __init__(self, estimator: Optional[PerformanceEstimator] = None):
        self.estimator = estimator or PerformanceEstimator()
        self._profiles: Dict[str, AthleteProfile] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self, athlete_id: str) -> Optional[AthleteProfileSnapshot]:
        profile = self._profiles.get(athlete_id)
        return profile.snapshot() if profile is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def ensure_profile(
        self,
        athlete_id: str,
        weight_kg: Optional[float] = None,
        age: Optional[int] = None,
        sex: Optional[Sex] = None,
        resting_hr: Optional[float] = None,
    ) -> AthleteProfileSnapshot:
        """
        Create a profile seeded with formula defaults, or update the
        athlete's body attributes on an existing one.
        """
        with self._lock:
            profile = self._profiles.get(athlete_id)
            if profile is None:
                ftp = default_ftp(weight_kg)
                profile = AthleteProfile(
                    athlete_id=athlete_id,
                    ftp=ftp,
                    ftp_source=MetricSource.COGGAN,
                    power_zones=power_zones(ftp),
                    max_hr_source=MetricSource.COGGAN,
                    weight_kg=weight_kg,
                    age=age,
                    sex=sex,
                    resting_hr=resting_hr,
                    vo2max=default_vo2max(age, sex),
                    last_updated=_now(),
                )
                self._profiles[athlete_id] = profile
                logger.info(f"Created profile for {athlete_id} with default FTP {ftp:.0f}W")
                return profile.snapshot()

            if weight_kg is not None:
                profile.weight_kg = weight_kg
            if age is not None:
                profile.age = age
            if sex is not None:
                profile.sex = sex
            if resting_hr is not None:
                profile.resting_hr = resting_hr
            profile.last_updated = _now()
            return profile.snapshot()

    def update_from_activities(
        self,
        athlete_id: str,
        activities: Iterable[ActivitySample],
        now: Optional[datetime] = None,
    ) -> AthleteProfileSnapshot:
        """Run the estimator over `activities` and store the result."""
        self.ensure_profile(athlete_id)
        activities = list(activities or [])
        with self._lock:
            current = self._profiles[athlete_id]
            updated = self.estimator.estimate(activities, current, now=now)
            self._profiles[athlete_id] = updated
            logger.info(
                f"Profile {athlete_id} updated from {len(activities)} activities: "
                f"ftp={updated.ftp} ({updated.ftp_source.value}), "
                f"max_hr={updated.max_hr} ({updated.max_hr_source.value})"
            )
            return updated.snapshot()

    def set_manual_ftp(
        self,
        athlete_id: str,
        ftp: float,
        zones: Optional[List[float]] = None,
        now: Optional[datetime] = None,
    ) -> AthleteProfileSnapshot:
        if ftp is None or not math.isfinite(ftp) or ftp <= 0:
            raise ManualOverrideError(ProfileMetric.FTP.value, ftp, "must be a positive number")
        zones = _validate_zones(ProfileMetric.FTP.value, zones)

        self.ensure_profile(athlete_id)
        with self._lock:
            profile = self._profiles[athlete_id]
            profile.ftp = float(ftp)
            profile.ftp_source = MetricSource.MANUAL
            profile.power_zones = zones or power_zones(ftp)
            profile.manual_ftp_set_at = now or _now()
            profile.last_updated = profile.manual_ftp_set_at
            logger.info(f"Manual FTP for {athlete_id}: {ftp:.0f}W")
            return profile.snapshot()

    def set_manual_max_hr(
        self,
        athlete_id: str,
        max_hr: float,
        zones: Optional[List[float]] = None,
        now: Optional[datetime] = None,
    ) -> AthleteProfileSnapshot:
        if max_hr is None or not math.isfinite(max_hr) or not MAX_HR_MIN <= max_hr <= MAX_HR_MAX:
            raise ManualOverrideError(
                ProfileMetric.MAX_HR.value, max_hr,
                f"must be between {MAX_HR_MIN} and {MAX_HR_MAX} bpm",
            )
        zones = _validate_zones(ProfileMetric.MAX_HR.value, zones)

        self.ensure_profile(athlete_id)
        with self._lock:
            profile = self._profiles[athlete_id]
            profile.max_hr = float(max_hr)
            profile.max_hr_source = MetricSource.MANUAL
            profile.hr_zones = zones or hr_zones_for(profile.max_hr, profile.lthr)
            profile.manual_max_hr_set_at = now or _now()
            profile.last_updated = profile.manual_max_hr_set_at
            logger.info(f"Manual max HR for {athlete_id}: {max_hr:.0f}bpm")
            return profile.snapshot()

    def set_imported_ftp(
        self,
        athlete_id: str,
        ftp: float,
        now: Optional[datetime] = None,
    ) -> AthleteProfileSnapshot:
        """FTP synced from a training platform. Never replaces a manual value."""
        if ftp is None or not math.isfinite(ftp) or ftp <= 0:
            raise ManualOverrideError(ProfileMetric.FTP.value, ftp, "must be a positive number")

        self.ensure_profile(athlete_id)
        with self._lock:
            profile = self._profiles[athlete_id]
            if profile.is_manual(ProfileMetric.FTP):
                logger.info(f"Imported FTP {ftp:.0f}W ignored for {athlete_id}: manual override")
                return profile.snapshot()
            profile.ftp = float(ftp)
            profile.ftp_source = MetricSource.IMPORTED
            profile.power_zones = power_zones(ftp)
            profile.last_updated = now or _now()
            return profile.snapshot()

    def reset_to_computed(self, athlete_id: str, metric: ProfileMetric) -> AthleteProfileSnapshot:
        """
        Drop a manual override. The current value stays in place until the
        next estimation pass replaces it.
        """
        metric = ProfileMetric(metric)
        with self._lock:
            profile = self._profiles.get(athlete_id)
            if profile is None:
                raise KeyError(athlete_id)
            if metric == ProfileMetric.FTP:
                profile.ftp_source = MetricSource.COMPUTED
                profile.manual_ftp_set_at = None
            else:
                profile.max_hr_source = MetricSource.COMPUTED
                profile.manual_max_hr_set_at = None
            profile.last_updated = _now()
            logger.info(f"Manual {metric.value} override cleared for {athlete_id}")
            return profile.snapshot()


_profile_service: Optional[AthleteProfileService] = None


def get_profile_service() -> AthleteProfileService:
    global _profile_service
    if _profile_service is None:
        _profile_service = AthleteProfileService()
    return _profile_service


def reset_profile_service() -> None:
    """Drop the process-wide service (tests)."""
    global _profile_service
    _profile_service = None
