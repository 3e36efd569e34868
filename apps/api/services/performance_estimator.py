"""
Performance Estimator (FTP, HR zones, VO2max)

Critical-power style FTP estimation from a rolling activity window:

    1. Power-duration bests at ~60 / ~20 / ~5 minutes. Rides of 3h+ count
       toward the 60-minute best with a duration-graded boost (their NP sits
       below FTP because of pacing).
    2. Candidates: 60-min x 0.99 (weight 1.0, 1.5 if ultra-endurance),
       20-min x 0.95 (0.9), 5-min x 0.87 (0.6). Weighted average.
    3. Confidence = min(total weight / 2.5, 1). Buffer +2% / +3% / +5% for
       high / medium / low confidence.
    4. Clamp to [0.85, 1.05] x max observed NP.
    5. Temporal smoothing against the previous FTP: 50/50 for high-confidence
       ultra-endurance evidence, 60/40 for high confidence, 70/30 otherwise.

HR side: max HR = mean of the top 5% of activity max HRs + 2%. LTHR from the
median max HR of sustained (15-60 min) efforts landing at 88-96% of max,
falling back to a trimmed mean of hard efforts. Zones are LTHR-anchored when
LTHR sits at 82-93% of max, percentage-based otherwise. Max HR is smoothed
80/20 old/new.

Metrics whose provenance is MANUAL are never touched. No usable data leaves
the field as it was; nothing here raises for thin history.
"""

import copy
import logging
import statistics
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from core.config import settings
from services.athlete_profile import (
    ActivitySample,
    AthleteProfile,
    DataQuality,
    MetricSource,
    ProfileMetric,
    Sex,
)

logger = logging.getLogger(__name__)

# Power-duration thresholds (seconds)
ULTRA_ENDURANCE_SECONDS = 3 * 3600
ULTRA_BOOSTS = ((5 * 3600, 1.12), (4 * 3600, 1.10), (3 * 3600, 1.07))
SIXTY_MIN_SECONDS = 3600
TWENTY_MIN_SECONDS = 1200
FIVE_MIN_SECONDS = 300
LONG_RIDE_SECONDS = 2700

FTP_CANDIDATE_MULTIPLIERS = {"60min": 0.99, "20min": 0.95, "5min": 0.87}
FTP_CANDIDATE_WEIGHTS = {"60min": 1.0, "60min_ultra": 1.5, "20min": 0.9, "5min": 0.6}
CONFIDENCE_WEIGHT_SCALE = 2.5

HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7
CONFIDENCE_BUFFERS = {"high": 1.02, "medium": 1.03, "low": 1.05}
HISTORICAL_FTP_BUFFER = 1.02

FTP_LOWER_BOUND_RATIO = 0.85
FTP_UPPER_BOUND_RATIO = 1.05

# (old, new) weights
SMOOTHING_ULTRA = (0.5, 0.5)
SMOOTHING_HIGH_CONFIDENCE = (0.6, 0.4)
SMOOTHING_DEFAULT = (0.7, 0.3)
MAX_HR_SMOOTHING = (0.8, 0.2)

POWER_ZONE_RATIOS = (0.0, 0.55, 0.75, 0.90, 1.05, 1.20, 1.50)
HR_ZONE_RATIOS = (0.0, 0.68, 0.83, 0.90, 0.95, 0.98, 1.00)

MAX_HR_BUFFER = 1.02
LTHR_SUSTAINED_SECONDS = (900, 3600)
LTHR_THRESHOLD_BAND = (0.88, 0.96)
LTHR_FALLBACK_MIN_SECONDS = 600
LTHR_FALLBACK_INTENSITY = 0.80
LTHR_VALID_RANGE = (0.82, 0.93)

W_PRIME_EFFORT_SECONDS = (60, 600)
W_PRIME_PERCENTILE = 0.75

VO2_FTP_SLOPE = 10.8
VO2_FTP_INTERCEPT = 7.0


# ----------------------------------------------------------------------
# Zone builders
# ----------------------------------------------------------------------

def power_zones(ftp: float) -> List[float]:
    """Seven zone start boundaries from FTP."""
    return [ftp * ratio for ratio in POWER_ZONE_RATIOS]


def percentage_hr_zones(max_hr: float) -> List[float]:
    return [max_hr * ratio for ratio in HR_ZONE_RATIOS]


def adaptive_hr_zones(max_hr: float, lthr: float) -> List[float]:
    """HR zones anchored on LTHR, splitting the space below and above it."""
    lthr_pct = lthr / max_hr
    z2 = max_hr * 0.68
    space_below = lthr - z2
    space_above = max_hr - lthr

    z3 = z2 + space_below * 0.65
    z4_offset = 5.0 if lthr_pct > 0.88 else 8.0
    z4 = max(lthr - z4_offset, z3 + 3)

    if space_above > 15:
        z5 = lthr + space_above * 0.35
        z6 = lthr + space_above * 0.70
    else:
        width = max(space_above / 3.0, 3.0)
        z5 = lthr + width
        z6 = z5 + width

    return [0.0, z2, z3, z4, z5, z6, max_hr]


# ----------------------------------------------------------------------
# FTP
# ----------------------------------------------------------------------

@dataclass
class PowerDurationBests:
    best_60min: float = 0.0
    best_20min: float = 0.0
    best_5min: float = 0.0
    max_power: float = 0.0
    ultra_boost: Optional[float] = None
    power_activity_count: int = 0

    @property
    def ultra_endurance(self) -> bool:
        return self.ultra_boost is not None


@dataclass
class FTPCandidate:
    method: str
    ftp: float
    weight: float


@dataclass
class FTPEstimate:
    ftp: float
    unsmoothed_ftp: float
    weighted_ftp: float
    confidence: float
    buffer: float
    candidates: List[FTPCandidate]
    bests: PowerDurationBests
    smoothing: Optional[Tuple[float, float]] = None


def ultra_boost_for(duration_seconds: float) -> Optional[float]:
    for min_seconds, boost in ULTRA_BOOSTS:
        if duration_seconds >= min_seconds:
            return boost
    return None


def scan_power_durations(activities: Sequence[ActivitySample]) -> PowerDurationBests:
    """Best sustained power at ~60/20/5 minutes across the window."""
    bests = PowerDurationBests()
    for activity in activities:
        power = activity.best_power
        if not power:
            continue
        duration = activity.duration_seconds or 0
        bests.power_activity_count += 1
        bests.max_power = max(bests.max_power, power)

        boost = ultra_boost_for(duration)
        if boost is not None:
            if power * boost > bests.best_60min:
                bests.best_60min = power * boost
                bests.ultra_boost = boost
        elif duration >= SIXTY_MIN_SECONDS:
            bests.best_60min = max(bests.best_60min, power)

        if duration >= TWENTY_MIN_SECONDS:
            bests.best_20min = max(bests.best_20min, power)
        if duration >= FIVE_MIN_SECONDS:
            bests.best_5min = max(bests.best_5min, power)
    return bests


def ftp_candidates(
    bests: PowerDurationBests,
    fixed_sixty_min_weight: Optional[float] = None,
) -> List[FTPCandidate]:
    candidates = []
    if bests.best_60min > 0:
        if fixed_sixty_min_weight is not None:
            weight = fixed_sixty_min_weight
        elif bests.ultra_endurance:
            weight = FTP_CANDIDATE_WEIGHTS["60min_ultra"]
        else:
            weight = FTP_CANDIDATE_WEIGHTS["60min"]
        candidates.append(FTPCandidate(
            "60min", bests.best_60min * FTP_CANDIDATE_MULTIPLIERS["60min"], weight
        ))
    if bests.best_20min > 0:
        candidates.append(FTPCandidate(
            "20min",
            bests.best_20min * FTP_CANDIDATE_MULTIPLIERS["20min"],
            FTP_CANDIDATE_WEIGHTS["20min"],
        ))
    if bests.best_5min > 0:
        candidates.append(FTPCandidate(
            "5min",
            bests.best_5min * FTP_CANDIDATE_MULTIPLIERS["5min"],
            FTP_CANDIDATE_WEIGHTS["5min"],
        ))
    return candidates


def weighted_average(candidates: Sequence[FTPCandidate]) -> Tuple[float, float]:
    """(weighted FTP, total weight)."""
    total_weight = sum(c.weight for c in candidates)
    if total_weight <= 0:
        return 0.0, 0.0
    return sum(c.ftp * c.weight for c in candidates) / total_weight, total_weight


def confidence_buffer(confidence: float) -> float:
    """Safety buffer; lower confidence gets the bigger one."""
    if confidence >= HIGH_CONFIDENCE:
        return CONFIDENCE_BUFFERS["high"]
    if confidence >= MEDIUM_CONFIDENCE:
        return CONFIDENCE_BUFFERS["medium"]
    return CONFIDENCE_BUFFERS["low"]


def smoothing_ratio(ultra_endurance: bool, confidence: float) -> Tuple[float, float]:
    if ultra_endurance and confidence >= HIGH_CONFIDENCE:
        return SMOOTHING_ULTRA
    if confidence >= HIGH_CONFIDENCE:
        return SMOOTHING_HIGH_CONFIDENCE
    return SMOOTHING_DEFAULT


class FTPEstimator:
    """Confidence-weighted, clamped and smoothed FTP from a window of activities."""

    def estimate(
        self,
        activities: Sequence[ActivitySample],
        previous_ftp: Optional[float] = None,
    ) -> Optional[FTPEstimate]:
        bests = scan_power_durations(activities)
        if bests.max_power <= 0:
            logger.info("FTP estimate skipped: no power data in window")
            return None

        candidates = ftp_candidates(bests)
        if not candidates:
            logger.info(
                f"FTP estimate skipped: no efforts >= {FIVE_MIN_SECONDS}s "
                f"among {bests.power_activity_count} power activities"
            )
            return None

        weighted_ftp, total_weight = weighted_average(candidates)
        confidence = min(total_weight / CONFIDENCE_WEIGHT_SCALE, 1.0)
        buffer = confidence_buffer(confidence)

        lower = bests.max_power * FTP_LOWER_BOUND_RATIO
        upper = bests.max_power * FTP_UPPER_BOUND_RATIO
        ftp = max(lower, min(upper, weighted_ftp * buffer))
        unsmoothed = ftp

        ratio = None
        if previous_ftp is not None and previous_ftp > 0:
            ratio = smoothing_ratio(bests.ultra_endurance, confidence)
            ftp = previous_ftp * ratio[0] + ftp * ratio[1]
            logger.info(
                f"FTP smoothing {ratio[0]:.0%}/{ratio[1]:.0%}: "
                f"{previous_ftp:.0f}W -> {ftp:.0f}W (raw {unsmoothed:.0f}W)"
            )

        return FTPEstimate(
            ftp=ftp,
            unsmoothed_ftp=unsmoothed,
            weighted_ftp=weighted_ftp,
            confidence=confidence,
            buffer=buffer,
            candidates=candidates,
            bests=bests,
            smoothing=ratio,
        )


def historical_ftp(activities: Sequence[ActivitySample]) -> Optional[float]:
    """
    Simplified FTP for point-in-time snapshots.

    Same power-duration scan, fixed 1.5 weight on the 60-minute candidate,
    a flat +2% buffer, and no clamping or smoothing so each snapshot depends
    only on its own window.
    """
    bests = scan_power_durations(activities)
    if bests.max_power <= 0:
        return None
    candidates = ftp_candidates(bests, fixed_sixty_min_weight=FTP_CANDIDATE_WEIGHTS["60min_ultra"])
    if not candidates:
        return None
    weighted_ftp, _ = weighted_average(candidates)
    return weighted_ftp * HISTORICAL_FTP_BUFFER


# ----------------------------------------------------------------------
# HR zones
# ----------------------------------------------------------------------

@dataclass
class HRZoneEstimate:
    max_hr: float
    unsmoothed_max_hr: float
    lthr: Optional[float]
    zones: List[float]
    adaptive: bool
    lthr_method: Optional[str] = None


def detect_lthr(
    activities: Sequence[ActivitySample],
    max_hr: float,
    ftp: Optional[float] = None,
) -> Tuple[Optional[float], Optional[str]]:
    """LTHR from sustained threshold efforts, else a trimmed mean of hard efforts."""
    low, high = LTHR_THRESHOLD_BAND
    min_s, max_s = LTHR_SUSTAINED_SECONDS
    sustained = sorted(
        a.max_hr for a in activities
        if a.max_hr and a.max_hr > 0
        and min_s <= (a.duration_seconds or 0) <= max_s
        and max_hr * low <= a.max_hr <= max_hr * high
    )
    if sustained:
        return sustained[len(sustained) // 2], "sustained_median"

    intensity_floor = LTHR_FALLBACK_INTENSITY * (ftp or settings.DEFAULT_FTP_WATTS)
    hard = sorted(
        a.max_hr for a in activities
        if a.max_hr and a.max_hr > 0
        and (a.duration_seconds or 0) >= LTHR_FALLBACK_MIN_SECONDS
        and a.max_hr >= max_hr * low
        and (a.normalized_power or 0) > intensity_floor
    )
    trim = len(hard) // 4
    trimmed = hard[trim:len(hard) - trim] if trim else hard
    if trimmed:
        return sum(trimmed) / len(trimmed), "trimmed_mean"
    return None, None


class HRZoneEstimator:
    """Max HR, LTHR and HR zones from activity max heart rates."""

    def estimate(
        self,
        activities: Sequence[ActivitySample],
        previous_max_hr: Optional[float] = None,
        ftp: Optional[float] = None,
    ) -> Optional[HRZoneEstimate]:
        max_hrs = sorted((a.max_hr for a in activities if a.max_hr and a.max_hr > 0), reverse=True)
        if not max_hrs:
            logger.info("HR zone estimate skipped: no heart rate data in window")
            return None

        top = max_hrs[:max(1, len(max_hrs) // 20)]
        computed_max = sum(top) / len(top) * MAX_HR_BUFFER

        # LTHR is located against this window's max, before smoothing.
        lthr, method = detect_lthr(activities, computed_max, ftp)
        if lthr is None:
            logger.info("No threshold efforts found for LTHR detection")

        unsmoothed = computed_max
        if previous_max_hr is not None and previous_max_hr > 0:
            old, new = MAX_HR_SMOOTHING
            computed_max = previous_max_hr * old + computed_max * new

        adaptive = False
        if lthr is not None:
            lthr_pct = lthr / computed_max
            low, high = LTHR_VALID_RANGE
            if low <= lthr_pct <= high:
                adaptive = True
            else:
                logger.info(
                    f"LTHR {lthr:.0f}bpm is {lthr_pct:.0%} of max; "
                    "outside plausible range, using percentage zones"
                )

        zones = adaptive_hr_zones(computed_max, lthr) if adaptive else percentage_hr_zones(computed_max)
        return HRZoneEstimate(
            max_hr=computed_max,
            unsmoothed_max_hr=unsmoothed,
            lthr=lthr,
            zones=zones,
            adaptive=adaptive,
            lthr_method=method,
        )


# ----------------------------------------------------------------------
# Auxiliary estimates
# ----------------------------------------------------------------------

def vo2max_from_ftp(ftp: float, weight_kg: float) -> float:
    return ftp / weight_kg * VO2_FTP_SLOPE + VO2_FTP_INTERCEPT


def estimate_w_prime(activities: Sequence[ActivitySample], ftp: float) -> Optional[float]:
    """W' (J): 75th percentile of work above FTP in 1-10 minute efforts."""
    low, high = W_PRIME_EFFORT_SECONDS
    work = sorted(
        (a.average_power - ftp) * a.duration_seconds
        for a in activities
        if a.average_power and low <= (a.duration_seconds or 0) <= high and a.average_power > ftp
    )
    if not work:
        return None
    index = int(len(work) * W_PRIME_PERCENTILE)
    return work[min(index, len(work) - 1)]


def assess_data_quality(activities: Sequence[ActivitySample]) -> DataQuality:
    sample_size = len(activities)
    has_np = any(a.normalized_power for a in activities)
    has_long = any((a.duration_seconds or 0) >= LONG_RIDE_SECONDS for a in activities)
    has_hr = any(a.average_hr for a in activities)

    powers = [p for p in (a.best_power for a in activities) if p]
    cv = None
    if powers:
        cv = statistics.pstdev(powers) / statistics.mean(powers)

    confidence = min(sample_size / 20.0, 1.0) * 0.3
    confidence += 0.3 if has_np else 0.1
    confidence += 0.2 if has_long else 0.0
    if cv is not None:
        confidence += 0.2 if cv < 0.15 else (0.1 if cv < 0.25 else 0.0)

    flags = []
    if not powers:
        flags.append("no_power_data")
    if not has_hr:
        flags.append("no_hr_data")
    if sample_size < 5:
        flags.append("small_sample")

    return DataQuality(
        confidence=min(confidence, 1.0),
        sample_size=sample_size,
        has_long_efforts=has_long,
        has_power_data=has_np,
        has_hr_data=has_hr,
        variability_index=cv,
        flags=flags,
    )


def has_power_meter_data(activities: Sequence[ActivitySample]) -> bool:
    """At least three activities with power."""
    return sum(1 for a in activities if a.best_power) >= 3


def estimate_ftp_from_hr(max_hr: float, lthr: float, weight_kg: float) -> Optional[float]:
    """FTP for athletes without a power meter: 2.5 W/kg shifted by LTHR % of max."""
    if max_hr <= 0 or lthr <= 0 or lthr >= max_hr or weight_kg <= 0:
        return None
    w_per_kg = 2.5 + (lthr / max_hr - 0.85) * 30.0
    return max(1.5, min(6.0, w_per_kg)) * weight_kg


def estimate_vo2max_from_hr(
    max_hr: float,
    resting_hr: Optional[float] = None,
    age: Optional[int] = None,
) -> Optional[float]:
    if max_hr <= 0:
        return None
    if resting_hr and 0 < resting_hr < max_hr:
        vo2 = 15.3 * (max_hr / resting_hr)
    else:
        vo2 = max_hr / 3.5
    if age is not None and age >= 25:
        vo2 *= 1.0 - (age - 25) * 0.01
    return max(20.0, min(80.0, vo2))


def default_ftp(weight_kg: Optional[float]) -> float:
    if weight_kg and weight_kg > 0:
        return weight_kg * 2.5
    return settings.DEFAULT_FTP_WATTS


def default_vo2max(age: Optional[int], sex: Optional[Sex]) -> float:
    base = 45.0 if sex == Sex.FEMALE else 50.0
    if age is not None and age >= 25:
        return max(base - (age - 25) * 0.5, 25.0)
    return base


# ----------------------------------------------------------------------
# Profile-level estimation
# ----------------------------------------------------------------------

class PerformanceEstimator:
    """estimate(activities, previous_profile) -> new AthleteProfile."""

    def __init__(
        self,
        ftp_estimator: Optional[FTPEstimator] = None,
        hr_estimator: Optional[HRZoneEstimator] = None,
    ):
        self.ftp_estimator = ftp_estimator or FTPEstimator()
        self.hr_estimator = hr_estimator or HRZoneEstimator()

    @staticmethod
    def _smoothing_anchor(profile: AthleteProfile, metric: ProfileMetric) -> Optional[float]:
        # Formula defaults are placeholders, not evidence to smooth against.
        if profile.source_of(metric) == MetricSource.COGGAN:
            return None
        return profile.ftp if metric == ProfileMetric.FTP else profile.max_hr

    def estimate(
        self,
        activities: Sequence[ActivitySample],
        previous_profile: AthleteProfile,
        now: Optional[datetime] = None,
    ) -> AthleteProfile:
        now = now or datetime.now(timezone.utc)
        profile = copy.deepcopy(previous_profile)
        activities = list(activities or [])
        skipped = []
        power_meter = has_power_meter_data(activities)

        ftp_estimated = False
        ftp_from_hr = None
        if profile.is_manual(ProfileMetric.FTP):
            logger.info(f"FTP estimation skipped for {profile.athlete_id}: manual override")
        else:
            estimate = self.ftp_estimator.estimate(
                activities, previous_ftp=self._smoothing_anchor(profile, ProfileMetric.FTP)
            )
            if estimate is not None:
                profile.ftp = estimate.ftp
                profile.ftp_source = MetricSource.COMPUTED
                profile.power_zones = power_zones(estimate.ftp)
                profile.last_computed = now
                ftp_estimated = True

        if profile.is_manual(ProfileMetric.MAX_HR):
            logger.info(f"HR zone estimation skipped for {profile.athlete_id}: manual override")
        else:
            hr = self.hr_estimator.estimate(
                activities,
                previous_max_hr=self._smoothing_anchor(profile, ProfileMetric.MAX_HR),
                ftp=profile.ftp,
            )
            if hr is not None:
                profile.max_hr = hr.max_hr
                profile.max_hr_source = MetricSource.COMPUTED
                profile.hr_zones = hr.zones
                if hr.lthr is not None:
                    profile.lthr = hr.lthr
                profile.last_computed = now
            else:
                skipped.append("hr_zones_not_estimated")

        # No power meter: derive FTP from the HR profile instead.
        if not ftp_estimated and not power_meter and not profile.is_manual(ProfileMetric.FTP):
            if profile.max_hr and profile.lthr and profile.weight_kg:
                ftp_from_hr = estimate_ftp_from_hr(profile.max_hr, profile.lthr, profile.weight_kg)
            if ftp_from_hr is not None:
                profile.ftp = ftp_from_hr
                profile.ftp_source = MetricSource.COMPUTED
                profile.power_zones = power_zones(ftp_from_hr)
                profile.last_computed = now
                ftp_estimated = True
                logger.info(f"FTP for {profile.athlete_id} derived from HR: {ftp_from_hr:.0f}W")
        if not ftp_estimated and not profile.is_manual(ProfileMetric.FTP):
            skipped.append("ftp_not_estimated")

        if activities:
            profile.data_quality = assess_data_quality(activities)
            profile.data_quality.flags.extend(skipped)
        if skipped:
            logger.info(f"Profile {profile.athlete_id} left unchanged for: {', '.join(skipped)}")

        measured_ftp = (
            profile.ftp and profile.ftp > 0
            and profile.ftp_source != MetricSource.COGGAN
            and ftp_from_hr is None
        )
        if measured_ftp:
            if profile.weight_kg and profile.weight_kg > 0:
                profile.vo2max = vo2max_from_ftp(profile.ftp, profile.weight_kg)
        elif profile.max_hr and profile.max_hr_source != MetricSource.COGGAN:
            vo2 = estimate_vo2max_from_hr(profile.max_hr, profile.resting_hr, profile.age)
            if vo2 is not None:
                profile.vo2max = vo2

        if profile.ftp and profile.ftp > 0 and profile.ftp_source != MetricSource.COGGAN:
            w_prime = estimate_w_prime(activities, profile.ftp)
            if w_prime is not None:
                profile.w_prime = w_prime

        profile.last_updated = now
        return profile
