"""
Strain / Load Model (0-18)

Physiological load for a day, in three steps:

    TRIMP  = sum(HRR ** 2.2 * dt)                 heart-rate-reserve weighted time
    EPOC   = 0.15 * TRIMP ** 1.2                  recovery cost of the effort
    strain = 18 * ln(EPOC + 1) / ln(EPOC_max + 1) logarithmic saturation

The recovery factor (0.85-1.15, above 1.0 when well recovered) is mirrored
into a +/-15% load modulation so the same workout counts harder on a poorly
recovered day, then the result is clamped to 0-18.

Two paths:
    - continuous: HR samples (optionally with power, blended against FTP)
    - fallback: workout summaries (cardio TRIMP, strength sRPE, steps/calories)
      converted to an equivalent TRIMP, then the same EPOC -> strain mapping

Cardio/strength/non-exercise loads (0-100) are also returned as sub-scores
for explainability; they do not feed the strain number.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from services.muscle_groups import MuscleGroup, combined_fatigue_factor
from services.score_types import STRAIN_SCORE_MAX, CompositeScore, ScoreType, clamp

logger = logging.getLogger(__name__)

# TRIMP -> EPOC -> strain
ZONE_WEIGHT_EXPONENT = 2.2
EPOC_COEFFICIENT = 0.15
EPOC_EXPONENT = 1.2
EPOC_MAX = 300.0
FIRST_SAMPLE_SECONDS = 1.0
HR_POWER_BLEND = 0.6  # HR share when power is blended in

# Recovery modulation
RECOVERY_MODULATION_RANGE = 0.15
RECOVERY_SIGNAL_WEIGHTS = {"hrv": 0.6, "rhr": 0.3, "sleep": 0.1}
SLEEP_QUALITY_CENTER = 75.0
SLEEP_QUALITY_SPREAD = 25.0

# Fallback path
WORKOUT_TYPE_MULTIPLIERS = (
    ("run", 1.2),
    ("swim", 1.3),
    ("cycle", 1.0),
    ("bike", 1.0),
    ("walk", 0.6),
    ("hik", 0.9),
    ("row", 1.15),
)
DEFAULT_STRENGTH_RPE = 6.5
STRENGTH_TRIMP_PER_MINUTE = 120.0
MIN_STRENGTH_HR_FRACTION = 0.5
ECCENTRIC_MULTIPLIER = 1.3
CONCURRENT_TRAINING_MULTIPLIER = 1.15
STEP_STRAIN_PER_1000 = 0.5
CALORIES_PER_ACTIVE_MINUTE = 7.5
CALORIE_STRAIN_PER_MINUTE = 0.06
CALORIES_PER_STEP = 0.04
INTENSITY_RATIO_THRESHOLD = 1.5
MAX_INTENSITY_BONUS = 2.0
POOR_RECOVERY_FACTOR = 0.95
MAX_DAILY_ACTIVITY_TRIMP = 7.0

# Explainability sub-scores
CARDIO_SCALE = 18.0
STRENGTH_SCALE = 2.0
NON_EXERCISE_SCALE = 12.0
NON_EXERCISE_DAILY_CAP = 30.0


@dataclass
class HeartRateSample:
    time: float             # seconds since start of day/session
    hr: float
    power: Optional[float] = None


@dataclass
class StrainInputs:
    """A day's load signals. Everything is optional."""
    # Continuous path
    heart_rate_samples: List[HeartRateSample] = field(default_factory=list)
    daily_trimp: Optional[float] = None

    # Cardio
    cardio_trimp: Optional[float] = None
    cardio_duration_minutes: Optional[float] = None
    intensity_factor: Optional[float] = None
    workout_types: List[str] = field(default_factory=list)

    # Strength
    strength_rpe: Optional[float] = None
    strength_duration_minutes: Optional[float] = None
    strength_volume: Optional[float] = None
    strength_sets: Optional[int] = None
    muscle_groups: List[MuscleGroup] = field(default_factory=list)
    eccentric_focused: bool = False

    # Non-exercise
    steps: Optional[int] = None
    active_calories: Optional[float] = None
    non_workout_met_minutes: Optional[float] = None

    # Recovery context
    hrv_overnight: Optional[float] = None
    hrv_baseline: Optional[float] = None
    rhr: Optional[float] = None
    rhr_baseline: Optional[float] = None
    sleep_quality: Optional[float] = None

    # Athlete profile
    ftp: Optional[float] = None
    max_hr: Optional[float] = None
    resting_hr: Optional[float] = None
    body_mass_kg: Optional[float] = None

    def to_snapshot(self) -> Dict[str, object]:
        snapshot = {
            k: v for k, v in self.__dict__.items()
            if k not in ("heart_rate_samples", "muscle_groups", "workout_types")
        }
        snapshot["heart_rate_sample_count"] = len(self.heart_rate_samples)
        snapshot["muscle_groups"] = [g.value for g in self.muscle_groups]
        snapshot["workout_types"] = list(self.workout_types)
        return snapshot


# ----------------------------------------------------------------------
# TRIMP / EPOC / strain primitives
# ----------------------------------------------------------------------

def calculate_trimp(
    samples: Sequence[HeartRateSample],
    resting_hr: Optional[float],
    max_hr: Optional[float],
    ftp: Optional[float] = None,
    exponent: float = ZONE_WEIGHT_EXPONENT,
) -> float:
    """
    Integrate intensity-weighted time over HR samples.

    When a sample carries power and FTP is known, intensity blends heart-rate
    reserve (60%) with power / FTP (40%). Returns 0 without a valid HR range.
    """
    if not samples or resting_hr is None or max_hr is None:
        return 0.0
    if resting_hr <= 0 or max_hr <= resting_hr:
        return 0.0

    reserve = max_hr - resting_hr
    total = 0.0
    previous_time = None
    for sample in samples:
        hrr = clamp((sample.hr - resting_hr) / reserve, 0.0, 1.0)
        intensity = hrr
        if sample.power is not None and ftp and ftp > 0:
            blended = HR_POWER_BLEND * hrr + (1 - HR_POWER_BLEND) * max(0.0, sample.power / ftp)
            intensity = clamp(blended, 0.0, 1.0)

        dt = FIRST_SAMPLE_SECONDS if previous_time is None else sample.time - previous_time
        total += (intensity ** exponent) * max(0.0, dt)
        previous_time = sample.time
    return total


def trimp_to_epoc(trimp: float) -> float:
    if trimp <= 0:
        return 0.0
    return EPOC_COEFFICIENT * trimp ** EPOC_EXPONENT


def epoc_to_strain(epoc: float) -> float:
    """Logarithmic saturation onto 0-18; EPOC_MAX maps to exactly 18."""
    if epoc <= 0:
        return 0.0
    return STRAIN_SCORE_MAX * math.log(epoc + 1.0) / math.log(EPOC_MAX + 1.0)


def recovery_factor(inputs: StrainInputs) -> float:
    """1 + 0.15 * clamped blend of HRV, RHR and sleep deviations."""
    hrv_dev = 0.0
    if inputs.hrv_overnight is not None and inputs.hrv_baseline and inputs.hrv_baseline > 0:
        hrv_dev = (inputs.hrv_overnight - inputs.hrv_baseline) / inputs.hrv_baseline

    rhr_dev = 0.0
    if inputs.rhr is not None and inputs.rhr_baseline and inputs.rhr_baseline > 0:
        rhr_dev = (inputs.rhr_baseline - inputs.rhr) / inputs.rhr_baseline

    sleep_dev = 0.0
    if inputs.sleep_quality is not None:
        sleep_dev = (inputs.sleep_quality - SLEEP_QUALITY_CENTER) / SLEEP_QUALITY_SPREAD

    signal = (
        RECOVERY_SIGNAL_WEIGHTS["hrv"] * hrv_dev
        + RECOVERY_SIGNAL_WEIGHTS["rhr"] * rhr_dev
        + RECOVERY_SIGNAL_WEIGHTS["sleep"] * sleep_dev
    )
    return 1.0 + RECOVERY_MODULATION_RANGE * clamp(signal, -1.0, 1.0)


def load_modulation(rec_factor: float) -> float:
    """Strain multiplier: above 1.0 when recovery is below par, mirrored around 1.0."""
    return 2.0 - rec_factor


def workout_type_multiplier(workout_types: Sequence[str]) -> float:
    """Highest metabolic-cost multiplier across the day's workout types."""
    best = 1.0
    for workout_type in workout_types or []:
        name = workout_type.lower()
        for token, multiplier in WORKOUT_TYPE_MULTIPLIERS:
            if token in name:
                best = max(best, multiplier)
                break
    return best


def strength_session_trimp(
    duration_minutes: float,
    rpe: Optional[float] = None,
    muscle_groups: Sequence[MuscleGroup] = (),
    eccentric_focused: bool = False,
) -> float:
    """Equivalent TRIMP for a strength session from sRPE x duration."""
    if duration_minutes is None or duration_minutes <= 0:
        return 0.0
    rpe = DEFAULT_STRENGTH_RPE if rpe is None else rpe
    hr_fraction = max(MIN_STRENGTH_HR_FRACTION, (rpe - 1.0) / 9.0)
    trimp = (
        hr_fraction
        * duration_minutes
        * STRENGTH_TRIMP_PER_MINUTE
        * combined_fatigue_factor(muscle_groups)
    )
    if eccentric_focused:
        trimp *= ECCENTRIC_MULTIPLIER
    return trimp


def daily_activity_trimp(
    steps: Optional[int],
    active_calories: Optional[float],
    rec_factor: float = 1.0,
) -> float:
    """Non-exercise activity as TRIMP, amplified on poor recovery, capped at 7."""
    step_based = steps / 1000.0 * STEP_STRAIN_PER_1000 if steps and steps > 0 else 0.0
    calorie_based = 0.0
    if active_calories and active_calories > 0:
        calorie_based = active_calories / CALORIES_PER_ACTIVE_MINUTE * CALORIE_STRAIN_PER_MINUTE

    activity = max(step_based, calorie_based)

    if steps and steps > 0 and active_calories and active_calories > 0:
        intensity_ratio = active_calories / (steps * CALORIES_PER_STEP)
        if intensity_ratio > INTENSITY_RATIO_THRESHOLD:
            activity += min(MAX_INTENSITY_BONUS, (intensity_ratio - 1.0) * 1.5)

    if rec_factor < POOR_RECOVERY_FACTOR:
        activity *= 1.0 + (POOR_RECOVERY_FACTOR - rec_factor) * 2.0

    return min(MAX_DAILY_ACTIVITY_TRIMP, activity)


# ----------------------------------------------------------------------
# Explainability loads (0-100)
# ----------------------------------------------------------------------

def cardio_load(inputs: StrainInputs) -> int:
    if not inputs.cardio_trimp or inputs.cardio_trimp <= 0:
        return 0
    score = CARDIO_SCALE * math.log10(inputs.cardio_trimp + 1.0)
    if inputs.cardio_duration_minutes and inputs.cardio_duration_minutes > 60:
        score += min(10.0, (inputs.cardio_duration_minutes - 60) * 0.1)
    if inputs.intensity_factor and inputs.intensity_factor > 0.8:
        score += min(15.0, (inputs.intensity_factor - 0.8) * 75.0)
    return int(clamp(score, 0, 100))


def strength_load(inputs: StrainInputs) -> int:
    rpe = inputs.strength_rpe
    duration = inputs.strength_duration_minutes
    if rpe is None or not duration or duration <= 0 or not (1.0 <= rpe <= 10.0):
        return 0

    load = STRENGTH_SCALE * rpe * duration
    if inputs.strength_volume and inputs.body_mass_kg and inputs.body_mass_kg > 0:
        relative_volume = inputs.strength_volume / inputs.body_mass_kg
        load *= 1.0 + 0.15 * min(2.0, relative_volume ** 0.25)
    if inputs.strength_sets and inputs.strength_sets > 0:
        load *= min(1.3, 1.0 + (inputs.strength_sets - 1) * 0.05)

    return int(clamp(CARDIO_SCALE * 0.8 * math.log10(load + 1.0), 0, 100))


def non_exercise_load(inputs: StrainInputs) -> int:
    total = 0.0
    if inputs.steps and inputs.steps > 0:
        total += 20.0 * inputs.steps / 2000.0
    if inputs.active_calories and inputs.active_calories > 0:
        total += inputs.active_calories * 0.003
    if inputs.non_workout_met_minutes:
        total += inputs.non_workout_met_minutes
    capped = min(total, NON_EXERCISE_DAILY_CAP * 1.5)
    return int(clamp(NON_EXERCISE_SCALE * math.log1p(max(0.0, capped)), 0, 100))


# ----------------------------------------------------------------------
# Calculator
# ----------------------------------------------------------------------

class StrainScoreCalculator:
    """Compute a day's 0-18 strain from continuous HR or workout summaries."""

    def __init__(self, exponent: float = ZONE_WEIGHT_EXPONENT):
        self.exponent = exponent

    def continuous_trimp(self, inputs: StrainInputs) -> Optional[float]:
        """TRIMP from HR samples or a precomputed daily TRIMP; None if neither applies."""
        if inputs.heart_rate_samples and inputs.resting_hr and inputs.max_hr:
            return calculate_trimp(
                inputs.heart_rate_samples,
                inputs.resting_hr,
                inputs.max_hr,
                ftp=inputs.ftp,
                exponent=self.exponent,
            )
        if inputs.daily_trimp is not None and inputs.daily_trimp > 0:
            return inputs.daily_trimp
        return None

    def fallback_trimp(self, inputs: StrainInputs, rec_factor: float) -> Dict[str, float]:
        workout = 0.0
        cardio = 0.0
        if inputs.cardio_trimp and inputs.cardio_trimp > 0:
            cardio = inputs.cardio_trimp * workout_type_multiplier(inputs.workout_types)
            workout += cardio

        strength = strength_session_trimp(
            inputs.strength_duration_minutes,
            inputs.strength_rpe,
            inputs.muscle_groups,
            inputs.eccentric_focused,
        )
        workout += strength

        concurrent = cardio > 0 and strength > 0
        if concurrent:
            workout *= CONCURRENT_TRAINING_MULTIPLIER

        activity = daily_activity_trimp(inputs.steps, inputs.active_calories, rec_factor)
        return {
            "cardio_trimp": cardio,
            "strength_trimp": strength,
            "workout_trimp": workout,
            "daily_activity_trimp": activity,
            "total_trimp": workout + activity,
            "concurrent_training": concurrent,
        }

    def compute(self, inputs: StrainInputs) -> CompositeScore:
        rec_factor = recovery_factor(inputs)
        sub_scores = {
            "cardio_load": cardio_load(inputs),
            "strength_load": strength_load(inputs),
            "non_exercise_load": non_exercise_load(inputs),
            "recovery_factor": round(rec_factor, 3),
        }

        trimp = self.continuous_trimp(inputs)
        if trimp is not None:
            path = "continuous"
            flags = {"path": path, "total_trimp": round(trimp, 2)}
        else:
            path = "fallback"
            breakdown = self.fallback_trimp(inputs, rec_factor)
            trimp = breakdown["total_trimp"]
            flags = {"path": path, **{k: (round(v, 2) if isinstance(v, float) else v)
                                      for k, v in breakdown.items()}}

        epoc = trimp_to_epoc(trimp)
        strain = clamp(epoc_to_strain(epoc) * load_modulation(rec_factor), 0.0, STRAIN_SCORE_MAX)
        flags["epoc"] = round(epoc, 2)

        logger.debug(
            f"Strain ({path}): trimp={trimp:.1f} epoc={epoc:.1f} "
            f"recovery_factor={rec_factor:.3f} strain={strain:.2f}"
        )

        return CompositeScore.build(
            ScoreType.STRAIN,
            strain,
            sub_scores=sub_scores,
            inputs=inputs.to_snapshot(),
            flags=flags,
            calculated_at=datetime.now(timezone.utc),
        )


def calculate_strain(inputs: StrainInputs) -> CompositeScore:
    return StrainScoreCalculator().compute(inputs)
