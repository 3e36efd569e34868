"""
Tests for the Strain / Load model (TRIMP -> EPOC -> 0-18 strain).
"""

import math

import pytest

from services.muscle_groups import MuscleGroup
from services.score_types import ScoreType, StrainBand
from services.strain_score import (
    CONCURRENT_TRAINING_MULTIPLIER,
    EPOC_MAX,
    HeartRateSample,
    StrainInputs,
    StrainScoreCalculator,
    calculate_strain,
    calculate_trimp,
    daily_activity_trimp,
    epoc_to_strain,
    load_modulation,
    recovery_factor,
    strength_session_trimp,
    trimp_to_epoc,
    workout_type_multiplier,
)


class TestTrimp:
    def test_first_sample_counts_one_second(self):
        samples = [HeartRateSample(time=0, hr=120), HeartRateSample(time=60, hr=120)]
        expected = (70 / 140) ** 2.2 * 61
        assert calculate_trimp(samples, resting_hr=50, max_hr=190) == pytest.approx(expected)

    def test_higher_intensity_is_superlinear(self):
        easy = calculate_trimp([HeartRateSample(0, 120), HeartRateSample(600, 120)], 50, 190)
        hard = calculate_trimp([HeartRateSample(0, 190), HeartRateSample(600, 190)], 50, 190)
        assert hard > 4 * easy

    def test_invalid_hr_range_returns_zero(self):
        samples = [HeartRateSample(0, 150), HeartRateSample(60, 150)]
        assert calculate_trimp(samples, resting_hr=60, max_hr=55) == 0.0
        assert calculate_trimp(samples, resting_hr=None, max_hr=190) == 0.0
        assert calculate_trimp([], resting_hr=50, max_hr=190) == 0.0

    def test_power_blended_when_ftp_known(self):
        samples = [HeartRateSample(0, 120, power=250), HeartRateSample(60, 120, power=250)]
        hr_only = calculate_trimp(samples, 50, 190)
        blended = calculate_trimp(samples, 50, 190, ftp=250)
        assert blended > hr_only


class TestEpocAndStrain:
    def test_zero_maps_to_zero(self):
        assert trimp_to_epoc(0) == 0.0
        assert epoc_to_strain(0) == 0.0

    def test_epoc_power_law(self):
        assert trimp_to_epoc(100) == pytest.approx(0.15 * 100 ** 1.2)

    def test_epoc_max_maps_to_eighteen(self):
        assert epoc_to_strain(EPOC_MAX) == pytest.approx(18.0)

    def test_logarithmic_saturation(self):
        assert epoc_to_strain(50) == pytest.approx(18 * math.log(51) / math.log(301))
        assert epoc_to_strain(200) - epoc_to_strain(100) < epoc_to_strain(100) - epoc_to_strain(0)


class TestRecoveryModulation:
    def test_neutral_without_signals(self):
        assert recovery_factor(StrainInputs()) == 1.0

    def test_poor_recovery_lowers_factor(self):
        inputs = StrainInputs(hrv_overnight=35, hrv_baseline=50, rhr=55, rhr_baseline=50, sleep_quality=50)
        factor = recovery_factor(inputs)
        assert factor == pytest.approx(1 - 0.15 * 0.31)
        assert load_modulation(factor) > 1.0

    def test_factor_bounded(self):
        inputs = StrainInputs(hrv_overnight=5, hrv_baseline=50, rhr=100, rhr_baseline=50, sleep_quality=0)
        assert recovery_factor(inputs) == pytest.approx(0.85)

    def test_same_load_counts_harder_when_poorly_recovered(self):
        rested = calculate_strain(StrainInputs(daily_trimp=150, hrv_overnight=60, hrv_baseline=50))
        tired = calculate_strain(StrainInputs(daily_trimp=150, hrv_overnight=35, hrv_baseline=50))
        assert tired.score > rested.score


class TestFallbackComponents:
    def test_strength_session_trimp(self):
        trimp = strength_session_trimp(30, rpe=7, muscle_groups=[MuscleGroup.LEGS])
        assert trimp == pytest.approx((6 / 9) * 30 * 120 * 1.5)

    def test_eccentric_focus_multiplier(self):
        base = strength_session_trimp(30, rpe=7)
        eccentric = strength_session_trimp(30, rpe=7, eccentric_focused=True)
        assert eccentric == pytest.approx(base * 1.3)

    def test_no_duration_no_strength_trimp(self):
        assert strength_session_trimp(0, rpe=9) == 0.0

    def test_daily_activity_from_steps(self):
        assert daily_activity_trimp(10000, None) == pytest.approx(5.0)

    def test_daily_activity_capped(self):
        assert daily_activity_trimp(40000, None) == 7.0

    def test_high_intensity_bonus(self):
        # steps 0.5, calories 1.6, bonus capped at 2.0
        assert daily_activity_trimp(1000, 200) == pytest.approx(3.6)

    def test_workout_type_multiplier(self):
        assert workout_type_multiplier(["Morning Run"]) == 1.2
        assert workout_type_multiplier(["walk", "swim"]) == 1.3
        assert workout_type_multiplier([]) == 1.0


class TestStrainScoreCalculator:
    def test_no_load_is_zero(self):
        result = StrainScoreCalculator().compute(StrainInputs())

        assert result.score_type == ScoreType.STRAIN
        assert result.score == 0.0
        assert result.band == StrainBand.LOW
        assert result.flags["path"] == "fallback"

    def test_continuous_path_preferred(self):
        samples = [HeartRateSample(t, 160) for t in range(0, 3601, 5)]
        result = calculate_strain(StrainInputs(
            heart_rate_samples=samples, resting_hr=50, max_hr=190, cardio_trimp=5,
        ))

        assert result.flags["path"] == "continuous"
        assert 0 < result.score <= 18.0
        assert result.inputs["heart_rate_sample_count"] == len(samples)

    def test_concurrent_training_flagged(self):
        calculator = StrainScoreCalculator()
        inputs = StrainInputs(
            cardio_trimp=100, workout_types=["cycle"],
            strength_duration_minutes=30, strength_rpe=7,
        )
        breakdown = calculator.fallback_trimp(inputs, 1.0)

        assert breakdown["concurrent_training"] is True
        expected = (100 + strength_session_trimp(30, 7)) * CONCURRENT_TRAINING_MULTIPLIER
        assert breakdown["workout_trimp"] == pytest.approx(expected)
        assert calculator.compute(inputs).flags["concurrent_training"] is True

    def test_extreme_load_clamped(self):
        result = calculate_strain(StrainInputs(daily_trimp=10000))
        assert result.score == 18.0
        assert result.band == StrainBand.EXTREME

    def test_more_load_more_strain(self):
        scores = [calculate_strain(StrainInputs(daily_trimp=t)).score for t in (20, 60, 120, 250)]
        assert scores == sorted(scores)

    def test_explainability_sub_scores(self):
        result = calculate_strain(StrainInputs(
            cardio_trimp=120, cardio_duration_minutes=90, intensity_factor=0.9,
            strength_rpe=8, strength_duration_minutes=45, steps=9000,
        ))
        for key in ("cardio_load", "strength_load", "non_exercise_load"):
            assert 0 <= result.sub_scores[key] <= 100
        assert result.sub_scores["cardio_load"] > 0
        assert result.sub_scores["recovery_factor"] == 1.0
