"""
Tests for FTP / HR-zone / VO2max estimation.

Covers:
- Power-duration scan, candidates, confidence buffer, clamp, smoothing
- Ultra-endurance boost and weighting
- Max HR, LTHR detection and adaptive vs percentage zones
- Profile-level estimation honoring manual overrides and default sources
"""

from datetime import datetime, timedelta, timezone

import pytest

from services.athlete_profile import AthleteProfile, MetricSource, Sex
from services.performance_estimator import (
    FTPEstimator,
    HRZoneEstimator,
    PerformanceEstimator,
    adaptive_hr_zones,
    assess_data_quality,
    confidence_buffer,
    default_ftp,
    default_vo2max,
    detect_lthr,
    estimate_ftp_from_hr,
    estimate_vo2max_from_hr,
    estimate_w_prime,
    has_power_meter_data,
    historical_ftp,
    percentage_hr_zones,
    power_zones,
    scan_power_durations,
    smoothing_ratio,
    vo2max_from_ftp,
)

NOW = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def single_twenty(activity):
    return [activity(NOW - timedelta(days=3), 1200, power=250)]


@pytest.fixture
def full_power_curve(activity):
    return [
        activity(NOW - timedelta(days=10), 3600, power=250),
        activity(NOW - timedelta(days=6), 1200, power=270),
        activity(NOW - timedelta(days=2), 300, power=330),
    ]


class TestPowerDurationScan:
    def test_single_twenty_minute_effort_also_counts_as_five_minute(self, single_twenty):
        bests = scan_power_durations(single_twenty)

        assert bests.best_60min == 0
        assert bests.best_20min == 250
        assert bests.best_5min == 250
        assert bests.max_power == 250
        assert not bests.ultra_endurance

    def test_normalized_power_preferred(self, activity):
        bests = scan_power_durations([activity(NOW, 3600, power=220, normalized_power=240)])
        assert bests.best_60min == 240

    def test_ultra_ride_boosted(self, activity):
        bests = scan_power_durations([activity(NOW, 5 * 3600, normalized_power=200)])

        assert bests.best_60min == pytest.approx(224.0)
        assert bests.ultra_boost == 1.12
        assert bests.ultra_endurance


class TestFTPEstimator:
    def test_single_twenty_minute_effort(self, single_twenty):
        estimate = FTPEstimator().estimate(single_twenty)

        # (237.5 * 0.9 + 217.5 * 0.6) / 1.5 = 229.5, low confidence buffer
        assert estimate.weighted_ftp == pytest.approx(229.5)
        assert estimate.confidence == pytest.approx(0.6)
        assert estimate.buffer == 1.05
        assert estimate.ftp == pytest.approx(240.975)
        assert 212.5 <= estimate.ftp <= 262.5
        assert estimate.smoothing is None

    def test_clamped_to_max_power_band(self, full_power_curve):
        estimate = FTPEstimator().estimate(full_power_curve)

        assert estimate.confidence == 1.0
        assert estimate.buffer == 1.02
        assert estimate.ftp == pytest.approx(0.85 * 330)

    def test_smoothing_against_previous(self, single_twenty):
        estimate = FTPEstimator().estimate(single_twenty, previous_ftp=200)

        assert estimate.smoothing == (0.7, 0.3)
        assert estimate.ftp == pytest.approx(200 * 0.7 + 240.975 * 0.3)
        assert estimate.unsmoothed_ftp == pytest.approx(240.975)

    def test_ultra_endurance_smoothing_is_even(self, activity):
        rides = [
            activity(NOW - timedelta(days=5), 5 * 3600, normalized_power=200),
            activity(NOW - timedelta(days=2), 1200, power=215),
        ]
        estimate = FTPEstimator().estimate(rides, previous_ftp=250)

        assert estimate.bests.ultra_endurance
        assert estimate.confidence == 1.0
        assert estimate.smoothing == (0.5, 0.5)
        weights = {c.method: c.weight for c in estimate.candidates}
        assert weights["60min"] == 1.5

    def test_no_power_returns_none(self, activity):
        assert FTPEstimator().estimate([activity(NOW, 3600, average_hr=140, max_hr=170)]) is None

    def test_only_short_efforts_returns_none(self, activity):
        assert FTPEstimator().estimate([activity(NOW, 120, power=400)]) is None

    def test_deterministic(self, full_power_curve):
        a = FTPEstimator().estimate(full_power_curve, previous_ftp=260)
        b = FTPEstimator().estimate(full_power_curve, previous_ftp=260)
        assert a.ftp == b.ftp

    def test_historical_ftp_skips_clamp(self, single_twenty):
        assert historical_ftp(single_twenty) == pytest.approx(229.5 * 1.02)
        assert historical_ftp([]) is None


class TestConfidenceHelpers:
    @pytest.mark.parametrize("confidence,expected", [(1.0, 1.02), (0.9, 1.02), (0.75, 1.03), (0.4, 1.05)])
    def test_buffer(self, confidence, expected):
        assert confidence_buffer(confidence) == expected

    def test_smoothing_ratio(self):
        assert smoothing_ratio(True, 0.95) == (0.5, 0.5)
        assert smoothing_ratio(False, 0.95) == (0.6, 0.4)
        assert smoothing_ratio(True, 0.5) == (0.7, 0.3)


class TestZones:
    def test_power_zones(self):
        zones = power_zones(200)
        assert len(zones) == 7
        assert zones[4] == pytest.approx(210)

    def test_adaptive_zones_ascending(self):
        zones = adaptive_hr_zones(190, 170)

        assert zones == pytest.approx([0.0, 129.2, 155.72, 165.0, 177.0, 184.0, 190.0])
        assert zones == sorted(zones)

    def test_adaptive_zones_narrow_top(self):
        zones = adaptive_hr_zones(180, 170)
        assert zones[4] == pytest.approx(170 + 10 / 3)
        assert zones[5] == pytest.approx(170 + 20 / 3)

    def test_percentage_zones(self):
        zones = percentage_hr_zones(200)
        assert zones[1] == pytest.approx(136)
        assert zones[-1] == 200


class TestHRZoneEstimator:
    @pytest.fixture
    def hr_rides(self, activity):
        return [
            activity(NOW - timedelta(days=9), 7200, average_hr=140, max_hr=190),
            activity(NOW - timedelta(days=7), 1800, average_hr=160, max_hr=168),
            activity(NOW - timedelta(days=5), 1800, average_hr=162, max_hr=170),
            activity(NOW - timedelta(days=3), 1800, average_hr=165, max_hr=172),
        ]

    def test_max_hr_and_lthr(self, hr_rides):
        estimate = HRZoneEstimator().estimate(hr_rides)

        assert estimate.max_hr == pytest.approx(193.8)
        assert estimate.lthr == 172
        assert estimate.lthr_method == "sustained_median"
        assert estimate.adaptive is True
        assert estimate.zones[-1] == pytest.approx(193.8)

    def test_max_hr_smoothed(self, hr_rides):
        estimate = HRZoneEstimator().estimate(hr_rides, previous_max_hr=185)

        assert estimate.max_hr == pytest.approx(185 * 0.8 + 193.8 * 0.2)
        assert estimate.unsmoothed_max_hr == pytest.approx(193.8)

    def test_no_threshold_efforts_uses_percentage_zones(self, activity):
        rides = [activity(NOW, 600, max_hr=150), activity(NOW, 900, max_hr=120)]
        estimate = HRZoneEstimator().estimate(rides)

        assert estimate.lthr is None
        assert estimate.adaptive is False
        assert estimate.zones == pytest.approx(percentage_hr_zones(153.0))

    def test_no_hr_data(self, activity):
        assert HRZoneEstimator().estimate([activity(NOW, 3600, power=200)]) is None

    def test_lthr_trimmed_mean_fallback(self, activity):
        rides = [
            activity(NOW, 5400, normalized_power=240, max_hr=178),
            activity(NOW, 5400, normalized_power=250, max_hr=180),
        ]
        lthr, method = detect_lthr(rides, 190, ftp=250)
        assert method == "trimmed_mean"
        assert lthr == pytest.approx(179)


class TestAuxiliaryEstimates:
    def test_vo2max_from_ftp(self):
        assert vo2max_from_ftp(250, 75) == pytest.approx(250 / 75 * 10.8 + 7)

    def test_w_prime(self, activity):
        rides = [activity(NOW, 300, power=330), activity(NOW, 3600, power=260)]
        assert estimate_w_prime(rides, 250) == pytest.approx(24000)
        assert estimate_w_prime(rides, 400) is None

    def test_hr_only_ftp(self):
        assert estimate_ftp_from_hr(190, 161.5, 70) == pytest.approx(175)
        assert estimate_ftp_from_hr(190, 200, 70) is None

    def test_vo2max_from_hr(self):
        assert estimate_vo2max_from_hr(190, 50) == pytest.approx(15.3 * 3.8)
        assert estimate_vo2max_from_hr(0) is None

    def test_defaults(self):
        assert default_ftp(70) == 175
        assert default_ftp(None) == 200
        assert default_vo2max(30, Sex.FEMALE) == 42.5
        assert default_vo2max(None, None) == 50.0
        assert default_vo2max(90, Sex.MALE) == 25.0

    def test_power_meter_detection(self, activity):
        assert has_power_meter_data([activity(NOW, 600, power=200)] * 3)
        assert not has_power_meter_data([activity(NOW, 600, power=200)] * 2)

    def test_data_quality_variability(self, activity):
        steady = assess_data_quality([activity(NOW, 1800, power=200)] * 3)
        uneven = assess_data_quality([activity(NOW, 1800, power=100), activity(NOW, 1800, power=300)])

        assert steady.variability_index == 0
        assert uneven.variability_index == pytest.approx(0.5)
        assert steady.confidence > uneven.confidence

    def test_data_quality_flags(self, activity):
        quality = assess_data_quality([activity(NOW, 1800, average_hr=140, max_hr=170)])
        assert "no_power_data" in quality.flags
        assert "small_sample" in quality.flags
        assert "no_hr_data" not in quality.flags
        assert quality.has_hr_data


class TestPerformanceEstimator:
    def test_manual_ftp_never_overwritten(self, single_twenty):
        profile = AthleteProfile(athlete_id="a1", ftp=300, ftp_source=MetricSource.MANUAL, weight_kg=70)
        updated = PerformanceEstimator().estimate(single_twenty, profile, now=NOW)

        assert updated.ftp == 300
        assert updated.ftp_source == MetricSource.MANUAL
        assert updated.vo2max == pytest.approx(vo2max_from_ftp(300, 70))

    def test_default_ftp_not_used_for_smoothing(self, single_twenty):
        profile = AthleteProfile(athlete_id="a1", ftp=187.5, ftp_source=MetricSource.COGGAN)
        updated = PerformanceEstimator().estimate(single_twenty, profile, now=NOW)

        assert updated.ftp == pytest.approx(240.975)
        assert updated.ftp_source == MetricSource.COMPUTED
        assert len(updated.power_zones) == 7
        assert updated.last_computed == NOW

    def test_previous_profile_not_mutated(self, single_twenty):
        profile = AthleteProfile(athlete_id="a1", ftp=220, weight_kg=70)
        PerformanceEstimator().estimate(single_twenty, profile, now=NOW)

        assert profile.ftp == 220
        assert profile.last_updated is None

    def test_missing_power_leaves_ftp_and_flags_it(self, activity):
        profile = AthleteProfile(athlete_id="a1", ftp=230)
        rides = [activity(NOW, 1800, average_hr=150, max_hr=175)]
        updated = PerformanceEstimator().estimate(rides, profile, now=NOW)

        assert updated.ftp == 230
        assert "ftp_not_estimated" in updated.data_quality.flags
        assert updated.max_hr == pytest.approx(175 * 1.02)
        assert updated.last_updated == NOW

    @pytest.fixture
    def hr_only_rides(self, activity):
        return [
            activity(NOW - timedelta(days=9), 7200, average_hr=140, max_hr=190),
            activity(NOW - timedelta(days=5), 1800, average_hr=162, max_hr=170),
            activity(NOW - timedelta(days=3), 1800, average_hr=165, max_hr=172),
        ]

    def test_hr_only_athlete_gets_ftp_and_vo2_from_hr(self, hr_only_rides):
        profile = AthleteProfile(
            athlete_id="a1", ftp=175, ftp_source=MetricSource.COGGAN,
            max_hr_source=MetricSource.COGGAN, weight_kg=70, resting_hr=50,
        )
        updated = PerformanceEstimator().estimate(hr_only_rides, profile, now=NOW)

        assert updated.lthr == 172
        assert updated.ftp_source == MetricSource.COMPUTED
        assert updated.ftp == pytest.approx(estimate_ftp_from_hr(193.8, 172, 70))
        assert updated.vo2max == pytest.approx(estimate_vo2max_from_hr(193.8, 50))
        assert "ftp_not_estimated" not in updated.data_quality.flags

    def test_hr_fallback_respects_manual_ftp(self, hr_only_rides):
        profile = AthleteProfile(
            athlete_id="a1", ftp=310, ftp_source=MetricSource.MANUAL,
            max_hr_source=MetricSource.COGGAN, weight_kg=70, resting_hr=50,
        )
        updated = PerformanceEstimator().estimate(hr_only_rides, profile, now=NOW)

        assert updated.ftp == 310
        assert updated.ftp_source == MetricSource.MANUAL

    def test_power_meter_athlete_skips_hr_fallback(self, activity):
        profile = AthleteProfile(athlete_id="a1", ftp=175, ftp_source=MetricSource.COGGAN, weight_kg=70)
        rides = [activity(NOW - timedelta(days=d), 240, power=150, max_hr=170) for d in (1, 2, 3)]
        updated = PerformanceEstimator().estimate(rides, profile, now=NOW)

        assert updated.ftp == 175
        assert updated.ftp_source == MetricSource.COGGAN
        assert "ftp_not_estimated" in updated.data_quality.flags

    def test_empty_history_is_a_no_op(self):
        profile = AthleteProfile(athlete_id="a1", ftp=230, max_hr=185)
        updated = PerformanceEstimator().estimate([], profile, now=NOW)

        assert updated.ftp == 230
        assert updated.max_hr == 185
        assert updated.data_quality is None
        assert updated.last_computed is None
