"""
Tests for the composite score value object: clamping, rounding and bands.
"""

import pytest

from services.score_types import (
    CompositeScore,
    ReadinessBand,
    RecoveryBand,
    ScoreType,
    SleepBand,
    round_half_up,
    truncate_score,
)


class TestRounding:
    @pytest.mark.parametrize(
        "value,expected",
        [(82.5, 83), (83.5, 84), (82.49, 82), (0.5, 1), (0.35 * 70 + 58.0, 83)],
    )
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [(97.6, 97), (79.99, 79), (80.0, 80), (0.3 * 100 + 0.7 * 100, 100), (0.0, 0)],
    )
    def test_truncate_score(self, value, expected):
        assert truncate_score(value) == expected


class TestBuild:
    def test_readiness_ties_round_up(self):
        score = CompositeScore.build(ScoreType.READINESS, 79.5)
        assert score.score == 80.0
        assert score.band == ReadinessBand.FULLY_READY

    def test_recovery_and_sleep_truncate(self):
        recovery = CompositeScore.build(ScoreType.RECOVERY, 79.9)
        sleep = CompositeScore.build(ScoreType.SLEEP, 59.7)

        assert recovery.score == 79.0
        assert recovery.band == RecoveryBand.GOOD
        assert sleep.score == 59.0
        assert sleep.band == SleepBand.FAIR

    def test_strain_keeps_one_decimal(self):
        assert CompositeScore.build(ScoreType.STRAIN, 9.04).score == 9.0

    def test_out_of_domain_is_clamped(self):
        assert CompositeScore.build(ScoreType.RECOVERY, 130).score == 100.0
        assert CompositeScore.build(ScoreType.SLEEP, -4).score == 0.0

    def test_flags_are_read_only(self):
        score = CompositeScore.build(ScoreType.RECOVERY, 70, flags={"a": True})
        with pytest.raises(TypeError):
            score.flags["b"] = True
