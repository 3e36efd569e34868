"""
Tests for decoding stored scores with legacy band names.
"""

from datetime import datetime, timezone

import pytest

from services.band_migration import decode_composite, migrate_band_name
from services.score_types import (
    CompositeScore,
    RecoveryBand,
    ScoreType,
    SleepBand,
    StrainBand,
    recovery_band,
    strain_band,
)


class TestMigrateBandName:
    @pytest.mark.parametrize(
        "score_type,raw,expected",
        [
            (ScoreType.SLEEP, "Excellent", SleepBand.OPTIMAL),
            (ScoreType.SLEEP, "Poor", SleepBand.PAY_ATTENTION),
            (ScoreType.RECOVERY, "Green", RecoveryBand.OPTIMAL),
            (ScoreType.RECOVERY, "Amber", RecoveryBand.FAIR),
            (ScoreType.RECOVERY, "Red", RecoveryBand.PAY_ATTENTION),
            (ScoreType.STRAIN, "Light", StrainBand.LOW),
            (ScoreType.STRAIN, "All Out", StrainBand.EXTREME),
        ],
    )
    def test_legacy_names(self, score_type, raw, expected):
        assert migrate_band_name(score_type, raw) == expected

    def test_current_names_pass_through(self):
        assert migrate_band_name(ScoreType.RECOVERY, "good", schema_version=2) == RecoveryBand.GOOD

    def test_unknown_name(self):
        assert migrate_band_name(ScoreType.RECOVERY, "Purple") is None
        assert migrate_band_name(ScoreType.RECOVERY, None) is None


class TestDecodeComposite:
    def test_legacy_payload(self):
        decoded = decode_composite({
            "score_type": "Recovery",
            "score": 72,
            "band": "Amber",
            "calculated_at": "2025-03-01T07:00:00+00:00",
        })

        assert decoded.score_type == ScoreType.RECOVERY
        assert decoded.band == RecoveryBand.FAIR
        assert decoded.calculated_at == datetime(2025, 3, 1, 7, tzinfo=timezone.utc)

    def test_unknown_band_derived_from_score(self):
        decoded = decode_composite({"score_type": "strain", "score": 12.3, "band": "Brutal"})
        assert decoded.band == strain_band(12.3) == StrainBand.HIGH

    def test_current_payload_survives(self):
        original = CompositeScore.build(
            ScoreType.RECOVERY, 64, sub_scores={"hrv": 60}, flags={"alcohol_detected": True},
        )
        decoded = decode_composite(original.to_dict())

        assert decoded.score == original.score
        assert decoded.band == recovery_band(64)
        assert decoded.sub_scores == {"hrv": 60}
        assert decoded.flags["alcohol_detected"] is True

    def test_score_clamped_to_domain(self):
        decoded = decode_composite({"score_type": "strain", "score": 25})
        assert decoded.score == 18.0
        assert decoded.band == StrainBand.EXTREME
