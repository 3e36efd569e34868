"""
Legacy band-name migration.

Scores persisted by older clients carry band names that no longer exist
("Excellent", "Green", "Amber"...). Decoding goes through an explicit
versioned table here so the band enums themselves stay free of legacy names.

Schema versions:
    1 - title-cased names, traffic-light recovery bands, "Excellent"/"Poor" sleep
    2 - current snake_case enum values (CompositeScore.to_dict)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from services.score_types import (
    BAND_ENUM_FOR_SCORE_TYPE,
    BAND_FOR_SCORE_TYPE,
    CompositeScore,
    ScoreType,
    OrderedBand,
    clamp,
    score_domain,
)

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 2

# version -> score type -> legacy name -> current enum value
LEGACY_BAND_MIGRATIONS: Dict[int, Dict[ScoreType, Dict[str, str]]] = {
    1: {
        ScoreType.SLEEP: {
            "Excellent": "optimal",
            "Optimal": "optimal",
            "Good": "good",
            "Fair": "fair",
            "Poor": "pay_attention",
            "Pay Attention": "pay_attention",
        },
        ScoreType.RECOVERY: {
            "Green": "optimal",
            "Optimal": "optimal",
            "Good": "good",
            "Amber": "fair",
            "Fair": "fair",
            "Red": "pay_attention",
            "Pay Attention": "pay_attention",
        },
        ScoreType.STRAIN: {
            "Low": "low",
            "Light": "low",
            "Moderate": "moderate",
            "High": "high",
            "Extreme": "extreme",
            "All Out": "extreme",
        },
        ScoreType.READINESS: {
            "Fully Ready": "fully_ready",
            "Ready": "ready",
            "Compromised": "compromised",
            "Not Ready": "not_ready",
        },
    },
}


def migrate_band_name(
    score_type: ScoreType,
    raw_band: Optional[str],
    schema_version: int = 1,
) -> Optional[OrderedBand]:
    """
    Map a stored band name onto the current enum.

    Returns None when the name is unknown for every version up to
    schema_version; callers then derive the band from the numeric score.
    """
    if raw_band is None:
        return None

    band_enum = BAND_ENUM_FOR_SCORE_TYPE[score_type]
    try:
        return band_enum(raw_band)
    except ValueError:
        pass

    # Newest table first so a rename in a later version wins.
    for version in sorted(LEGACY_BAND_MIGRATIONS, reverse=True):
        if version > schema_version:
            continue
        mapped = LEGACY_BAND_MIGRATIONS[version].get(score_type, {}).get(raw_band)
        if mapped is not None:
            return band_enum(mapped)
    return None


def decode_composite(payload: Mapping[str, Any]) -> CompositeScore:
    """Rebuild a CompositeScore from a stored dict of any schema version."""
    score_type = ScoreType(str(payload["score_type"]).lower())
    version = int(payload.get("schema_version", 1))
    score = clamp(float(payload.get("score", 0.0)), 0.0, score_domain(score_type))

    band = migrate_band_name(score_type, payload.get("band"), version)
    if band is None:
        logger.info(
            f"Unknown {score_type.value} band {payload.get('band')!r} "
            f"(schema v{version}); deriving from score"
        )
        band = BAND_FOR_SCORE_TYPE[score_type](score)

    calculated_at = payload.get("calculated_at")
    if isinstance(calculated_at, str):
        calculated_at = datetime.fromisoformat(calculated_at)
    elif not isinstance(calculated_at, datetime):
        calculated_at = datetime.now(timezone.utc)

    return CompositeScore(
        score_type=score_type,
        score=score,
        band=band,
        sub_scores=payload.get("sub_scores") or {},
        inputs=payload.get("inputs") or {},
        weights=payload.get("weights") or {},
        flags=payload.get("flags") or {},
        calculated_at=calculated_at,
        illness_detected=bool(payload.get("illness_detected", False)),
        illness_severity=payload.get("illness_severity"),
        strategy=payload.get("strategy", "rule_based"),
    )
