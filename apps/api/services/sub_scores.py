"""
Sub-Score Calculators

Pure functions mapping one physiological signal and its rolling baseline to
an integer 0-100 sub-score. Each curve is asymmetric and piecewise:

    - at or better than baseline -> 100
    - graduated degradation bands, each steeper than the last
    - missing value or baseline <= 0 -> NEUTRAL_SUB_SCORE (50), never an error

Thresholds are empirically tuned constants. They are kept as named module
constants so callers can read them, not re-derived.
"""

from typing import Optional

NEUTRAL_SUB_SCORE = 50

# HRV drop bands: (max fractional drop, floor, start score, slope)
HRV_DROP_BANDS = (
    (0.10, 85, 100, 150),
    (0.20, 60, 85, 250),
    (0.35, 30, 60, 200),
)
HRV_TAIL = (0, 30, 60)  # floor, start score, slope beyond the last band

# RHR rise bands: (max fractional rise, floor, start score, slope)
RHR_RISE_BANDS = (
    (0.08, 88, 100, 150),
    (0.15, 67, 88, 300),
    (0.25, 37, 67, 300),
)
RHR_TAIL = (0, 37, 100)

# Respiratory rate tolerance around baseline (fractional)
RESPIRATORY_NORMAL_BAND = 0.05
RESPIRATORY_MARKED_BAND = 0.15

# ATL/CTL ratio cut points for the form sub-score
FORM_FRESH_RATIO = 1.0
FORM_FATIGUED_RATIO = 1.5


def _is_usable(value: Optional[float], baseline: Optional[float]) -> bool:
    return value is not None and baseline is not None and baseline > 0


def _banded(
    deviation: float,
    bands,
    tail,
) -> int:
    """Walk graduated bands; each band starts where the previous one ended."""
    lower = 0.0
    for upper, floor, start, slope in bands:
        if deviation <= upper:
            return max(floor, int(start - (deviation - lower) * slope))
        lower = upper
    floor, start, slope = tail
    return max(floor, int(start - (deviation - lower) * slope))


def hrv_sub_score(hrv: Optional[float], baseline: Optional[float]) -> int:
    """Score HRV against baseline. Only drops are penalised."""
    if not _is_usable(hrv, baseline):
        return NEUTRAL_SUB_SCORE

    pct_change = (hrv - baseline) / baseline
    if pct_change >= 0:
        return 100
    return _banded(abs(pct_change), HRV_DROP_BANDS, HRV_TAIL)


def rhr_sub_score(rhr: Optional[float], baseline: Optional[float]) -> int:
    """Score resting HR against baseline. Only rises are penalised."""
    if not _is_usable(rhr, baseline):
        return NEUTRAL_SUB_SCORE

    pct_change = (rhr - baseline) / baseline
    if pct_change <= 0:
        return 100
    return _banded(pct_change, RHR_RISE_BANDS, RHR_TAIL)


def sleep_duration_sub_score(
    duration_hours: Optional[float],
    need_hours: Optional[float],
) -> int:
    """Sleep performance: actual / need, capped at 100."""
    if not _is_usable(duration_hours, need_hours):
        return NEUTRAL_SUB_SCORE
    return int(max(0.0, min(100.0, duration_hours / need_hours * 100.0)))


def respiratory_sub_score(rate: Optional[float], baseline: Optional[float]) -> int:
    """
    Respiratory rate deviation is bad in both directions.

    Elevation is the stronger signal (illness, overreaching), so rises are
    penalised harder than equivalent drops.
    """
    if not _is_usable(rate, baseline):
        return NEUTRAL_SUB_SCORE

    pct_change = (rate - baseline) / baseline

    if pct_change > RESPIRATORY_MARKED_BAND:
        return max(0, int(50 - pct_change * 200))
    if pct_change > RESPIRATORY_NORMAL_BAND:
        return max(50, int(100 - (pct_change - RESPIRATORY_NORMAL_BAND) * 500))
    if pct_change >= -RESPIRATORY_NORMAL_BAND:
        return 100

    drop = abs(pct_change)
    if drop <= RESPIRATORY_MARKED_BAND:
        return max(70, int(100 - (drop - RESPIRATORY_NORMAL_BAND) * 300))
    return max(40, int(70 - (drop - RESPIRATORY_MARKED_BAND) * 200))


def recent_strain_penalty(recent_tss: Optional[float]) -> float:
    """Extra form penalty for a heavy session in the last day (TSS units)."""
    if not recent_tss or recent_tss <= 0:
        return 0.0
    if recent_tss < 50:
        return 0.0
    if recent_tss < 100:
        return (recent_tss - 50) * 0.2
    if recent_tss < 200:
        return 10 + (recent_tss - 100) * 0.15
    return min(40.0, 25 + (recent_tss - 200) * 0.1)


def form_sub_score(
    atl: Optional[float],
    ctl: Optional[float],
    recent_tss: Optional[float] = None,
) -> int:
    """Training form from the acute:chronic load ratio, minus a recent-strain penalty."""
    if not _is_usable(atl, ctl):
        return NEUTRAL_SUB_SCORE

    ratio = atl / ctl
    if ratio < FORM_FRESH_RATIO:
        score = 100
    elif ratio < FORM_FATIGUED_RATIO:
        score = max(50, int(100 - (ratio - FORM_FRESH_RATIO) * 100))
    else:
        score = max(0, int(50 - (ratio - FORM_FATIGUED_RATIO) * 50))

    penalty = recent_strain_penalty(recent_tss)
    return int(max(0.0, min(100.0, score - penalty)))
