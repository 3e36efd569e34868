from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List, Dict, Any, Literal


# ---------------------------------------------------------------------------
# Score requests
# ---------------------------------------------------------------------------

class IllnessIndicatorIn(BaseModel):
    severity: Literal["low", "moderate", "high"]
    confidence: float = Field(ge=0, le=1)
    signals: List[str] = []
    recommendation: Optional[str] = None


class RecoveryRequest(BaseModel):
    athlete_id: Optional[str] = None
    hrv: Optional[float] = None
    overnight_hrv: Optional[float] = None
    hrv_baseline: Optional[float] = None
    rhr: Optional[float] = None
    rhr_baseline: Optional[float] = None
    sleep_duration: Optional[float] = None  # hours
    sleep_baseline: Optional[float] = None  # hours
    sleep_score: Optional[float] = None
    respiratory_rate: Optional[float] = None
    respiratory_baseline: Optional[float] = None
    atl: Optional[float] = None
    ctl: Optional[float] = None
    recent_strain: Optional[float] = None  # yesterday's TSS
    illness: Optional[IllnessIndicatorIn] = None


class SleepRequest(BaseModel):
    athlete_id: Optional[str] = None
    sleep_duration: Optional[float] = None  # hours
    time_in_bed: Optional[float] = None
    sleep_need: Optional[float] = None
    deep_sleep_duration: Optional[float] = None
    rem_sleep_duration: Optional[float] = None
    core_sleep_duration: Optional[float] = None
    awake_duration: Optional[float] = None
    wake_events: Optional[int] = None
    bedtime_deviation_minutes: Optional[float] = None
    wake_time_deviation_minutes: Optional[float] = None
    hrv_overnight: Optional[float] = None
    hrv_baseline: Optional[float] = None
    date: Optional[datetime] = None


class HeartRateSampleIn(BaseModel):
    time: float  # seconds since start
    hr: float
    power: Optional[float] = None


class StrainRequest(BaseModel):
    athlete_id: Optional[str] = None
    heart_rate_samples: List[HeartRateSampleIn] = []
    daily_trimp: Optional[float] = None
    cardio_trimp: Optional[float] = None
    cardio_duration_minutes: Optional[float] = None
    intensity_factor: Optional[float] = None
    workout_types: List[str] = []
    strength_rpe: Optional[float] = None
    strength_duration_minutes: Optional[float] = None
    strength_volume: Optional[float] = None
    strength_sets: Optional[int] = None
    muscle_groups: List[str] = []  # unknown names are ignored
    eccentric_focused: bool = False
    steps: Optional[int] = None
    active_calories: Optional[float] = None
    non_workout_met_minutes: Optional[float] = None
    hrv_overnight: Optional[float] = None
    hrv_baseline: Optional[float] = None
    rhr: Optional[float] = None
    rhr_baseline: Optional[float] = None
    sleep_quality: Optional[float] = None
    ftp: Optional[float] = None
    max_hr: Optional[float] = None
    resting_hr: Optional[float] = None
    body_mass_kg: Optional[float] = None


class ReadinessRequest(BaseModel):
    """
    Either plain scores or previously stored score payloads (any schema
    version; legacy band names are migrated).
    """
    athlete_id: Optional[str] = None
    recovery_score: Optional[float] = None
    sleep_score: Optional[float] = None
    strain_score: Optional[float] = None
    recovery: Optional[Dict[str, Any]] = None
    sleep: Optional[Dict[str, Any]] = None
    strain: Optional[Dict[str, Any]] = None


class CompositeScoreResponse(BaseModel):
    score_type: str
    score: float
    band: str
    sub_scores: Dict[str, Optional[float]]
    inputs: Dict[str, Any]
    weights: Dict[str, float]
    flags: Dict[str, Any]
    calculated_at: datetime
    illness_detected: bool = False
    illness_severity: Optional[str] = None
    strategy: str = "rule_based"
    schema_version: int = 2


# ---------------------------------------------------------------------------
# Athlete profile
# ---------------------------------------------------------------------------

class ActivitySampleIn(BaseModel):
    start_time: datetime
    duration_seconds: float = Field(ge=0)
    average_power: Optional[float] = None
    normalized_power: Optional[float] = None
    average_hr: Optional[float] = None
    max_hr: Optional[float] = None
    activity_type: Optional[str] = None
    activity_id: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    """Activities to estimate from; omit to use the activity history provider."""
    activities: Optional[List[ActivitySampleIn]] = None
    weight_kg: Optional[float] = Field(default=None, gt=0)
    age: Optional[int] = Field(default=None, ge=0)
    sex: Optional[Literal["male", "female"]] = None
    resting_hr: Optional[float] = Field(default=None, gt=0)


class ManualFTPRequest(BaseModel):
    ftp: float
    power_zones: Optional[List[float]] = None


class ManualMaxHRRequest(BaseModel):
    max_hr: float
    hr_zones: Optional[List[float]] = None


class DataQualityResponse(BaseModel):
    confidence: float
    sample_size: int
    has_long_efforts: bool
    has_power_data: bool
    has_hr_data: bool
    variability_index: Optional[float] = None
    flags: List[str] = []

    model_config = ConfigDict(from_attributes=True)


class AthleteProfileResponse(BaseModel):
    athlete_id: str
    ftp: Optional[float] = None
    ftp_source: str
    power_zones: Optional[List[float]] = None
    max_hr: Optional[float] = None
    max_hr_source: str
    hr_zones: Optional[List[float]] = None
    lthr: Optional[float] = None
    resting_hr: Optional[float] = None
    weight_kg: Optional[float] = None
    vo2max: Optional[float] = None
    w_prime: Optional[float] = None
    data_quality: Optional[DataQualityResponse] = None
    manual_ftp_set_at: Optional[datetime] = None
    manual_max_hr_set_at: Optional[datetime] = None
    last_computed: Optional[datetime] = None
    last_updated: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------

class PerformancePointResponse(BaseModel):
    date: datetime
    ftp: float
    vo2max: float
    confidence: float
    activity_count: int


class TrendResponse(BaseModel):
    athlete_id: str
    weeks: int
    state: str  # fresh / stale / missing / refreshing
    points: List[PerformancePointResponse] = []
    recompute_enqueued: bool = False
