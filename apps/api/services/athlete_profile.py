"""
Athlete profile aggregate and the activity summaries it is estimated from.

Every estimated metric carries provenance. A metric whose source is MANUAL is
never overwritten by automatic estimation; only an explicit reset returns it
to COMPUTED.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class MetricSource(str, Enum):
    COMPUTED = "computed"
    MANUAL = "manual"
    IMPORTED = "imported"   # e.g. synced from a training platform
    COGGAN = "coggan"       # formula default, no activity evidence yet


class ProfileMetric(str, Enum):
    FTP = "ftp"
    MAX_HR = "max_hr"


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Sex(str, Enum):
    MALE = "male"
    FEMALE = "female"


@dataclass(frozen=True)
class ActivitySample:
    """One activity summary from the history provider. Read-only."""
    start_time: datetime
    duration_seconds: float
    average_power: Optional[float] = None
    normalized_power: Optional[float] = None
    average_hr: Optional[float] = None
    max_hr: Optional[float] = None
    activity_type: Optional[str] = None
    activity_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "start_time", as_utc(self.start_time))

    @property
    def best_power(self) -> Optional[float]:
        """Normalized power, falling back to average power."""
        if self.normalized_power and self.normalized_power > 0:
            return self.normalized_power
        if self.average_power and self.average_power > 0:
            return self.average_power
        return None


@dataclass
class DataQuality:
    """How much the latest estimate can be trusted."""
    confidence: float = 0.0
    sample_size: int = 0
    has_long_efforts: bool = False
    has_power_data: bool = False
    has_hr_data: bool = False
    variability_index: Optional[float] = None
    flags: List[str] = field(default_factory=list)


@dataclass
class AthleteProfile:
    athlete_id: str
    ftp: Optional[float] = None
    ftp_source: MetricSource = MetricSource.COMPUTED
    power_zones: Optional[List[float]] = None
    max_hr: Optional[float] = None
    max_hr_source: MetricSource = MetricSource.COMPUTED
    hr_zones: Optional[List[float]] = None
    lthr: Optional[float] = None
    resting_hr: Optional[float] = None
    weight_kg: Optional[float] = None
    age: Optional[int] = None
    sex: Optional[Sex] = None
    vo2max: Optional[float] = None
    w_prime: Optional[float] = None
    data_quality: Optional[DataQuality] = None
    manual_ftp_set_at: Optional[datetime] = None
    manual_max_hr_set_at: Optional[datetime] = None
    last_computed: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    def source_of(self, metric: ProfileMetric) -> MetricSource:
        if metric == ProfileMetric.FTP:
            return self.ftp_source
        return self.max_hr_source

    def is_manual(self, metric: ProfileMetric) -> bool:
        return self.source_of(metric) == MetricSource.MANUAL

    def snapshot(self) -> "AthleteProfileSnapshot":
        return AthleteProfileSnapshot(copy.deepcopy(self))

    def to_dict(self) -> dict:
        quality = self.data_quality
        return {
            "athlete_id": self.athlete_id,
            "ftp": self.ftp,
            "ftp_source": self.ftp_source.value,
            "power_zones": list(self.power_zones) if self.power_zones else None,
            "max_hr": self.max_hr,
            "max_hr_source": self.max_hr_source.value,
            "hr_zones": list(self.hr_zones) if self.hr_zones else None,
            "lthr": self.lthr,
            "resting_hr": self.resting_hr,
            "weight_kg": self.weight_kg,
            "vo2max": self.vo2max,
            "w_prime": self.w_prime,
            "data_quality": quality.__dict__.copy() if quality else None,
            "manual_ftp_set_at": self.manual_ftp_set_at,
            "manual_max_hr_set_at": self.manual_max_hr_set_at,
            "last_computed": self.last_computed,
            "last_updated": self.last_updated,
        }


class AthleteProfileSnapshot:
    """Read-only view over a private copy of a profile."""

    __slots__ = ("_profile",)

    def __init__(self, profile: AthleteProfile):
        object.__setattr__(self, "_profile", profile)

    def __getattr__(self, name):
        value = getattr(self._profile, name)
        if isinstance(value, (list, DataQuality)):
            return copy.deepcopy(value)
        return value

    def __setattr__(self, name, value):
        raise AttributeError("AthleteProfileSnapshot is read-only")

    def to_dict(self) -> dict:
        return self._profile.to_dict()

    def to_profile(self) -> AthleteProfile:
        """Mutable copy, for callers that build a new profile from a snapshot."""
        return copy.deepcopy(self._profile)
