"""
Scoring Engine

Entry point for callers. Wires the external collaborators (baselines,
activity history, illness detection) into the calculators:

    calculate_recovery / calculate_sleep / calculate_strain / calculate_readiness
    update_athlete_profile
    historical_performance

Inputs the caller leaves empty are filled from the collaborators; a
collaborator that is missing or fails is treated as missing input. Score
calculations run through the per-athlete CalculationCoordinator, so a
timed-out or failed calculation returns the last-known-good score.
"""

from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Protocol

from core.logging import context_logger
from services.athlete_profile import ActivitySample, AthleteProfileSnapshot, MetricSource
from services.athlete_profile_service import AthleteProfileService, get_profile_service
from services.calculation_coordinator import CalculationCoordinator, get_coordinator
from services.readiness_score import calculate_readiness
from services.recovery_score import (
    RecoveryInputs,
    RecoveryPredictor,
    calculate_recovery,
    select_recovery_strategy,
)
from services.score_adjusters import IllnessIndicator
from services.score_types import CompositeScore, ScoreType
from services.sleep_score import SleepInputs, calculate_sleep
from services.strain_score import StrainInputs, calculate_strain
from services import trend_engine


BASELINE_WINDOW_DAYS = 7
PROFILE_HISTORY_DAYS = 90
PROFILE_HISTORY_LIMIT = 1000
TREND_HISTORY_DAYS = 365
TREND_HISTORY_LIMIT = 2000


class BaselineSignal(str, Enum):
    HRV = "hrv"
    RHR = "rhr"
    SLEEP = "sleep"
    RESPIRATORY = "respiratory"


class BaselineProvider(Protocol):
    def baseline(self, signal: BaselineSignal, window_days: int) -> Optional[float]:
        ...


class ActivityHistoryProvider(Protocol):
    def activities(self, days_back: int, limit: int) -> Optional[List[ActivitySample]]:
        ...


class IllnessDetector(Protocol):
    def current_indicator(self) -> Optional[IllnessIndicator]:
        ...


class ScoringEngine:
    """Facade for one athlete."""

    def __init__(
        self,
        athlete_id: str,
        baselines: Optional[BaselineProvider] = None,
        activity_history: Optional[ActivityHistoryProvider] = None,
        illness_detector: Optional[IllnessDetector] = None,
        recovery_predictor: Optional[RecoveryPredictor] = None,
        profile_service: Optional[AthleteProfileService] = None,
        coordinator: Optional[CalculationCoordinator] = None,
    ):
        self.athlete_id = athlete_id
        self.baselines = baselines
        self.activity_history = activity_history
        self.illness_detector = illness_detector
        self.recovery_predictor = recovery_predictor
        self.profile_service = profile_service or get_profile_service()
        self.coordinator = coordinator or get_coordinator(athlete_id)
        self.log = context_logger(__name__, athlete_id=athlete_id)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _baseline(self, signal: BaselineSignal) -> Optional[float]:
        if self.baselines is None:
            return None
        try:
            value = self.baselines.baseline(signal, BASELINE_WINDOW_DAYS)
        except Exception as e:
            self.log.warning(f"Baseline provider failed for {signal.value}: {e}")
            return None
        return value if value and value > 0 else None

    def fetch_activities(self, days_back: int, limit: int) -> Optional[List[ActivitySample]]:
        if self.activity_history is None:
            return None
        try:
            activities = self.activity_history.activities(days_back, limit)
        except Exception as e:
            self.log.warning(f"Activity history unavailable: {e}")
            return None
        return list(activities) if activities is not None else None

    def _illness(self) -> Optional[IllnessIndicator]:
        if self.illness_detector is None:
            return None
        try:
            return self.illness_detector.current_indicator()
        except Exception as e:
            self.log.warning(f"Illness detector failed: {e}")
            return None

    def _profile(self) -> Optional[AthleteProfileSnapshot]:
        return self.profile_service.get_snapshot(self.athlete_id)

    # ------------------------------------------------------------------
    # Composite scores
    # ------------------------------------------------------------------

    def calculate_recovery(self, inputs: RecoveryInputs) -> Optional[CompositeScore]:
        inputs = replace(
            inputs,
            hrv_baseline=inputs.hrv_baseline or self._baseline(BaselineSignal.HRV),
            rhr_baseline=inputs.rhr_baseline or self._baseline(BaselineSignal.RHR),
            sleep_baseline=inputs.sleep_baseline or self._baseline(BaselineSignal.SLEEP),
            respiratory_baseline=(
                inputs.respiratory_baseline or self._baseline(BaselineSignal.RESPIRATORY)
            ),
            illness=inputs.illness or self._illness(),
        )
        strategy = select_recovery_strategy(self.recovery_predictor)
        return self.coordinator.calculate(ScoreType.RECOVERY, calculate_recovery, inputs, strategy)

    def calculate_sleep(self, inputs: SleepInputs) -> Optional[CompositeScore]:
        inputs = replace(
            inputs,
            hrv_baseline=inputs.hrv_baseline or self._baseline(BaselineSignal.HRV),
            sleep_need=inputs.sleep_need or self._baseline(BaselineSignal.SLEEP),
        )
        return self.coordinator.calculate(ScoreType.SLEEP, calculate_sleep, inputs)

    def calculate_strain(self, inputs: StrainInputs) -> Optional[CompositeScore]:
        profile = self._profile()
        if profile is not None:
            inputs = replace(
                inputs,
                ftp=inputs.ftp or (
                    profile.ftp if profile.ftp_source != MetricSource.COGGAN else None
                ),
                max_hr=inputs.max_hr or profile.max_hr,
                resting_hr=inputs.resting_hr or profile.resting_hr,
                body_mass_kg=inputs.body_mass_kg or profile.weight_kg,
            )
        inputs = replace(
            inputs,
            hrv_baseline=inputs.hrv_baseline or self._baseline(BaselineSignal.HRV),
            rhr_baseline=inputs.rhr_baseline or self._baseline(BaselineSignal.RHR),
        )
        return self.coordinator.calculate(ScoreType.STRAIN, calculate_strain, inputs)

    def calculate_readiness(
        self,
        recovery: CompositeScore,
        sleep: Optional[CompositeScore],
        strain: CompositeScore,
    ) -> Optional[CompositeScore]:
        return self.coordinator.calculate(
            ScoreType.READINESS, calculate_readiness, recovery, sleep, strain
        )

    # ------------------------------------------------------------------
    # Profile and trends
    # ------------------------------------------------------------------

    def update_athlete_profile(
        self,
        activities: Optional[List[ActivitySample]] = None,
        now: Optional[datetime] = None,
    ) -> AthleteProfileSnapshot:
        if activities is None:
            activities = self.fetch_activities(PROFILE_HISTORY_DAYS, PROFILE_HISTORY_LIMIT) or []
        return self.profile_service.update_from_activities(self.athlete_id, activities, now=now)

    def historical_performance(
        self,
        weeks: int = trend_engine.HISTORY_WEEKS,
        now: Optional[datetime] = None,
        activities: Optional[List[ActivitySample]] = None,
    ) -> List[trend_engine.PerformanceSnapshot]:
        if activities is None:
            activities = self.fetch_activities(TREND_HISTORY_DAYS, TREND_HISTORY_LIMIT)
        profile = self._profile()
        return trend_engine.get_cached_history(
            self.athlete_id,
            activities,
            weeks,
            now=now,
            current_ftp=profile.ftp if profile else None,
            current_vo2=profile.vo2max if profile else None,
            weight_kg=profile.weight_kg if profile else None,
        )


# ----------------------------------------------------------------------
# Collaborator registry
# ----------------------------------------------------------------------

# Per-athlete provider factories, installed by the host application.
_baseline_factory: Optional[Callable[[str], BaselineProvider]] = None
_activity_factory: Optional[Callable[[str], ActivityHistoryProvider]] = None
_illness_factory: Optional[Callable[[str], IllnessDetector]] = None


def configure_providers(
    baselines: Optional[Callable[[str], BaselineProvider]] = None,
    activity_history: Optional[Callable[[str], ActivityHistoryProvider]] = None,
    illness_detector: Optional[Callable[[str], IllnessDetector]] = None,
) -> None:
    global _baseline_factory, _activity_factory, _illness_factory
    _baseline_factory = baselines
    _activity_factory = activity_history
    _illness_factory = illness_detector


def build_engine(athlete_id: str) -> ScoringEngine:
    """Engine for `athlete_id` wired to whatever providers are configured."""
    return ScoringEngine(
        athlete_id,
        baselines=_baseline_factory(athlete_id) if _baseline_factory else None,
        activity_history=_activity_factory(athlete_id) if _activity_factory else None,
        illness_detector=_illness_factory(athlete_id) if _illness_factory else None,
    )
