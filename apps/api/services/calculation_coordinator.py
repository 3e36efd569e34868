"""
Calculation Coordinator

Runs composite-score calculations on a worker pool with:
- at most one live calculation per score type: a newer request supersedes
  the in-flight one, whose result is discarded
- a hard per-calculation timeout
- fail-soft results: timeout, error or supersession returns the
  last-known-good score for that type (None if there is none yet)

Different score types run concurrently; calculators share no mutable state.
"""

import logging
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Callable, Dict, Optional, Tuple

from core.config import settings
from services.score_types import CompositeScore, ScoreType

logger = logging.getLogger(__name__)


class CalculationCoordinator:
    """Supersedable, time-boxed score calculations with last-known-good fallback."""

    def __init__(
        self,
        timeout_s: Optional[float] = None,
        max_workers: Optional[int] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.timeout_s = timeout_s if timeout_s is not None else settings.SCORE_CALCULATION_TIMEOUT_S
        self._owns_pool = executor is None
        self._pool = executor or ThreadPoolExecutor(
            max_workers=max_workers or settings.SCORE_CALCULATION_WORKERS,
            thread_name_prefix="score-calc",
        )
        self._lock = threading.Lock()
        self._generations: Dict[ScoreType, int] = {}
        self._in_flight: Dict[ScoreType, Future] = {}
        self._last_known_good: Dict[ScoreType, CompositeScore] = {}
        self.last_used = time.monotonic()

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def is_idle(self, idle_ttl_s: float, now: Optional[float] = None) -> bool:
        """No calculation in flight and unused for at least `idle_ttl_s`."""
        now = now if now is not None else time.monotonic()
        with self._lock:
            busy = any(not f.done() for f in self._in_flight.values())
        return not busy and now - self.last_used >= idle_ttl_s

    def submit(self, score_type: ScoreType, fn: Callable, *args, **kwargs) -> Tuple[int, Future]:
        """Start a calculation, superseding any in-flight one of the same type."""
        score_type = ScoreType(score_type)
        self.touch()
        with self._lock:
            generation = self._generations.get(score_type, 0) + 1
            self._generations[score_type] = generation
            previous = self._in_flight.get(score_type)
            if previous is not None and not previous.done():
                # Not-yet-started work is dropped; running work finishes but is ignored.
                previous.cancel()
                logger.info(f"{score_type.value} calculation superseded by generation {generation}")
            future = self._pool.submit(fn, *args, **kwargs)
            self._in_flight[score_type] = future
        return generation, future

    def is_current(self, score_type: ScoreType, generation: int) -> bool:
        with self._lock:
            return self._generations.get(ScoreType(score_type)) == generation

    def last_known_good(self, score_type: ScoreType) -> Optional[CompositeScore]:
        with self._lock:
            return self._last_known_good.get(ScoreType(score_type))

    def record(self, score: CompositeScore) -> None:
        """Seed last-known-good, e.g. from a persisted score at startup."""
        with self._lock:
            self._last_known_good[score.score_type] = score

    def collect(
        self,
        score_type: ScoreType,
        generation: int,
        future: Future,
        timeout_s: Optional[float] = None,
    ) -> Optional[CompositeScore]:
        """Wait for a submitted calculation and apply the fail-soft rules."""
        score_type = ScoreType(score_type)
        timeout_s = timeout_s if timeout_s is not None else self.timeout_s
        try:
            result = future.result(timeout=timeout_s)
        except FuturesTimeout:
            logger.warning(
                f"{score_type.value} calculation timed out after {timeout_s}s; "
                "serving last-known-good"
            )
            future.cancel()
            return self.last_known_good(score_type)
        except CancelledError:
            return self.last_known_good(score_type)
        except Exception as e:
            logger.error(f"{score_type.value} calculation failed: {e}", exc_info=True)
            return self.last_known_good(score_type)

        with self._lock:
            if self._generations.get(score_type) != generation:
                logger.info(f"Discarding superseded {score_type.value} result (generation {generation})")
                return self._last_known_good.get(score_type)
            self._last_known_good[score_type] = result
            if self._in_flight.get(score_type) is future:
                del self._in_flight[score_type]
        return result

    def calculate(self, score_type: ScoreType, fn: Callable, *args, **kwargs) -> Optional[CompositeScore]:
        generation, future = self.submit(score_type, fn, *args, **kwargs)
        return self.collect(score_type, generation, future)

    def shutdown(self, wait: bool = False) -> None:
        if self._owns_pool:
            self._pool.shutdown(wait=wait)


_shared_pool: Optional[ThreadPoolExecutor] = None
_coordinators: Dict[str, CalculationCoordinator] = {}
_registry_lock = threading.Lock()


def evict_idle_coordinators(idle_ttl_s: Optional[float] = None) -> int:
    """
    Drop coordinators that have been idle for `idle_ttl_s` seconds.

    Their last-known-good scores go with them; the next request for that
    athlete starts a fresh coordinator. Returns the number evicted.
    """
    idle_ttl_s = idle_ttl_s if idle_ttl_s is not None else settings.COORDINATOR_IDLE_TTL_S
    now = time.monotonic()
    with _registry_lock:
        idle = [scope for scope, c in _coordinators.items() if c.is_idle(idle_ttl_s, now)]
        for scope in idle:
            del _coordinators[scope]
    if idle:
        logger.debug(f"Evicted {len(idle)} idle calculation coordinator(s)")
    return len(idle)


def get_coordinator(scope: str = "default") -> CalculationCoordinator:
    """
    Coordinator for one athlete (or other scope). Supersession only applies
    within a scope; all scopes share one worker pool.
    """
    global _shared_pool
    evict_idle_coordinators()
    with _registry_lock:
        if _shared_pool is None:
            _shared_pool = ThreadPoolExecutor(
                max_workers=settings.SCORE_CALCULATION_WORKERS,
                thread_name_prefix="score-calc",
            )
        coordinator = _coordinators.get(scope)
        if coordinator is None:
            coordinator = CalculationCoordinator(executor=_shared_pool)
            _coordinators[scope] = coordinator
        coordinator.touch()
        return coordinator


def shutdown_coordinators(wait: bool = False) -> None:
    global _shared_pool
    with _registry_lock:
        _coordinators.clear()
        if _shared_pool is not None:
            _shared_pool.shutdown(wait=wait)
            _shared_pool = None
