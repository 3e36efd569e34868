"""
Celery tasks for background processing.

Tasks are defined here and imported by both the API (to enqueue) and
the worker (to execute). Trend recomputation runs on its own queue so it
never competes with interactive work.
"""
from celery import Celery
from core.config import settings

# Create Celery app instance
celery_app = Celery(
    "scoring_engine",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=9 * 60,
    task_routes={
        "tasks.recompute_performance_trends": {"queue": settings.TREND_TASK_QUEUE},
    },
)

# Import tasks to register them
from . import trend_tasks  # noqa: E402

__all__ = ["celery_app"]
