"""
Celery worker entry point for trend recomputation.

Run with:
    celery -A main worker -Q trends
"""
import logging

from core.config import settings
from core.logging import WORKER_COMPONENT, setup_logging
from tasks import celery_app  # noqa: F401  registers tasks.recompute_performance_trends

setup_logging(WORKER_COMPONENT)
logger = logging.getLogger(__name__)
logger.info(f"Trend worker configured for queue '{settings.TREND_TASK_QUEUE}'")


@celery_app.task(name="worker.health_check")
def health_check():
    """Health check task"""
    return {"status": "ok", "queue": settings.TREND_TASK_QUEUE}
