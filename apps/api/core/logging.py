"""
Structured logging for the scoring API and the trend worker.

Every record is tagged with the emitting component (``scoring-api`` or
``trend-worker``) and the deployment environment. Scoring and trend code
binds athlete context through ``context_logger``; the JSON formatter lifts
those fields to top-level keys so soft failures and recomputes can be
grouped per athlete downstream.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Tuple

from core.config import settings

API_COMPONENT = "scoring-api"
WORKER_COMPONENT = "trend-worker"

# Record attributes promoted to top-level JSON keys when set.
CONTEXT_FIELDS = ("athlete_id", "score_type", "weeks", "task_id")

# Third-party loggers capped at these levels.
QUIET_LOGGERS = {
    "redis": logging.WARNING,
    "kombu": logging.WARNING,
    "celery": logging.INFO,
    "httpx": logging.WARNING,
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, component: str = API_COMPONENT):
        super().__init__()
        self.component = component

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "component": self.component,
            "environment": settings.ENVIRONMENT,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """Adds bound athlete context to every record; call-site `extra` wins."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def context_logger(name: str, **context: Any) -> ContextAdapter:
    """Logger for `name` with context fields (athlete_id, score_type, ...) bound."""
    bound = {k: v for k, v in context.items() if v is not None}
    return ContextAdapter(logging.getLogger(name), bound)


def setup_logging(component: str = API_COMPONENT):
    """
    Configure root logging for one component.

    JSON in production or when LOG_FORMAT=json, a single text line otherwise.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter(component)
    else:
        formatter = logging.Formatter(
            f"%(asctime)s [{component}] %(name)s %(levelname)s: %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    return root_logger
