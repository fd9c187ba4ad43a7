"""Logging configuration for the settings service."""

from __future__ import annotations

import contextvars
import logging

from app.config import settings

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id",
    default=None,
)
actor_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "actor_id",
    default=None,
)

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(message)s "
    "request_id=%(request_id)s actor_id=%(actor_id)s"
)


class RequestContextFilter(logging.Filter):
    """Attach request_id and actor_id from contextvars to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = getattr(record, "request_id", None) or request_id_var.get() or "-"
        record.actor_id = getattr(record, "actor_id", None) or actor_id_var.get() or "-"
        return True


def configure_logging() -> None:
    """Configure structured logging for the service."""
    factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = factory(*args, **kwargs)
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get() or "-"
        if not hasattr(record, "actor_id"):
            record.actor_id = actor_id_var.get() or "-"
        return record

    logging.setLogRecordFactory(record_factory)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    root_logger = logging.getLogger()
    root_logger.addFilter(RequestContextFilter())
    for handler in root_logger.handlers:
        handler.addFilter(RequestContextFilter())
