"""Structured logging.

Two streams: ``transactional`` for application logs and ``audit`` for the
``twofactor.audit`` logger, which records every code verification. Audit
records carry the user, the code length and the outcome; never the code.
"""

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Optional

from twofactor.core import context
from twofactor.core.settings import settings

AUDIT_LOGGER_NAME = "twofactor.audit"

_CONTEXT_FIELDS = ("request_id", "user_id", "client_ip")


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in context.snapshot().items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with its stream."""

    def __init__(self, stream_label: str = "transactional") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": self.stream_label,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            payload[field] = getattr(record, field, context.UNSET)
        event = getattr(record, "event", None)
        if isinstance(event, dict):
            payload["event"] = event
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _handler(formatter: str, level: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    app_logger = {"handlers": ["default"], "level": log_level, "propagate": False}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "transactional"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": _handler("json", log_level),
                "audit": _handler("audit_json", log_level),
            },
            "loggers": {
                "": app_logger,
                AUDIT_LOGGER_NAME: {"handlers": ["audit"], "level": log_level, "propagate": False},
                **{name: app_logger for name in ("uvicorn", "uvicorn.error", "uvicorn.access")},
                # Engine echo would print bound parameters, including secrets.
                "sqlalchemy.engine": {"level": "WARNING"},
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s level=%s", settings.environment, log_level
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)
