"""Structured logging configuration for the companion API.

Plain-text output for local development, one JSON object per line when
``LOG_FORMAT=json`` so production logs can be shipped to an aggregator.
Request-scoped fields (request id, user id, rate-limit identifier) travel
through ``extra=`` and are lifted to top-level keys by the formatter.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from companion.app.core.config import settings

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    CONTEXT_FIELDS = (
        "request_id",
        "user_id",
        "identifier",
        "path",
        "method",
        "status_code",
    )

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in self.CONTEXT_FIELDS
        }
        if extra:
            log_data["extra"] = extra

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the context attributes so text formats never KeyError."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in JSONFormatter.CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def get_logging_config(
    log_level: Optional[str] = None, log_format: Optional[str] = None
) -> Dict[str, Any]:
    """Build the dictConfig mapping from settings."""
    level = (log_level or settings.log_level).upper()
    fmt = (log_format or settings.log_format).lower()

    formatters: Dict[str, Any] = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - request_id=%(request_id)s"
        },
        "json": {"()": "companion.app.core.logging.JSONFormatter"},
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {"()": "companion.app.core.logging.ContextFilter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "json" if fmt == "json" else "standard",
                "stream": sys.stdout,
                "filters": ["context"],
            },
        },
        "loggers": {
            "companion": {
                "level": level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {"level": level, "handlers": ["console"], "propagate": False},
        },
        "root": {"level": level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str = "companion") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    identifier: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Create a dict for the ``extra=`` parameter, dropping None values.

    Example:
        >>> logger.info(
        ...     "Feedback created",
        ...     extra=get_log_context(user_id="u1", feedback_id="f1"),
        ... )
    """
    context: Dict[str, Any] = {
        "request_id": request_id,
        "user_id": user_id,
        "identifier": identifier,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
