"""
Structured JSON logging configuration.

Every record carries the service name and, inside a correlation scope (one
cleanup sweep or one provider callback), the scope's correlation id.
"""

import json
import logging
import os
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from conference_cleanup.config import get_settings

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


@contextmanager
def correlation_scope(prefix: str) -> Iterator[str]:
    """Bind a fresh `<prefix>-<hex>` correlation id for the duration of the block."""
    correlation_id = f"{prefix}-{uuid.uuid4().hex[:12]}"
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields become top-level keys."""

    _RESERVED = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys() | {"message", "asctime"}
    )

    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self._service:
            log_data["service"] = self._service

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            log_data[f"extra_{key}" if key in log_data else key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(service=get_settings().app_name))
    return handler


def get_logger(name: str) -> logging.Logger:
    """Get a module logger writing structured JSON to stdout.

    Args:
        name: Logger name (typically __name__).
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.addHandler(_json_handler())
        logger.propagate = False

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    return logger


def setup_logging() -> None:
    """Configure the root logger and quiet chatty third-party loggers."""
    settings = get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())
    root_logger.handlers = [_json_handler()]

    # SQLAlchemy noise control: opt-in verbose via SQLALCHEMY_LOG_LEVEL=INFO/DEBUG
    sqlalchemy_level = os.getenv("SQLALCHEMY_LOG_LEVEL", "").strip().upper() or "WARNING"
    logging.getLogger("sqlalchemy.engine").setLevel(sqlalchemy_level)
    logging.getLogger("sqlalchemy.pool").setLevel(sqlalchemy_level)

    for noisy in ("httpx", "httpcore", "apscheduler", "python_multipart"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
