"""Logging configuration for the service process."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from cloak_courier.db.time import utcnow

_EXTRA_FIELDS = ("delivery_id", "token_prefix", "identity", "status_code")


class JSONFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """Install a single stdout handler on the package logger."""
    logger = logging.getLogger("cloak_courier")
    logger.setLevel(level.upper())
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def token_prefix(token: str) -> str:
    """Return the loggable prefix of a token."""
    return f"{token[:8]}…"
