"""Structured logging setup for the Workspace Runtime."""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional


ROOT_LOGGER_NAME = "workspace-runtime"


class StructuredFormatter(logging.Formatter):
    """Render each record as one JSON line; structured fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": ROOT_LOGGER_NAME,
            "component": record.name,
            "message": record.getMessage(),
        }

        fields = getattr(record, "fields", None)
        if fields:
            log_data.update(fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Route every "workspace-runtime.*" logger to stdout as JSON lines.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        The configured root service logger
    """
    level = getattr(logging, log_level.upper())
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter())
    logger.addHandler(handler)

    # Keep tool and server lines out of uvicorn's root handlers
    logger.propagate = False

    return logger


class StructuredLogger:
    """Logs named events with a dict of fields for StructuredFormatter."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _log(self, level: int, event: str, fields: Optional[Dict[str, Any]]) -> None:
        self.logger.log(level, event, extra={"fields": fields or {}})

    def debug(self, event: str, fields: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.DEBUG, event, fields)

    def info(self, event: str, fields: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.INFO, event, fields)

    def warning(self, event: str, fields: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.WARNING, event, fields)
