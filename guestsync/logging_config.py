"""Logging setup for guestsync: JSON or text output, console and rotating file."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from config.monitoring import get_monitoring_config

LOGGER_NAME = "guestsync"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with ``extra`` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        log_obj.update(_extra_fields(record))
        return json.dumps(log_obj, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines; ``extra`` fields are appended as ``key=value``."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extra_fields(record)
        if extras:
            line += " " + " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return line


def setup_logging(monitoring_config=None) -> logging.Logger:
    """
    Configure the ``guestsync`` logger from ``MonitoringConfig``.

    Safe to call more than once; handlers installed by an earlier call are
    replaced.
    """

    settings = monitoring_config or get_monitoring_config()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)
    logger.setLevel(level)
    formatter: logging.Formatter = JsonFormatter() if str(settings.LOG_FORMAT).lower() == "json" else TextFormatter()

    if settings.ENABLE_CONSOLE_LOGGING:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        logger.addHandler(console)

    if settings.ENABLE_FILE_LOGGING:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / settings.LOG_FILE_NAME,
            maxBytes=settings.LOG_FILE_MAX_BYTES,
            backupCount=settings.LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


__all__ = ["JsonFormatter", "TextFormatter", "setup_logging"]
