"""JSON logging for the task marketplace: stdout plus one file per UTC day."""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Any

LOGGER_NAMESPACE = "task_marketplace"
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields are nested under "extra"."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).strftime(
                "%Y-%m-%d %H:%M:%S"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS}
        if extra:
            log_data["extra"] = extra
        return json.dumps(log_data, default=str)


class _DailyFileHandler(TimedRotatingFileHandler):
    """Writes to ``<directory>/YYYY-MM-DD.log`` and opens a new file at midnight UTC."""

    def __init__(self, directory: str) -> None:
        self._directory = directory
        super().__init__(self._today_path(), when="midnight", utc=True)

    def _today_path(self) -> str:
        return os.path.join(self._directory, datetime.now(tz=UTC).strftime("%Y-%m-%d") + ".log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = os.path.abspath(self._today_path())
        if not self.delay:
            self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(time.time()))


def setup_logging(level: str, log_directory: str) -> logging.Logger:
    """
    Configure the ``task_marketplace`` logger tree.

    Raises:
        ValueError: If ``level`` is not a standard logging level name.
    """
    if level.upper() not in _LEVELS:
        raise ValueError(f"Invalid log level: {level}")
    numeric_level = getattr(logging, level.upper())

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    os.makedirs(log_directory, exist_ok=True)
    formatter = JSONFormatter()
    for handler in (logging.StreamHandler(sys.stdout), _DailyFileHandler(log_directory)):
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the service namespace."""
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
