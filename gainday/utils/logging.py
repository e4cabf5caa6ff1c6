# gainday/utils/logging.py
"""
Logging configuration for the snapshot engine.

Every record is tagged with the run it belongs to:
- correlation_id: the full run ID ("backfill-1a2b3c4d")
- job: the run kind taken from that ID ("refresh", "backfill", "rankings")

Records written outside a run carry "no-correlation-id" and job "-".

Usage:
    from gainday.utils import setup_logging

    setup_logging()                       # settings.log_level / log_format
    setup_logging("DEBUG", "json")

Log Levels:
    DEBUG   - Cache hits/misses, per-holding skips, lookback details
    INFO    - Run start/finish, snapshot counts
    WARNING - Missing FX pairs, stale FX fallback, failed symbols, retries
    ERROR   - Persistence failures, provider outages
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

from gainday.config import settings
from gainday.utils.context import get_correlation_id

# timestamp | level | job | correlation_id | logger_name | message
TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(job)-9s | %(correlation_id)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "no-correlation-id"
NO_JOB = "-"

# yfinance logs every failed symbol at ERROR and caches through peewee
NOISY_LOGGERS = (
    "yfinance",
    "peewee",
    "urllib3",
    "urllib3.connectionpool",
    "sqlalchemy.engine",
    "asyncio",
)

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Attributes every LogRecord has; anything else came in through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation_id", "job"}


def job_of(correlation_id: str | None) -> str:
    """Run kind encoded in a correlation ID ("backfill-1a2b3c4d" -> "backfill")."""
    if not correlation_id:
        return NO_JOB
    return correlation_id.rsplit("-", 1)[0]


class CorrelationIdFilter(logging.Filter):
    """Adds correlation_id and job from the current run to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = get_correlation_id()
        record.correlation_id = correlation_id or NO_CORRELATION_ID
        record.job = job_of(correlation_id)
        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"timestamp": "2024-01-04T09:00:00.123000+00:00", "level": "INFO",
     "logger": "gainday.services.snapshots.backfill", "job": "backfill",
     "correlation_id": "backfill-1a2b3c4d", "message": "...", "extra": {...}}

    Values passed through extra= that JSON cannot encode (Decimal, date)
    are written as strings.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "job": getattr(record, "job", NO_JOB),
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        suppress_noisy_loggers: bool = True,
        stream: TextIO | None = None,
) -> logging.Handler:
    """
    Replace the root handlers with one run-aware stream handler.

    Args:
        level: Log level name; defaults to settings.log_level
        log_format: "text" or "json"; defaults to settings.log_format
        suppress_noisy_loggers: Raise third-party loggers to WARNING
        stream: Output stream; defaults to stdout

    Returns:
        The installed handler

    Raises:
        ValueError: If the level name is unknown
    """
    level_name = level or settings.log_level
    log_level = _get_log_level(level_name)
    format_type = (log_format or settings.log_format).lower()

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    if suppress_noisy_loggers:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured: level={level_name}, format={format_type}")
    return handler


def _get_log_level(level_name: str) -> int:
    key = level_name.upper().strip()
    if key not in _LEVELS:
        raise ValueError(
            f"Invalid log level: '{level_name}'. Valid levels are: {', '.join(_LEVELS)}"
        )
    return _LEVELS[key]
