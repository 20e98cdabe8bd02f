"""Waitlist Logging Configuration.

Two output shapes: one JSON object per line in production, and a
pipe-separated line for local development. Context passed through
``extra={...}`` (client IP, admin action) becomes top-level keys in
the JSON output and a trailing ``key=value`` list in the dev output.
"""

import json
import logging
import sys
import time
from typing import Literal

LOGGER_PREFIX = "waitlist"

DEV_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s%(context)s"
DEV_DATEFMT = "%H:%M:%S"

# Attributes every LogRecord carries; anything else arrived via ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "context", "taskName"}

# Libraries whose INFO output is request-by-request noise
_NOISY_LOGGERS = ("uvicorn.access", "aiosqlite", "asyncpg", "httpx")


def _context_fields(record: logging.LogRecord) -> dict[str, object]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, in UTC.

    Serializing with json.dumps() keeps quotes and newlines in subscriber
    names or SMTP errors from breaking the line.
    """

    converter = time.gmtime

    def __init__(self, service: str = LOGGER_PREFIX):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": f"{self.formatTime(record, self.datefmt)}.{int(record.msecs):03d}Z",
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context_fields(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """Readable single-line format with ``extra`` context appended."""

    def __init__(self):
        super().__init__(fmt=DEV_FORMAT, datefmt=DEV_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        fields = _context_fields(record)
        record.context = (
            " | " + " ".join(f"{k}={v}" for k, v in sorted(fields.items())) if fields else ""
        )
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    format_type: Literal["structured", "dev"] = "dev",
    service: str = LOGGER_PREFIX,
) -> None:
    """
    Configure application logging.

    Replaces any handlers already on the root logger, so calling it again
    (for example once per test app) does not duplicate output.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'structured' for JSON lines, 'dev' for readable lines
        service: Value of the ``service`` key in JSON output
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    if format_type == "structured":
        handler.setFormatter(JSONFormatter(service))
    else:
        handler.setFormatter(DevFormatter())
    logging.root.handlers = [handler]
    logging.root.setLevel(numeric_level)

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    # Keep SQLAlchemy quiet unless debugging
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    )

    get_logger("logging").debug(
        "Logging configured", extra={"log_level": level.upper(), "log_format": format_type}
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the waitlist prefix."""
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")
