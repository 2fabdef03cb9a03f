"""Structured Logging — JSON formatter and setup for production observability.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - Sync extras (table, record_id, error_code, store_code, succeeded, failed, attempt,
      online) surfaced when present
    - JSON format in production, human-readable in development
    - setup_logging() installs exactly one handler, however often the lifespan runs
    - httpx/websockets per-request chatter capped at WARNING unless DEBUG is asked for

Design Decisions:
    - JSONFormatter over third-party libs: zero dependencies, full control
    - setup_logging called once on startup via lifespan
"""

import logging
import json
from datetime import datetime, timezone

_EXTRA_KEYS = (
    "table", "record_id", "error_code", "store_code",
    "succeeded", "failed", "attempt", "online",
)

# one line per HTTP request / websocket frame at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "websockets")


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


class _ClinisyncHandler(logging.StreamHandler):
    """Marker type so repeated setup replaces our handler instead of stacking."""


def setup_logging(level: str = "INFO", fmt: str = "json"):
    """Configure logging for the application."""
    handler = _ClinisyncHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    for existing in list(logging.root.handlers):
        if isinstance(existing, _ClinisyncHandler):
            logging.root.removeHandler(existing)
    logging.root.addHandler(handler)
    root_level = getattr(logging, level.upper(), logging.INFO)
    logging.root.setLevel(root_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            root_level if root_level <= logging.DEBUG else max(root_level, logging.WARNING),
        )
