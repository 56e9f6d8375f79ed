"""PACER — Structured JSON Logging."""

import logging
import json
import sys
from datetime import datetime, timezone
from pacer.config import settings

EXTRA_FIELDS = (
    "endpoint",
    "entity_id",
    "adset_id",
    "attempt",
    "status_code",
    "batch",
    "duration_ms",
)


class JSONFormatter(logging.Formatter):
    """Produces structured JSON log lines for the scheduler's log capture."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        return json.dumps(log_entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """Return a named logger with structured JSON handler."""
    logger = logging.getLogger(f"pacer.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger
