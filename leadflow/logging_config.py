"""
leadflow/logging_config.py — Root logger setup shared by scripts, workers and the API.

Supports human-readable text and single-line JSON output, selected with
LOG_FORMAT. LOG_LEVEL defaults to INFO.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from leadflow.config import settings

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Third-party loggers that are noisy at INFO
_NOISY_LOGGERS = [
    "urllib3",
    "openai",
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
]


class JSONFormatter(logging.Formatter):
    """Single-line JSON log formatter for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: Log level name; defaults to settings.log_level.
        fmt:   "text" or "json"; defaults to settings.log_format.
    """
    level_name = (level or settings.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_format = (fmt or settings.log_format).lower()

    root = logging.getLogger()
    root.setLevel(log_level)
    # Re-running must not stack handlers
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
