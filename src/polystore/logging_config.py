"""Structured logging configuration for polystore.

Engines log through ``logging.getLogger(__name__)`` and attach context via
``extra=`` (for example the channel a pump is polling, or the backoff delay).
The JSON formatter lifts those attributes into top-level keys.
"""

import json
import logging
import sys
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TextIO

# Extra record attributes copied into JSON log lines when present.
_EXTRA_FIELDS = ("path", "channel", "delay", "batch_size", "state")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus any polystore extras.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    logger_levels: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure root logging with the specified level and format.

    Existing root handlers are replaced, so calling this twice is safe.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Format type, 'text' for human-readable or 'json' for structured.
        logger_levels: Per-logger overrides, e.g.
            ``{"polystore.messaging.polling": "DEBUG"}``.
        stream: Output stream (defaults to stderr).
    """
    numeric_level = _level(level)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)

    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root.addHandler(handler)

    for name, override in (logger_levels or {}).items():
        logging.getLogger(name).setLevel(_level(override))
