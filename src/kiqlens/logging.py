"""Logging setup for applications embedding kiqlens.

kiqlens itself only emits through module loggers (mostly DEBUG lines for
broker entries it skipped). ``configure_logging`` is for the host process.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

# Loggers the redis driver emits connection chatter on.
DRIVER_LOGGERS = ("redis", "redis.asyncio", "redis.connection")

# ``extra=`` keys copied into JSON records when present.
CONTEXT_FIELDS = ("key", "identity", "queue", "jid", "broker_version")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with broker context when it was attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            error = record.exc_info[1]
            entry["error"] = {
                "type": type(error).__name__,
                "message": str(error),
                "stacktrace": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


def silence_driver_logging() -> None:
    """Keep the redis driver quiet regardless of the root level."""
    for name in DRIVER_LOGGERS:
        driver = logging.getLogger(name)
        driver.setLevel(logging.CRITICAL)
        driver.propagate = False


def configure_logging(*, log_format: str = "text", debug: bool = False) -> None:
    """Replace the root handlers with a single stream handler."""
    level = logging.DEBUG if debug else logging.INFO
    formatter = JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    silence_driver_logging()
