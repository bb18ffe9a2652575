"""JSON-lines logging for the planner.

Every record becomes one JSON object with a fixed envelope (``timestamp``,
``level``, ``message``, ``component``) followed by the structured fields the
caller attached through ``log_fields``.
"""

import json
import logging
import os
import sys
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import IO, Any, Optional

DEFAULT_LEVEL = "INFO"

EXTRA_FIELDS_KEY = "extra_fields"

# Attributes every LogRecord carries, plus those filled in while formatting.
_RECORD_ATTRS = frozenset(
    vars(logging.makeLogRecord({})).keys()
    | {"message", "asctime", "stack_info", "taskName"}
)


def _custom_attributes(record: logging.LogRecord) -> Iterator[tuple[str, Any]]:
    """Yields the structured fields of ``record`` in attachment order."""
    for key, value in vars(record).items():
        if key in _RECORD_ATTRS:
            continue
        if key == EXTRA_FIELDS_KEY and isinstance(value, dict):
            yield from value.items()
        else:
            yield key, value


class JsonFormatter(logging.Formatter):
    """Renders log records as single-line JSON documents."""

    def envelope(self, record: logging.LogRecord) -> dict[str, Any]:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "component": record.name,
        }

    def format(self, record: logging.LogRecord) -> str:
        entry = self.envelope(record)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack"] = self.formatStack(record.stack_info)
        entry.update(_custom_attributes(record))
        return json.dumps(entry, default=str)


def setup_logging(level: Optional[str] = None, stream: Optional[IO[str]] = None) -> logging.Handler:
    """Routes the root logger to a single JSON handler.

    Args:
        level: Level name. Falls back to ``LOG_LEVEL``, then INFO.
        stream: Where lines are written. Defaults to stdout.

    Returns:
        The installed handler.
    """
    root = logging.getLogger()
    root.setLevel((level or os.environ.get("LOG_LEVEL") or DEFAULT_LEVEL).upper())

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers[:] = [handler]
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_fields(**fields: Any) -> dict[str, Any]:
    """Builds the ``extra`` argument carrying structured fields.

    ``None`` values are left out.

    Example:
        logger.info("Step completed", extra=log_fields(plan_id=p, step_id=s))
    """
    return {EXTRA_FIELDS_KEY: {k: v for k, v in fields.items() if v is not None}}
