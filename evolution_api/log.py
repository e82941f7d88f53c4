"""Logging setup: plain or JSON lines output with sensitive-field redaction."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from evolution_api.config import LoggingConfig

_REDACTED = "[REDACTED]"
_HANDLER_NAME = "evolution_api"


def redact(value: Any, sensitive: frozenset[str]) -> Any:
    """Return a copy of ``value`` with sensitive mapping keys masked."""
    if isinstance(value, dict):
        return {
            k: _REDACTED if str(k).lower() in sensitive else redact(v, sensitive)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(item, sensitive) for item in value]
    return value


class RedactingFilter(logging.Filter):
    """Masks sensitive keys inside the ``extra_data`` attribute of records."""

    def __init__(self, fields: Iterable[str]) -> None:
        super().__init__()
        self._fields = frozenset(f.lower() for f in fields)

    def filter(self, record: logging.LogRecord) -> bool:
        extra = getattr(record, "extra_data", None)
        if extra is not None:
            record.extra_data = redact(extra, self._fields)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = getattr(record, "extra_data", None)
        if extra is not None:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Attach a single stream handler to the ``evolution_api`` logger.

    Calling it again replaces the previous handler instead of stacking.
    """
    root = logging.getLogger("evolution_api")
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    if config.json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    if config.redact_sensitive:
        handler.addFilter(RedactingFilter(config.sensitive_fields))

    root.addHandler(handler)
    root.setLevel(config.level.upper())
    return root
