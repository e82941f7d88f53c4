"""Tests for logging setup and redaction."""

from __future__ import annotations

import json
import logging

import pytest

from evolution_api.config import LoggingConfig
from evolution_api.log import JSONFormatter, RedactingFilter, configure_logging, redact


@pytest.fixture(autouse=True)
def _reset_logger():
    yield
    root = logging.getLogger("evolution_api")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("evolution_api.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_redact_nested() -> None:
    data = {"ApiKey": "k", "inner": [{"token": "t", "keep": 1}], "text": "hi"}
    assert redact(data, frozenset({"apikey", "token"})) == {
        "ApiKey": "[REDACTED]",
        "inner": [{"token": "[REDACTED]", "keep": 1}],
        "text": "hi",
    }


def test_redacting_filter_masks_extra_data() -> None:
    record = _record(extra_data={"secret": "s", "instance": "main"})
    assert RedactingFilter(["secret"]).filter(record)
    assert record.extra_data == {"secret": "[REDACTED]", "instance": "main"}


def test_json_formatter() -> None:
    line = JSONFormatter().format(_record(extra_data={"instance": "main"}))
    entry = json.loads(line)
    assert entry["message"] == "hello world"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "evolution_api.test"
    assert entry["extra"] == {"instance": "main"}


def test_configure_logging_replaces_handler() -> None:
    configure_logging(LoggingConfig(level="debug"))
    root = configure_logging(LoggingConfig(json=True))
    handlers = [h for h in root.handlers if h.get_name() == "evolution_api"]
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, JSONFormatter)
    assert root.level == logging.INFO


def test_configure_logging_without_redaction() -> None:
    root = configure_logging(LoggingConfig(redact_sensitive=False))
    [handler] = root.handlers
    assert handler.filters == []
