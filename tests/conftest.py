"""Shared test fixtures for evolution-api-bridge."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest

from evolution_api.audit.logger import AuditLogger
from evolution_api.config import EvolutionConfig
from evolution_api.db import EvolutionDB
from evolution_api.events import Event, EventBus
from evolution_api.models import AuditEvent, AuditEventType, RiskLevel

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def db() -> EvolutionDB:
    database = EvolutionDB(":memory:")
    yield database
    database.close()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "evolution.db")


class EventRecorder:
    """Collects every event emitted on a bus, in order."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[Event]) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events: EventBus) -> EventRecorder:
    from evolution_api import events as event_module

    rec = EventRecorder()
    for name in dir(event_module):
        obj = getattr(event_module, name)
        if isinstance(obj, type) and issubclass(obj, Event) and obj is not Event:
            events.subscribe(obj, rec)
    return rec


# --- Factory functions for test data ---


def make_config(**kwargs: Any) -> EvolutionConfig:
    """Factory for EvolutionConfig with fast, offline defaults."""
    defaults: dict[str, Any] = {
        "server_url": "http://evolution.test",
        "api_key": "test-api-key",
        "default_instance": "main",
        "retry": {"enabled": False},
        "rate_limiting": {"enabled": False},
        "database": {"path": ":memory:"},
    }
    for key, value in kwargs.items():
        if isinstance(value, dict) and isinstance(defaults.get(key), dict):
            defaults[key] = {**defaults[key], **value}
        else:
            defaults[key] = value
    return EvolutionConfig.from_mapping(defaults)


def make_audit_event(**kwargs: Any) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.SIGNATURE_REJECTED,
        "action": "POST /api/evolution-api/webhook",
        "result": "rejected",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)


def make_webhook_body(**kwargs: Any) -> dict[str, Any]:
    """Factory for a raw MESSAGES_UPSERT webhook body."""
    defaults: dict[str, Any] = {
        "event": "MESSAGES_UPSERT",
        "instance": "main",
        "data": {
            "key": {
                "remoteJid": "5511999999999@s.whatsapp.net",
                "fromMe": False,
                "id": "MSG-1",
            },
            "message": {"conversation": "hello"},
        },
        "sender": {"pushName": "Alice"},
    }
    defaults.update(kwargs)
    return defaults


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    import hashlib
    import hmac

    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def encode(payload: Any) -> bytes:
    return json.dumps(payload).encode()


def json_transport(
    responder: Callable[[httpx.Request], tuple[int, Any]],
    calls: list[httpx.Request] | None = None,
) -> httpx.MockTransport:
    """MockTransport whose handler returns ``(status, json_body)``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        status, body = responder(request)
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)
