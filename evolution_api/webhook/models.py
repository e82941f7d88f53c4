"""Data models for the webhook pipeline."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from evolution_api.exceptions import InvalidPayloadError
from evolution_api.models import WebhookEvent

_ENVELOPE_KEYS = ("event", "instance", "instanceName")


@dataclass(frozen=True)
class WebhookPayload:
    """Normalized inbound webhook: event name, instance and the remaining data."""

    event: str
    instance_name: str | None
    data: dict[str, Any]
    api_key: str | None = None
    received_at: float = field(default_factory=time.time)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> WebhookPayload:
        """Build from a raw body. Raises ``InvalidPayloadError`` without an event."""
        event = payload.get("event")
        if not isinstance(event, str) or not event.strip():
            raise InvalidPayloadError()

        instance_name = None
        for key in ("instance", "instanceName"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                instance_name = value
                break

        data = {k: v for k, v in payload.items() if k not in _ENVELOPE_KEYS}
        api_key = payload.get("apikey") or payload.get("apiKey")
        return cls(
            event=event,
            instance_name=instance_name,
            data=data,
            api_key=api_key if isinstance(api_key, str) else None,
        )

    def to_payload(self) -> dict[str, Any]:
        """Inverse of ``from_payload``; used to serialize queued jobs."""
        body = dict(self.data)
        body["event"] = self.event
        if self.instance_name is not None:
            body["instance"] = self.instance_name
        return body

    @property
    def webhook_event(self) -> WebhookEvent:
        return WebhookEvent.from_string(self.event)

    def get(self, key: str, default: Any = None) -> Any:
        value: Any = self.data
        for segment in key.split("."):
            if not isinstance(value, dict) or segment not in value:
                return default
            value = value[segment]
        return value

    def first(self, *keys: str) -> Any:
        for key in keys:
            value = self.get(key)
            if value is not None:
                return value
        return None

    @property
    def message_data(self) -> dict[str, Any]:
        value = self.first("data", "message")
        return value if isinstance(value, dict) else {}

    @property
    def sender_data(self) -> dict[str, Any]:
        value = self.get("sender")
        return value if isinstance(value, dict) else {}

    @property
    def remote_jid(self) -> str | None:
        return self.first("data.key.remoteJid", "key.remoteJid", "remoteJid")

    @property
    def message_id(self) -> str | None:
        return self.first("data.key.id", "key.id", "messageId", "data.keyId")

    @property
    def is_from_group(self) -> bool:
        jid = self.remote_jid
        return isinstance(jid, str) and "@g.us" in jid

    @property
    def connection_status(self) -> str | None:
        return self.first("data.state", "state", "status")

    @property
    def qr_code(self) -> str | None:
        return self.first("data.qrcode.base64", "qrcode.base64", "qrcode", "base64")

    @property
    def pairing_code(self) -> str | None:
        return self.first("data.pairingCode", "pairingCode")


@dataclass
class WebhookResponse:
    """Status code plus JSON body returned to the Evolution API server."""

    status_code: int
    body: dict[str, Any]

    @classmethod
    def success(cls, message: str) -> WebhookResponse:
        return cls(200, {"status": "success", "message": message})

    @classmethod
    def error(cls, status_code: int, message: str) -> WebhookResponse:
        return cls(status_code, {"status": "error", "message": message})
