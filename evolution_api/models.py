"""Shared Pydantic data models and enums for evolution-api-bridge."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class MessageType(str, Enum):
    """Outbound message kinds a send job can carry."""

    TEXT = "text"
    MEDIA = "media"
    AUDIO = "audio"
    LOCATION = "location"


class InboundMessageType(str, Enum):
    """Message kinds detected on inbound WhatsApp messages."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    REACTION = "reaction"
    POLL = "poll"
    LIST = "list"
    BUTTON = "button"
    TEMPLATE = "template"


class InstanceStatus(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    CONNECTING = "connecting"
    QRCODE = "qrcode"
    UNKNOWN = "unknown"

    @classmethod
    def from_state(cls, state: str) -> InstanceStatus:
        return _STATE_ALIASES.get(state.lower(), cls.UNKNOWN)


_STATE_ALIASES = {
    "open": InstanceStatus.OPEN,
    "connected": InstanceStatus.OPEN,
    "close": InstanceStatus.CLOSE,
    "closed": InstanceStatus.CLOSE,
    "disconnected": InstanceStatus.CLOSE,
    "connecting": InstanceStatus.CONNECTING,
    "qrcode": InstanceStatus.QRCODE,
    "qr": InstanceStatus.QRCODE,
}


class WebhookEvent(str, Enum):
    APPLICATION_STARTUP = "APPLICATION_STARTUP"
    QRCODE_UPDATED = "QRCODE_UPDATED"
    MESSAGES_SET = "MESSAGES_SET"
    MESSAGES_UPSERT = "MESSAGES_UPSERT"
    MESSAGES_UPDATE = "MESSAGES_UPDATE"
    MESSAGES_DELETE = "MESSAGES_DELETE"
    SEND_MESSAGE = "SEND_MESSAGE"
    CONTACTS_SET = "CONTACTS_SET"
    CONTACTS_UPSERT = "CONTACTS_UPSERT"
    CONTACTS_UPDATE = "CONTACTS_UPDATE"
    PRESENCE_UPDATE = "PRESENCE_UPDATE"
    CHATS_SET = "CHATS_SET"
    CHATS_UPSERT = "CHATS_UPSERT"
    CHATS_UPDATE = "CHATS_UPDATE"
    CHATS_DELETE = "CHATS_DELETE"
    GROUPS_UPSERT = "GROUPS_UPSERT"
    GROUP_UPDATE = "GROUP_UPDATE"
    GROUP_PARTICIPANTS_UPDATE = "GROUP_PARTICIPANTS_UPDATE"
    CONNECTION_UPDATE = "CONNECTION_UPDATE"
    LABELS_EDIT = "LABELS_EDIT"
    LABELS_ASSOCIATION = "LABELS_ASSOCIATION"
    CALL = "CALL"
    TYPEBOT_START = "TYPEBOT_START"
    TYPEBOT_CHANGE_STATUS = "TYPEBOT_CHANGE_STATUS"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_string(cls, value: str) -> WebhookEvent:
        """Match both ``MESSAGES_UPSERT`` and ``messages.upsert`` spellings."""
        normalized = value.strip().upper().replace(".", "_").replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN

    def is_message_event(self) -> bool:
        return self in _MESSAGE_EVENTS

    def is_connection_event(self) -> bool:
        return self in _CONNECTION_EVENTS

    def is_group_event(self) -> bool:
        return self in _GROUP_EVENTS


_MESSAGE_EVENTS = frozenset({
    WebhookEvent.MESSAGES_SET,
    WebhookEvent.MESSAGES_UPSERT,
    WebhookEvent.MESSAGES_UPDATE,
    WebhookEvent.MESSAGES_DELETE,
    WebhookEvent.SEND_MESSAGE,
})
_CONNECTION_EVENTS = frozenset({
    WebhookEvent.CONNECTION_UPDATE,
    WebhookEvent.QRCODE_UPDATED,
    WebhookEvent.APPLICATION_STARTUP,
})
_GROUP_EVENTS = frozenset({
    WebhookEvent.GROUPS_UPSERT,
    WebhookEvent.GROUP_UPDATE,
    WebhookEvent.GROUP_PARTICIPANTS_UPDATE,
})


class AuditEventType(str, Enum):
    SIGNATURE_REJECTED = "signature_rejected"
    WEBHOOK_FAILED = "webhook_failed"
    ENQUEUE_FAILED = "enqueue_failed"
    MESSAGE_FAILED = "message_failed"
    MESSAGE_EXHAUSTED = "message_exhausted"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- API client models ---


class ApiResponse(BaseModel):
    """Normalized result of one Evolution API call."""

    model_config = ConfigDict(frozen=True)

    success: bool
    status_code: int
    data: dict[str, Any] | list[Any] = Field(default_factory=dict)
    message: str | None = None
    response_time_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return not self.success

    @property
    def error(self) -> str | None:
        if self.success:
            return None
        return self.message or f"HTTP {self.status_code}"

    def get(self, key: str, default: Any = None) -> Any:
        """Dotted-path lookup into a mapping body."""
        value: Any = self.data
        for segment in key.split("."):
            if not isinstance(value, dict) or segment not in value:
                return default
            value = value[segment]
        return value


# --- Persistence models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class FailedMessageRecord(BaseModel):
    id: int | None = None
    instance_name: str
    recipient: str
    message_type: MessageType
    payload: dict[str, Any]
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None
    connection_name: str | None = None
    created_at: str = Field(default_factory=_now_iso)


class InstanceRecord(BaseModel):
    name: str
    connection_name: str = "default"
    phone_number: str | None = None
    status: str = "unknown"
    profile_name: str | None = None
    profile_picture_url: str | None = None
    last_seen_at: str | None = None


# --- Audit models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    instance_name: str | None = None
    action: str
    result: str  # "success" | "failure" | "rejected"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
