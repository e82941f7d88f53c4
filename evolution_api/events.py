"""Notification types and the explicit listener registry that delivers them."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from evolution_api.models import InboundMessageType, InstanceStatus, WebhookEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    instance_name: str | None


@dataclass(frozen=True)
class WebhookReceived(Event):
    event: str
    payload: dict[str, Any]
    webhook_event: WebhookEvent


@dataclass(frozen=True)
class MessageReceived(Event):
    message: dict[str, Any]
    sender: dict[str, Any]
    message_type: InboundMessageType | None
    is_group: bool = False
    group_id: str | None = None


@dataclass(frozen=True)
class MessageDelivered(Event):
    message_id: str
    remote_jid: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageRead(Event):
    message_id: str
    remote_jid: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageSent(Event):
    message_type: str
    message: dict[str, Any]
    response: dict[str, Any] | list[Any]


@dataclass(frozen=True)
class MessageFailed(Event):
    """Emitted after each failed send attempt; ``terminal`` marks exhaustion."""

    message_type: str
    message: dict[str, Any]
    error: str
    attempt: int
    terminal: bool = False


@dataclass(frozen=True)
class ConnectionUpdated(Event):
    status: InstanceStatus
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InstanceStatusChanged(Event):
    status: InstanceStatus
    phone_number: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QrCodeReceived(Event):
    qr_code: str
    pairing_code: str | None = None
    attempt: int = 1
    data: dict[str, Any] = field(default_factory=dict)


E = TypeVar("E", bound=Event)
Listener = Callable[[Any], None]


class EventBus:
    """Delivers events to listeners registered for their exact type.

    Listener errors propagate to the emitter.
    """

    def __init__(self) -> None:
        self._listeners: dict[type[Event], list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type[E], listener: Callable[[E], None]) -> None:
        self._listeners[event_type].append(listener)

    def listeners_for(self, event_type: type[Event]) -> list[Listener]:
        return list(self._listeners.get(event_type, []))

    def emit(self, event: Event) -> None:
        listeners = self._listeners.get(type(event), [])
        logger.debug("Emitting %s to %d listener(s)", type(event).__name__, len(listeners))
        for listener in listeners:
            listener(event)
