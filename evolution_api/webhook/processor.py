"""Webhook processor: turns a normalized payload into notifications and handler calls."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from evolution_api.events import (
    ConnectionUpdated,
    EventBus,
    InstanceStatusChanged,
    MessageDelivered,
    MessageRead,
    MessageReceived,
    MessageSent,
    QrCodeReceived,
    WebhookReceived,
)
from evolution_api.exceptions import WebhookProcessingError
from evolution_api.models import InboundMessageType, InstanceStatus, WebhookEvent
from evolution_api.webhook.models import WebhookPayload

logger = logging.getLogger(__name__)

WebhookHandler = Callable[[WebhookPayload], None]
WILDCARD = "*"

# First matching key wins; order mirrors how WhatsApp nests message bodies.
_MESSAGE_TYPE_KEYS: tuple[tuple[tuple[str, ...], InboundMessageType], ...] = (
    (("conversation", "extendedTextMessage"), InboundMessageType.TEXT),
    (("imageMessage",), InboundMessageType.IMAGE),
    (("videoMessage",), InboundMessageType.VIDEO),
    (("audioMessage",), InboundMessageType.AUDIO),
    (("documentMessage",), InboundMessageType.DOCUMENT),
    (("stickerMessage",), InboundMessageType.STICKER),
    (("locationMessage",), InboundMessageType.LOCATION),
    (("contactMessage", "contactsArrayMessage"), InboundMessageType.CONTACT),
    (("reactionMessage",), InboundMessageType.REACTION),
    (("pollCreationMessage",), InboundMessageType.POLL),
    (("listMessage", "listResponseMessage"), InboundMessageType.LIST),
    (("buttonsMessage", "buttonsResponseMessage"), InboundMessageType.BUTTON),
    (("templateMessage",), InboundMessageType.TEMPLATE),
)

_DELIVERED_STATUSES = (3, "DELIVERY_ACK")
_READ_STATUSES = (4, "READ")


def detect_message_type(message_data: Mapping[str, Any]) -> InboundMessageType | None:
    body = message_data.get("message", message_data)
    if not isinstance(body, Mapping):
        return None
    for keys, message_type in _MESSAGE_TYPE_KEYS:
        if any(k in body for k in keys):
            return message_type
    return None


class WebhookProcessor:
    """Emits ``WebhookReceived``, routes known events, then calls handlers.

    Handlers are looked up by the exact event string, then the ``"*"``
    wildcard. Events with no handler are ignored. Any failure is re-raised
    as ``WebhookProcessingError``.
    """

    def __init__(
        self,
        events: EventBus,
        handlers: Mapping[str, WebhookHandler] | None = None,
        events_enabled: bool = True,
    ) -> None:
        self._events = events
        self._handlers: dict[str, WebhookHandler] = dict(handlers or {})
        self.events_enabled = events_enabled
        self._routes: dict[WebhookEvent, Callable[[WebhookPayload], None]] = {
            WebhookEvent.MESSAGES_UPSERT: self._on_message_received,
            WebhookEvent.MESSAGES_UPDATE: self._on_message_update,
            WebhookEvent.SEND_MESSAGE: self._on_message_sent,
            WebhookEvent.CONNECTION_UPDATE: self._on_connection_update,
            WebhookEvent.QRCODE_UPDATED: self._on_qrcode_updated,
        }

    def register_handler(self, event: str, handler: WebhookHandler) -> None:
        self._handlers[event] = handler

    def register_wildcard_handler(self, handler: WebhookHandler) -> None:
        self._handlers[WILDCARD] = handler

    def remove_handler(self, event: str) -> None:
        self._handlers.pop(event, None)

    def has_handler(self, event: str) -> bool:
        return event in self._handlers

    def process(self, payload: WebhookPayload) -> None:
        logger.info(
            "Processing webhook event=%s instance=%s",
            payload.event, payload.instance_name,
        )
        try:
            if self.events_enabled:
                self._events.emit(WebhookReceived(
                    instance_name=payload.instance_name,
                    event=payload.event,
                    payload=payload.data,
                    webhook_event=payload.webhook_event,
                ))
                route = self._routes.get(payload.webhook_event)
                if route is not None:
                    route(payload)
            self._call_handlers(payload)
        except Exception as exc:
            logger.error(
                "Webhook processing failed event=%s instance=%s: %s",
                payload.event, payload.instance_name, exc,
            )
            if isinstance(exc, WebhookProcessingError):
                raise
            raise WebhookProcessingError(payload.event, exc) from exc

    def _call_handlers(self, payload: WebhookPayload) -> None:
        handler = self._handlers.get(payload.event)
        if handler is not None:
            handler(payload)
        wildcard = self._handlers.get(WILDCARD)
        if wildcard is not None:
            wildcard(payload)

    # --- built-in routes ---

    def _on_message_received(self, payload: WebhookPayload) -> None:
        message = payload.message_data
        self._events.emit(MessageReceived(
            instance_name=payload.instance_name,
            message=message,
            sender=payload.sender_data,
            message_type=detect_message_type(message),
            is_group=payload.is_from_group,
            group_id=payload.remote_jid if payload.is_from_group else None,
        ))

    def _on_message_update(self, payload: WebhookPayload) -> None:
        status = payload.get("data.status", payload.get("status"))
        message_id = payload.message_id
        remote_jid = payload.remote_jid
        if message_id is None or remote_jid is None:
            return
        if status in _DELIVERED_STATUSES:
            self._events.emit(MessageDelivered(
                instance_name=payload.instance_name,
                message_id=message_id,
                remote_jid=remote_jid,
                data=payload.data,
            ))
        elif status in _READ_STATUSES:
            self._events.emit(MessageRead(
                instance_name=payload.instance_name,
                message_id=message_id,
                remote_jid=remote_jid,
                data=payload.data,
            ))

    def _on_message_sent(self, payload: WebhookPayload) -> None:
        message = payload.message_data
        message_type = detect_message_type(message)
        self._events.emit(MessageSent(
            instance_name=payload.instance_name,
            message_type=message_type.value if message_type else "unknown",
            message=message,
            response=payload.data,
        ))

    def _on_connection_update(self, payload: WebhookPayload) -> None:
        state = payload.connection_status
        if not isinstance(state, str):
            return
        status = InstanceStatus.from_state(state)
        self._events.emit(ConnectionUpdated(
            instance_name=payload.instance_name, status=status, data=payload.data,
        ))
        self._events.emit(InstanceStatusChanged(
            instance_name=payload.instance_name,
            status=status,
            phone_number=payload.first("data.phoneNumber", "phoneNumber"),
            data=payload.data,
        ))

    def _on_qrcode_updated(self, payload: WebhookPayload) -> None:
        qr_code = payload.qr_code
        if not isinstance(qr_code, str):
            return
        count = payload.first("data.count", "count")
        self._events.emit(QrCodeReceived(
            instance_name=payload.instance_name,
            qr_code=qr_code,
            pairing_code=payload.pairing_code,
            attempt=int(count) if count is not None else 1,
            data=payload.data,
        ))
