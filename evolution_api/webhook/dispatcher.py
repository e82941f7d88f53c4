"""Webhook dispatcher: validate, then process in-line or hand off to the queue."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from evolution_api.exceptions import EnqueueError, InvalidPayloadError
from evolution_api.jobs.queue import InlineQueue, JobQueue
from evolution_api.models import AuditEvent, AuditEventType, RiskLevel
from evolution_api.webhook.models import WebhookPayload, WebhookResponse

if TYPE_CHECKING:
    from evolution_api.audit.logger import AuditLogger
    from evolution_api.config import EvolutionConfig
    from evolution_api.db import EvolutionDB
    from evolution_api.webhook.processor import WebhookProcessor

logger = logging.getLogger(__name__)

SERVICE_NAME = "evolution-api-webhook"


class WebhookDispatcher:
    """Turns a parsed request body into a ``WebhookResponse``.

    With ``webhook.queue`` enabled the payload is submitted to
    ``queue.webhook_queue``. If the queue refuses it the payload is
    processed in-line instead and the caller still gets a 200. The sync
    driver's ``InlineQueue`` is never submitted to; its payloads are
    processed directly.
    """

    def __init__(
        self,
        config: EvolutionConfig,
        processor: WebhookProcessor,
        queue: JobQueue | None = None,
        db: EvolutionDB | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._config = config
        self._processor = processor
        self._queue = queue
        self._db = db if config.database.store_webhooks else None
        self._audit = audit_logger

    def handle(
        self,
        raw_payload: Any,
        url_instance_hint: str | None = None,
    ) -> WebhookResponse:
        if not isinstance(raw_payload, Mapping):
            return WebhookResponse.error(400, "Invalid payload")

        body = dict(raw_payload)
        # a null instance counts as absent
        if (
            url_instance_hint
            and body.get("instance") is None
            and body.get("instanceName") is None
        ):
            body["instance"] = url_instance_hint

        try:
            payload = WebhookPayload.from_payload(body)
        except InvalidPayloadError as exc:
            logger.warning("Rejected webhook without event")
            return WebhookResponse.error(400, exc.message)

        # in-line queues are processed directly so failures map to a 500
        queue = self._queue
        if (
            self._config.webhook.queue
            and queue is not None
            and not isinstance(queue, InlineQueue)
        ):
            if self._enqueue(payload):
                return WebhookResponse.success("Webhook queued")

        return self._process(payload)

    def _enqueue(self, payload: WebhookPayload) -> bool:
        queue_name = self._config.queue.webhook_queue
        try:
            self._queue.submit_webhook(payload.to_payload(), queue_name)
        except EnqueueError as exc:
            logger.warning(
                "Enqueue failed for event=%s instance=%s, processing in-line: %s",
                payload.event, payload.instance_name, exc,
            )
            self._audit_event(
                AuditEventType.ENQUEUE_FAILED, payload, "fallback",
                RiskLevel.MEDIUM, str(exc),
            )
            return False

        self._log(payload, "queued")
        return True

    def _process(self, payload: WebhookPayload) -> WebhookResponse:
        start = time.monotonic()
        try:
            self._processor.process(payload)
        except Exception as exc:
            elapsed = int((time.monotonic() - start) * 1000)
            message = str(exc) or type(exc).__name__
            logger.error(
                "Webhook processing failed event=%s instance=%s: %s",
                payload.event, payload.instance_name, message,
            )
            self._log(payload, "failed", message, elapsed)
            self._audit_event(
                AuditEventType.WEBHOOK_FAILED, payload, "failure",
                RiskLevel.LOW, message,
            )
            return WebhookResponse.error(500, message)

        self._log(payload, "processed", None, int((time.monotonic() - start) * 1000))
        return WebhookResponse.success("Webhook processed")

    def _log(
        self,
        payload: WebhookPayload,
        status: str,
        error: str | None = None,
        elapsed_ms: int | None = None,
    ) -> None:
        if self._db is None:
            return
        self._db.log_webhook(
            payload.instance_name, payload.event, payload.data, status,
            error_message=error, processing_time_ms=elapsed_ms,
            created_at=datetime.fromtimestamp(payload.received_at, UTC).isoformat(),
        )

    def _audit_event(
        self,
        event_type: AuditEventType,
        payload: WebhookPayload,
        result: str,
        risk: RiskLevel,
        error: str,
    ) -> None:
        if not self._audit:
            return
        self._audit.log(AuditEvent(
            event_type=event_type,
            instance_name=payload.instance_name,
            action=f"webhook:{payload.event}",
            result=result,
            risk_level=risk,
            details={"error": error},
        ))

    @staticmethod
    def health() -> dict[str, str]:
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(UTC).isoformat(),
        }
