"""Builds the collaborators every entry point needs from one config object."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from evolution_api.audit.logger import AuditLogger, subscribe_audit
from evolution_api.client.http import EvolutionClient
from evolution_api.client.rate_limiter import ClientRateLimiter
from evolution_api.client.resources import InstancesResource, MessagesResource
from evolution_api.config import EvolutionConfig
from evolution_api.db import EvolutionDB
from evolution_api.events import EventBus
from evolution_api.jobs.queue import CeleryQueue, InlineQueue, JobQueue
from evolution_api.jobs.send_message import SendMessageJob
from evolution_api.models import ApiResponse
from evolution_api.webhook.dispatcher import WebhookDispatcher
from evolution_api.webhook.models import WebhookPayload
from evolution_api.webhook.processor import WebhookHandler, WebhookProcessor

logger = logging.getLogger(__name__)


class Runtime:
    """Owns the database, event bus, API clients, processor and queue.

    Everything is resolved once at construction so request and job code
    never looks anything up globally.
    """

    def __init__(
        self,
        config: EvolutionConfig,
        events: EventBus | None = None,
        db: EvolutionDB | None = None,
        audit_logger: AuditLogger | None = None,
        queue: JobQueue | None = None,
        handlers: Mapping[str, WebhookHandler] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.events = events or EventBus()
        self.db = db if db is not None else self._open_db(config)
        self.audit_logger = (
            audit_logger if audit_logger is not None
            else AuditLogger.from_config(config.audit)
        )
        if self.audit_logger:
            subscribe_audit(self.events, self.audit_logger)

        self._transport = transport
        self._rate_limiter = ClientRateLimiter.from_config(config.rate_limiting)
        self._clients: dict[str, EvolutionClient] = {}

        self.processor = WebhookProcessor(self.events, handlers)
        self.queue = queue or self._build_queue()

    @staticmethod
    def _open_db(config: EvolutionConfig) -> EvolutionDB:
        return EvolutionDB(config.database.path)

    def _build_queue(self) -> JobQueue:
        if self.config.queue.driver == "celery":
            from evolution_api.jobs.celery_app import create_celery_app

            return CeleryQueue(create_celery_app(self.config))
        return InlineQueue(self.process_webhook, self.send_inline)

    # --- clients ---

    def client(self, connection_name: str | None = None) -> EvolutionClient:
        name = connection_name or "default"
        if name not in self._clients:
            self._clients[name] = EvolutionClient(
                self.config,
                connection_name=name,
                rate_limiter=self._rate_limiter,
                transport=self._transport,
            )
        return self._clients[name]

    def messages(self, instance_name: str, connection_name: str | None = None) -> MessagesResource:
        return MessagesResource(self.client(connection_name), instance_name)

    def instances(self, connection_name: str | None = None) -> InstancesResource:
        return InstancesResource(self.client(connection_name))

    # --- webhooks ---

    def dispatcher(self) -> WebhookDispatcher:
        return WebhookDispatcher(
            self.config, self.processor, self.queue, self.db, self.audit_logger,
        )

    def process_webhook(self, payload: dict[str, Any]) -> None:
        self.processor.process(WebhookPayload.from_payload(payload))

    # --- outbound ---

    def new_job(
        self,
        instance_name: str,
        message_type: str,
        message: dict[str, Any],
        connection_name: str | None = None,
    ) -> SendMessageJob:
        return SendMessageJob.from_config(
            self.config.queue, instance_name, message_type, message, connection_name,
        )

    def dispatch(self, job: SendMessageJob) -> None:
        """Submit ``job`` to the configured queue."""
        self.queue.submit_message(job, self.config.queue.queue)

    def send_inline(self, job: SendMessageJob) -> ApiResponse | None:
        return job.run_inline(
            self.messages(job.instance_name, job.connection_name),
            self.events,
            self.db,
            store_message=self.config.database.store_messages,
        )

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()
        self.db.close()
