"""Celery tasks for queued webhook processing and message sending.

Each task body delegates to a plain function taking the bound task and a
``Runtime`` so retry behaviour can be exercised without a broker.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from celery import Task

from evolution_api.config import EvolutionConfig
from evolution_api.exceptions import (
    ConfigurationError,
    InvalidPayloadError,
    SendFailure,
    WebhookProcessingError,
)
from evolution_api.jobs.celery_app import celery_app
from evolution_api.jobs.queue import PROCESS_WEBHOOK_TASK, SEND_MESSAGE_TASK
from evolution_api.jobs.send_message import SendMessageJob
from evolution_api.runtime import Runtime

logger = logging.getLogger(__name__)

WEBHOOK_TRIES = 3
WEBHOOK_BACKOFF = (10, 30, 60)

_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    """Worker-wide runtime, built lazily from the environment."""
    global _runtime
    if _runtime is None:
        _runtime = Runtime(EvolutionConfig.from_env())
    return _runtime


def _backoff(schedule: Sequence[int], attempt: int) -> int:
    return schedule[min(attempt - 1, len(schedule) - 1)]


def webhook_tags(payload: dict[str, Any]) -> list[str]:
    tags = ["evolution-api", "webhook"]
    instance = payload.get("instance") or payload.get("instanceName")
    if instance:
        tags.append(f"instance:{instance}")
    if payload.get("event"):
        tags.append(f"event:{payload['event']}")
    return tags


def execute_webhook(task: Task, payload: dict[str, Any], runtime: Runtime) -> None:
    attempt = task.request.retries + 1
    try:
        runtime.process_webhook(payload)
    except InvalidPayloadError:
        logger.error("Dropping queued webhook without event: %s", webhook_tags(payload))
        return
    except WebhookProcessingError as exc:
        if attempt >= WEBHOOK_TRIES:
            logger.error(
                "Queued webhook failed after %d attempt(s) %s: %s",
                attempt, webhook_tags(payload), exc,
            )
            raise
        countdown = _backoff(WEBHOOK_BACKOFF, attempt)
        logger.warning(
            "Queued webhook failed (attempt %d/%d), retrying in %ds: %s",
            attempt, WEBHOOK_TRIES, countdown, exc,
        )
        raise task.retry(exc=exc, countdown=countdown, max_retries=WEBHOOK_TRIES - 1)


def execute_send(task: Task, job_data: dict[str, Any], runtime: Runtime) -> dict[str, Any] | None:
    try:
        job = SendMessageJob.from_dict(job_data)
    except ConfigurationError:
        logger.error("Dropping send job with invalid definition: %s", job_data)
        raise

    # the attempt counter lives on the broker, not on the job object
    job.attempts = task.request.retries
    try:
        response = job.attempt(
            runtime.messages(job.instance_name, job.connection_name),
            runtime.events,
            runtime.db,
            store_message=runtime.config.database.store_messages,
        )
    except SendFailure as exc:
        if job.attempts >= job.tries:
            job.exhausted(exc, runtime.events, runtime.db)
            raise
        raise task.retry(
            exc=exc,
            countdown=job.backoff_for(job.attempts),
            max_retries=job.tries - 1,
        )
    return response.model_dump()


@celery_app.task(bind=True, name=PROCESS_WEBHOOK_TASK)
def process_webhook(self: Task, payload: dict[str, Any]) -> None:
    execute_webhook(self, payload, get_runtime())


@celery_app.task(bind=True, name=SEND_MESSAGE_TASK)
def send_message(self: Task, job_data: dict[str, Any]) -> dict[str, Any] | None:
    return execute_send(self, job_data, get_runtime())
