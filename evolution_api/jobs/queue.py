"""Queue backends behind one submission interface."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from evolution_api.exceptions import EnqueueError

if TYPE_CHECKING:
    from celery import Celery

    from evolution_api.jobs.send_message import SendMessageJob

logger = logging.getLogger(__name__)

PROCESS_WEBHOOK_TASK = "evolution_api.jobs.tasks.process_webhook"
SEND_MESSAGE_TASK = "evolution_api.jobs.tasks.send_message"


class JobQueue(ABC):
    """Accepts webhook payloads and send jobs for later execution.

    Implementations raise ``EnqueueError`` when a job cannot be accepted.
    """

    @abstractmethod
    def submit_webhook(self, payload: dict[str, Any], queue: str) -> None:
        ...

    @abstractmethod
    def submit_message(self, job: SendMessageJob, queue: str) -> None:
        ...


class InlineQueue(JobQueue):
    """Runs submitted work immediately in the calling process."""

    def __init__(
        self,
        process_webhook: Callable[[dict[str, Any]], None],
        send_message: Callable[[SendMessageJob], Any],
    ) -> None:
        self._process_webhook = process_webhook
        self._send_message = send_message

    def submit_webhook(self, payload: dict[str, Any], queue: str) -> None:
        logger.debug("Running webhook inline (queue=%s)", queue)
        self._process_webhook(payload)

    def submit_message(self, job: SendMessageJob, queue: str) -> None:
        logger.debug("Running send job inline (queue=%s)", queue)
        self._send_message(job)


class CeleryQueue(JobQueue):
    """Submits tasks by name so the web process never imports worker code."""

    def __init__(self, app: Celery) -> None:
        self._app = app

    def _send(self, task_name: str, args: list[Any], queue: str) -> None:
        try:
            self._app.send_task(task_name, args=args, queue=queue, retry=False)
        except Exception as exc:
            raise EnqueueError(f"Could not enqueue {task_name}: {exc}") from exc
        logger.info("Enqueued %s on queue=%s", task_name, queue)

    def submit_webhook(self, payload: dict[str, Any], queue: str) -> None:
        self._send(PROCESS_WEBHOOK_TASK, [payload], queue)

    def submit_message(self, job: SendMessageJob, queue: str) -> None:
        self._send(SEND_MESSAGE_TASK, [job.to_dict()], queue)
