"""Celery application for the webhook and send-message workers."""

from __future__ import annotations

from celery import Celery

from evolution_api.config import EvolutionConfig

DEFAULT_BROKER = "redis://localhost:6379/0"


def create_celery_app(config: EvolutionConfig) -> Celery:
    app = Celery(
        "evolution_api",
        broker=config.queue.connection or DEFAULT_BROKER,
        include=["evolution_api.jobs.tasks"],
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        enable_utc=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        task_default_queue=config.queue.queue,
        task_ignore_result=True,
    )
    return app


celery_app = create_celery_app(EvolutionConfig.from_env())
