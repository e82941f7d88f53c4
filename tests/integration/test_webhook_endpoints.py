"""Integration tests for the webhook HTTP endpoints."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from evolution_api.app import create_app
from evolution_api.db import EvolutionDB
from evolution_api.events import EventBus, MessageReceived, WebhookReceived
from evolution_api.exceptions import EnqueueError
from evolution_api.jobs.queue import JobQueue
from evolution_api.models import AuditEventType
from evolution_api.runtime import Runtime
from tests.conftest import WEBHOOK_SECRET, EventRecorder, encode, make_config, make_webhook_body, sign

PATH = "/api/evolution-api/webhook"


def _make_app(
    events: EventBus,
    db: EvolutionDB,
    audit_logger: Any = None,
    queue: JobQueue | None = None,
    **config: Any,
) -> tuple[FastAPI, Runtime]:
    webhook = {"secret": WEBHOOK_SECRET, **config.pop("webhook", {})}
    runtime = Runtime(
        make_config(webhook=webhook, **config),
        events=events,
        db=db,
        audit_logger=audit_logger,
        queue=queue,
    )
    return create_app(runtime.config, runtime.dispatcher(), audit_logger), runtime


async def _post(
    app: FastAPI,
    payload: Any,
    path: str = PATH,
    secret: str | None = WEBHOOK_SECRET,
    header: str = "X-Webhook-Signature",
):
    body = payload if isinstance(payload, bytes) else encode(payload)
    headers = {"Content-Type": "application/json"}
    if secret is not None:
        headers[header] = sign(body, secret)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post(path, content=body, headers=headers)


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_message_processed(
        self, events: EventBus, recorder: EventRecorder, db: EvolutionDB,
    ) -> None:
        app, _ = _make_app(events, db)
        resp = await _post(app, make_webhook_body(event="messages.upsert", instance="i1"))
        assert resp.status_code == 200
        assert resp.json() == {"status": "success", "message": "Webhook processed"}
        [received] = recorder.of_type(MessageReceived)
        assert received.instance_name == "i1"

    @pytest.mark.asyncio
    async def test_missing_event_rejected(
        self, events: EventBus, recorder: EventRecorder, db: EvolutionDB,
    ) -> None:
        app, _ = _make_app(events, db)
        resp = await _post(app, {"instance": "i1"})
        assert resp.status_code == 400
        assert resp.json() == {"status": "error", "message": "Invalid payload"}
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(
        self, events: EventBus, recorder: EventRecorder, db: EvolutionDB,
        mock_audit_logger: MagicMock,
    ) -> None:
        app, _ = _make_app(events, db, mock_audit_logger)
        resp = await _post(app, make_webhook_body(), secret=None)
        assert resp.status_code == 401
        assert resp.json() == {"status": "error", "message": "Missing signature header"}
        assert recorder.events == []
        assert db.list_webhook_logs() == []
        event = mock_audit_logger.log.call_args[0][0]
        assert event.event_type == AuditEventType.SIGNATURE_REJECTED

    @pytest.mark.asyncio
    async def test_x_signature_header_passthrough(
        self, events: EventBus, recorder: EventRecorder, db: EvolutionDB,
    ) -> None:
        app, _ = _make_app(events, db, webhook={"secret": "k"})
        resp = await _post(app, b'{"event":"test"}', secret="k", header="X-Signature")
        assert resp.status_code == 200
        [received] = recorder.of_type(WebhookReceived)
        assert received.event == "test"

    @pytest.mark.asyncio
    async def test_wrong_signature_rejected(self, events: EventBus, db: EvolutionDB) -> None:
        app, _ = _make_app(events, db)
        resp = await _post(app, make_webhook_body(), secret="not-the-secret")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid signature"


class TestInstancePath:
    @pytest.mark.asyncio
    async def test_instance_from_url(
        self, events: EventBus, recorder: EventRecorder, db: EvolutionDB,
    ) -> None:
        app, _ = _make_app(events, db)
        body = make_webhook_body()
        del body["instance"]
        resp = await _post(app, body, path=f"{PATH}/sales-01")
        assert resp.status_code == 200
        [received] = recorder.of_type(WebhookReceived)
        assert received.instance_name == "sales-01"

    @pytest.mark.asyncio
    async def test_invalid_instance_segment(self, events: EventBus, db: EvolutionDB) -> None:
        app, _ = _make_app(events, db)
        resp = await _post(app, make_webhook_body(), path=f"{PATH}/bad.name")
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_health_post_requires_signature(self, events: EventBus, db: EvolutionDB) -> None:
        app, _ = _make_app(events, db)
        resp = await _post(app, {"event": "CALL"}, path=f"{PATH}/health", secret=None)
        assert resp.status_code == 401


class TestBodies:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [b"not json", b"[1, 2]", b""])
    async def test_non_object_body(self, events: EventBus, db: EvolutionDB, raw: bytes) -> None:
        app, _ = _make_app(events, db)
        resp = await _post(app, raw)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid payload"

    @pytest.mark.asyncio
    async def test_handler_failure_500(self, events: EventBus, db: EvolutionDB) -> None:
        app, runtime = _make_app(events, db)

        def boom(payload: Any) -> None:
            raise RuntimeError("handler exploded")

        runtime.processor.register_handler("MESSAGES_UPSERT", boom)
        resp = await _post(app, make_webhook_body())
        assert resp.status_code == 500
        assert resp.json() == {"status": "error", "message": "handler exploded"}


    @pytest.mark.asyncio
    async def test_handlers_run_off_the_event_loop_thread(
        self, events: EventBus, db: EvolutionDB,
    ) -> None:
        app, runtime = _make_app(events, db)
        threads: list[int] = []
        runtime.processor.register_handler(
            "MESSAGES_UPSERT", lambda payload: threads.append(threading.get_ident()),
        )
        resp = await _post(app, make_webhook_body())
        assert resp.status_code == 200
        assert threads and threads[0] != threading.get_ident()


class TestQueue:
    @pytest.mark.asyncio
    async def test_queued(self, events: EventBus, recorder: EventRecorder, db: EvolutionDB) -> None:
        queue = MagicMock(spec=JobQueue)
        app, _ = _make_app(events, db, queue=queue, webhook={"queue": True})
        resp = await _post(app, make_webhook_body())
        assert resp.json() == {"status": "success", "message": "Webhook queued"}
        queue.submit_webhook.assert_called_once()
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_enqueue_failure_falls_back(
        self, events: EventBus, recorder: EventRecorder, db: EvolutionDB,
    ) -> None:
        queue = MagicMock(spec=JobQueue)
        queue.submit_webhook.side_effect = EnqueueError("broker down")
        app, _ = _make_app(events, db, queue=queue, webhook={"queue": True})
        resp = await _post(app, make_webhook_body())
        assert resp.status_code == 200
        assert resp.json()["message"] == "Webhook processed"
        assert recorder.of_type(MessageReceived)

    @pytest.mark.asyncio
    async def test_sync_driver_runs_inline(
        self, events: EventBus, recorder: EventRecorder, db: EvolutionDB,
    ) -> None:
        app, _ = _make_app(events, db, webhook={"queue": True})
        resp = await _post(app, make_webhook_body())
        assert resp.json() == {"status": "success", "message": "Webhook processed"}
        assert recorder.of_type(MessageReceived)

    @pytest.mark.asyncio
    async def test_sync_driver_handler_failure_500(self, events: EventBus, db: EvolutionDB) -> None:
        app, runtime = _make_app(events, db, webhook={"queue": True})

        def boom(payload: Any) -> None:
            raise RuntimeError("handler exploded")

        runtime.processor.register_handler("MESSAGES_UPSERT", boom)
        resp = await _post(app, make_webhook_body())
        assert resp.status_code == 500
        assert resp.json() == {"status": "error", "message": "handler exploded"}
        [row] = db.list_webhook_logs()
        assert row["status"] == "failed"


@pytest.mark.asyncio
async def test_health_is_unsigned(events: EventBus, db: EvolutionDB) -> None:
    app, _ = _make_app(events, db)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get(f"{PATH}/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["service"] == "evolution-api-webhook"
    assert datetime.fromisoformat(body["timestamp"])
