"""FastAPI application receiving Evolution API webhooks."""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI, Path, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from evolution_api.audit.logger import AuditLogger
from evolution_api.config import EvolutionConfig
from evolution_api.log import configure_logging
from evolution_api.runtime import Runtime
from evolution_api.webhook.dispatcher import WebhookDispatcher
from evolution_api.webhook.middleware import VerifyWebhookSignature
from evolution_api.webhook.models import WebhookResponse

logger = logging.getLogger(__name__)

INSTANCE_PATTERN = r"^[A-Za-z0-9_-]+$"


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from the environment."""
    config = EvolutionConfig.from_env()
    configure_logging(config.logging)
    runtime = Runtime(config)
    return create_app(config, runtime.dispatcher(), runtime.audit_logger)


def create_app(
    config: EvolutionConfig,
    dispatcher: WebhookDispatcher,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Create the webhook app with signature verification in front."""
    app = FastAPI(docs_url=None, redoc_url=None)
    path = config.webhook.path.rstrip("/")

    @app.get(f"{path}/health")
    async def health() -> dict[str, str]:
        return dispatcher.health()

    @app.post(path)
    async def receive(request: Request) -> JSONResponse:
        return await _dispatch(request, dispatcher, None)

    @app.post(f"{path}/{{instance}}")
    async def receive_for_instance(
        request: Request,
        instance: str = Path(pattern=INSTANCE_PATTERN),
    ) -> JSONResponse:
        return await _dispatch(request, dispatcher, instance)

    # Signature check wraps the whole app
    app.add_middleware(VerifyWebhookSignature, config=config.webhook, audit_logger=audit_logger)

    return app


async def _dispatch(
    request: Request,
    dispatcher: WebhookDispatcher,
    instance: str | None,
) -> JSONResponse:
    body = await request.body()
    try:
        payload = json.loads(body) if body else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None

    if not isinstance(payload, dict):
        result = WebhookResponse.error(400, "Invalid payload")
    else:
        # handle() does blocking I/O
        result = await run_in_threadpool(dispatcher.handle, payload, instance)
    return JSONResponse(result.body, status_code=result.status_code)
