"""ASGI middleware enforcing webhook signatures on the webhook routes."""

from __future__ import annotations

import logging

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from evolution_api.audit.logger import AuditLogger
from evolution_api.config import WebhookConfig
from evolution_api.exceptions import SignatureRejectedError
from evolution_api.models import AuditEvent, AuditEventType, RiskLevel
from evolution_api.webhook import signature

logger = logging.getLogger(__name__)


class VerifyWebhookSignature:
    """Rejects POSTs under ``webhook.path`` whose HMAC does not match.

    The body is read in full, verified, then replayed to the wrapped app.
    Only POSTs are checked, so the GET health route passes through.
    """

    def __init__(
        self,
        app: ASGIApp,
        config: WebhookConfig,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.app = app
        self._config = config
        self._prefix = config.path.rstrip("/")
        self.audit_logger = audit_logger

    def _applies_to(self, scope: Scope) -> bool:
        if scope["type"] != "http" or scope["method"] != "POST":
            return False
        path: str = scope["path"].rstrip("/") or "/"
        return path == self._prefix or path.startswith(self._prefix + "/")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self._applies_to(scope):
            await self.app(scope, receive, send)
            return

        body = await _read_body(receive)
        headers = Headers(scope=scope)
        result = signature.verify(
            body, headers, self._config.secret, self._config.verify_signature,
        )

        if not result.allowed:
            error = SignatureRejectedError(result.reason or signature.INVALID_SIGNATURE)
            logger.warning("Webhook signature rejected: %s", error.message)
            self._log_rejection(scope, error.message)
            response = JSONResponse(
                {"status": "error", "message": error.message},
                status_code=error.status_code,
            )
            await response(scope, receive, send)
            return

        await self.app(scope, _replay(body, receive), send)

    def _log_rejection(self, scope: Scope, reason: str) -> None:
        if not self.audit_logger:
            return
        client = scope.get("client")
        self.audit_logger.log(AuditEvent(
            event_type=AuditEventType.SIGNATURE_REJECTED,
            source_ip=client[0] if client else None,
            action=f"POST {scope['path']}",
            result="rejected",
            risk_level=RiskLevel.HIGH,
            details={"reason": reason},
        ))


async def _read_body(receive: Receive) -> bytes:
    chunks: list[bytes] = []
    more_body = True
    while more_body:
        message = await receive()
        if message["type"] != "http.request":
            break
        chunks.append(message.get("body", b""))
        more_body = message.get("more_body", False)
    return b"".join(chunks)


def _replay(body: bytes, receive: Receive) -> Receive:
    sent = False

    async def replay_receive() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay_receive
