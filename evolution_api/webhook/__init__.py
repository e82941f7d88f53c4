"""Inbound webhook pipeline for evolution-api-bridge.

This module provides:
- HMAC signature verification and the ASGI middleware enforcing it
- Payload normalization
- Dispatch to the queue or in-line processing
- Routing of known events to typed notifications and handlers
"""

from evolution_api.webhook.dispatcher import WebhookDispatcher
from evolution_api.webhook.middleware import VerifyWebhookSignature
from evolution_api.webhook.models import WebhookPayload, WebhookResponse
from evolution_api.webhook.processor import WebhookProcessor, detect_message_type
from evolution_api.webhook.signature import SignatureResult, compute_signature, verify

__all__ = [
    "SignatureResult",
    "VerifyWebhookSignature",
    "WebhookDispatcher",
    "WebhookPayload",
    "WebhookProcessor",
    "WebhookResponse",
    "compute_signature",
    "detect_message_type",
    "verify",
]
