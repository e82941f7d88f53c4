"""HMAC-SHA256 verification of inbound webhook bodies."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass

# Only the first header present in this order is considered.
SIGNATURE_HEADERS = ("x-webhook-signature", "x-evolution-signature", "x-signature")

MISSING_SIGNATURE = "Missing signature header"
INVALID_SIGNATURE = "Invalid signature"


@dataclass(frozen=True)
class SignatureResult:
    allowed: bool
    reason: str | None = None


ALLOW = SignatureResult(allowed=True)


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def select_signature(headers: Mapping[str, str]) -> str | None:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in SIGNATURE_HEADERS:
        if name in lowered:
            return lowered[name]
    return None


def verify(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str | None,
    enabled: bool,
) -> SignatureResult:
    """Check ``raw_body`` against the signature header.

    Verification is skipped when disabled or when no secret is configured.
    Comparison is constant-time via ``hmac.compare_digest``.
    """
    if not enabled or not secret:
        return ALLOW

    provided = select_signature(headers)
    if not provided:
        return SignatureResult(allowed=False, reason=MISSING_SIGNATURE)

    expected = compute_signature(secret, raw_body)
    if not hmac.compare_digest(expected.encode(), provided.encode()):
        return SignatureResult(allowed=False, reason=INVALID_SIGNATURE)
    return ALLOW
