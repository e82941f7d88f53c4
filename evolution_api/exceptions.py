"""Exception hierarchy for evolution-api-bridge."""

from __future__ import annotations

from typing import Any


class EvolutionApiError(Exception):
    """Base class for every error raised by this package."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}


class ConfigurationError(EvolutionApiError, ValueError):
    """Invalid configuration or job definition. Never retried."""


# --- Webhook side ---


class InvalidPayloadError(EvolutionApiError):
    """Webhook payload is missing a non-empty ``event``."""

    def __init__(self, message: str = "Invalid payload") -> None:
        super().__init__(message, status_code=400)


class SignatureRejectedError(EvolutionApiError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason, status_code=401)


class WebhookProcessingError(EvolutionApiError):
    """A handler or listener failed while processing a webhook."""

    def __init__(self, event: str, cause: BaseException) -> None:
        super().__init__(str(cause) or type(cause).__name__, status_code=500)
        self.event = event
        self.__cause__ = cause


class EnqueueError(EvolutionApiError):
    """The queue backend refused or could not accept a job."""


# --- Outbound side ---


class SendFailure(EvolutionApiError):
    """A send attempt failed; the queue runtime may retry it."""


class ApiConnectionError(EvolutionApiError):
    """Transport-level failure talking to the Evolution API server."""


class AuthenticationError(EvolutionApiError):
    pass


class InstanceNotFoundError(EvolutionApiError):
    pass


class RateLimitError(EvolutionApiError):
    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after
