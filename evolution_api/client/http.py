"""HTTP client for the Evolution API REST server."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from typing import Any

import httpx

from evolution_api.client.rate_limiter import ClientRateLimiter
from evolution_api.config import EvolutionConfig
from evolution_api.exceptions import (
    ApiConnectionError,
    AuthenticationError,
    EvolutionApiError,
    InstanceNotFoundError,
    RateLimitError,
)
from evolution_api.models import ApiResponse

logger = logging.getLogger(__name__)

_MEDIA_ENDPOINT = re.compile(
    r"/(sendMedia|sendImage|sendVideo|sendAudio|sendWhatsAppAudio|sendDocument|sendSticker)",
    re.IGNORECASE,
)
_MESSAGE_ENDPOINT = re.compile(r"/(send|message)", re.IGNORECASE)


class EvolutionClient:
    """Synchronous Evolution API client bound to one named connection.

    Failed responses come back as unsuccessful ``ApiResponse`` objects unless
    ``throw_on_error`` is set. Transport errors always raise
    ``ApiConnectionError`` once HTTP-level retries are used up.
    """

    def __init__(
        self,
        config: EvolutionConfig,
        connection_name: str | None = None,
        rate_limiter: ClientRateLimiter | None = None,
        transport: httpx.BaseTransport | None = None,
        throw_on_error: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self.connection_name = connection_name or "default"
        self._connection = config.connection(self.connection_name)
        self._rate_limiter = rate_limiter
        self._throw_on_error = throw_on_error
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=self._connection.server_url,
            headers={
                "apikey": self._connection.api_key or "",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(
                config.http.timeout, connect=config.http.connect_timeout,
            ),
            verify=config.http.verify_ssl,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._connection.server_url

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> EvolutionClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # --- verbs ---

    def get(
        self, endpoint: str, query: dict[str, Any] | None = None,
        instance: str | None = None,
    ) -> ApiResponse:
        return self.request("GET", endpoint, params=query, instance=instance)

    def post(
        self, endpoint: str, data: dict[str, Any] | None = None,
        instance: str | None = None,
    ) -> ApiResponse:
        return self.request("POST", endpoint, json=data or {}, instance=instance)

    def put(
        self, endpoint: str, data: dict[str, Any] | None = None,
        instance: str | None = None,
    ) -> ApiResponse:
        return self.request("PUT", endpoint, json=data or {}, instance=instance)

    def delete(
        self, endpoint: str, data: dict[str, Any] | None = None,
        instance: str | None = None,
    ) -> ApiResponse:
        return self.request("DELETE", endpoint, json=data, instance=instance)

    def ping(self) -> bool:
        try:
            return self.get("/").success
        except EvolutionApiError:
            return False

    # --- core ---

    def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        instance: str | None = None,
    ) -> ApiResponse:
        url = self._build_url(endpoint, instance)
        if self._rate_limiter is not None:
            key = ":".join(p for p in (self.connection_name, instance) if p)
            self._rate_limiter.attempt(key, self._call_type(url))

        retry = self._config.retry
        attempts = retry.max_attempts if retry.enabled else 1
        start = time.monotonic()

        for attempt in range(1, attempts + 1):
            try:
                resp = self._http.request(method, url, params=params, json=json)
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                logger.warning(
                    "Evolution API %s %s transport error (attempt %d/%d): %s",
                    method, url, attempt, attempts, exc,
                )
                if attempt >= attempts:
                    raise ApiConnectionError(
                        f"Failed to connect to Evolution API: {exc}",
                    ) from exc
                self._sleep(self._retry_delay(attempt))
                continue
            except httpx.HTTPError as exc:
                raise ApiConnectionError(
                    f"Failed to connect to Evolution API: {exc}",
                ) from exc

            if attempt < attempts and resp.status_code in retry.retryable_status_codes:
                logger.info(
                    "Evolution API %s %s returned %d, retrying (attempt %d/%d)",
                    method, url, resp.status_code, attempt, attempts,
                )
                self._sleep(self._retry_delay(attempt))
                continue
            break

        api_response = self._to_api_response(resp, (time.monotonic() - start) * 1000)
        logger.debug(
            "Evolution API %s %s -> %d in %.0fms",
            method, url, api_response.status_code, api_response.response_time_ms,
        )
        if api_response.failed and self._throw_on_error:
            raise self._error_for(api_response)
        return api_response

    def _build_url(self, endpoint: str, instance: str | None) -> str:
        endpoint = "/" + endpoint.lstrip("/")
        if "{instance}" in endpoint:
            if not instance:
                raise InstanceNotFoundError(
                    f"An instance name is required for endpoint {endpoint}",
                )
            endpoint = endpoint.replace("{instance}", instance)
        return endpoint

    @staticmethod
    def _call_type(url: str) -> str:
        if _MEDIA_ENDPOINT.search(url):
            return "media"
        if _MESSAGE_ENDPOINT.search(url):
            return "messages"
        return "default"

    def _retry_delay(self, attempt: int) -> float:
        retry = self._config.retry
        return min(retry.base_delay * 2 ** (attempt - 1), retry.max_delay)

    @staticmethod
    def _to_api_response(resp: httpx.Response, elapsed_ms: float) -> ApiResponse:
        try:
            body: Any = resp.json()
        except ValueError:
            body = {"raw": resp.text} if resp.text else {}
        if not isinstance(body, (dict, list)):
            body = {"raw": body}

        success = resp.is_success
        # the server reports some failures in a 2xx body
        if success and isinstance(body, dict) and body.get("error"):
            success = False

        message: str | None = None
        if isinstance(body, dict) and "message" in body:
            raw = body["message"]
            message = raw if isinstance(raw, str) else str(raw)
        elif not success:
            message = resp.reason_phrase or None

        return ApiResponse(
            success=success,
            status_code=resp.status_code,
            data=body,
            message=message,
            response_time_ms=elapsed_ms,
        )

    @staticmethod
    def _error_for(response: ApiResponse) -> EvolutionApiError:
        data = response.data if isinstance(response.data, dict) else {}
        message = response.error or "Evolution API request failed"
        if response.status_code in (401, 403):
            return AuthenticationError(message, response.status_code, data)
        if response.status_code == 404:
            return InstanceNotFoundError(message, response.status_code, data)
        if response.status_code == 429:
            return RateLimitError(message)
        return EvolutionApiError(message, response.status_code, data)
