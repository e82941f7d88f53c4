"""Endpoint groups of the Evolution API used by jobs and commands."""

from __future__ import annotations

from typing import Any

from evolution_api.client.http import EvolutionClient
from evolution_api.exceptions import ConfigurationError
from evolution_api.models import ApiResponse

_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "text": ("number", "text"),
    "media": ("number", "mediatype", "media"),
    "audio": ("number", "audio"),
    "location": ("number", "latitude", "longitude"),
}


def _require(kind: str, message: dict[str, Any]) -> None:
    missing = [f for f in _REQUIRED_FIELDS[kind] if message.get(f) in (None, "")]
    if missing:
        raise ConfigurationError(
            f"{kind} message is missing required field(s): {', '.join(missing)}",
        )


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


class MessagesResource:
    def __init__(self, client: EvolutionClient, instance: str) -> None:
        self._client = client
        self._instance = instance

    def send_text(self, message: dict[str, Any]) -> ApiResponse:
        _require("text", message)
        return self._client.post(
            "message/sendText/{instance}", _drop_none(message), instance=self._instance,
        )

    def send_media(self, message: dict[str, Any]) -> ApiResponse:
        _require("media", message)
        return self._client.post(
            "message/sendMedia/{instance}", _drop_none(message), instance=self._instance,
        )

    def send_audio(self, message: dict[str, Any]) -> ApiResponse:
        _require("audio", message)
        return self._client.post(
            "message/sendWhatsAppAudio/{instance}", _drop_none(message),
            instance=self._instance,
        )

    def send_location(self, message: dict[str, Any]) -> ApiResponse:
        _require("location", message)
        return self._client.post(
            "message/sendLocation/{instance}", _drop_none(message),
            instance=self._instance,
        )


class InstancesResource:
    def __init__(self, client: EvolutionClient) -> None:
        self._client = client

    def fetch_all(self) -> ApiResponse:
        return self._client.get("instance/fetchInstances")

    def connect(self, instance: str) -> ApiResponse:
        return self._client.get("instance/connect/{instance}", instance=instance)

    def connection_state(self, instance: str) -> ApiResponse:
        return self._client.get("instance/connectionState/{instance}", instance=instance)

    def logout(self, instance: str) -> ApiResponse:
        return self._client.delete("instance/logout/{instance}", instance=instance)


def instance_summary(item: dict[str, Any]) -> dict[str, Any]:
    """Flatten one ``fetchInstances`` entry across server API versions."""
    nested = item.get("instance") if isinstance(item.get("instance"), dict) else {}
    return {
        "name": nested.get("instanceName") or item.get("name"),
        "status": nested.get("status") or item.get("connectionStatus")
        or item.get("status") or "unknown",
        "owner": nested.get("owner") or item.get("ownerJid") or item.get("owner"),
        "profile_name": nested.get("profileName") or item.get("profileName"),
        "profile_picture_url": nested.get("profilePictureUrl")
        or item.get("profilePicUrl"),
    }
