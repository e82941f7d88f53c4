"""Outbound message job with bounded retry and an explicit backoff table."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any

from evolution_api.client.resources import MessagesResource
from evolution_api.config import QueueConfig
from evolution_api.db import EvolutionDB
from evolution_api.events import EventBus, MessageFailed, MessageSent
from evolution_api.exceptions import ConfigurationError, SendFailure
from evolution_api.models import ApiResponse, FailedMessageRecord, MessageType

logger = logging.getLogger(__name__)

DEFAULT_TRIES = 3
DEFAULT_BACKOFF = (60, 300, 900)


class JobState(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


_SENDERS: dict[MessageType, Callable[[MessagesResource, dict[str, Any]], ApiResponse]] = {
    MessageType.TEXT: MessagesResource.send_text,
    MessageType.MEDIA: MessagesResource.send_media,
    MessageType.AUDIO: MessagesResource.send_audio,
    MessageType.LOCATION: MessagesResource.send_location,
}


class SendMessageJob:
    """One outbound message.

    Each ``attempt`` makes exactly one send call. The queue runtime decides
    when to call ``attempt`` again (after ``backoff_for(n)`` seconds) and
    calls ``exhausted`` once ``tries`` attempts have failed.
    """

    def __init__(
        self,
        instance_name: str,
        message_type: str | MessageType,
        message: dict[str, Any],
        connection_name: str | None = None,
        tries: int = DEFAULT_TRIES,
        backoff: Sequence[int] = DEFAULT_BACKOFF,
    ) -> None:
        try:
            self.message_type = MessageType(message_type)
        except ValueError:
            raise ConfigurationError(f"Unknown message type: {message_type}") from None
        if tries < 1:
            raise ConfigurationError("tries must be at least 1")
        if not backoff:
            raise ConfigurationError("backoff schedule must contain at least one duration")

        self.instance_name = instance_name
        self.message = dict(message)
        self.connection_name = connection_name
        self.tries = tries
        self.backoff = tuple(backoff)
        self.state = JobState.PENDING
        self.attempts = 0

    @classmethod
    def from_config(
        cls,
        config: QueueConfig,
        instance_name: str,
        message_type: str | MessageType,
        message: dict[str, Any],
        connection_name: str | None = None,
    ) -> SendMessageJob:
        return cls(
            instance_name, message_type, message,
            connection_name=connection_name,
            tries=config.max_exceptions,
            backoff=config.backoff,
        )

    # --- factories ---

    @classmethod
    def text(
        cls, instance_name: str, number: str, text: str, **options: Any,
    ) -> SendMessageJob:
        job_kwargs = _pop_job_kwargs(options)
        return cls(
            instance_name, MessageType.TEXT,
            {"number": number, "text": text, **options}, **job_kwargs,
        )

    @classmethod
    def media(
        cls,
        instance_name: str,
        number: str,
        media: str,
        mediatype: str = "image",
        caption: str | None = None,
        **options: Any,
    ) -> SendMessageJob:
        job_kwargs = _pop_job_kwargs(options)
        message = {"number": number, "mediatype": mediatype, "media": media, **options}
        if caption is not None:
            message["caption"] = caption
        return cls(instance_name, MessageType.MEDIA, message, **job_kwargs)

    @classmethod
    def audio(
        cls, instance_name: str, number: str, audio: str, **options: Any,
    ) -> SendMessageJob:
        job_kwargs = _pop_job_kwargs(options)
        return cls(
            instance_name, MessageType.AUDIO,
            {"number": number, "audio": audio, **options}, **job_kwargs,
        )

    @classmethod
    def location(
        cls,
        instance_name: str,
        number: str,
        latitude: float,
        longitude: float,
        name: str | None = None,
        address: str | None = None,
        **options: Any,
    ) -> SendMessageJob:
        job_kwargs = _pop_job_kwargs(options)
        message: dict[str, Any] = {
            "number": number, "latitude": latitude, "longitude": longitude, **options,
        }
        if name is not None:
            message["name"] = name
        if address is not None:
            message["address"] = address
        return cls(instance_name, MessageType.LOCATION, message, **job_kwargs)

    # --- serialization ---

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_name": self.instance_name,
            "message_type": self.message_type.value,
            "message": self.message,
            "connection_name": self.connection_name,
            "tries": self.tries,
            "backoff": list(self.backoff),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SendMessageJob:
        return cls(
            data["instance_name"],
            data["message_type"],
            data.get("message") or {},
            connection_name=data.get("connection_name"),
            tries=data.get("tries", DEFAULT_TRIES),
            backoff=data.get("backoff") or DEFAULT_BACKOFF,
        )

    @classmethod
    def from_failed_record(cls, record: FailedMessageRecord) -> SendMessageJob:
        return cls(
            record.instance_name, record.message_type, record.payload,
            connection_name=record.connection_name, tries=1,
        )

    @property
    def recipient(self) -> str:
        return str(self.message.get("number", ""))

    def tags(self) -> list[str]:
        return [
            "evolution-api",
            "message",
            f"instance:{self.instance_name}",
            f"type:{self.message_type.value}",
        ]

    def backoff_for(self, attempt: int) -> int:
        """Delay before retrying after failed attempt number ``attempt`` (1-based)."""
        index = min(max(attempt, 1) - 1, len(self.backoff) - 1)
        return self.backoff[index]

    # --- execution ---

    def attempt(
        self,
        messages: MessagesResource,
        events: EventBus,
        db: EvolutionDB | None = None,
        store_message: bool = True,
    ) -> ApiResponse:
        """Make one send call. Raises ``SendFailure`` on any failure."""
        self.attempts += 1
        self.state = JobState.SENDING
        logger.info(
            "Sending %s message instance=%s attempt=%d/%d",
            self.message_type.value, self.instance_name, self.attempts, self.tries,
        )

        try:
            response = _SENDERS[self.message_type](messages, self.message)
        except ConfigurationError:
            self.state = JobState.FAILED
            raise
        except Exception as exc:
            self._fail(events, str(exc) or type(exc).__name__)
            raise SendFailure(str(exc) or type(exc).__name__) from exc

        if response.failed:
            error = response.error or "Unknown error"
            self._fail(events, error)
            raise SendFailure(error, status_code=response.status_code)

        self.state = JobState.SUCCEEDED
        events.emit(MessageSent(
            instance_name=self.instance_name,
            message_type=self.message_type.value,
            message=self.message,
            response=response.data,
        ))
        if db is not None and store_message:
            db.log_message(
                self.instance_name, self.recipient, self.message_type.value,
                self.message, response.data,
            )
        return response

    def _fail(self, events: EventBus, error: str) -> None:
        self.state = JobState.FAILED
        logger.warning(
            "Send failed instance=%s type=%s attempt=%d: %s",
            self.instance_name, self.message_type.value, self.attempts, error,
        )
        events.emit(MessageFailed(
            instance_name=self.instance_name,
            message_type=self.message_type.value,
            message=self.message,
            error=error,
            attempt=self.attempts,
        ))

    def exhausted(
        self,
        error: BaseException | str,
        events: EventBus,
        db: EvolutionDB | None = None,
    ) -> FailedMessageRecord:
        """Terminal failure: emit once and persist a failed message record."""
        message = str(error) or type(error).__name__
        self.state = JobState.EXHAUSTED
        logger.error(
            "Message exhausted after %d attempt(s) instance=%s type=%s: %s",
            self.attempts, self.instance_name, self.message_type.value, message,
        )
        events.emit(MessageFailed(
            instance_name=self.instance_name,
            message_type=self.message_type.value,
            message=self.message,
            error=message,
            attempt=self.attempts,
            terminal=True,
        ))
        record = FailedMessageRecord(
            instance_name=self.instance_name,
            recipient=self.recipient,
            message_type=self.message_type,
            payload=self.message,
            last_error=message,
            connection_name=self.connection_name,
        )
        if db is not None:
            record.id = db.add_failed_message(record)
        return record

    def run_inline(
        self,
        messages: MessagesResource,
        events: EventBus,
        db: EvolutionDB | None = None,
        sleep: Callable[[float], None] = time.sleep,
        store_message: bool = True,
    ) -> ApiResponse | None:
        """Run every attempt in-process, sleeping out the backoff between them.

        Returns ``None`` when the job exhausts its tries.
        """
        while True:
            try:
                return self.attempt(messages, events, db, store_message)
            except SendFailure as exc:
                if self.attempts >= self.tries:
                    self.exhausted(exc, events, db)
                    return None
                self.state = JobState.PENDING
                sleep(self.backoff_for(self.attempts))


def _pop_job_kwargs(options: dict[str, Any]) -> dict[str, Any]:
    return {
        key: options.pop(key)
        for key in ("connection_name", "tries", "backoff")
        if key in options
    }
