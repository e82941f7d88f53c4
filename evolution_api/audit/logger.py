"""Audit logger: append-only JSON Lines file with size-based rotation."""

from __future__ import annotations

import fcntl
import json
import os
from pathlib import Path

from evolution_api.config import AuditConfig
from evolution_api.events import EventBus, MessageFailed
from evolution_api.models import AuditEvent, AuditEventType, RiskLevel


class AuditLogger:
    """Writes one JSON object per line; rotates to ``.1`` ... ``.N``."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count

    @classmethod
    def from_config(cls, config: AuditConfig) -> AuditLogger | None:
        if not config.log_path:
            return None
        return cls(config.log_path, config.max_bytes, config.backup_count)

    def _rotate_if_needed(self) -> None:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return

        def backup(i: int) -> Path:
            return self.log_path.parent / f"{self.log_path.name}.{i}"

        backup(self._backup_count).unlink(missing_ok=True)
        for i in range(self._backup_count - 1, 0, -1):
            if backup(i).exists():
                backup(i).rename(backup(i + 1))
        self.log_path.rename(backup(1))

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(
            json.loads(event.model_dump_json()), separators=(",", ":"),
        )

        # rotation and append happen under one lock
        lock_path = self.log_path.parent / f".{self.log_path.name}.lock"
        with open(lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                self._rotate_if_needed()
                with open(self.log_path, "a") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)


def subscribe_audit(bus: EventBus, audit_logger: AuditLogger) -> None:
    """Record every failed send attempt and every exhaustion."""

    def on_failed(event: MessageFailed) -> None:
        audit_logger.log(AuditEvent(
            event_type=(
                AuditEventType.MESSAGE_EXHAUSTED if event.terminal
                else AuditEventType.MESSAGE_FAILED
            ),
            instance_name=event.instance_name,
            action=f"send:{event.message_type}",
            result="failure",
            risk_level=RiskLevel.MEDIUM if event.terminal else RiskLevel.LOW,
            details={"attempt": event.attempt, "error": event.error},
        ))

    bus.subscribe(MessageFailed, on_failed)
