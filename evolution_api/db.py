"""SQLite storage for instances, message log, webhook log and failed sends."""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from evolution_api.models import FailedMessageRecord, InstanceRecord

PRUNABLE_TABLES = ("messages", "webhook_logs", "failed_messages")


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class EvolutionDB:
    """SQLite-backed local state. Row-level safety is left to SQLite."""

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.create_tables()

    def create_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS instances (
                name TEXT PRIMARY KEY,
                connection_name TEXT NOT NULL DEFAULT 'default',
                phone_number TEXT,
                status TEXT NOT NULL DEFAULT 'unknown',
                profile_name TEXT,
                profile_picture_url TEXT,
                last_seen_at TEXT
            );
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_name TEXT NOT NULL,
                recipient TEXT NOT NULL,
                message_type TEXT NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}',
                response TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_messages_created ON messages (created_at);
            CREATE TABLE IF NOT EXISTS webhook_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_name TEXT,
                event TEXT NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL,
                error_message TEXT,
                processing_time_ms INTEGER,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_webhook_logs_created ON webhook_logs (created_at);
            CREATE TABLE IF NOT EXISTS failed_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_name TEXT NOT NULL,
                recipient TEXT NOT NULL,
                message_type TEXT NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}',
                connection_name TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_failed_messages_created
                ON failed_messages (created_at);
        """)
        self.conn.commit()

    # --- instances ---

    def upsert_instance(self, record: InstanceRecord) -> None:
        self.conn.execute(
            """INSERT INTO instances
               (name, connection_name, phone_number, status, profile_name,
                profile_picture_url, last_seen_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(name) DO UPDATE SET
                 connection_name=excluded.connection_name,
                 phone_number=excluded.phone_number, status=excluded.status,
                 profile_name=excluded.profile_name,
                 profile_picture_url=excluded.profile_picture_url,
                 last_seen_at=excluded.last_seen_at""",
            (
                record.name, record.connection_name, record.phone_number,
                record.status, record.profile_name, record.profile_picture_url,
                record.last_seen_at or _now_iso(),
            ),
        )
        self.conn.commit()

    def get_instance(self, name: str) -> InstanceRecord | None:
        row = self.conn.execute(
            "SELECT * FROM instances WHERE name = ?", (name,),
        ).fetchone()
        return InstanceRecord(**dict(row)) if row else None

    # --- message and webhook logs ---

    def log_message(
        self,
        instance_name: str,
        recipient: str,
        message_type: str,
        payload: dict[str, Any],
        response: Any = None,
        created_at: str | None = None,
    ) -> int:
        cur = self.conn.execute(
            """INSERT INTO messages
               (instance_name, recipient, message_type, payload, response, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                instance_name, recipient, message_type, json.dumps(payload),
                json.dumps(response) if response is not None else None,
                created_at or _now_iso(),
            ),
        )
        self.conn.commit()
        return int(cur.lastrowid or 0)

    def log_webhook(
        self,
        instance_name: str | None,
        event: str,
        payload: dict[str, Any],
        status: str,
        error_message: str | None = None,
        processing_time_ms: int | None = None,
        created_at: str | None = None,
    ) -> int:
        cur = self.conn.execute(
            """INSERT INTO webhook_logs
               (instance_name, event, payload, status, error_message,
                processing_time_ms, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                instance_name, event, json.dumps(payload, default=str), status,
                error_message, processing_time_ms, created_at or _now_iso(),
            ),
        )
        self.conn.commit()
        return int(cur.lastrowid or 0)

    def list_webhook_logs(self) -> list[dict[str, Any]]:
        rows = self.conn.execute("SELECT * FROM webhook_logs ORDER BY id").fetchall()
        return [dict(r) for r in rows]

    # --- failed messages ---

    def add_failed_message(self, record: FailedMessageRecord) -> int:
        cur = self.conn.execute(
            """INSERT INTO failed_messages
               (instance_name, recipient, message_type, payload, connection_name,
                retry_count, last_error, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.instance_name, record.recipient, record.message_type.value,
                json.dumps(record.payload), record.connection_name,
                record.retry_count, record.last_error, record.created_at,
            ),
        )
        self.conn.commit()
        return int(cur.lastrowid or 0)

    def list_retryable(
        self,
        max_retries: int,
        limit: int,
        instance_name: str | None = None,
    ) -> list[FailedMessageRecord]:
        query = "SELECT * FROM failed_messages WHERE retry_count < ?"
        params: list[Any] = [max_retries]
        if instance_name:
            query += " AND instance_name = ?"
            params.append(instance_name)
        query += " ORDER BY created_at ASC, id ASC LIMIT ?"
        params.append(limit)
        rows = self.conn.execute(query, params).fetchall()
        return [self._failed_from_row(r) for r in rows]

    def get_failed_message(self, record_id: int) -> FailedMessageRecord | None:
        row = self.conn.execute(
            "SELECT * FROM failed_messages WHERE id = ?", (record_id,),
        ).fetchone()
        return self._failed_from_row(row) if row else None

    def record_retry_failure(self, record_id: int, error: str) -> None:
        self.conn.execute(
            """UPDATE failed_messages
               SET retry_count = retry_count + 1, last_error = ?
               WHERE id = ?""",
            (error, record_id),
        )
        self.conn.commit()

    def delete_failed_message(self, record_id: int) -> None:
        self.conn.execute("DELETE FROM failed_messages WHERE id = ?", (record_id,))
        self.conn.commit()

    @staticmethod
    def _failed_from_row(row: sqlite3.Row) -> FailedMessageRecord:
        data = dict(row)
        data["payload"] = json.loads(data["payload"] or "{}")
        return FailedMessageRecord(**data)

    # --- pruning ---

    def count_older_than(self, table: str, cutoff: str) -> int:
        self._check_prunable(table)
        row = self.conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE created_at < ?", (cutoff,),  # noqa: S608
        ).fetchone()
        return int(row[0])

    def delete_older_than(self, table: str, cutoff: str) -> int:
        self._check_prunable(table)
        cur = self.conn.execute(
            f"DELETE FROM {table} WHERE created_at < ?", (cutoff,),  # noqa: S608
        )
        self.conn.commit()
        return cur.rowcount

    @staticmethod
    def _check_prunable(table: str) -> None:
        if table not in PRUNABLE_TABLES:
            raise ValueError(f"Table '{table}' cannot be pruned")

    def close(self) -> None:
        self.conn.close()
