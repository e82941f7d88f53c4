"""Tests for the SQLite storage layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from evolution_api.db import EvolutionDB
from evolution_api.models import FailedMessageRecord, InstanceRecord, MessageType


def _make_failed(**kwargs: object) -> FailedMessageRecord:
    defaults: dict[str, object] = {
        "instance_name": "main",
        "recipient": "5511999999999",
        "message_type": MessageType.TEXT,
        "payload": {"number": "5511999999999", "text": "Hello"},
        "last_error": "boom",
    }
    defaults.update(kwargs)
    return FailedMessageRecord(**defaults)  # type: ignore[arg-type]


def test_creates_parent_directory(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "evolution.db"
    database = EvolutionDB(str(path))
    database.close()
    assert path.exists()


def test_create_tables_is_idempotent(db: EvolutionDB) -> None:
    db.create_tables()
    tables = {
        r[0] for r in db.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }
    assert {"instances", "messages", "webhook_logs", "failed_messages"} <= tables


class TestInstances:
    def test_upsert_inserts_then_updates(self, db: EvolutionDB) -> None:
        db.upsert_instance(InstanceRecord(name="main", status="connecting"))
        db.upsert_instance(InstanceRecord(name="main", status="open", phone_number="5511"))
        record = db.get_instance("main")
        assert record is not None
        assert record.status == "open"
        assert record.phone_number == "5511"
        assert record.last_seen_at is not None

    def test_missing_instance(self, db: EvolutionDB) -> None:
        assert db.get_instance("nope") is None


class TestLogs:
    def test_log_message(self, db: EvolutionDB) -> None:
        row_id = db.log_message("main", "5511", "text", {"text": "hi"}, {"key": {"id": "1"}})
        row = db.conn.execute("SELECT * FROM messages WHERE id = ?", (row_id,)).fetchone()
        assert json.loads(row["payload"]) == {"text": "hi"}
        assert json.loads(row["response"]) == {"key": {"id": "1"}}

    def test_log_webhook(self, db: EvolutionDB) -> None:
        db.log_webhook("main", "CALL", {"event": "CALL"}, "failed", "nope", 12)
        [row] = db.list_webhook_logs()
        assert row["status"] == "failed"
        assert row["error_message"] == "nope"
        assert row["processing_time_ms"] == 12


class TestFailedMessages:
    def test_add_and_get(self, db: EvolutionDB) -> None:
        record_id = db.add_failed_message(_make_failed(connection_name="b"))
        record = db.get_failed_message(record_id)
        assert record is not None
        assert record.id == record_id
        assert record.message_type is MessageType.TEXT
        assert record.payload["text"] == "Hello"
        assert record.connection_name == "b"

    def test_list_retryable_filters_and_orders(self, db: EvolutionDB) -> None:
        db.add_failed_message(_make_failed(created_at="2026-01-02T00:00:00+00:00"))
        db.add_failed_message(_make_failed(created_at="2026-01-01T00:00:00+00:00"))
        db.add_failed_message(_make_failed(instance_name="other"))
        exhausted = db.add_failed_message(_make_failed(retry_count=3))

        records = db.list_retryable(max_retries=3, limit=10, instance_name="main")
        assert [r.created_at[:10] for r in records] == ["2026-01-01", "2026-01-02"]
        assert exhausted not in {r.id for r in db.list_retryable(3, 10)}
        assert len(db.list_retryable(3, 1)) == 1

    def test_record_retry_failure(self, db: EvolutionDB) -> None:
        record_id = db.add_failed_message(_make_failed())
        db.record_retry_failure(record_id, "still failing")
        record = db.get_failed_message(record_id)
        assert record is not None
        assert record.retry_count == 1
        assert record.last_error == "still failing"

    def test_delete(self, db: EvolutionDB) -> None:
        record_id = db.add_failed_message(_make_failed())
        db.delete_failed_message(record_id)
        assert db.get_failed_message(record_id) is None


class TestPruning:
    def test_count_and_delete_older_than(self, db: EvolutionDB) -> None:
        db.log_message("main", "1", "text", {}, created_at="2020-01-01T00:00:00+00:00")
        db.log_message("main", "1", "text", {})
        cutoff = "2025-01-01T00:00:00+00:00"
        assert db.count_older_than("messages", cutoff) == 1
        assert db.delete_older_than("messages", cutoff) == 1
        assert db.count_older_than("messages", cutoff) == 0
        assert db.conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 1

    def test_rejects_unknown_table(self, db: EvolutionDB) -> None:
        with pytest.raises(ValueError, match="cannot be pruned"):
            db.delete_older_than("instances", "2025-01-01")
