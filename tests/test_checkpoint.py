from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from guestsync.exceptions import ConfigurationError
from guestsync.models import SyncCheckpointRecord
from guestsync.pipeline.checkpoint import JsonFileCheckpointStore, SqlCheckpointStore, advance_checkpoint
from guestsync.pipeline.records import SyncCheckpoint

STARTED = datetime(2026, 3, 1, 10, 30, tzinfo=timezone.utc)


def test_json_store_starts_empty(tmp_path):
    store = JsonFileCheckpointStore(tmp_path / "sync-state.json")
    assert store.load() == SyncCheckpoint()


def test_json_store_round_trip_uses_camel_case_layout(tmp_path):
    path = tmp_path / "state" / "sync-state.json"
    store = JsonFileCheckpointStore(path)

    advance_checkpoint(store, STARTED, 12)

    assert json.loads(path.read_text(encoding="utf-8")) == {
        "lastSyncTimestamp": "2026-03-01T10:30:00Z",
        "lastSyncStatus": "success",
        "lastSyncRecordCount": 12,
    }
    loaded = store.load()
    assert loaded.last_sync_timestamp == STARTED
    assert loaded.last_sync_status == "success"
    assert loaded.last_sync_record_count == 12
    assert [p.name for p in path.parent.iterdir()] == ["sync-state.json"]


def test_json_store_reads_legacy_file(tmp_path):
    path = tmp_path / "sync-state.json"
    path.write_text(
        json.dumps({"lastSyncTimestamp": "2026-02-01T08:00:00.000Z", "lastSyncRecordCount": 3, "lastSyncStatus": "failed"}),
        encoding="utf-8",
    )

    loaded = JsonFileCheckpointStore(path).load()

    assert loaded.last_sync_timestamp == datetime(2026, 2, 1, 8, 0, tzinfo=timezone.utc)
    assert loaded.last_sync_status == "failed"


def test_json_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / "sync-state.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        JsonFileCheckpointStore(path).load()


def test_json_store_reset(tmp_path):
    store = JsonFileCheckpointStore(tmp_path / "sync-state.json")
    advance_checkpoint(store, STARTED, 1)

    store.reset()

    assert store.load() == SyncCheckpoint()
    store.reset()


def test_sql_store_round_trip(session):
    store = SqlCheckpointStore(session, "pms-guests")
    assert store.load() == SyncCheckpoint()

    advance_checkpoint(store, STARTED, 5)
    advance_checkpoint(store, STARTED.replace(hour=11), 7)

    loaded = store.load()
    assert loaded.last_sync_timestamp == STARTED.replace(hour=11)
    assert loaded.last_sync_record_count == 7
    assert session.query(SyncCheckpointRecord).count() == 1


def test_sql_store_keeps_named_checkpoints_apart(session):
    advance_checkpoint(SqlCheckpointStore(session, "pms-guests"), STARTED, 5)

    assert SqlCheckpointStore(session, "other").load() == SyncCheckpoint()


def test_sql_store_reset(session):
    store = SqlCheckpointStore(session, "pms-guests")
    advance_checkpoint(store, STARTED, 5)

    store.reset()

    assert store.load() == SyncCheckpoint()
