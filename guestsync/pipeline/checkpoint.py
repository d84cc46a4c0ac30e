"""
Sync checkpoint stores.

The checkpoint is the high-water mark the extraction collaborator reads
changes from. It advances only after a run completes without a fatal error,
and the new mark is the run's start time so source rows edited while a run
was in flight are picked up again by the next one.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from guestsync.exceptions import ConfigurationError
from guestsync.models import SyncCheckpointRecord, as_utc

from .records import SyncCheckpoint

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"


class CheckpointStore(Protocol):
    def load(self) -> SyncCheckpoint: ...

    def save(self, checkpoint: SyncCheckpoint, *, run_id: int | None = None) -> None: ...

    def reset(self) -> None: ...


def _parse_timestamp(value: object | None) -> datetime | None:
    if value in (None, ""):
        return None
    token = str(value).strip()
    if token.endswith("Z"):
        token = token[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(token)
    except ValueError as exc:
        raise ConfigurationError(f"Checkpoint timestamp {value!r} is not ISO-8601.") from exc
    return as_utc(parsed)


def _format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def advance_checkpoint(store: CheckpointStore, started_at: datetime, record_count: int, *, run_id: int | None = None) -> SyncCheckpoint:
    """Record a successful run that started at ``started_at``."""

    checkpoint = SyncCheckpoint(
        last_sync_timestamp=as_utc(started_at),
        last_sync_status=STATUS_SUCCESS,
        last_sync_record_count=record_count,
    )
    store.save(checkpoint, run_id=run_id)
    logger.info(
        "Advanced sync checkpoint",
        extra={"last_sync_timestamp": _format_timestamp(started_at), "record_count": record_count},
    )
    return checkpoint


class JsonFileCheckpointStore:
    """
    Checkpoint kept in a small JSON file::

        {"lastSyncTimestamp": "2026-03-01T10:00:00Z", "lastSyncStatus": "success", "lastSyncRecordCount": 12}

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash mid-write never leaves a truncated checkpoint.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> SyncCheckpoint:
        if not self.path.exists():
            logger.info("No existing sync checkpoint found, starting fresh", extra={"path": str(self.path)})
            return SyncCheckpoint()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Unable to read checkpoint file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Checkpoint file {self.path} must contain a JSON object.")
        return SyncCheckpoint(
            last_sync_timestamp=_parse_timestamp(data.get("lastSyncTimestamp")),
            last_sync_status=data.get("lastSyncStatus"),
            last_sync_record_count=int(data.get("lastSyncRecordCount") or 0),
        )

    def save(self, checkpoint: SyncCheckpoint, *, run_id: int | None = None) -> None:
        payload = {
            "lastSyncTimestamp": _format_timestamp(checkpoint.last_sync_timestamp),
            "lastSyncStatus": checkpoint.last_sync_status,
            "lastSyncRecordCount": checkpoint.last_sync_record_count,
        }
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_name, self.path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def reset(self) -> None:
        self.path.unlink(missing_ok=True)


class SqlCheckpointStore:
    """Checkpoint stored in the ``sync_checkpoints`` table under ``name``."""

    def __init__(self, session: Session, name: str):
        self.session = session
        self.name = name

    def _record(self) -> SyncCheckpointRecord | None:
        return self.session.scalar(select(SyncCheckpointRecord).where(SyncCheckpointRecord.name == self.name))

    def load(self) -> SyncCheckpoint:
        record = self._record()
        if record is None:
            return SyncCheckpoint()
        return SyncCheckpoint(
            last_sync_timestamp=as_utc(record.last_sync_timestamp),
            last_sync_status=record.last_sync_status,
            last_sync_record_count=record.last_sync_record_count,
        )

    def save(self, checkpoint: SyncCheckpoint, *, run_id: int | None = None) -> None:
        with self._transaction():
            record = self._record()
            if record is None:
                record = SyncCheckpointRecord(name=self.name)
                self.session.add(record)
            record.last_sync_timestamp = checkpoint.last_sync_timestamp
            record.last_sync_status = checkpoint.last_sync_status
            record.last_sync_record_count = checkpoint.last_sync_record_count
            if run_id is not None:
                record.last_run_id = run_id

    def reset(self) -> None:
        with self._transaction():
            record = self._record()
            if record is not None:
                self.session.delete(record)

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


__all__ = [
    "CheckpointStore",
    "JsonFileCheckpointStore",
    "STATUS_SUCCESS",
    "SqlCheckpointStore",
    "advance_checkpoint",
]
