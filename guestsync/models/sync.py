"""
Persistence for sync checkpoints and the run log.

``sync_checkpoints`` holds one high-water mark per named sync.
``sync_runs`` records every run, including failed ones, with its counters
and error summary, so a failed run never has to touch the checkpoint.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class SyncRunStatus(str, enum.Enum):
    """Lifecycle states for a sync run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SyncRunRecord(Base):
    """One reconciliation run."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    checkpoint_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[SyncRunStatus] = mapped_column(
        Enum(SyncRunStatus, name="sync_run_status_enum"),
        nullable=False,
        default=SyncRunStatus.RUNNING,
        index=True,
    )
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    since: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Checkpoint timestamp the extraction window started from.",
    )
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    counts_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    review_counts_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    plan_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<SyncRunRecord id={self.id} checkpoint={self.checkpoint_name} status={self.status.value}>"


class SyncCheckpointRecord(Base):
    """High-water mark of the last successful run for a named sync."""

    __tablename__ = "sync_checkpoints"
    __table_args__ = (UniqueConstraint("name", name="uq_sync_checkpoints_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    last_sync_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Start time of the most recent successful run.",
    )
    last_sync_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_sync_record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_run_id: Mapped[int | None] = mapped_column(
        ForeignKey("sync_runs.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<SyncCheckpointRecord name={self.name} last_sync={self.last_sync_timestamp}>"
