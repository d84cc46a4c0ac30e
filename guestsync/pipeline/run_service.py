"""
Drive one sync run around the reconciliation engine.

A run reads the checkpoint, extracts changed rows, reconciles them, hands the
plan to the apply collaborator and, only when all of that succeeded,
advances the checkpoint. Every run, failed or not, is logged to
``sync_runs`` when a session is configured, counted in metrics and passed to
the notifier.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from config.classification import DEFAULT_RULES, ClassificationRules
from guestsync import metrics
from guestsync.exceptions import (
    ApplyError,
    CollaboratorError,
    CRMReadError,
    ExtractionError,
    InvariantViolation,
)
from guestsync.models import SyncRunRecord, SyncRunStatus, utcnow

from .checkpoint import CheckpointStore, advance_checkpoint
from .duplicates import DEFAULT_THRESHOLD, DuplicateIndex
from .engine import EnginePolicy, ReconciliationResult, reconcile
from .records import RunSummary, SyncCheckpoint, TargetStayRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Argentina/Buenos_Aires"


@dataclass(frozen=True)
class RunOutcome:
    """Everything the notifier and reporting collaborators need about a run."""

    status: SyncRunStatus
    started_at: datetime
    finished_at: datetime
    summary: RunSummary
    checkpoint: SyncCheckpoint
    result: ReconciliationResult | None = None
    error: str | None = None
    error_stage: str | None = None
    run_id: int | None = None
    dry_run: bool = False
    record_count: int = 0
    checkpoint_advanced: bool = False
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.status == SyncRunStatus.SUCCEEDED

    @property
    def review_required(self) -> bool:
        return self.result is not None and self.result.review_required

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class Notifier(Protocol):
    def notify(self, outcome: RunOutcome) -> None: ...


class SyncRunner:
    """
    One configured sync pipeline.

    ``duplicate_source`` returns the CRM stays the duplicate-likelihood index
    is built from; leave it unset to skip duplicate scoring.
    """

    def __init__(
        self,
        *,
        extractor,
        reader,
        checkpoint_store: CheckpointStore,
        apply_target=None,
        notifier: Notifier | None = None,
        rules: ClassificationRules = DEFAULT_RULES,
        policy: EnginePolicy | None = None,
        session: Session | None = None,
        checkpoint_name: str = "pms-guests",
        duplicate_source: Callable[[], Iterable[TargetStayRecord]] | None = None,
        duplicate_threshold: int = DEFAULT_THRESHOLD,
        property_timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.extractor = extractor
        self.reader = reader
        self.checkpoint_store = checkpoint_store
        self.apply_target = apply_target
        self.notifier = notifier
        self.rules = rules
        self.policy = policy or EnginePolicy()
        self.session = session
        self.checkpoint_name = checkpoint_name
        self.duplicate_source = duplicate_source
        self.duplicate_threshold = duplicate_threshold
        self.property_timezone = property_timezone
        self.clock = clock

    @classmethod
    def from_config(cls, config_class: Any, **collaborators: Any) -> "SyncRunner":
        """Build a runner from a ``config.base.Config`` class plus collaborators."""

        collaborators.setdefault("policy", EnginePolicy.from_config(config_class))
        collaborators.setdefault("checkpoint_name", config_class.CHECKPOINT_NAME)
        collaborators.setdefault("duplicate_threshold", config_class.DUPLICATE_THRESHOLD)
        collaborators.setdefault("property_timezone", config_class.PROPERTY_TIMEZONE)
        if not config_class.DUPLICATE_DETECTION:
            collaborators["duplicate_source"] = None
        return cls(**collaborators)

    # ------------------------------------------------------------------

    def _as_of(self, started_at: datetime) -> date:
        return started_at.astimezone(ZoneInfo(self.property_timezone)).date()

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _start_run_record(self, started_at: datetime, since: datetime | None, dry_run: bool) -> SyncRunRecord | None:
        if self.session is None:
            return None
        with self._transaction():
            run_record = SyncRunRecord(
                checkpoint_name=self.checkpoint_name,
                status=SyncRunStatus.RUNNING,
                dry_run=dry_run,
                started_at=started_at,
                since=since,
            )
            self.session.add(run_record)
        return run_record

    def _finish_run_record(
        self,
        run_record: SyncRunRecord | None,
        *,
        status: SyncRunStatus,
        finished_at: datetime,
        summary: RunSummary,
        record_count: int,
        result: ReconciliationResult | None,
        error: str | None,
    ) -> None:
        if run_record is None:
            return
        with self._transaction():
            run_record.status = status
            run_record.finished_at = finished_at
            run_record.record_count = record_count
            run_record.counts_json = summary.to_dict()
            if result is not None:
                run_record.review_counts_json = result.review_queue.counts_by_reason()
                run_record.plan_json = result.plan.to_dict()
            run_record.error_summary = error

    def _extract(self, since: datetime | None) -> list:
        try:
            return list(self.extractor.extract(since))
        except CollaboratorError:
            raise
        except Exception as exc:
            raise ExtractionError(f"Source extraction failed: {exc}", cause=exc) from exc

    def _duplicate_index(self) -> DuplicateIndex | None:
        if self.duplicate_source is None:
            return None
        try:
            stays = list(self.duplicate_source())
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CRMReadError(f"Loading CRM stays for duplicate detection failed: {exc}", cause=exc) from exc
        return DuplicateIndex.from_stays(stays, threshold=self.duplicate_threshold)

    def _apply(self, result: ReconciliationResult) -> None:
        if self.apply_target is None or result.plan.is_empty:
            return
        try:
            self.apply_target.apply(result.plan)
        except CollaboratorError:
            raise
        except Exception as exc:
            raise ApplyError(f"Applying the sync plan failed: {exc}", cause=exc) from exc

    def _notify(self, outcome: RunOutcome) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(outcome)
        except Exception:
            logger.exception("Run notification failed", extra={"run_id": outcome.run_id})

    def _record_metrics(self, outcome: RunOutcome) -> None:
        metrics.record_run(status=outcome.status.value, duration_seconds=outcome.duration_seconds)
        if outcome.result is not None:
            metrics.record_outcomes(outcome.result.outcome_counts())
            metrics.record_review_items(outcome.result.review_queue.counts_by_reason())
            metrics.record_flag_reset_warnings(outcome.summary.flag_reset_warnings)
        if outcome.checkpoint_advanced and outcome.checkpoint.last_sync_timestamp is not None:
            metrics.record_checkpoint(self.checkpoint_name, outcome.checkpoint.last_sync_timestamp)

    # ------------------------------------------------------------------

    def run(self, *, dry_run: bool = False, as_of: date | None = None) -> RunOutcome:
        """
        Execute one run.

        Collaborator failures return a failed ``RunOutcome``; invariant
        violations and unexpected errors are logged to the run record, passed
        to the notifier and re-raised. In every failure the checkpoint is left
        as it was. ``dry_run`` reconciles without applying or advancing the
        checkpoint.
        """

        started_at = self.clock()
        started_monotonic = time.monotonic()
        checkpoint = self.checkpoint_store.load()
        since = checkpoint.last_sync_timestamp
        run_as_of = as_of or self._as_of(started_at)
        run_record = self._start_run_record(started_at, since, dry_run)
        run_id = run_record.id if run_record is not None else None

        logger.info(
            "Starting guest sync run",
            extra={
                "run_id": run_id,
                "since": since.isoformat() if since else None,
                "dry_run": dry_run,
                "checkpoint": self.checkpoint_name,
            },
        )

        rows: list = []
        result: ReconciliationResult | None = None

        def _finish(
            status: SyncRunStatus,
            *,
            error: str | None = None,
            stage: str | None = None,
            checkpoint_after: SyncCheckpoint = checkpoint,
            advanced: bool = False,
        ) -> RunOutcome:
            finished_at = started_at + _elapsed(started_monotonic)
            summary = result.summary if result is not None else RunSummary()
            self._finish_run_record(
                run_record,
                status=status,
                finished_at=finished_at,
                summary=summary,
                record_count=len(rows),
                result=result,
                error=error,
            )
            outcome = RunOutcome(
                status=status,
                started_at=started_at,
                finished_at=finished_at,
                summary=summary,
                checkpoint=checkpoint_after,
                result=result,
                error=error,
                error_stage=stage,
                run_id=run_id,
                dry_run=dry_run,
                record_count=len(rows),
                checkpoint_advanced=advanced,
                warnings=result.warnings if result is not None else (),
            )
            self._record_metrics(outcome)
            return outcome

        try:
            rows = self._extract(since)
            duplicate_index = self._duplicate_index()
            result = reconcile(
                rows,
                self.reader,
                rules=self.rules,
                policy=self.policy,
                duplicate_index=duplicate_index,
                as_of=run_as_of,
            )
            if dry_run:
                outcome = _finish(SyncRunStatus.SUCCEEDED)
            else:
                self._apply(result)
                advanced = advance_checkpoint(self.checkpoint_store, started_at, len(rows), run_id=run_id)
                outcome = _finish(SyncRunStatus.SUCCEEDED, checkpoint_after=advanced, advanced=True)
        except CollaboratorError as exc:
            logger.error(
                "Guest sync run failed",
                extra={"run_id": run_id, "stage": exc.stage, "error": str(exc)},
            )
            outcome = _finish(SyncRunStatus.FAILED, error=str(exc), stage=exc.stage)
            self._notify(outcome)
            return outcome
        except InvariantViolation as exc:
            logger.critical("Guest sync run aborted on invariant violation", extra={"run_id": run_id, "error": str(exc)})
            outcome = _finish(SyncRunStatus.FAILED, error=f"{type(exc).__name__}: {exc}", stage="invariant")
            self._notify(outcome)
            raise
        except Exception as exc:
            logger.exception("Guest sync run crashed", extra={"run_id": run_id})
            outcome = _finish(SyncRunStatus.FAILED, error=f"{type(exc).__name__}: {exc}", stage="internal")
            self._notify(outcome)
            raise

        logger.info(
            "Guest sync run finished",
            extra={
                "run_id": run_id,
                "records": outcome.record_count,
                "summary": outcome.summary.to_dict(),
                "review_required": outcome.review_required,
            },
        )
        self._notify(outcome)
        return outcome


def _elapsed(started_monotonic: float) -> timedelta:
    return timedelta(seconds=time.monotonic() - started_monotonic)


__all__ = ["Notifier", "RunOutcome", "SyncRunner"]
