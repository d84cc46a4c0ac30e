"""
Reconciliation engine.

``reconcile`` is a synchronous, side-effect-free pipeline over one extracted
batch: normalize, classify, detect shared emails, resolve identities, diff
stays, and collect everything that must not be synced automatically into a
review queue. The only I/O is the read-only ``CRMReader`` passed in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping

from config.classification import DEFAULT_RULES, ClassificationRules
from guestsync.exceptions import InvariantViolation

from .classify import classify
from .conflicts import detect_conflicts
from .diff import DiffPolicy, build_proposed_stay, diff_stay, load_existing_stays
from .duplicates import DuplicateCandidate, DuplicateIndex
from .identity import DEFAULT_BATCH_SIZE, resolve_identities, resolve_shared_email
from .normalize import normalize_row
from .records import (
    Agent,
    ApplyPlan,
    FrontDeskItem,
    IdentityDraft,
    IdentityMatch,
    Invalid,
    ProposedStayRecord,
    RecordOutcome,
    Rejection,
    ReviewReason,
    RunSummary,
    SourceGuestRecord,
    StayUpdate,
)
from .review import ReviewQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnginePolicy:
    """
    Tunable behavior of a reconciliation run.

    Attributes:
        resolve_shared_emails: Consult the CRM for emails shared by several
            names and let the records matching the CRM identity's name
            through. Off by default: every such record is reviewed.
        compare_default_flags: See ``DiffPolicy``.
        crm_batch_size: Emails / identity ids per CRM read.
    """

    resolve_shared_emails: bool = False
    compare_default_flags: bool = False
    crm_batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def from_config(cls, config_class: Any) -> "EnginePolicy":
        return cls(
            resolve_shared_emails=bool(getattr(config_class, "RESOLVE_SHARED_EMAILS", False)),
            compare_default_flags=bool(getattr(config_class, "COMPARE_DEFAULT_FLAGS", False)),
            crm_batch_size=int(getattr(config_class, "CRM_BATCH_SIZE", DEFAULT_BATCH_SIZE)),
        )


@dataclass(frozen=True)
class RecordDecision:
    """What happened to one input row."""

    position: int
    source_id: str | None
    email: str
    outcome: RecordOutcome
    detail: str = ""


@dataclass(frozen=True)
class ReconciliationResult:
    plan: ApplyPlan
    review_queue: ReviewQueue
    summary: RunSummary
    decisions: tuple[RecordDecision, ...] = ()
    rejections: tuple[Rejection, ...] = ()
    front_desk: tuple[FrontDeskItem, ...] = ()
    possible_duplicates: tuple[DuplicateCandidate, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def review_required(self) -> bool:
        return bool(self.review_queue)

    def outcome_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for decision in self.decisions:
            counts[decision.outcome.value] = counts.get(decision.outcome.value, 0) + 1
        return counts


def _front_desk_item(
    *,
    source_id: str | None,
    first_name: str,
    last_name: str,
    email: str,
    check_in: date | None,
    check_out: date | None,
    reason: str,
) -> FrontDeskItem:
    return FrontDeskItem(
        source_id=source_id,
        first_name=first_name,
        last_name=last_name,
        email=email,
        check_in=check_in,
        check_out=check_out,
        reason=reason,
    )


class _Run:
    """Mutable state of a single ``reconcile`` call."""

    def __init__(self, as_of: date | None):
        self.as_of = as_of
        self.summary = RunSummary()
        self.queue = ReviewQueue()
        self.decisions: dict[int, RecordDecision] = {}
        self.positions: dict[int, int] = {}
        self.rejections: list[Rejection] = []
        self.front_desk: list[FrontDeskItem] = []
        self.warnings: list[str] = []
        self.duplicates: list[DuplicateCandidate] = []

    def decide(self, record: SourceGuestRecord, outcome: RecordOutcome, detail: str = "") -> None:
        position = self.positions[id(record)]
        self.decisions[position] = RecordDecision(
            position=position,
            source_id=record.source_id,
            email=record.email,
            outcome=outcome,
            detail=detail,
        )

    def review(self, record: SourceGuestRecord, reason: ReviewReason, details: str) -> None:
        self.queue.add(record, reason, details)
        self.decide(record, RecordOutcome.NEEDS_REVIEW, reason.value)

    def arriving_today(self, check_in: date | None) -> bool:
        return self.as_of is not None and check_in == self.as_of


def reconcile(
    rows: Iterable[Mapping[str, Any]],
    reader,
    *,
    rules: ClassificationRules = DEFAULT_RULES,
    policy: EnginePolicy | None = None,
    duplicate_index: DuplicateIndex | None = None,
    as_of: date | None = None,
) -> ReconciliationResult:
    """
    Reconcile one batch of raw PMS rows against the CRM.

    Args:
        rows: Raw source rows from the extraction collaborator.
        reader: ``CRMReader`` used for identity and stay lookups.
        rules: Agent/proxy classification reference data.
        policy: Run policy; defaults to ``EnginePolicy()``.
        duplicate_index: When given, new-identity creates are scored against
            it and annotated with likely duplicates.
        as_of: Run date; guests arriving that day without a usable email are
            listed for the front desk.
    """

    policy = policy or EnginePolicy()
    run = _Run(as_of)
    eligible: list[SourceGuestRecord] = []

    # Normalize and classify.
    for position, raw in enumerate(rows):
        result = classify(normalize_row(raw), rules)
        if isinstance(result, Invalid):
            rejection = result.rejection
            run.rejections.append(rejection)
            run.summary.invalid += 1
            run.decisions[position] = RecordDecision(
                position=position,
                source_id=rejection.source_id,
                email=rejection.email,
                outcome=RecordOutcome.SKIP_INVALID,
                detail=rejection.reason,
            )
            if rejection.field == "email" and run.arriving_today(rejection.check_in):
                run.front_desk.append(
                    _front_desk_item(
                        source_id=rejection.source_id,
                        first_name=rejection.first_name,
                        last_name=rejection.last_name,
                        email=rejection.email,
                        check_in=rejection.check_in,
                        check_out=rejection.check_out,
                        reason=rejection.reason,
                    )
                )
            continue

        record = result.record
        run.positions[id(record)] = position
        if isinstance(result, Agent):
            run.summary.filtered_agent += 1
            run.decide(record, RecordOutcome.SKIP_NON_GUEST, result.category)
            if run.arriving_today(record.check_in):
                run.front_desk.append(
                    _front_desk_item(
                        source_id=record.source_id,
                        first_name=record.first_name,
                        last_name=record.last_name,
                        email=record.email,
                        check_in=record.check_in,
                        check_out=record.check_out,
                        reason=result.category,
                    )
                )
            continue

        run.summary.eligible += 1
        eligible.append(record)

    # Shared-email conflicts.
    report = detect_conflicts(eligible)
    run.summary.conflict_emails = len(report.conflicts)
    lookup_emails = [group.email for group in report.consistent]
    if policy.resolve_shared_emails:
        lookup_emails.extend(group.email for group in report.conflicts)
    else:
        for group in report.conflicts:
            details = group.describe()
            for record in group.records:
                run.review(record, ReviewReason.SHARED_EMAIL_CONFLICT, details)

    matches = resolve_identities(lookup_emails, reader, policy.crm_batch_size)

    proceeding: set[int] = set()
    for group in report.consistent:
        match = matches[group.email]
        if match.status == "ambiguous":
            details = "CRM identities for this email: " + ", ".join(c.identity_id for c in match.candidates)
            for record in group.records:
                run.review(record, ReviewReason.MULTIPLE_CRM_IDENTITIES, details)
            continue
        proceeding.update(id(record) for record in group.records)

    if policy.resolve_shared_emails:
        for group in report.conflicts:
            resolution = resolve_shared_email(group, matches[group.email])
            proceeding.update(id(record) for record in resolution.proceed)
            for item in resolution.review:
                run.review(item.record, item.reason, item.details)

    existing_ids = sorted(
        {matches[r.email_key].identity_id for r in eligible if id(r) in proceeding and matches[r.email_key].status == "exists"}
    )
    stays = load_existing_stays(reader, existing_ids, policy.crm_batch_size)

    # Plan.
    diff_policy = DiffPolicy(compare_default_flags=policy.compare_default_flags)
    drafts: dict[str, IdentityDraft] = {}
    create_stays: list[ProposedStayRecord] = []
    update_stays: list[StayUpdate] = []
    seen_keys: set[tuple[str, date]] = set()

    def draft_identity(record: SourceGuestRecord) -> None:
        drafts[record.email_key] = IdentityDraft(
            email=record.email,
            first_name=record.first_name,
            last_name=record.last_name,
            phone=record.phone or None,
        )
        run.summary.identities_created += 1

    def possible_duplicate(record: SourceGuestRecord) -> str:
        if duplicate_index is None:
            return ""
        candidates = duplicate_index.find_duplicates(record)
        if not candidates:
            return ""
        run.summary.possible_duplicates += 1
        run.duplicates.extend(candidates)
        best = candidates[0]
        return f"possible duplicate of {best.existing.email} ({best.score}%)"

    for record in eligible:
        if id(record) not in proceeding:
            continue
        match: IdentityMatch = matches[record.email_key]
        if record.check_in is None:
            run.summary.no_stay += 1
            if match.status == "new" and record.email_key not in drafts:
                draft_identity(record)
                run.decide(record, RecordOutcome.CREATE_IDENTITY, possible_duplicate(record) or "no check-in date")
            else:
                run.decide(record, RecordOutcome.SKIP_NO_STAY, "no check-in date")
            continue

        stay_key = (match.identity_id or f"new:{record.email_key}", record.check_in)
        if stay_key in seen_keys:
            run.summary.duplicate_in_batch += 1
            run.decide(record, RecordOutcome.NO_OP, "duplicate-in-batch")
            continue
        seen_keys.add(stay_key)

        if match.status == "new":
            outcome = RecordOutcome.CREATE_STAY
            detail = ""
            if record.email_key not in drafts:
                draft_identity(record)
                outcome = RecordOutcome.CREATE_IDENTITY
                detail = possible_duplicate(record)
            create_stays.append(build_proposed_stay(record, None))
            run.summary.created += 1
            run.decide(record, outcome, detail)
            continue

        decision = diff_stay(build_proposed_stay(record, match.identity_id), stays.get(stay_key), diff_policy)
        if decision.action == "create":
            create_stays.append(decision.proposed)
            run.summary.created += 1
            run.decide(record, RecordOutcome.CREATE_STAY)
        elif decision.action == "update":
            update = decision.update
            update_stays.append(update)
            run.summary.updated += 1
            run.summary.flag_reset_warnings += len(update.warnings)
            run.warnings.extend(update.warnings)
            run.decide(record, RecordOutcome.UPDATE_STAY, ", ".join(change.label for change in update.changes))
        else:
            run.summary.no_op += 1
            run.decide(record, RecordOutcome.NO_OP)

    for email in drafts:
        if matches[email].status != "new":
            raise InvariantViolation(f"Identity create planned for {email}, which already exists in the CRM.")

    run.summary.needs_review = len(run.queue)
    run.summary.front_desk = len(run.front_desk)
    plan = ApplyPlan(
        create_identities=tuple(drafts.values()),
        create_stays=tuple(create_stays),
        update_stays=tuple(update_stays),
    )

    logger.info("Reconciliation complete", extra={"summary": run.summary.to_dict(), "plan": plan.to_dict()})
    if run.queue:
        logger.warning(
            "Records held for manual review",
            extra={"review_items": len(run.queue), "reasons": run.queue.counts_by_reason()},
        )
    for warning in run.warnings:
        logger.warning(warning)

    return ReconciliationResult(
        plan=plan,
        review_queue=run.queue,
        summary=run.summary,
        decisions=tuple(run.decisions[position] for position in sorted(run.decisions)),
        rejections=tuple(run.rejections),
        front_desk=tuple(run.front_desk),
        possible_duplicates=tuple(run.duplicates),
        warnings=tuple(run.warnings),
    )


__all__ = ["EnginePolicy", "ReconciliationResult", "RecordDecision", "reconcile"]
