"""
Typed records flowing through the reconciliation pipeline.

Every entity the pipeline hands from one stage to the next is a frozen
dataclass. ``RunSummary`` is the only mutable container; it belongs to a
single run and is never shared across runs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Mapping, Sequence, Union

# CRM stay engagement checkboxes. Creates default every one of them to False.
ENGAGEMENT_FLAGS: tuple[str, ...] = (
    "future_sales_prospect",
    "tvg",
    "greeted_at_check_in",
    "received_pv_explanation",
    "vineyard_tour",
    "did_tvg_tasting_with_sales_rep",
    "did_tvg_tasting_with_sommelier",
    "villa_tour",
    "attended_happy_hour",
    "brochure_clicked",
    "replied_to_mkt_campaign_2025",
    "in_conversation",
    "not_interested",
    "ready_for_pardot_email_list",
    "in_conversation_pv",
    "follow_up",
    "ready_for_pv_mail",
)

# Stay fields compared on update, with their CRM-facing labels.
COMPARED_FIELDS: tuple[tuple[str, str], ...] = (
    ("first_name", "First Name"),
    ("last_name", "Last Name"),
    ("city", "City"),
    ("state", "State"),
    ("country", "Country"),
    ("telephone", "Telephone"),
    ("language", "Language"),
    ("check_out", "Check-Out"),
)


def flag_label(flag: str) -> str:
    return flag.replace("_", " ").title()


class RecordOutcome(str, Enum):
    SKIP_NON_GUEST = "skip-non-guest"
    SKIP_INVALID = "skip-invalid"
    CREATE_IDENTITY = "create-identity"
    CREATE_STAY = "create-stay"
    UPDATE_STAY = "update-stay"
    NO_OP = "no-op"
    SKIP_NO_STAY = "skip-no-stay"
    NEEDS_REVIEW = "needs-review"


class ReviewReason(str, Enum):
    SHARED_EMAIL_CONFLICT = "shared-email-conflict"
    SHARED_EMAIL_NO_NAME_MATCH = "shared-email-no-name-match"
    SHARED_EMAIL_NEW_IDENTITY = "shared-email-new-identity"
    MULTIPLE_CRM_IDENTITIES = "multiple-crm-identities"


# ---------------------------------------------------------------------------
# Source side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceGuestRecord:
    """A normalized PMS guest row. Emails are trimmed but otherwise untouched."""

    source_id: str | None
    first_name: str
    last_name: str
    email: str
    phone: str = ""
    language: str = ""
    billing_city: str = ""
    billing_state: str = ""
    billing_country: str = ""
    check_in: date | None = None
    check_out: date | None = None
    engagement_flags: Mapping[str, bool] = field(default_factory=dict, compare=False, hash=False)

    @property
    def email_key(self) -> str:
        return self.email.lower()


@dataclass(frozen=True)
class Rejection:
    """A row the normalizer refused, with the field and value that failed."""

    source_id: str | None
    reason: str
    field: str
    raw_value: Any
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    check_in: date | None = None
    check_out: date | None = None


@dataclass(frozen=True)
class Eligible:
    record: SourceGuestRecord


@dataclass(frozen=True)
class Agent:
    record: SourceGuestRecord
    category: str


@dataclass(frozen=True)
class Invalid:
    rejection: Rejection


ClassificationResult = Union[Eligible, Agent, Invalid]


# ---------------------------------------------------------------------------
# CRM side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CRMIdentity:
    identity_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None


IdentityStatus = Literal["new", "exists", "ambiguous"]


@dataclass(frozen=True)
class IdentityMatch:
    email: str
    status: IdentityStatus
    identity_id: str | None = None
    candidates: tuple[CRMIdentity, ...] = ()


@dataclass(frozen=True)
class TargetStayRecord:
    """A CRM stay record, addressed by ``(identity_id, check_in)``."""

    record_id: str
    identity_id: str
    check_in: date
    email: str = ""
    first_name: str | None = None
    last_name: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    telephone: str | None = None
    language: str | None = None
    check_out: date | None = None
    flags: Mapping[str, bool] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> tuple[str, date]:
        return (self.identity_id, self.check_in)


@dataclass(frozen=True)
class ProposedStayRecord:
    """
    A stay the plan would write.

    ``identity_id`` is None when the identity is created in the same plan;
    the apply collaborator links it by ``email`` after creating the identity.
    ``supplied_flags`` names the flags the PMS actually provided.
    """

    identity_id: str | None
    email: str
    first_name: str
    last_name: str
    city: str | None
    state: str | None
    country: str | None
    telephone: str | None
    language: str
    check_in: date | None
    check_out: date | None
    flags: Mapping[str, bool] = field(default_factory=dict, compare=False, hash=False)
    supplied_flags: frozenset[str] = frozenset()
    source_id: str | None = None


@dataclass(frozen=True)
class FieldChange:
    field: str
    label: str
    from_value: Any
    to_value: Any
    is_boolean_flag: bool = False


@dataclass(frozen=True)
class StayUpdate:
    existing: TargetStayRecord
    proposed: ProposedStayRecord
    changes: tuple[FieldChange, ...]
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class IdentityDraft:
    """Identity object to create. Identities are never updated."""

    email: str
    first_name: str
    last_name: str
    phone: str | None = None


# ---------------------------------------------------------------------------
# Run outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReviewItem:
    """A record held back from auto-sync for a human decision."""

    record: SourceGuestRecord
    reason: ReviewReason
    details: str = ""

    @property
    def email(self) -> str:
        return self.record.email

    @property
    def proposed_fields(self) -> dict[str, Any]:
        record = self.record
        return {
            "email": record.email,
            "first_name": record.first_name,
            "last_name": record.last_name,
            "phone": record.phone,
            "city": record.billing_city,
            "state": record.billing_state,
            "country": record.billing_country,
            "language": record.language,
            "check_in": record.check_in,
            "check_out": record.check_out,
        }


@dataclass(frozen=True)
class FrontDeskItem:
    """An arriving guest without a usable email, for staff to follow up at check-in."""

    source_id: str | None
    first_name: str
    last_name: str
    email: str
    check_in: date | None
    check_out: date | None
    reason: str


@dataclass(frozen=True)
class ApplyPlan:
    """Writes for the apply collaborator, in deterministic order."""

    create_identities: tuple[IdentityDraft, ...] = ()
    create_stays: tuple[ProposedStayRecord, ...] = ()
    update_stays: tuple[StayUpdate, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.create_identities or self.create_stays or self.update_stays)

    def to_dict(self) -> dict[str, int]:
        return {
            "create_identities": len(self.create_identities),
            "create_stays": len(self.create_stays),
            "update_stays": len(self.update_stays),
        }


@dataclass(frozen=True)
class SyncCheckpoint:
    last_sync_timestamp: datetime | None = None
    last_sync_status: str | None = None
    last_sync_record_count: int = 0


@dataclass
class RunSummary:
    """Per-run counters."""

    eligible: int = 0
    filtered_agent: int = 0
    invalid: int = 0
    no_stay: int = 0
    identities_created: int = 0
    created: int = 0
    updated: int = 0
    no_op: int = 0
    needs_review: int = 0
    conflict_emails: int = 0
    duplicate_in_batch: int = 0
    flag_reset_warnings: int = 0
    possible_duplicates: int = 0
    front_desk: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def counter_names(cls) -> Sequence[str]:
        return tuple(item.name for item in fields(cls))


__all__ = [
    "Agent",
    "ApplyPlan",
    "COMPARED_FIELDS",
    "CRMIdentity",
    "ClassificationResult",
    "ENGAGEMENT_FLAGS",
    "Eligible",
    "FieldChange",
    "FrontDeskItem",
    "IdentityDraft",
    "IdentityMatch",
    "Invalid",
    "ProposedStayRecord",
    "RecordOutcome",
    "Rejection",
    "ReviewItem",
    "ReviewReason",
    "RunSummary",
    "SourceGuestRecord",
    "StayUpdate",
    "SyncCheckpoint",
    "TargetStayRecord",
    "flag_label",
]
