"""
Build proposed CRM stay records and diff them against what the CRM holds.

The comparison is field-level and conservative: a value the PMS does not
know never overwrites one the CRM already has, and engagement flags are only
compared when the PMS actually supplied them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Literal, Mapping

from guestsync.exceptions import CollaboratorError, CRMReadError, StayKeyCollision

from .identity import DEFAULT_BATCH_SIZE, chunked
from .normalize import LANGUAGE_UNKNOWN, map_language
from .records import (
    COMPARED_FIELDS,
    ENGAGEMENT_FLAGS,
    FieldChange,
    ProposedStayRecord,
    SourceGuestRecord,
    StayUpdate,
    TargetStayRecord,
    flag_label,
)

logger = logging.getLogger(__name__)

StayKey = tuple[str, date]


@dataclass(frozen=True)
class DiffPolicy:
    """
    Attributes:
        compare_default_flags: Compare every engagement flag, sending the
            create-time default (False) for flags the PMS did not supply.
            This resets flags staff set in the CRM and is off by default.
    """

    compare_default_flags: bool = False


@dataclass(frozen=True)
class StayDecision:
    action: Literal["create", "update", "no-op"]
    proposed: ProposedStayRecord
    update: StayUpdate | None = None


def build_proposed_stay(record: SourceGuestRecord, identity_id: str | None) -> ProposedStayRecord:
    flags = {name: False for name in ENGAGEMENT_FLAGS}
    flags.update(record.engagement_flags)
    return ProposedStayRecord(
        identity_id=identity_id,
        email=record.email,
        first_name=record.first_name,
        last_name=record.last_name,
        city=record.billing_city or None,
        state=record.billing_state or None,
        country=record.billing_country or None,
        telephone=record.phone or None,
        language=map_language(record.language),
        check_in=record.check_in,
        check_out=record.check_out,
        flags=flags,
        supplied_flags=frozenset(record.engagement_flags),
        source_id=record.source_id,
    )


def _is_missing(field_name: str, value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return True
        if field_name == "language" and token == LANGUAGE_UNKNOWN:
            return True
    return False


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    return value


def diff_fields(proposed: ProposedStayRecord, existing: TargetStayRecord, policy: DiffPolicy) -> tuple[list[FieldChange], list[str]]:
    changes: list[FieldChange] = []
    warnings: list[str] = []

    for field_name, label in COMPARED_FIELDS:
        new_value = getattr(proposed, field_name)
        if _is_missing(field_name, new_value):
            continue
        old_value = getattr(existing, field_name)
        if _comparable(old_value) != _comparable(new_value):
            changes.append(FieldChange(field=field_name, label=label, from_value=old_value, to_value=new_value))

    compared_flags = ENGAGEMENT_FLAGS if policy.compare_default_flags else tuple(
        name for name in ENGAGEMENT_FLAGS if name in proposed.supplied_flags
    )
    for name in compared_flags:
        new_flag = bool(proposed.flags.get(name, False))
        old_flag = bool(existing.flags.get(name, False))
        if new_flag == old_flag:
            continue
        label = flag_label(name)
        changes.append(FieldChange(field=name, label=label, from_value=old_flag, to_value=new_flag, is_boolean_flag=True))
        if old_flag and not new_flag:
            warnings.append(f"{label} would be reset from true to false on stay {existing.record_id}.")

    return changes, warnings


def diff_stay(
    proposed: ProposedStayRecord,
    existing: TargetStayRecord | None,
    policy: DiffPolicy | None = None,
) -> StayDecision:
    """Decide ``create``, ``update`` or ``no-op`` for a proposed stay."""

    policy = policy or DiffPolicy()
    if existing is None:
        return StayDecision(action="create", proposed=proposed)
    changes, warnings = diff_fields(proposed, existing, policy)
    if not changes:
        return StayDecision(action="no-op", proposed=proposed)
    update = StayUpdate(existing=existing, proposed=proposed, changes=tuple(changes), warnings=tuple(warnings))
    return StayDecision(action="update", proposed=proposed, update=update)


def validate_stay_map(stays: Mapping[Any, TargetStayRecord], requested: Iterable[str]) -> dict[StayKey, TargetStayRecord]:
    """
    Check that every stay is filed under its own ``(identity_id, check_in)`` key
    and belongs to one of the requested identities.
    """

    requested_ids = set(requested)
    validated: dict[StayKey, TargetStayRecord] = {}
    for key, stay in stays.items():
        if tuple(key) != stay.key:
            raise StayKeyCollision(key, stay.key)
        if stay.identity_id not in requested_ids:
            raise StayKeyCollision(key, f"unrequested identity {stay.identity_id}")
        validated[stay.key] = stay
    return validated


def load_existing_stays(reader, identity_ids: Iterable[str], batch_size: int = DEFAULT_BATCH_SIZE) -> dict[StayKey, TargetStayRecord]:
    """Fetch the CRM stays of ``identity_ids`` in batches and validate the returned keys."""

    unique = list(dict.fromkeys(identity_ids))
    stays: dict[StayKey, TargetStayRecord] = {}
    for batch in chunked(unique, batch_size):
        try:
            found = reader.find_stays_by_identity(list(batch))
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CRMReadError(f"Stay lookup failed for a batch of {len(batch)} identities: {exc}", cause=exc) from exc
        stays.update(validate_stay_map(found or {}, batch))
    logger.debug("Loaded existing CRM stays", extra={"identities": len(unique), "stays": len(stays)})
    return stays


__all__ = [
    "DiffPolicy",
    "StayDecision",
    "build_proposed_stay",
    "diff_fields",
    "diff_stay",
    "load_existing_stays",
    "validate_stay_map",
]
