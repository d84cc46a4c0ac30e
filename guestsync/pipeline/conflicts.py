"""
Detect emails shared by more than one distinct guest.

Families and travel companions frequently book under one address. When the
names under an email disagree we cannot tell which person the CRM identity
belongs to, so every record for that email is held back for review.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from .normalize import name_key
from .records import SourceGuestRecord


@dataclass(frozen=True)
class EmailGroup:
    """Eligible records sharing one lower-cased email."""

    email: str
    records: tuple[SourceGuestRecord, ...]

    @property
    def name_keys(self) -> tuple[str, ...]:
        keys: list[str] = []
        for record in self.records:
            key = name_key(record.first_name, record.last_name)
            if key not in keys:
                keys.append(key)
        return tuple(keys)

    @property
    def is_conflict(self) -> bool:
        return len(self.records) > 1 and len(self.name_keys) > 1

    @property
    def distinct_names(self) -> tuple[str, ...]:
        seen: dict[str, str] = {}
        for record in self.records:
            key = name_key(record.first_name, record.last_name)
            seen.setdefault(key, f"{record.first_name} {record.last_name}".strip())
        return tuple(seen.values())

    def describe(self) -> str:
        return "Names seen under this email: " + ", ".join(self.distinct_names)


@dataclass(frozen=True)
class ConflictReport:
    groups: Mapping[str, EmailGroup]

    @property
    def conflicts(self) -> tuple[EmailGroup, ...]:
        return tuple(group for group in self.groups.values() if group.is_conflict)

    @property
    def conflict_emails(self) -> frozenset[str]:
        return frozenset(group.email for group in self.conflicts)

    @property
    def consistent(self) -> tuple[EmailGroup, ...]:
        return tuple(group for group in self.groups.values() if not group.is_conflict)

    def group_for(self, email: str) -> EmailGroup:
        return self.groups[email.lower()]


def group_by_email(records: Iterable[SourceGuestRecord]) -> dict[str, EmailGroup]:
    buckets: dict[str, list[SourceGuestRecord]] = {}
    for record in records:
        buckets.setdefault(record.email_key, []).append(record)
    return {email: EmailGroup(email=email, records=tuple(items)) for email, items in buckets.items()}


def detect_conflicts(records: Iterable[SourceGuestRecord]) -> ConflictReport:
    """Group eligible records by email and flag groups carrying more than one name."""

    return ConflictReport(groups=group_by_email(records))


__all__ = ["ConflictReport", "EmailGroup", "detect_conflicts", "group_by_email"]
