"""
Resolve guest emails against the CRM identity object.

Lookups are batched so a run issues a bounded number of CRM queries no
matter how many guests it carries. An email matching two or more CRM
identities is never auto-picked; its records go to review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence, TypeVar

from guestsync.exceptions import CollaboratorError, CRMReadError

from .conflicts import EmailGroup
from .normalize import name_key
from .records import CRMIdentity, IdentityMatch, ReviewItem, ReviewReason, SourceGuestRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("Batch size must be a positive integer.")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _unique_lower(emails: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for email in emails:
        token = (email or "").strip().lower()
        if token:
            seen.setdefault(token, None)
    return list(seen)


def match_from_candidates(email: str, candidates: Sequence[CRMIdentity]) -> IdentityMatch:
    unique: dict[str, CRMIdentity] = {}
    for candidate in candidates:
        unique.setdefault(candidate.identity_id, candidate)
    found = tuple(unique.values())
    if not found:
        return IdentityMatch(email=email, status="new")
    if len(found) == 1:
        return IdentityMatch(email=email, status="exists", identity_id=found[0].identity_id, candidates=found)
    return IdentityMatch(email=email, status="ambiguous", candidates=found)


def resolve_identities(emails: Iterable[str], reader, batch_size: int = DEFAULT_BATCH_SIZE) -> dict[str, IdentityMatch]:
    """
    Look up every unique email and classify it as ``new``, ``exists`` or ``ambiguous``.

    ``reader`` is a ``CRMReader``. Failures other than ``CollaboratorError``
    are wrapped in ``CRMReadError``.
    """

    unique = _unique_lower(emails)
    matches: dict[str, IdentityMatch] = {}
    for batch in chunked(unique, batch_size):
        try:
            found = reader.find_identities_by_email(list(batch))
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CRMReadError(f"Identity lookup failed for a batch of {len(batch)} emails: {exc}", cause=exc) from exc

        by_email: dict[str, list[CRMIdentity]] = {}
        for key, candidates in (found or {}).items():
            by_email.setdefault(key.lower(), []).extend(candidates)
        for email in batch:
            matches[email] = match_from_candidates(email, by_email.get(email, ()))

    logger.debug(
        "Resolved CRM identities",
        extra={
            "emails": len(unique),
            "new": sum(1 for m in matches.values() if m.status == "new"),
            "exists": sum(1 for m in matches.values() if m.status == "exists"),
            "ambiguous": sum(1 for m in matches.values() if m.status == "ambiguous"),
        },
    )
    return matches


@dataclass(frozen=True)
class SharedEmailResolution:
    proceed: tuple[SourceGuestRecord, ...]
    review: tuple[ReviewItem, ...]


def resolve_shared_email(group: EmailGroup, match: IdentityMatch) -> SharedEmailResolution:
    """
    Decide which records of a conflicted email may proceed once the CRM is consulted.

    Only an existing identity whose name matches exactly one of the names in
    the group lets that name's records through; everything else is reviewed.
    """

    details = group.describe()

    def _review(records: Iterable[SourceGuestRecord], reason: ReviewReason) -> tuple[ReviewItem, ...]:
        return tuple(ReviewItem(record=record, reason=reason, details=details) for record in records)

    if match.status == "ambiguous":
        return SharedEmailResolution((), _review(group.records, ReviewReason.MULTIPLE_CRM_IDENTITIES))
    if match.status == "new":
        return SharedEmailResolution((), _review(group.records, ReviewReason.SHARED_EMAIL_NEW_IDENTITY))

    identity = match.candidates[0] if match.candidates else None
    identity_key = name_key(identity.first_name, identity.last_name) if identity else None
    matching = [key for key in group.name_keys if key == identity_key]
    if len(matching) != 1:
        return SharedEmailResolution((), _review(group.records, ReviewReason.SHARED_EMAIL_NO_NAME_MATCH))

    proceed = tuple(r for r in group.records if name_key(r.first_name, r.last_name) == identity_key)
    rest = [r for r in group.records if name_key(r.first_name, r.last_name) != identity_key]
    return SharedEmailResolution(proceed, _review(rest, ReviewReason.SHARED_EMAIL_NO_NAME_MATCH))


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "SharedEmailResolution",
    "chunked",
    "match_from_candidates",
    "resolve_identities",
    "resolve_shared_email",
]
