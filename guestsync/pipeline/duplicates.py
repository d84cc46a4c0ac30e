"""
Duplicate-likelihood scoring for new guests.

A guest arriving under a new email may already be in the CRM under another
address. Candidates sharing the normalized name are scored on name rarity,
location, email domain and check-in proximity. Scores are advisory only;
they annotate new-identity creates and never change the plan.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping

from .normalize import name_key, text_key
from .records import SourceGuestRecord, TargetStayRecord

DEFAULT_THRESHOLD = 75

NAME_WEIGHT = 30
CITY_WEIGHT = 20
COUNTRY_WEIGHT = 10
STATE_WEIGHT = 5
EMAIL_DOMAIN_WEIGHT = 15
CHECK_IN_WEIGHT = 20
MAX_SCORE = NAME_WEIGHT + CITY_WEIGHT + COUNTRY_WEIGHT + STATE_WEIGHT + EMAIL_DOMAIN_WEIGHT + CHECK_IN_WEIGHT


@dataclass(frozen=True)
class DuplicateCandidate:
    record: SourceGuestRecord
    existing: TargetStayRecord
    score: int


def _email_domain(email: str | None) -> str:
    parts = (email or "").split("@")
    return parts[1].lower() if len(parts) == 2 else ""


def _dedupe_key(first: object | None, last: object | None) -> str | None:
    key = name_key(first, last)
    first_token, last_token = key.split("|", 1)
    if not first_token or not last_token:
        return None
    return key


def _name_rarity_points(frequency: int) -> int:
    if frequency <= 1:
        return 30
    if frequency == 2:
        return 22
    if frequency <= 5:
        return 12
    if frequency <= 10:
        return 5
    return 0


def _check_in_points(candidate: date | None, existing: date | None) -> int:
    if candidate is None or existing is None:
        return 0
    days = abs((candidate - existing).days)
    if days == 0:
        return 20
    if days <= 3:
        return 15
    if days <= 14:
        return 8
    if days <= 60:
        return 3
    return 0


def _same_text(left: object | None, right: object | None) -> bool:
    left_key = text_key(left)
    return bool(left_key) and left_key == text_key(right)


def score_duplicate(candidate: SourceGuestRecord, existing: TargetStayRecord, name_frequency: int = 1) -> int:
    """Probability (0-100) that ``candidate`` is the guest behind ``existing``."""

    score = _name_rarity_points(name_frequency)
    if _same_text(candidate.billing_city, existing.city):
        score += CITY_WEIGHT
    if _same_text(candidate.billing_country, existing.country):
        score += COUNTRY_WEIGHT
    if _same_text(candidate.billing_state, existing.state):
        score += STATE_WEIGHT
    candidate_domain = _email_domain(candidate.email)
    if candidate_domain and candidate_domain == _email_domain(existing.email):
        score += EMAIL_DOMAIN_WEIGHT
    score += _check_in_points(candidate.check_in, existing.check_in)
    return round(score / MAX_SCORE * 100)


@dataclass
class DuplicateIndex:
    """CRM stays indexed by email and normalized name."""

    by_name: Mapping[str, list[TargetStayRecord]] = field(default_factory=dict)
    emails: frozenset[str] = frozenset()
    name_frequency: Mapping[str, int] = field(default_factory=dict)
    threshold: int = DEFAULT_THRESHOLD

    @classmethod
    def from_stays(cls, stays: Iterable[TargetStayRecord], threshold: int = DEFAULT_THRESHOLD) -> "DuplicateIndex":
        by_name: dict[str, list[TargetStayRecord]] = {}
        emails: set[str] = set()
        frequency: Counter[str] = Counter()
        for stay in stays:
            if stay.email:
                emails.add(stay.email.lower())
            key = _dedupe_key(stay.first_name, stay.last_name)
            if key is None:
                continue
            by_name.setdefault(key, []).append(stay)
            frequency[key] += 1
        return cls(by_name=by_name, emails=frozenset(emails), name_frequency=dict(frequency), threshold=threshold)

    def find_duplicates(self, record: SourceGuestRecord) -> list[DuplicateCandidate]:
        """Existing stays under another email scoring at or above the threshold, best first."""

        if record.email_key in self.emails:
            return []
        key = _dedupe_key(record.first_name, record.last_name)
        if key is None:
            return []
        frequency = self.name_frequency.get(key, 1)
        matches: list[DuplicateCandidate] = []
        for stay in self.by_name.get(key, ()):
            if (stay.email or "").lower() == record.email_key:
                continue
            score = score_duplicate(record, stay, frequency)
            if score >= self.threshold:
                matches.append(DuplicateCandidate(record=record, existing=stay, score=score))
        matches.sort(key=lambda match: match.score, reverse=True)
        return matches


__all__ = [
    "DEFAULT_THRESHOLD",
    "DuplicateCandidate",
    "DuplicateIndex",
    "score_duplicate",
]
