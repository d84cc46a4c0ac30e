"""
Separate real guests from agents, OTA proxies and company placeholders.
"""

from __future__ import annotations

from typing import Iterable

from config.classification import DEFAULT_RULES, ClassificationRules

from .records import Agent, ClassificationResult, Eligible, Invalid, Rejection, SourceGuestRecord


def _is_placeholder_first_name(first_name: str, placeholders: Iterable[str]) -> bool:
    token = first_name.strip()
    if not token:
        return True
    if len(token) == 1 and not token.isalnum():
        return True
    upper = token.upper()
    return any(upper == placeholder.upper() for placeholder in placeholders)


def agent_category(record: SourceGuestRecord, rules: ClassificationRules = DEFAULT_RULES) -> str | None:
    """Return the agent category for ``record`` or None when it looks like a guest."""

    email = record.email.lower()
    for marker in rules.proxy_markers:
        if marker.marker in email:
            return marker.category
    if _is_placeholder_first_name(record.first_name, rules.placeholder_first_names):
        return "company"
    for keyword in rules.agent_keywords:
        if keyword in email:
            return "agent-domain"
    return None


def classify(
    record: SourceGuestRecord | Rejection,
    rules: ClassificationRules = DEFAULT_RULES,
) -> ClassificationResult:
    """Label a normalized row as ``Eligible``, ``Agent`` or ``Invalid``. First match wins."""

    if isinstance(record, Rejection):
        return Invalid(record)
    category = agent_category(record, rules)
    if category is not None:
        return Agent(record, category)
    return Eligible(record)


__all__ = ["agent_category", "classify"]
