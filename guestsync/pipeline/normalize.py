"""
Field normalization and email validation for raw PMS rows.

Rows arrive as mappings straight from the extraction collaborator. This
module trims every value, parses stay dates and validates the email without
ever rewriting it: an address that fails a rule is rejected and reported,
never "fixed".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping

from rapidfuzz import utils as fuzz_utils

from config.base import _coerce_bool

from .records import ENGAGEMENT_FLAGS, Rejection, SourceGuestRecord

# Canonical snake_case keys first, then PMS column aliases.
FIELD_ALIASES: Mapping[str, tuple[str, ...]] = {
    "source_id": ("source_id", "NAME_ID", "name_id"),
    "first_name": ("first_name", "FIRST", "first"),
    "last_name": ("last_name", "LAST", "last"),
    "email": ("email", "EMAIL"),
    "phone": ("phone", "PHONE"),
    "language": ("language", "LANGUAGE"),
    "billing_city": ("billing_city", "CITY", "city"),
    "billing_state": ("billing_state", "STATE", "state"),
    "billing_country": ("billing_country", "COUNTRY", "country"),
    "check_in": ("check_in", "CHECK_IN"),
    "check_out": ("check_out", "CHECK_OUT"),
}

MAILBOX_PROVIDERS = frozenset({"gmail", "yahoo", "hotmail", "outlook", "aol", "icloud", "mail"})
SUSPICIOUS_TLDS = frozenset({"co", "me", "tv", "io", "to"})

_TLD_REGEX = re.compile(r"^[a-z0-9]{2,6}$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
# A calendar date optionally followed by a clock time, fraction and zone.
_DATE_WITH_TIME = re.compile(
    r"^(\d{4}-\d{2}-\d{2})(?:[ T]\d{1,2}:\d{2}(?::\d{2})?(?:[.,]\d+)?\s*(?:Z|[A-Za-z]{3,5}|[+-]\d{2}:?\d{2})?)?$"
)

logger = logging.getLogger(__name__)

LANGUAGE_UNKNOWN = "Unknown"


@dataclass(frozen=True)
class EmailCheck:
    """Result of ``validate_email``; ``reason`` is None when the address is accepted."""

    email: str
    reason: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.reason is None


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _lookup(raw: Mapping[str, Any], name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        if alias in raw:
            return raw[alias]
    return None


def validate_email(value: object | None) -> EmailCheck:
    """
    Validate an email address. The first failing rule decides the reason.

    - missing / non-ascii
    - at-sign: exactly one ``@``
    - local-part / domain: both sides non-empty
    - domain-format: contains a dot, no ``..``, no leading or trailing dot,
      no trailing ``,`` or ``;``
    - tld: 2-6 alphanumeric characters
    - provider-typo: a two-label mailbox provider domain on a short TLD
      (``gmail.co``, ``hotmail.io``)
    """

    token = _clean(value)
    if not token:
        return EmailCheck(token, "missing")
    if not token.isascii():
        return EmailCheck(token, "non-ascii")
    if token.count("@") != 1:
        return EmailCheck(token, "at-sign")

    local_part, domain = token.split("@")
    if not local_part:
        return EmailCheck(token, "local-part")
    if not domain:
        return EmailCheck(token, "domain")
    if (
        "." not in domain
        or ".." in domain
        or domain.startswith(".")
        or domain.endswith((".", ",", ";"))
    ):
        return EmailCheck(token, "domain-format")

    labels = domain.split(".")
    tld = labels[-1]
    if not _TLD_REGEX.match(tld):
        return EmailCheck(token, "tld")
    if len(labels) == 2 and labels[0].lower() in MAILBOX_PROVIDERS and tld.lower() in SUSPICIOUS_TLDS:
        return EmailCheck(token, "provider-typo")

    return EmailCheck(token)


def name_key(first: object | None, last: object | None) -> str:
    """Comparison key for a guest name: lower-case, punctuation and whitespace removed."""

    first_token = _WHITESPACE.sub("", fuzz_utils.default_process(_clean(first)))
    last_token = _WHITESPACE.sub("", fuzz_utils.default_process(_clean(last)))
    return f"{first_token}|{last_token}"


def text_key(value: object | None) -> str:
    """Lower-cased, trimmed comparison key for free-text fields such as city."""

    return _clean(value).lower()


def map_language(code: object | None) -> str:
    """Map a PMS language code onto the CRM set English/Spanish/Portuguese/Unknown."""

    token = _clean(code).upper()
    if not token:
        return LANGUAGE_UNKNOWN
    if "ENG" in token or token in {"E", "EN"}:
        return "English"
    if "SPA" in token or "ESP" in token or token in {"SP", "S", "ES"}:
        return "Spanish"
    if "POR" in token or token in {"PR", "P", "PT"}:
        return "Portuguese"
    return LANGUAGE_UNKNOWN


def parse_date(value: object | None) -> date | None:
    """
    Parse a stay date from a ``date``, ``datetime`` or ISO-8601 string.

    Empty values return None; anything else that cannot be parsed raises
    ``ValueError``.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    token = str(value).strip()
    if not token:
        return None
    if token.endswith("Z"):
        token = token[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(token).date()
    except ValueError:
        match = _DATE_WITH_TIME.match(token)
        if match is None:
            raise ValueError(f"Unrecognised date {value!r}") from None
        return date.fromisoformat(match.group(1))


def parse_flag(value: Any) -> bool | None:
    """
    Read an engagement flag from a bool, 0/1 or a yes/no style token.

    Returns None for empty or unrecognised values so they are treated as
    not supplied rather than as true.
    """

    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _coerce_bool(value, default=None)


def coerce_flags(value: Any) -> dict[str, bool]:
    """Keep the recognised engagement flags from ``value``, parsed to bools."""

    if not isinstance(value, Mapping):
        return {}
    flags: dict[str, bool] = {}
    for name, raw in value.items():
        if name not in ENGAGEMENT_FLAGS:
            continue
        parsed = parse_flag(raw)
        if parsed is None:
            if raw not in (None, ""):
                logger.warning("Ignoring unrecognised engagement flag value", extra={"flag": name, "value": repr(raw)})
            continue
        flags[name] = parsed
    return flags


def normalize_row(raw: Mapping[str, Any]) -> SourceGuestRecord | Rejection:
    """Turn a raw PMS row into a ``SourceGuestRecord``, or a ``Rejection`` explaining why not."""

    source_id = _clean(_lookup(raw, "source_id")) or None
    first_name = _clean(_lookup(raw, "first_name"))
    last_name = _clean(_lookup(raw, "last_name"))
    raw_email = _lookup(raw, "email")

    dates: dict[str, date | None] = {}
    bad_date: tuple[str, Any] | None = None
    for name in ("check_in", "check_out"):
        raw_value = _lookup(raw, name)
        try:
            dates[name] = parse_date(raw_value)
        except ValueError:
            dates[name] = None
            if bad_date is None:
                bad_date = (name, raw_value)

    def _reject(reason: str, field_name: str, raw_value: Any) -> Rejection:
        return Rejection(
            source_id=source_id,
            reason=reason,
            field=field_name,
            raw_value=raw_value,
            first_name=first_name,
            last_name=last_name,
            email=_clean(raw_email),
            check_in=dates["check_in"],
            check_out=dates["check_out"],
        )

    check = validate_email(raw_email)
    if not check.is_valid:
        return _reject(check.reason, "email", raw_email)
    if bad_date is not None:
        return _reject("invalid-date", bad_date[0], bad_date[1])

    return SourceGuestRecord(
        source_id=source_id,
        first_name=first_name,
        last_name=last_name,
        email=check.email,
        phone=_clean(_lookup(raw, "phone")),
        language=_clean(_lookup(raw, "language")),
        billing_city=_clean(_lookup(raw, "billing_city")),
        billing_state=_clean(_lookup(raw, "billing_state")),
        billing_country=_clean(_lookup(raw, "billing_country")),
        check_in=dates["check_in"],
        check_out=dates["check_out"],
        engagement_flags=coerce_flags(raw.get("engagement_flags")),
    )


__all__ = [
    "EmailCheck",
    "FIELD_ALIASES",
    "LANGUAGE_UNKNOWN",
    "coerce_flags",
    "map_language",
    "name_key",
    "normalize_row",
    "parse_date",
    "parse_flag",
    "text_key",
    "validate_email",
]
