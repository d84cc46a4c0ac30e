"""
Classification reference data for separating real guests from agents and proxies.

The classifier loads this module to decide which source records belong to
travel agencies, tour operators, OTA guest-proxy mailboxes, or company
placeholders rather than to an actual person staying at the property.

New agency and proxy domains appear over time, so the lists are treated as
versioned reference data rather than logic. Operators can override the
built-in defaults by pointing ``GUESTSYNC_CLASSIFICATION_PATH`` at a JSON or
YAML file. The helpers here load and validate those overrides.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, MutableMapping, Sequence

import yaml


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProxyMarker:
    """
    Email fragment identifying an OTA guest-proxy mailbox.

    Attributes:
        marker: Lower-case fragment searched for anywhere in the email.
        category: Agent category reported when the marker matches
            (e.g. ``booking-proxy``).
    """

    marker: str
    category: str


@dataclass(frozen=True)
class ClassificationRules:
    """
    Container for all agent/proxy detection reference data.

    The classifier evaluates proxy markers first, then placeholder first
    names, then agent keywords.
    """

    version: str
    proxy_markers: Sequence[ProxyMarker]
    placeholder_first_names: Sequence[str]
    agent_keywords: Sequence[str]


# ---------------------------------------------------------------------------
# Default rules
# ---------------------------------------------------------------------------

DEFAULT_PROXY_MARKERS: tuple[ProxyMarker, ...] = (
    ProxyMarker("guest.booking.com", "booking-proxy"),
    ProxyMarker("expediapartnercentral.com", "expedia-proxy"),
)

DEFAULT_PLACEHOLDER_FIRST_NAMES: tuple[str, ...] = ("TBC",)

DEFAULT_AGENT_KEYWORDS: tuple[str, ...] = (
    "reserv",
    "travel",
    "tour",
    "viaje",
    "incoming",
    "operacion",
    "ventas",
    "receptivo",
    "mayorista",
    "turismo",
    "journey",
    "experience",
    "expedition",
    ".tur.",
    "dmc",
    "mice",
    "smartflyer",
    "fora.travel",
    "traveledge",
    "travelcorp",
    "protravelinc",
    "globaltravelcollection",
    "cadencetravel",
    "dreamvacations",
    "tbhtravel",
    "foundluxury",
    "privateclients",
    "hontravel",
    "poptour",
    "maintravel",
    "kangaroo",
    "primetour",
    "booking.com",
    "expedia",
    "aspirelifestyles",
    "centurioncard",
    "vendor@",
)

DEFAULT_RULES = ClassificationRules(
    version="builtin-1",
    proxy_markers=DEFAULT_PROXY_MARKERS,
    placeholder_first_names=DEFAULT_PLACEHOLDER_FIRST_NAMES,
    agent_keywords=DEFAULT_AGENT_KEYWORDS,
)


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


class ClassificationConfigError(RuntimeError):
    """Raised when a classification override cannot be parsed."""


def _load_override(path: Path) -> MutableMapping[str, object]:
    if not path.exists():
        raise ClassificationConfigError(f"Classification override file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise ClassificationConfigError(f"Unable to read classification override file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ClassificationConfigError(f"Failed to parse classification override {path}: {exc}") from exc

    if not isinstance(data, Mapping):
        raise ClassificationConfigError("Classification override must be a JSON/YAML object.")
    return dict(data)


def _coerce_string_list(value: object | None, *, item_name: str, lower: bool) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ClassificationConfigError(f"Expected sequence for {item_name}, got {type(value).__name__}.")
    items: list[str] = []
    for raw in value:
        token = str(raw).strip()
        if not token:
            continue
        token = token.lower() if lower else token
        if token not in items:
            items.append(token)
    return tuple(items)


def _coerce_proxy_markers(value: object | None) -> tuple[ProxyMarker, ...]:
    if value is None:
        return ()
    if isinstance(value, Mapping):
        entries = [{"marker": marker, "category": category} for marker, category in value.items()]
    elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        entries = list(value)
    else:
        raise ClassificationConfigError("proxy_markers must be a mapping or a sequence of objects.")

    markers: list[ProxyMarker] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            raise ClassificationConfigError(f"Proxy marker definition must be a mapping, got {entry!r}")
        marker = str(entry.get("marker") or "").strip().lower()
        category = str(entry.get("category") or "").strip()
        if not marker or not category:
            raise ClassificationConfigError(f"Proxy marker requires both marker and category: {entry!r}")
        markers.append(ProxyMarker(marker=marker, category=category))
    return tuple(markers)


def _coerce_rules(raw: Mapping[str, object]) -> ClassificationRules:
    version = str(raw.get("version") or "").strip()
    if not version:
        raise ClassificationConfigError("Classification override requires a non-empty version.")

    # Keys missing from the override keep their built-in values.
    proxy_markers = (
        _coerce_proxy_markers(raw["proxy_markers"]) if "proxy_markers" in raw else DEFAULT_PROXY_MARKERS
    )
    placeholders = (
        _coerce_string_list(raw["placeholder_first_names"], item_name="placeholder_first_names", lower=False)
        if "placeholder_first_names" in raw
        else DEFAULT_PLACEHOLDER_FIRST_NAMES
    )
    keywords = (
        _coerce_string_list(raw["agent_keywords"], item_name="agent_keywords", lower=True)
        if "agent_keywords" in raw
        else DEFAULT_AGENT_KEYWORDS
    )

    # Additive mode keeps the built-in lists and appends the override entries.
    if bool(raw.get("extend_defaults", False)):
        proxy_markers = DEFAULT_PROXY_MARKERS + tuple(m for m in proxy_markers if m not in DEFAULT_PROXY_MARKERS)
        placeholders = DEFAULT_PLACEHOLDER_FIRST_NAMES + tuple(
            p for p in placeholders if p not in DEFAULT_PLACEHOLDER_FIRST_NAMES
        )
        keywords = DEFAULT_AGENT_KEYWORDS + tuple(k for k in keywords if k not in DEFAULT_AGENT_KEYWORDS)

    return ClassificationRules(
        version=version,
        proxy_markers=proxy_markers,
        placeholder_first_names=placeholders,
        agent_keywords=keywords,
    )


def load_rules(path: str | Path | None = None) -> ClassificationRules:
    """
    Load the active classification rules.

    When ``path`` is given (typically ``Config.CLASSIFICATION_PATH``) its
    JSON/YAML content replaces the defaults, or extends them when the file
    sets ``extend_defaults: true``. Otherwise the built-in rules are used.
    """

    if not path:
        return DEFAULT_RULES
    raw = _load_override(Path(path))
    return _coerce_rules(raw)


__all__ = [
    "ClassificationConfigError",
    "ClassificationRules",
    "DEFAULT_AGENT_KEYWORDS",
    "DEFAULT_RULES",
    "ProxyMarker",
    "load_rules",
]
