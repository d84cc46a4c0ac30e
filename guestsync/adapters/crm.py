"""
CRM collaborator interfaces and an in-memory CRM.

The HTTP/auth transport to the real CRM lives outside this package; it only
has to satisfy ``CRMReader`` and ``ApplyTarget``. ``InMemoryCRM`` implements
both for previews against an exported snapshot and for tests.
"""

from __future__ import annotations

import itertools
import json
import logging
import os
import re
import tempfile
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence

from guestsync.exceptions import ApplyError, ConfigurationError
from guestsync.pipeline.normalize import coerce_flags, parse_date
from guestsync.pipeline.records import (
    ENGAGEMENT_FLAGS,
    ApplyPlan,
    CRMIdentity,
    ProposedStayRecord,
    TargetStayRecord,
)

logger = logging.getLogger(__name__)

StayKey = tuple[str, date]

_NUMERIC_SUFFIX = re.compile(r"(\d+)$")


def _highest_suffix(ids: Iterable[str]) -> int:
    """Largest trailing number among ``ids``, so generated ids never reuse one."""

    highest = 0
    for value in ids:
        match = _NUMERIC_SUFFIX.search(value)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


class CRMReader(Protocol):
    def find_identities_by_email(self, emails: Sequence[str]) -> Mapping[str, Sequence[CRMIdentity]]: ...

    def find_stays_by_identity(self, identity_ids: Sequence[str]) -> Mapping[StayKey, TargetStayRecord]: ...


class ApplyTarget(Protocol):
    def apply(self, plan: ApplyPlan) -> Mapping[str, int]: ...


class InMemoryCRM:
    """Dictionary-backed CRM holding identities and their stays."""

    def __init__(self, identities: Iterable[CRMIdentity] = (), stays: Iterable[TargetStayRecord] = ()):
        self.identities: dict[str, CRMIdentity] = {identity.identity_id: identity for identity in identities}
        self.stays: dict[StayKey, TargetStayRecord] = {}
        for stay in stays:
            if stay.key in self.stays:
                raise ConfigurationError(f"Duplicate CRM stay for identity {stay.identity_id} on {stay.check_in}.")
            self.stays[stay.key] = stay
        taken = [*self.identities, *(stay.record_id for stay in self.stays.values())]
        self._ids = itertools.count(_highest_suffix(taken) + 1)
        self.reads = 0

    # -- CRMReader ---------------------------------------------------------

    def find_identities_by_email(self, emails: Sequence[str]) -> dict[str, list[CRMIdentity]]:
        self.reads += 1
        wanted = {email.lower() for email in emails}
        found: dict[str, list[CRMIdentity]] = {}
        for identity in self.identities.values():
            key = identity.email.lower()
            if key in wanted:
                found.setdefault(key, []).append(identity)
        return found

    def find_stays_by_identity(self, identity_ids: Sequence[str]) -> dict[StayKey, TargetStayRecord]:
        self.reads += 1
        wanted = set(identity_ids)
        return {key: stay for key, stay in self.stays.items() if key[0] in wanted}

    def all_stays(self) -> list[TargetStayRecord]:
        return list(self.stays.values())

    # -- ApplyTarget -------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids):06d}"

    def _stay_from_proposed(self, proposed: ProposedStayRecord, identity_id: str, record_id: str) -> TargetStayRecord:
        return TargetStayRecord(
            record_id=record_id,
            identity_id=identity_id,
            check_in=proposed.check_in,
            email=proposed.email,
            first_name=proposed.first_name,
            last_name=proposed.last_name,
            city=proposed.city,
            state=proposed.state,
            country=proposed.country,
            telephone=proposed.telephone,
            language=proposed.language,
            check_out=proposed.check_out,
            flags=dict(proposed.flags),
        )

    def apply(self, plan: ApplyPlan) -> dict[str, int]:
        """Apply ``plan``: identities first, then stay creates, then stay updates."""

        by_email = {identity.email.lower(): identity.identity_id for identity in self.identities.values()}
        for draft in plan.create_identities:
            if draft.email.lower() in by_email:
                raise ApplyError(f"Identity for {draft.email} already exists; identities are create-only.")
            identity_id = self._next_id("ID")
            if identity_id in self.identities:
                raise ApplyError(f"Identity id {identity_id} is already taken.")
            self.identities[identity_id] = CRMIdentity(
                identity_id=identity_id,
                email=draft.email,
                first_name=draft.first_name,
                last_name=draft.last_name,
            )
            by_email[draft.email.lower()] = identity_id

        for proposed in plan.create_stays:
            identity_id = proposed.identity_id or by_email.get(proposed.email.lower())
            if identity_id is None:
                raise ApplyError(f"No identity to link the stay for {proposed.email} to.")
            key = (identity_id, proposed.check_in)
            if key in self.stays:
                raise ApplyError(f"Stay for {proposed.email} on {proposed.check_in} already exists.")
            self.stays[key] = self._stay_from_proposed(proposed, identity_id, self._next_id("ST"))

        for update in plan.update_stays:
            current = self.stays.get(update.existing.key)
            if current is None:
                raise ApplyError(f"Stay {update.existing.record_id} disappeared before update.")
            values: dict[str, Any] = {}
            flags = dict(current.flags)
            for change in update.changes:
                if change.is_boolean_flag:
                    flags[change.field] = change.to_value
                else:
                    values[change.field] = change.to_value
            self.stays[current.key] = replace(current, flags=flags, **values)

        counts = plan.to_dict()
        logger.info("Applied plan to in-memory CRM", extra=counts)
        return counts

    # -- Snapshot loading --------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "InMemoryCRM":
        """
        Build a CRM from ``{"identities": [...], "stays": [...]}``.

        Stays carry ``record_id``, ``identity_id``, ``check_in`` and any of the
        stay fields; engagement flags may be given top-level or under ``flags``.
        """

        identities = [
            CRMIdentity(
                identity_id=str(item["identity_id"]),
                email=str(item["email"]),
                first_name=item.get("first_name"),
                last_name=item.get("last_name"),
            )
            for item in data.get("identities", ())
        ]
        stays: list[TargetStayRecord] = []
        for item in data.get("stays", ()):
            check_in = parse_date(item.get("check_in"))
            if check_in is None:
                raise ConfigurationError(f"CRM stay {item.get('record_id')!r} has no check_in.")
            raw_flags = dict(item.get("flags") or {})
            raw_flags.update({name: item[name] for name in ENGAGEMENT_FLAGS if name in item})
            stays.append(
                TargetStayRecord(
                    record_id=str(item["record_id"]),
                    identity_id=str(item["identity_id"]),
                    check_in=check_in,
                    email=item.get("email") or "",
                    first_name=item.get("first_name"),
                    last_name=item.get("last_name"),
                    city=item.get("city"),
                    state=item.get("state"),
                    country=item.get("country"),
                    telephone=item.get("telephone"),
                    language=item.get("language"),
                    check_out=parse_date(item.get("check_out")),
                    flags=coerce_flags(raw_flags),
                )
            )
        return cls(identities=identities, stays=stays)

    def to_mapping(self) -> dict[str, Any]:
        identities = [
            {
                "identity_id": identity.identity_id,
                "email": identity.email,
                "first_name": identity.first_name,
                "last_name": identity.last_name,
            }
            for identity in self.identities.values()
        ]
        stays = []
        for stay in self.stays.values():
            stays.append(
                {
                    "record_id": stay.record_id,
                    "identity_id": stay.identity_id,
                    "check_in": stay.check_in.isoformat(),
                    "email": stay.email,
                    "first_name": stay.first_name,
                    "last_name": stay.last_name,
                    "city": stay.city,
                    "state": stay.state,
                    "country": stay.country,
                    "telephone": stay.telephone,
                    "language": stay.language,
                    "check_out": stay.check_out.isoformat() if stay.check_out else None,
                    "flags": dict(stay.flags),
                }
            )
        return {"identities": identities, "stays": stays}

    def save_json(self, path: str | Path) -> None:
        target = Path(path)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self.to_mapping(), handle, indent=2)
            os.replace(tmp_name, target)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @classmethod
    def load_json(cls, path: str | Path) -> "InMemoryCRM":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Unable to load CRM snapshot {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigurationError("CRM snapshot must be a JSON object.")
        return cls.from_mapping(data)


class SnapshotApplyTarget:
    """
    Apply a plan to an ``InMemoryCRM`` and write the snapshot file before returning.

    A failed write surfaces from ``apply`` so the run fails before the
    checkpoint moves.
    """

    def __init__(self, crm: InMemoryCRM, path: str | Path):
        self.crm = crm
        self.path = Path(path)

    def apply(self, plan: ApplyPlan) -> dict[str, int]:
        counts = self.crm.apply(plan)
        self.crm.save_json(self.path)
        return counts


__all__ = ["ApplyTarget", "CRMReader", "InMemoryCRM", "SnapshotApplyTarget"]
