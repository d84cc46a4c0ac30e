"""
Extraction collaborator interface and a file-backed extractor.

The production extractor runs the incremental PMS query; anything that can
return raw guest rows changed since a timestamp will do.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from guestsync.exceptions import ExtractionError

logger = logging.getLogger(__name__)

UPDATED_AT_KEYS = ("updated_at", "UPDATE_DATE")


class Extractor(Protocol):
    def extract(self, since: datetime | None) -> Iterable[Mapping[str, Any]]: ...


def _row_updated_at(row: Mapping[str, Any]) -> datetime | None:
    for key in UPDATED_AT_KEYS:
        value = row.get(key)
        if not value:
            continue
        if isinstance(value, datetime):
            parsed = value
        else:
            token = str(value).strip()
            if token.endswith("Z"):
                token = token[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(token)
            except ValueError:
                return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class JsonRowsExtractor:
    """
    Read raw rows from a JSON array file.

    Rows carrying ``updated_at`` at or before ``since`` are skipped; rows
    without one are always returned.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def extract(self, since: datetime | None) -> list[Mapping[str, Any]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ExtractionError(f"Unable to read source rows from {self.path}: {exc}", cause=exc) from exc
        if not isinstance(data, list):
            raise ExtractionError(f"Source file {self.path} must contain a JSON array of rows.")

        rows: list[Mapping[str, Any]] = []
        for row in data:
            if not isinstance(row, Mapping):
                continue
            updated_at = _row_updated_at(row)
            if since is not None and updated_at is not None and updated_at <= since:
                continue
            rows.append(row)
        logger.info(
            "Extracted source rows",
            extra={"path": str(self.path), "rows": len(rows), "since": since.isoformat() if since else None},
        )
        return rows


__all__ = ["Extractor", "JsonRowsExtractor"]
