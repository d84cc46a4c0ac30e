"""
Human-review queue for records excluded from automatic sync.
"""

from __future__ import annotations

import csv
from collections import Counter
from datetime import date
from typing import IO, Iterable, Iterator

from .records import ReviewItem, ReviewReason, SourceGuestRecord

REVIEW_CSV_HEADERS: tuple[str, ...] = (
    "Email",
    "FirstName",
    "LastName",
    "Phone",
    "City",
    "State",
    "Country",
    "Language",
    "CheckInDate",
    "CheckOutDate",
    "ReviewReason",
)


def _format_date(value: date | None) -> str:
    return value.isoformat() if value else ""


class ReviewQueue:
    """Ordered collection of ``ReviewItem``s for one run."""

    def __init__(self, items: Iterable[ReviewItem] = ()):
        self._items: list[ReviewItem] = list(items)

    def add(self, record: SourceGuestRecord, reason: ReviewReason, details: str = "") -> ReviewItem:
        item = ReviewItem(record=record, reason=reason, details=details)
        self._items.append(item)
        return item

    def extend(self, items: Iterable[ReviewItem]) -> None:
        self._items.extend(items)

    def __iter__(self) -> Iterator[ReviewItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    @property
    def items(self) -> tuple[ReviewItem, ...]:
        return tuple(self._items)

    @property
    def emails(self) -> frozenset[str]:
        return frozenset(item.record.email_key for item in self._items)

    def counts_by_reason(self) -> dict[str, int]:
        counts = Counter(item.reason.value for item in self._items)
        return dict(sorted(counts.items()))

    def to_rows(self) -> list[dict[str, str]]:
        rows: list[dict[str, str]] = []
        for item in self._items:
            record = item.record
            rows.append(
                {
                    "Email": record.email,
                    "FirstName": record.first_name,
                    "LastName": record.last_name,
                    "Phone": record.phone,
                    "City": record.billing_city,
                    "State": record.billing_state,
                    "Country": record.billing_country,
                    "Language": record.language,
                    "CheckInDate": _format_date(record.check_in),
                    "CheckOutDate": _format_date(record.check_out),
                    "ReviewReason": item.reason.value,
                }
            )
        return rows

    def write_csv(self, handle: IO[str]) -> int:
        """Write the queue as CSV to ``handle`` and return the number of data rows."""

        writer = csv.DictWriter(handle, fieldnames=list(REVIEW_CSV_HEADERS))
        writer.writeheader()
        rows = self.to_rows()
        writer.writerows(rows)
        return len(rows)


__all__ = ["REVIEW_CSV_HEADERS", "ReviewQueue"]
