"""Prometheus metrics helpers for guestsync runs."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Mapping

from prometheus_client import Counter, Gauge, Histogram, start_http_server

_records_counter = Counter(
    "guestsync_records_total",
    "Source records processed, by reconciliation outcome.",
    ["outcome"],
)
_review_counter = Counter(
    "guestsync_review_items_total",
    "Records routed to manual review, by reason.",
    ["reason"],
)
_runs_counter = Counter(
    "guestsync_runs_total",
    "Sync runs by final status.",
    ["status"],
)
_run_duration = Histogram(
    "guestsync_run_duration_seconds",
    "Duration of a sync run in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)
_checkpoint_gauge = Gauge(
    "guestsync_checkpoint_timestamp_seconds",
    "Unix time of the last advanced sync checkpoint.",
    ["checkpoint"],
)
_flag_reset_counter = Counter(
    "guestsync_flag_reset_warnings_total",
    "Updates that would reset a CRM engagement flag from true to false.",
)


def record_outcomes(counts: Mapping[str, int]) -> None:
    """Increment the per-outcome record counter."""

    for outcome, count in counts.items():
        if count:
            _records_counter.labels(outcome=outcome).inc(count)


def record_review_items(counts_by_reason: Mapping[str, int]) -> None:
    for reason, count in counts_by_reason.items():
        if count:
            _review_counter.labels(reason=reason).inc(count)


def record_flag_reset_warnings(count: int) -> None:
    if count:
        _flag_reset_counter.inc(count)


def record_run(*, status: Literal["succeeded", "failed"], duration_seconds: float) -> None:
    """Capture metrics for a finished run."""

    _runs_counter.labels(status=status).inc()
    _run_duration.observe(duration_seconds)


def record_checkpoint(name: str, timestamp: datetime) -> None:
    _checkpoint_gauge.labels(checkpoint=name).set(timestamp.timestamp())


def start_metrics_server(port: int) -> bool:
    """Expose metrics over HTTP on ``port``; a port of 0 leaves the exporter off."""

    if not port:
        return False
    start_http_server(port)
    return True


__all__ = [
    "record_checkpoint",
    "record_flag_reset_warnings",
    "record_outcomes",
    "record_review_items",
    "record_run",
    "start_metrics_server",
]
