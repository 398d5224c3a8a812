"""Prometheus metrics helpers for the lead importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_runs_counter = Counter(
    "importer_lead_runs_total",
    "Lead import runs by source adapter and final status.",
    ["adapter", "status"],
)
_run_duration = Histogram(
    "importer_lead_run_duration_seconds",
    "Wall-clock duration of lead import runs in seconds.",
    ["adapter"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)
_row_outcomes = Counter(
    "importer_lead_rows_total",
    "Lead rows processed by outcome.",
    ["outcome"],
)
_write_conflicts = Counter(
    "importer_lead_write_conflicts_total",
    "Row writes retried because a concurrent import claimed the same match key.",
)
_sheets_requests = Counter(
    "importer_google_sheets_requests_total",
    "Google Sheets HTTP requests by endpoint kind and outcome.",
    ["kind", "outcome"],
)


def record_run(*, adapter: str, status: str, duration_seconds: float) -> None:
    """Capture the final status and duration of an import run."""

    _runs_counter.labels(adapter=adapter, status=status).inc()
    _run_duration.labels(adapter=adapter).observe(max(duration_seconds, 0.0))


def record_row_outcome(outcome: str, count: int = 1) -> None:
    if count <= 0:
        return
    _row_outcomes.labels(outcome=outcome).inc(count)


def record_write_conflict() -> None:
    _write_conflicts.inc()


def record_sheets_request(
    kind: Literal["public_export", "values", "metadata"],
    outcome: Literal["success", "retry", "unauthorized", "failure"],
) -> None:
    _sheets_requests.labels(kind=kind, outcome=outcome).inc()
