"""
Downloadable CSV rendition of an import run's error sample.
"""

from __future__ import annotations

import csv
import io

from intake_app.models.importer.schema import ImportRun

ERROR_REPORT_HEADERS = ("Row", "Error")


def error_report_ref(run_id: int) -> str:
    return f"/importer/api/runs/{run_id}/errors.csv"


def build_error_report_csv(run: ImportRun) -> str:
    """Render ``Row,Error`` lines from ``error_sample_json`` in row order."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(ERROR_REPORT_HEADERS)
    entries = sorted(run.error_sample_json or [], key=lambda entry: entry.get("row_index") or 0)
    for entry in entries:
        message = entry.get("message") or entry.get("code") or ""
        kind = entry.get("kind")
        if kind and kind != "error":
            message = f"[{kind}] {message}"
        writer.writerow((entry.get("row_index", ""), message))
    return buffer.getvalue()
