"""Importer pipeline: validation, dedupe, writes, and run orchestration."""

from __future__ import annotations

from .deterministic import BatchKeyRegistry, DedupeDecision, resolve
from .error_report import build_error_report_csv, error_report_ref
from .load_core import LeadWriter, RowOutcome, RowOutcomeKind
from .profiles import MappingProfileStore
from .run_service import ImportRunService, RunFilters, RunListResult, RunStats, RunSummary
from .runner import ImportOptions, ImportRunResult, LeadImportRunner, PreviewResult, RunTally
from .validation import RowError, RowWarning, ValidatedLeadRecord, parse_number, validate_row

__all__ = [
    "BatchKeyRegistry",
    "DedupeDecision",
    "ImportOptions",
    "ImportRunResult",
    "ImportRunService",
    "LeadImportRunner",
    "LeadWriter",
    "MappingProfileStore",
    "PreviewResult",
    "RowError",
    "RowOutcome",
    "RowOutcomeKind",
    "RowWarning",
    "RunFilters",
    "RunListResult",
    "RunStats",
    "RunSummary",
    "RunTally",
    "ValidatedLeadRecord",
    "build_error_report_csv",
    "error_report_ref",
    "parse_number",
    "resolve",
    "validate_row",
]
