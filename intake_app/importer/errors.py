"""Exception hierarchy for the lead importer."""

from __future__ import annotations

from typing import Mapping, Sequence

from intake_app.models.importer.schema import ImportRunFinalizedError


class LeadImportError(Exception):
    """Base exception for lead import failures."""


class ImportContextError(LeadImportError):
    """Raised when the caller has no usable organization/user context."""


# ---------------------------------------------------------------------------
# Source errors
# ---------------------------------------------------------------------------


class SourceError(LeadImportError):
    """Base error for failures reading a source before any row is processed."""

    #: Set by the runner when the failure was recorded on an ImportRun.
    import_run_id: int | None = None

    def __init__(self, message: str, *, source_type: str | None = None) -> None:
        super().__init__(message)
        self.source_type = source_type


class SourceUnavailable(SourceError):
    """The source could not be fetched or parsed (empty, private, quota, network)."""


class SourceUnauthorized(SourceError):
    """The stored connector credential is missing, expired, or was rejected."""

    needs_reconnect = True


class SourceTooLarge(SourceError):
    """The source exceeds the configured upload size or row limit."""


# ---------------------------------------------------------------------------
# Mapping errors
# ---------------------------------------------------------------------------


class MappingError(LeadImportError):
    """Base error for invalid header mappings."""


class MappingConflict(MappingError):
    """Two or more source headers target the same canonical field."""

    def __init__(self, duplicates: Mapping[str, Sequence[str]]) -> None:
        self.duplicates = {field: tuple(headers) for field, headers in duplicates.items()}
        details = "; ".join(
            f"{field} <- {', '.join(repr(header) for header in headers)}"
            for field, headers in sorted(self.duplicates.items())
        )
        super().__init__(f"Mapping assigns more than one column to the same field: {details}.")


class MappingLoadError(MappingError):
    """Raised when a mapping file or stored profile cannot be loaded."""


# ---------------------------------------------------------------------------
# Write errors
# ---------------------------------------------------------------------------


class LeadWriteConflict(LeadImportError):
    """A row kept colliding with concurrent writes after every retry."""

    def __init__(self, row_index: int, attempts: int) -> None:
        super().__init__(f"Row {row_index}: could not resolve a concurrent write after {attempts} attempts.")
        self.row_index = row_index
        self.attempts = attempts


__all__ = [
    "LeadImportError",
    "ImportContextError",
    "SourceError",
    "SourceUnavailable",
    "SourceUnauthorized",
    "SourceTooLarge",
    "MappingError",
    "MappingConflict",
    "MappingLoadError",
    "LeadWriteConflict",
    "ImportRunFinalizedError",
]
