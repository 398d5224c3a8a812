"""
Explicit request context and settings handed to every importer operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Tuple

from flask import current_app

from .errors import ImportContextError


@dataclass(frozen=True)
class ImportContext:
    """Who is importing, and into which organization."""

    organization_id: int
    user_id: int | None = None

    def __post_init__(self) -> None:
        if self.organization_id is None:
            raise ImportContextError("An organization is required to run lead imports.")


@dataclass(frozen=True)
class ImportSettings:
    """Importer limits and connector settings resolved from app config."""

    adapters: Tuple[str, ...] = ("csv", "google_sheets")
    preview_rows: int = 25
    error_sample_limit: int = 50
    max_upload_mb: int = 25
    max_rows: int = 50000
    write_retries: int = 3
    sheets_api_base: str = "https://sheets.googleapis.com/v4"
    sheets_export_base: str = "https://docs.google.com/spreadsheets/d"
    sheets_default_tab: str = "Sheet1"
    sheets_timeout_seconds: float = 30.0
    sheets_max_retries: int = 3
    sheets_backoff_seconds: float = 1.0

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ImportSettings":
        defaults = cls()
        return cls(
            adapters=tuple(config.get("IMPORTER_ADAPTERS", defaults.adapters)),
            preview_rows=int(config.get("IMPORTER_PREVIEW_ROWS", defaults.preview_rows)),
            error_sample_limit=int(config.get("IMPORTER_ERROR_SAMPLE_LIMIT", defaults.error_sample_limit)),
            max_upload_mb=int(config.get("IMPORTER_MAX_UPLOAD_MB", defaults.max_upload_mb)),
            max_rows=int(config.get("IMPORTER_MAX_ROWS", defaults.max_rows)),
            write_retries=int(config.get("IMPORTER_WRITE_RETRIES", defaults.write_retries)),
            sheets_api_base=str(config.get("GOOGLE_SHEETS_API_BASE", defaults.sheets_api_base)).rstrip("/"),
            sheets_export_base=str(config.get("GOOGLE_SHEETS_EXPORT_BASE", defaults.sheets_export_base)).rstrip("/"),
            sheets_default_tab=str(config.get("GOOGLE_SHEETS_DEFAULT_TAB", defaults.sheets_default_tab)),
            sheets_timeout_seconds=float(
                config.get("GOOGLE_SHEETS_TIMEOUT_SECONDS", defaults.sheets_timeout_seconds)
            ),
            sheets_max_retries=int(config.get("GOOGLE_SHEETS_MAX_RETRIES", defaults.sheets_max_retries)),
            sheets_backoff_seconds=float(
                config.get("GOOGLE_SHEETS_BACKOFF_SECONDS", defaults.sheets_backoff_seconds)
            ),
        )


def is_importer_enabled(app=None) -> bool:
    """Return True when ``IMPORTER_ENABLED`` is set on ``app`` (the current app by default)."""
    config = (app or current_app).config
    return bool(config.get("IMPORTER_ENABLED", False))


def get_importer_adapters(app=None) -> Tuple[str, ...]:
    """Adapter names the lead importer is configured to run."""
    return ImportSettings.from_config((app or current_app).config).adapters
