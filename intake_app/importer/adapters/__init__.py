"""
Source adapters: turn a ``SourceDescriptor`` into a ``SourceTable``.
"""

from __future__ import annotations

import time
from typing import Callable

import requests
from sqlalchemy.orm import Session

from ..context import ImportContext, ImportSettings
from ..errors import SourceUnavailable
from .csv_source import parse_csv_text, sanitize_headers
from .google_sheets import (
    GoogleSheetsClient,
    SheetTab,
    build_export_url,
    fetch_public_sheet,
    load_access_token,
    parse_spreadsheet_id,
    values_to_table,
)
from .source import CSV_UPLOAD_REF, SOURCE_TYPES, SourceDescriptor, SourceRow, SourceTable

__all__ = [
    "CSV_UPLOAD_REF",
    "SOURCE_TYPES",
    "GoogleSheetsClient",
    "SheetTab",
    "SourceDescriptor",
    "SourceRow",
    "SourceTable",
    "build_export_url",
    "list_sheet_tabs",
    "parse_csv_text",
    "parse_spreadsheet_id",
    "read_source",
    "sanitize_headers",
]


def _ensure_adapter_enabled(descriptor: SourceDescriptor, settings: ImportSettings) -> None:
    if descriptor.adapter not in settings.adapters:
        raise SourceUnavailable(
            f"The '{descriptor.adapter}' importer adapter is not enabled.",
            source_type=descriptor.adapter,
        )


def _build_sheets_client(
    session: Session,
    ctx: ImportContext,
    settings: ImportSettings,
    *,
    http: requests.Session | None,
    sleep_fn: Callable[[float], None],
) -> GoogleSheetsClient:
    return GoogleSheetsClient(
        access_token=load_access_token(session, ctx.organization_id),
        session=http,
        api_base=settings.sheets_api_base,
        timeout=settings.sheets_timeout_seconds,
        max_retries=settings.sheets_max_retries,
        backoff_seconds=settings.sheets_backoff_seconds,
        sleep_fn=sleep_fn,
    )


def read_source(
    descriptor: SourceDescriptor,
    ctx: ImportContext,
    settings: ImportSettings,
    *,
    session: Session | None = None,
    http: requests.Session | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> SourceTable:
    """
    Materialize every row of the described source.

    Raises ``SourceUnavailable``, ``SourceUnauthorized`` or ``SourceTooLarge``
    before any row is returned.
    """

    _ensure_adapter_enabled(descriptor, settings)
    source_ref = descriptor.source_ref(settings.sheets_default_tab)

    if descriptor.is_authorized_sheet:
        if session is None:
            raise SourceUnavailable("A database session is required to load connector credentials.")
        client = _build_sheets_client(session, ctx, settings, http=http, sleep_fn=sleep_fn)
        spreadsheet_id = parse_spreadsheet_id(descriptor.spreadsheet_id or "")
        values = client.get_values(spreadsheet_id, descriptor.sheet_name or settings.sheets_default_tab)
        return values_to_table(values, source_ref=source_ref, max_rows=settings.max_rows)

    if descriptor.is_public_sheet:
        return fetch_public_sheet(
            descriptor.sheet_url or "",
            session=http,
            export_base=settings.sheets_export_base,
            timeout=settings.sheets_timeout_seconds,
            max_retries=settings.sheets_max_retries,
            backoff_seconds=settings.sheets_backoff_seconds,
            max_rows=settings.max_rows,
            max_bytes=settings.max_upload_bytes,
            sleep_fn=sleep_fn,
        )

    if descriptor.data is None:
        raise SourceUnavailable("CSV data is empty.", source_type="csv")
    return parse_csv_text(
        descriptor.data,
        source_ref=source_ref,
        max_rows=settings.max_rows,
        max_bytes=settings.max_upload_bytes,
    )


def list_sheet_tabs(
    spreadsheet_id: str,
    ctx: ImportContext,
    settings: ImportSettings,
    *,
    session: Session,
    http: requests.Session | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> list[SheetTab]:
    """List the tabs of an authorized spreadsheet so callers can pick ``sheet_name``."""

    if "google_sheets" not in settings.adapters:
        raise SourceUnavailable("The 'google_sheets' importer adapter is not enabled.", source_type="google_sheets")
    client = _build_sheets_client(session, ctx, settings, http=http, sleep_fn=sleep_fn)
    return client.list_tabs(parse_spreadsheet_id(spreadsheet_id))
