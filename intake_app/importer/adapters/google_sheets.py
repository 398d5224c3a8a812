"""Google Sheets readers for lead imports.

Two access paths are supported:

* public share links, fetched through the spreadsheet CSV export URL and
  parsed with the CSV reader;
* authorized reads through the Sheets v4 values API using the access token the
  organization's connector stored in ``ConnectorCredential``.

Rate limiting (HTTP 429), transient 5xx responses, and network errors are
retried with exponential backoff. Authorization failures are never retried.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import quote

import requests
from sqlalchemy.orm import Session

from intake_app.models.importer.schema import ConnectorCredential

from ..errors import SourceTooLarge, SourceUnauthorized, SourceUnavailable
from ..metrics import record_sheets_request
from .csv_source import build_row, parse_csv_text, sanitize_headers
from .source import SourceRow, SourceTable

GOOGLE_SHEETS_PROVIDER = "google_sheets"
VALUES_RANGE = "A1:ZZ"

_SPREADSHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)")
_BARE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{20,}$")
_GID_PATTERN = re.compile(r"[#?&]gid=(\d+)")
_RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SheetTab:
    title: str
    sheet_id: int | None
    index: int | None

    def as_dict(self) -> dict[str, Any]:
        return {"title": self.title, "sheet_id": self.sheet_id, "index": self.index}


def parse_spreadsheet_id(url_or_id: str) -> str:
    """Extract the spreadsheet id from a share URL, or accept a bare id."""

    candidate = (url_or_id or "").strip()
    match = _SPREADSHEET_ID_PATTERN.search(candidate)
    if match:
        return match.group(1)
    if _BARE_ID_PATTERN.match(candidate):
        return candidate
    raise SourceUnavailable(
        f"'{url_or_id}' is not a Google Sheets URL or spreadsheet id.",
        source_type=GOOGLE_SHEETS_PROVIDER,
    )


def build_export_url(sheet_url: str, export_base: str = "https://docs.google.com/spreadsheets/d") -> str:
    """Return the CSV export URL for a share link, keeping the selected tab (gid)."""

    spreadsheet_id = parse_spreadsheet_id(sheet_url)
    url = f"{export_base.rstrip('/')}/{spreadsheet_id}/export?format=csv"
    gid_match = _GID_PATTERN.search(sheet_url)
    if gid_match:
        url += f"&gid={gid_match.group(1)}"
    return url


def _quote_tab(sheet_name: str) -> str:
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'!{VALUES_RANGE}"


def request_with_backoff(
    session: requests.Session,
    url: str,
    *,
    kind: str,
    headers: Mapping[str, str] | None = None,
    params: Mapping[str, Any] | None = None,
    timeout: float = 30.0,
    max_retries: int = 3,
    backoff_seconds: float = 1.0,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    GET ``url``, retrying rate limits, 5xx responses, and network errors.

    Returns the final response for the caller to interpret; raises
    ``SourceUnavailable`` once retries are exhausted.
    """

    attempts = max(1, max_retries + 1)
    last_error: str | None = None
    for attempt in range(attempts):
        try:
            response = session.get(url, headers=dict(headers or {}), params=params, timeout=timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            last_error = f"network error: {exc}"
            logger.warning(
                "Google Sheets request failed; retrying",
                extra={"sheets_kind": kind, "sheets_attempt": attempt + 1, "sheets_error": str(exc)},
            )
        else:
            if response.status_code not in _RETRYABLE_STATUSES:
                return response
            last_error = "quota exceeded" if response.status_code == 429 else f"HTTP {response.status_code}"
            logger.warning(
                "Google Sheets request throttled or unavailable; retrying",
                extra={"sheets_kind": kind, "sheets_attempt": attempt + 1, "sheets_status": response.status_code},
            )
        if attempt + 1 < attempts:
            record_sheets_request(kind, "retry")
            sleep_fn(backoff_seconds * (2**attempt))

    record_sheets_request(kind, "failure")
    raise SourceUnavailable(
        f"Google Sheets request failed after {attempts} attempts ({last_error}).",
        source_type=GOOGLE_SHEETS_PROVIDER,
    )


def fetch_public_sheet(
    sheet_url: str,
    *,
    session: requests.Session | None = None,
    export_base: str = "https://docs.google.com/spreadsheets/d",
    timeout: float = 30.0,
    max_retries: int = 3,
    backoff_seconds: float = 1.0,
    max_rows: int | None = None,
    max_bytes: int | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> SourceTable:
    """Download a publicly shared sheet as CSV and parse it."""

    http = session or requests.Session()
    export_url = build_export_url(sheet_url, export_base)
    response = request_with_backoff(
        http,
        export_url,
        kind="public_export",
        timeout=timeout,
        max_retries=max_retries,
        backoff_seconds=backoff_seconds,
        sleep_fn=sleep_fn,
    )
    content_type = (response.headers.get("Content-Type") or "").lower()
    if not response.ok or "text/html" in content_type:
        record_sheets_request("public_export", "failure")
        raise SourceUnavailable(
            "The Google Sheet is not publicly viewable. Share it with 'Anyone with the link' "
            "or connect Google Sheets for private access.",
            source_type=GOOGLE_SHEETS_PROVIDER,
        )
    record_sheets_request("public_export", "success")
    return parse_csv_text(response.content, source_ref=sheet_url, max_rows=max_rows, max_bytes=max_bytes)


def load_access_token(session: Session, organization_id: int) -> str:
    """Return the organization's active Google Sheets token or raise ``SourceUnauthorized``."""

    credential = (
        session.query(ConnectorCredential)
        .filter(
            ConnectorCredential.organization_id == organization_id,
            ConnectorCredential.provider == GOOGLE_SHEETS_PROVIDER,
        )
        .one_or_none()
    )
    if credential is None or not credential.is_active or not credential.access_token:
        raise SourceUnauthorized(
            "Google Sheets is not connected for this organization.",
            source_type=GOOGLE_SHEETS_PROVIDER,
        )
    if credential.is_expired():
        raise SourceUnauthorized(
            "Google Sheets authorization expired. Reconnect the Google Sheets connector.",
            source_type=GOOGLE_SHEETS_PROVIDER,
        )
    return credential.access_token


def values_to_table(values: Sequence[Sequence[Any]], *, source_ref: str, max_rows: int | None = None) -> SourceTable:
    """Convert a values-API matrix (header row first) into a ``SourceTable``."""

    if not values or not any(str(cell).strip() for cell in values[0]):
        raise SourceUnavailable("The selected sheet is empty.", source_type=GOOGLE_SHEETS_PROVIDER)
    headers = sanitize_headers([str(cell) for cell in values[0]])
    rows: list[SourceRow] = []
    for row_index, cells in enumerate(values[1:], start=2):
        row = build_row(row_index, headers, list(cells))
        if row.is_blank():
            continue
        rows.append(row)
        if max_rows is not None and len(rows) > max_rows:
            raise SourceTooLarge(
                f"Sheet has more than {max_rows} rows; split it and import it in parts.",
                source_type=GOOGLE_SHEETS_PROVIDER,
            )
    return SourceTable(headers=headers, rows=tuple(rows), source_ref=source_ref)


class GoogleSheetsClient:
    """Minimal Sheets v4 client authenticated with a bearer token."""

    def __init__(
        self,
        *,
        access_token: str,
        session: requests.Session | None = None,
        api_base: str = "https://sheets.googleapis.com/v4",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session or requests.Session()
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep_fn
        self._auth_headers = {"Authorization": f"Bearer {access_token}"}

    # Public API -----------------------------------------------------------------

    def get_values(self, spreadsheet_id: str, sheet_name: str) -> list[list[Any]]:
        url = f"{self.api_base}/spreadsheets/{spreadsheet_id}/values/{quote(_quote_tab(sheet_name), safe='')}"
        payload = self._get_json(url, kind="values")
        return list(payload.get("values") or [])

    def list_tabs(self, spreadsheet_id: str) -> list[SheetTab]:
        url = f"{self.api_base}/spreadsheets/{spreadsheet_id}"
        payload = self._get_json(url, kind="metadata", params={"fields": "sheets.properties"})
        tabs = []
        for sheet in payload.get("sheets") or []:
            properties = sheet.get("properties") or {}
            title = properties.get("title")
            if not title:
                continue
            tabs.append(SheetTab(title=title, sheet_id=properties.get("sheetId"), index=properties.get("index")))
        return tabs

    # Internal helpers -----------------------------------------------------------

    def _get_json(self, url: str, *, kind: str, params: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
        response = request_with_backoff(
            self.session,
            url,
            kind=kind,
            headers=self._auth_headers,
            params=params,
            timeout=self.timeout,
            max_retries=self.max_retries,
            backoff_seconds=self.backoff_seconds,
            sleep_fn=self.sleep,
        )
        if response.status_code in (401, 403):
            record_sheets_request(kind, "unauthorized")
            raise SourceUnauthorized(
                "Google rejected the stored authorization. Reconnect the Google Sheets connector.",
                source_type=GOOGLE_SHEETS_PROVIDER,
            )
        if response.status_code == 404:
            record_sheets_request(kind, "failure")
            raise SourceUnavailable(
                "Spreadsheet or tab not found. Check the spreadsheet id and sheet name.",
                source_type=GOOGLE_SHEETS_PROVIDER,
            )
        if not response.ok:
            record_sheets_request(kind, "failure")
            raise SourceUnavailable(
                f"Google Sheets request failed with HTTP {response.status_code}.",
                source_type=GOOGLE_SHEETS_PROVIDER,
            )
        record_sheets_request(kind, "success")
        try:
            return response.json()
        except ValueError as exc:
            raise SourceUnavailable(
                "Google Sheets returned an unreadable response.", source_type=GOOGLE_SHEETS_PROVIDER
            ) from exc
