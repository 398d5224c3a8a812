"""CSV reader for lead imports.

Parses delimited text with standard quoting rules (embedded commas, newlines,
and doubled quotes), sanitizes the header row, and materializes one
``SourceRow`` per non-blank record. Row numbers count the header as row 1 so
they match what operators see in a spreadsheet.
"""

from __future__ import annotations

import csv
import io
from typing import Sequence

from ..errors import SourceTooLarge, SourceUnavailable
from .source import CSV_UPLOAD_REF, SourceRow, SourceTable


def _sanitize_header(header: str | None) -> str:
    token = (header or "").strip()
    return token.lstrip("\ufeff").strip()


def sanitize_headers(raw_headers: Sequence[str | None]) -> tuple[str, ...]:
    """
    Strip BOM/whitespace and make every header unique and non-empty.

    Blank headers become ``Column N``; repeated headers get a ``(2)``, ``(3)``
    suffix so no column silently overwrites another.
    """

    headers: list[str] = []
    seen: dict[str, int] = {}
    for position, raw in enumerate(raw_headers, start=1):
        header = _sanitize_header(raw) or f"Column {position}"
        count = seen.get(header.lower(), 0) + 1
        seen[header.lower()] = count
        if count > 1:
            header = f"{header} ({count})"
        headers.append(header)
    return tuple(headers)


def build_row(row_index: int, headers: Sequence[str], cells: Sequence[object | None]) -> SourceRow:
    """Pad short rows with empty strings and drop cells beyond the header width."""

    values = {}
    for position, header in enumerate(headers):
        cell = cells[position] if position < len(cells) else ""
        values[header] = "" if cell is None else str(cell)
    return SourceRow(row_index=row_index, values=values)


def decode_payload(data: str | bytes) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8-sig", errors="replace")
    return data


def parse_csv_text(
    data: str | bytes,
    *,
    source_ref: str = CSV_UPLOAD_REF,
    max_rows: int | None = None,
    max_bytes: int | None = None,
) -> SourceTable:
    """Parse CSV text into a ``SourceTable``."""

    if max_bytes is not None:
        size = len(data) if isinstance(data, bytes) else len(data.encode("utf-8"))
        if size > max_bytes:
            raise SourceTooLarge(
                f"CSV payload is {size / (1024 * 1024):.1f} MB which exceeds the "
                f"{max_bytes // (1024 * 1024)} MB limit.",
                source_type="csv",
            )

    text = decode_payload(data)
    if not text.strip():
        raise SourceUnavailable("CSV data is empty.", source_type="csv")

    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        raw_headers = next(reader, None)
        if raw_headers is None or not any((cell or "").strip() for cell in raw_headers):
            raise SourceUnavailable("CSV data has no header row.", source_type="csv")
        headers = sanitize_headers(raw_headers)

        rows: list[SourceRow] = []
        for row_index, cells in enumerate(reader, start=2):
            row = build_row(row_index, headers, cells)
            if row.is_blank():
                continue
            rows.append(row)
            if max_rows is not None and len(rows) > max_rows:
                raise SourceTooLarge(
                    f"CSV data has more than {max_rows} rows; split the file and import it in parts.",
                    source_type="csv",
                )
    except csv.Error as exc:
        raise SourceUnavailable(f"CSV data is malformed near line {reader.line_num}: {exc}", source_type="csv") from exc

    return SourceTable(headers=headers, rows=tuple(rows), source_ref=source_ref)
