"""Source-agnostic row and descriptor types shared by the importer adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Tuple

SOURCE_TYPES: Tuple[str, ...] = ("csv", "google_sheets")
CSV_UPLOAD_REF = "CSV Upload"


@dataclass(frozen=True)
class SourceRow:
    """One data row keyed by raw header, with its 1-based position in the source."""

    row_index: int
    values: Mapping[str, str]

    def get(self, header: str, default: str = "") -> str:
        return self.values.get(header, default)

    def is_blank(self) -> bool:
        return all(not (value or "").strip() for value in self.values.values())

    def as_preview(self) -> dict[str, Any]:
        return {"_row_index": self.row_index, **dict(self.values)}


@dataclass(frozen=True)
class SourceTable:
    """Fully materialized source: headers in column order plus data rows."""

    headers: Tuple[str, ...]
    rows: Tuple[SourceRow, ...]
    source_ref: str

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[SourceRow]:
        return iter(self.rows)


@dataclass(frozen=True)
class SourceDescriptor:
    """Caller-supplied reference to where rows come from."""

    source_type: str
    data: str | bytes | None = field(default=None, repr=False)
    filename: str | None = None
    sheet_url: str | None = None
    spreadsheet_id: str | None = None
    sheet_name: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SourceDescriptor":
        """
        Build a descriptor from an API/CLI payload, raising ``ValueError`` on bad input.
        """

        source_type = str(payload.get("source_type") or "csv").strip().lower()
        if source_type not in SOURCE_TYPES:
            raise ValueError(
                f"Unsupported source_type '{source_type}'. Expected one of: {', '.join(SOURCE_TYPES)}."
            )
        descriptor = cls(
            source_type=source_type,
            data=payload.get("data"),
            filename=_clean(payload.get("filename")),
            sheet_url=_clean(payload.get("sheet_url")),
            spreadsheet_id=_clean(payload.get("spreadsheet_id")),
            sheet_name=_clean(payload.get("sheet_name")),
        )
        descriptor.validate()
        return descriptor

    def validate(self) -> None:
        if self.data is not None and not isinstance(self.data, (str, bytes)):
            raise ValueError("'data' must be CSV text.")
        if self.is_public_sheet or self.is_authorized_sheet:
            return
        if self.source_type == "google_sheets":
            raise ValueError("Google Sheets imports require either sheet_url or spreadsheet_id.")
        if self.data is None:
            raise ValueError("CSV imports require a 'data' payload or a public sheet_url.")

    @property
    def is_public_sheet(self) -> bool:
        return bool(self.sheet_url) and not self.spreadsheet_id and self.data is None

    @property
    def is_authorized_sheet(self) -> bool:
        return self.source_type == "google_sheets" and bool(self.spreadsheet_id)

    @property
    def adapter(self) -> str:
        if self.is_public_sheet or self.is_authorized_sheet:
            return "google_sheets"
        return "csv"

    def source_ref(self, default_tab: str = "Sheet1") -> str:
        if self.is_authorized_sheet:
            return f"{self.spreadsheet_id}/{self.sheet_name or default_tab}"
        if self.is_public_sheet:
            return str(self.sheet_url)
        return self.filename or CSV_UPLOAD_REF

    def describe(self) -> dict[str, Any]:
        """JSON-safe description without the raw payload."""

        return {
            "source_type": self.source_type,
            "adapter": self.adapter,
            "filename": self.filename,
            "sheet_url": self.sheet_url,
            "spreadsheet_id": self.spreadsheet_id,
            "sheet_name": self.sheet_name,
        }


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None
