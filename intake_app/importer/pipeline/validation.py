"""
Row normalization and validation for lead imports.

Rows are projected through the header mapping, trimmed, and typed according to
the canonical field kinds. Problems that make a row unusable produce a
``RowError``; everything else is reported as ``RowWarning`` and the row still
imports.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from intake_app.models.lead import email_match_key, name_address_match_key, phone_match_key

from ..adapters.source import SourceRow
from ..contracts import IDENTIFIER_FIELDS, get_lead_field_map

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NUMERIC_NOISE = re.compile(r"[$€£,\s]")
_NON_DIGIT = re.compile(r"\D+")
# Integer columns are 32-bit on every supported backend.
_INTEGER_LIMIT = 2**31 - 1


@dataclass(frozen=True)
class RowWarning:
    """Non-fatal issue; the row is still written."""

    row_index: int
    code: str
    message: str
    field: str | None = None

    kind = "warning"

    def as_detail(self) -> dict[str, Any]:
        return {"row_index": self.row_index, "kind": self.kind, "code": self.code, "message": self.message}


@dataclass(frozen=True)
class RowError:
    """Fatal row issue; the row is skipped."""

    row_index: int
    code: str
    message: str
    field: str | None = None

    kind = "skipped"

    def as_detail(self) -> dict[str, Any]:
        return {"row_index": self.row_index, "kind": self.kind, "code": self.code, "message": self.message}


@dataclass(frozen=True)
class ValidatedLeadRecord:
    """Typed canonical values for one source row."""

    row_index: int
    fields: Mapping[str, Any]
    warnings: tuple[RowWarning, ...] = field(default_factory=tuple)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    @property
    def email_key(self) -> str | None:
        return email_match_key(self.fields.get("home_email"))

    @property
    def phone_key(self) -> str | None:
        return phone_match_key(self.fields.get("mobile_phone"))

    @property
    def name_address_key(self) -> str | None:
        return name_address_match_key(
            self.fields.get("first_name"), self.fields.get("last_name"), self.fields.get("property_street")
        )

    def match_keys(self) -> dict[str, str]:
        """Populated dedup keys in priority order."""

        keys = (("email", self.email_key), ("phone", self.phone_key), ("name_address", self.name_address_key))
        return {key_type: value for key_type, value in keys if value}


def parse_number(value: Any, *, integer: bool = False) -> float | int | None:
    """
    Parse a currency/percent-formatted number.

    ``"$1,234.50"`` -> ``1234.5``; ``"6.5%"`` -> ``6.5``. Returns ``None`` when
    nothing numeric remains, or when an integer falls outside the column range.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        token = _NUMERIC_NOISE.sub("", str(value))
        if token.endswith("%"):
            token = token[:-1]
        if not token:
            return None
        try:
            number = float(token)
        except ValueError:
            return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    if integer:
        if abs(number) > _INTEGER_LIMIT:
            return None
        return int(number)
    return number


def _normalize_value(kind: str, raw: str) -> Any:
    if kind == "email":
        return raw.lower()
    if kind == "phone":
        return _NON_DIGIT.sub("", raw) or None
    if kind == "number":
        return parse_number(raw)
    if kind == "integer":
        return parse_number(raw, integer=True)
    return raw


def validate_row(
    row: SourceRow,
    mapping: Mapping[str, str],
    *,
    skip_validation: bool = False,
) -> ValidatedLeadRecord | RowError:
    """Project ``row`` through ``mapping`` and type every mapped value."""

    specs = get_lead_field_map()
    values: dict[str, Any] = {}
    for header, target in mapping.items():
        spec = specs.get(target)
        if spec is None:
            continue
        raw = (row.get(header) or "").strip()
        if not raw:
            continue
        normalized = _normalize_value(spec.kind, raw)
        if normalized is None or normalized == "":
            continue
        values[target] = normalized

    if not any(values.get(name) for name in IDENTIFIER_FIELDS):
        return RowError(
            row_index=row.row_index,
            code="missing_identifier",
            message="Row needs a first name, last name, email, or mobile phone.",
        )

    warnings: list[RowWarning] = []
    if not skip_validation:
        for name in ("home_email", "work_email"):
            email = values.get(name)
            if email and not EMAIL_PATTERN.match(email):
                warnings.append(
                    RowWarning(
                        row_index=row.row_index,
                        code="invalid_email",
                        message=f"{specs[name].label} '{email}' is not a valid email address.",
                        field=name,
                    )
                )

    return ValidatedLeadRecord(row_index=row.row_index, fields=values, warnings=tuple(warnings))
