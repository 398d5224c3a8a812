"""Canonical lead field contract.

Single source of truth for the fields a source column can be mapped onto, the
labels shown to operators, the header aliases used for auto-mapping, and the
value kind that drives row normalization.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Literal, Mapping, Tuple

FieldKind = Literal["text", "email", "phone", "number", "integer"]

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_header(header: str | None) -> str:
    """Trim, lowercase, and collapse runs of non-alphanumerics into one space."""

    token = (header or "").strip().lstrip("\ufeff").lower()
    return _NON_ALNUM.sub(" ", token).strip()


def compact_header(header: str | None) -> str:
    """Normalized header with spaces removed (``"e mail"`` -> ``"email"``)."""

    return normalize_header(header).replace(" ", "")


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical lead field."""

    name: str
    label: str
    kind: FieldKind = "text"
    aliases: Tuple[str, ...] = ()
    description: str = ""

    def headers(self) -> Tuple[str, ...]:
        """Return aliases, then label, then canonical name."""

        return (*self.aliases, self.label, self.name)

    @property
    def is_numeric(self) -> bool:
        return self.kind in ("number", "integer")


LEAD_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("first_name", "First Name", aliases=("first name", "firstname", "first", "fname", "given name")),
    FieldSpec("last_name", "Last Name", aliases=("last name", "lastname", "last", "lname", "surname")),
    FieldSpec(
        "home_email",
        "Email",
        kind="email",
        aliases=("email", "e-mail", "email address", "home email", "personal email"),
        description="Primary email address; first dedup key.",
    ),
    FieldSpec("work_email", "Work Email", kind="email", aliases=("work email", "business email")),
    FieldSpec(
        "mobile_phone",
        "Mobile Phone",
        kind="phone",
        aliases=("phone", "mobile", "cell", "phone number", "cell phone", "mobile phone"),
        description="Primary phone number stored as digits; second dedup key.",
    ),
    FieldSpec("home_phone", "Home Phone", kind="phone", aliases=("home phone",)),
    FieldSpec("work_phone", "Work Phone", kind="phone", aliases=("work phone", "business phone")),
    FieldSpec(
        "property_street",
        "Property Address",
        aliases=("address", "street", "property address", "street address"),
        description="Street line; part of the name+address dedup key.",
    ),
    FieldSpec("property_city", "City", aliases=("city", "property city")),
    FieldSpec("property_state", "State", aliases=("state", "property state")),
    FieldSpec("property_zip", "Zip Code", aliases=("zip", "zipcode", "zip code", "postal", "postal code")),
    FieldSpec("property_county", "County", aliases=("county", "property county")),
    FieldSpec("property_type", "Property Type", aliases=("property type",)),
    FieldSpec("occupancy", "Occupancy", aliases=("occupancy",)),
    FieldSpec(
        "estimated_value",
        "Estimated Value",
        kind="number",
        aliases=("value", "property value", "home value", "estimated value"),
    ),
    FieldSpec("loan_amount", "Loan Amount", kind="number", aliases=("loan amount", "amount", "loan")),
    FieldSpec("loan_type", "Loan Type", aliases=("loan type", "type")),
    FieldSpec("loan_purpose", "Loan Purpose", aliases=("loan purpose", "purpose")),
    FieldSpec("fico_score", "FICO Score", kind="integer", aliases=("fico", "credit score", "credit", "fico score")),
    FieldSpec("current_rate", "Current Rate", kind="number", aliases=("current rate", "rate", "interest rate")),
    FieldSpec(
        "current_balance",
        "Current Balance",
        kind="number",
        aliases=("current balance", "balance", "mortgage balance"),
    ),
    FieldSpec(
        "monthly_rental_income",
        "Monthly Rental Income",
        kind="number",
        aliases=("monthly rental income", "rental income", "rent"),
    ),
    FieldSpec("source", "Lead Source", aliases=("source", "lead source")),
    FieldSpec("notes", "Notes", aliases=("notes", "comments", "note")),
    FieldSpec("zillow_link", "Zillow Link", aliases=("zillow", "zillow link", "zillow url")),
)

LEAD_FIELD_NAMES: Tuple[str, ...] = tuple(spec.name for spec in LEAD_FIELDS)

IDENTIFIER_FIELDS: Tuple[str, ...] = ("first_name", "last_name", "home_email", "mobile_phone")


def get_lead_field_specs() -> Tuple[FieldSpec, ...]:
    return LEAD_FIELDS


def get_lead_field_map() -> Mapping[str, FieldSpec]:
    return {spec.name: spec for spec in LEAD_FIELDS}


def get_lead_alias_map() -> Dict[str, str]:
    """
    Return a mapping of compacted header alias -> canonical field name.

    Earlier fields win when two fields share an alias.
    """

    alias_map: Dict[str, str] = {}
    for spec in LEAD_FIELDS:
        for header in spec.headers():
            alias_map.setdefault(compact_header(header), spec.name)
    return alias_map


def get_contained_aliases() -> Tuple[Tuple[str, str], ...]:
    """
    Return ``(normalized alias, field)`` pairs, longest alias first.

    Field table order breaks ties between aliases of equal length.
    """

    pairs = []
    seen = set()
    for position, spec in enumerate(LEAD_FIELDS):
        for header in spec.headers():
            alias = normalize_header(header)
            if alias and (alias, spec.name) not in seen:
                seen.add((alias, spec.name))
                pairs.append((len(alias), position, alias, spec.name))
    pairs.sort(key=lambda item: (-item[0], item[1]))
    return tuple((alias, name) for _, _, alias, name in pairs)


def lead_field_choices() -> list[dict[str, str]]:
    """``[{value, label}]`` pairs for mapping pickers."""

    return [{"value": spec.name, "label": spec.label} for spec in LEAD_FIELDS]
