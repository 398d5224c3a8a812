"""
Contracts describing the canonical lead fields importer adapters map onto.
"""

from .lead import (
    IDENTIFIER_FIELDS,
    LEAD_FIELD_NAMES,
    LEAD_FIELDS,
    FieldSpec,
    compact_header,
    get_contained_aliases,
    get_lead_alias_map,
    get_lead_field_map,
    get_lead_field_specs,
    lead_field_choices,
    normalize_header,
)

__all__ = [
    "IDENTIFIER_FIELDS",
    "LEAD_FIELD_NAMES",
    "LEAD_FIELDS",
    "FieldSpec",
    "compact_header",
    "get_contained_aliases",
    "get_lead_alias_map",
    "get_lead_field_map",
    "get_lead_field_specs",
    "lead_field_choices",
    "normalize_header",
]
