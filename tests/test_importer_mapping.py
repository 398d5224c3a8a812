from pathlib import Path

import pytest

from intake_app.importer.contracts import (
    IDENTIFIER_FIELDS,
    LEAD_FIELD_NAMES,
    compact_header,
    get_contained_aliases,
    get_lead_alias_map,
    lead_field_choices,
    normalize_header,
)
from intake_app.importer.errors import MappingConflict, MappingLoadError
from intake_app.importer.mapping import (
    dump_mapping_file,
    load_mapping_file,
    mapping_checksum,
    overlay_mapping,
    suggest_mapping,
    validate_mapping,
)


def _write_yaml(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "mapping.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_normalize_header_collapses_punctuation():
    assert normalize_header("  E-Mail  Address ") == "e mail address"
    assert normalize_header("\ufeffFirst_Name") == "first name"
    assert compact_header("E-Mail") == "email"
    assert normalize_header(None) == ""


def test_contract_lists_identifier_fields():
    assert set(IDENTIFIER_FIELDS) <= set(LEAD_FIELD_NAMES)
    choices = lead_field_choices()
    assert {"value": "home_email", "label": "Email"} in choices
    assert len(choices) == len(LEAD_FIELD_NAMES)


def test_alias_map_resolves_common_headers():
    alias_map = get_lead_alias_map()
    assert alias_map["email"] == "home_email"
    assert alias_map["phone"] == "mobile_phone"
    assert alias_map["firstname"] == "first_name"
    assert alias_map["fico"] == "fico_score"


def test_contained_aliases_are_longest_first():
    aliases = get_contained_aliases()
    lengths = [len(alias) for alias, _ in aliases]

    assert lengths == sorted(lengths, reverse=True)
    assert ("property address", "property_street") in aliases
    assert ("e mail", "home_email") in aliases


def test_suggest_mapping_auto_maps_headers():
    headers = ("First Name", "Last Name", "E-Mail", "Phone", "Loan Amount", "Favorite Color")
    suggestion = suggest_mapping(headers)

    assert suggestion == {
        "First Name": "first_name",
        "Last Name": "last_name",
        "E-Mail": "home_email",
        "Phone": "mobile_phone",
        "Loan Amount": "loan_amount",
    }


def test_suggest_mapping_claims_each_field_once():
    suggestion = suggest_mapping(("Email", "Email Address"))

    assert suggestion == {"Email": "home_email"}
    validate_mapping(suggestion)


def test_suggest_mapping_matches_contained_aliases():
    suggestion = suggest_mapping(("Borrower Email", "Cell Phone Number", "Primary Phone", "Property Address Line 1"))

    assert suggestion == {
        "Borrower Email": "home_email",
        "Cell Phone Number": "mobile_phone",
        "Property Address Line 1": "property_street",
    }
    validate_mapping(suggestion)


def test_suggest_mapping_prefers_exact_matches_over_contained():
    suggestion = suggest_mapping(("Borrower Email", "Email", "Emailed"))

    assert suggestion == {"Email": "home_email"}


def test_validate_mapping_drops_unknown_and_empty_targets():
    cleaned = validate_mapping({"Email": "home_email", "Color": "favorite_color", "Notes": "", "Skip": None})

    assert cleaned == {"Email": "home_email"}


def test_validate_mapping_rejects_duplicate_targets():
    with pytest.raises(MappingConflict) as excinfo:
        validate_mapping({"Email": "home_email", "E-Mail": "home_email", "Phone": "mobile_phone"})

    assert excinfo.value.duplicates == {"home_email": ("Email", "E-Mail")}
    assert "home_email" in str(excinfo.value)


def test_overlay_mapping_lets_profile_take_a_field_over():
    headers = ("Email", "Work Address", "Phone")
    base = {"Email": "home_email", "Phone": "mobile_phone"}
    overrides = {"Work Address": "home_email", "Missing Column": "notes"}

    merged = overlay_mapping(base, overrides, headers)

    assert merged == {"Phone": "mobile_phone", "Work Address": "home_email"}
    validate_mapping(merged)


def test_mapping_checksum_ignores_key_order():
    first = mapping_checksum({"Email": "home_email", "Phone": "mobile_phone"})
    second = mapping_checksum({"Phone": "mobile_phone", "Email": "home_email"})
    assert first == second


def test_load_mapping_file_returns_name_and_mapping(tmp_path):
    path = _write_yaml(
        tmp_path,
        "version: 1\n"
        "name: Zillow export\n"
        "fields:\n"
        "  - source: E-Mail\n"
        "    target: home_email\n"
        "  - source: Cell\n"
        "    target: mobile_phone\n"
        "  - source: Internal Id\n"
        "    target:\n",
    )

    name, mapping = load_mapping_file(path)

    assert name == "Zillow export"
    assert mapping == {"E-Mail": "home_email", "Cell": "mobile_phone"}


@pytest.mark.parametrize(
    "text, message",
    [
        ("fields: [\n", "Failed to parse mapping YAML"),
        ("- just\n- a list\n", "must contain a YAML mapping"),
        ("version: 1\n", "Missing required mapping attribute"),
        ("version: 2\nfields: []\n", "Unsupported mapping file version"),
        ("fields: {source: Email}\n", "must be a list"),
        ("fields:\n  - target: home_email\n", "missing 'source'"),
        ("fields:\n  - source: Email\n    target: favorite_color\n", "Unknown lead field"),
    ],
)
def test_load_mapping_file_rejects_bad_documents(tmp_path, text, message):
    path = _write_yaml(tmp_path, text)

    with pytest.raises(MappingLoadError) as excinfo:
        load_mapping_file(path)

    assert message in str(excinfo.value)


def test_load_mapping_file_missing_path(tmp_path):
    with pytest.raises(MappingLoadError):
        load_mapping_file(tmp_path / "nope.yaml")


def test_load_mapping_file_detects_conflicts(tmp_path):
    path = _write_yaml(
        tmp_path,
        "fields:\n  - source: Email\n    target: home_email\n  - source: E-Mail\n    target: home_email\n",
    )

    with pytest.raises(MappingConflict):
        load_mapping_file(path)


def test_dump_mapping_file_is_loadable(tmp_path):
    path = dump_mapping_file({"Email": "home_email"}, tmp_path / "out.yaml", name="Saved")

    assert load_mapping_file(path) == ("Saved", {"Email": "home_email"})
