import pytest

from intake_app.importer.adapters import SourceDescriptor, parse_csv_text, read_source, sanitize_headers
from intake_app.importer.context import ImportContext, ImportSettings
from intake_app.importer.errors import SourceTooLarge, SourceUnavailable


def test_parse_csv_text_handles_quoting_and_bom():
    data = (
        "\ufeffFirst Name,Notes,Email\n"
        'Ada,"Likes commas, ""quotes""\nand newlines",ada@example.com\n'
        "Grace,,grace@example.com\n"
    ).encode("utf-8")

    table = parse_csv_text(data, source_ref="leads.csv")

    assert table.headers == ("First Name", "Notes", "Email")
    assert table.total_rows == 2
    first = table.rows[0]
    assert first.row_index == 2
    assert first.get("Notes") == 'Likes commas, "quotes"\nand newlines'
    assert table.rows[1].get("Email") == "grace@example.com"
    assert table.source_ref == "leads.csv"


def test_parse_csv_text_pads_short_rows_and_skips_blank_rows():
    table = parse_csv_text("A,B,C\n1\n,,\n4,5,6,7\n")

    assert [row.row_index for row in table.rows] == [2, 4]
    assert dict(table.rows[0].values) == {"A": "1", "B": "", "C": ""}
    assert dict(table.rows[1].values) == {"A": "4", "B": "5", "C": "6"}


def test_sanitize_headers_makes_headers_unique():
    assert sanitize_headers([" Email ", "", "email", None]) == ("Email", "Column 2", "email (2)", "Column 4")


@pytest.mark.parametrize("data", ["", "   \n", ",,\n1,2,3\n"])
def test_parse_csv_text_rejects_empty_input(data):
    with pytest.raises(SourceUnavailable):
        parse_csv_text(data)


def test_parse_csv_text_enforces_row_limit():
    data = "Email\n" + "".join(f"user{i}@example.com\n" for i in range(4))

    with pytest.raises(SourceTooLarge):
        parse_csv_text(data, max_rows=3)


def test_parse_csv_text_enforces_byte_limit():
    with pytest.raises(SourceTooLarge):
        parse_csv_text("Email\n" + "x" * 64, max_bytes=32)


def test_read_source_rejects_disabled_adapter():
    settings = ImportSettings(adapters=("google_sheets",))
    descriptor = SourceDescriptor(source_type="csv", data="Email\na@example.com\n")

    with pytest.raises(SourceUnavailable) as excinfo:
        read_source(descriptor, ImportContext(organization_id=1), settings)

    assert "'csv' importer adapter is not enabled" in str(excinfo.value)


def test_source_descriptor_from_payload_validates_input():
    descriptor = SourceDescriptor.from_payload({"data": "Email\n", "filename": " leads.csv "})
    assert descriptor.adapter == "csv"
    assert descriptor.source_ref() == "leads.csv"
    assert SourceDescriptor.from_payload({"data": "Email\n"}).source_ref() == "CSV Upload"

    with pytest.raises(ValueError):
        SourceDescriptor.from_payload({"source_type": "xlsx", "data": "x"})
    with pytest.raises(ValueError):
        SourceDescriptor.from_payload({"source_type": "csv"})
    with pytest.raises(ValueError):
        SourceDescriptor.from_payload({"source_type": "google_sheets"})


@pytest.mark.parametrize("data", [123, ["Email", "a@example.com"], {"Email": "a@example.com"}])
def test_source_descriptor_rejects_non_text_data(data):
    with pytest.raises(ValueError) as excinfo:
        SourceDescriptor.from_payload({"data": data})

    assert str(excinfo.value) == "'data' must be CSV text."


def test_source_descriptor_describes_sheet_sources():
    public = SourceDescriptor.from_payload({"sheet_url": "https://docs.google.com/spreadsheets/d/abc/edit"})
    assert public.is_public_sheet
    assert public.adapter == "google_sheets"

    authorized = SourceDescriptor.from_payload({"source_type": "google_sheets", "spreadsheet_id": "sheet-123"})
    assert authorized.is_authorized_sheet
    assert authorized.source_ref("Leads") == "sheet-123/Leads"
    assert authorized.describe()["adapter"] == "google_sheets"
