import csv
import io

import pytest

from intake_app.importer.adapters import SourceDescriptor
from intake_app.importer.context import ImportSettings
from intake_app.importer.errors import MappingConflict, SourceUnavailable
from intake_app.importer.mapping import suggest_mapping
from intake_app.importer.pipeline import (
    ImportOptions,
    LeadImportRunner,
    MappingProfileStore,
    build_error_report_csv,
)
from intake_app.importer.pipeline.load_core import LeadWriter
from intake_app.models import ImportRun, ImportRunStatus, Lead, db
from intake_app.models.importer.schema import ImportRunFinalizedError

FIRST_IMPORT = (
    "First Name,Last Name,Email,Phone,Loan Amount\n"
    "TestImport,User,testimport@example.com,555-9999,600000\n"
)
SECOND_IMPORT = (
    "First Name,Last Name,Email,Phone,Loan Amount\n"
    "TestImport,UserUpdated,testimport@example.com,555-9999,700000\n"
)
MAPPING = {
    "First Name": "first_name",
    "Last Name": "last_name",
    "Email": "home_email",
    "Phone": "mobile_phone",
    "Loan Amount": "loan_amount",
}


def _csv(text, filename="leads.csv"):
    return SourceDescriptor(source_type="csv", data=text, filename=filename)


@pytest.fixture
def lead_runner(import_settings):
    return LeadImportRunner(db.session, import_settings, sleep_fn=lambda _: None)


def test_preview_suggests_mapping_without_writing(lead_runner, import_ctx):
    result = lead_runner.preview(_csv(FIRST_IMPORT), import_ctx)

    assert result.headers == ("First Name", "Last Name", "Email", "Phone", "Loan Amount")
    assert result.suggested_mapping == MAPPING
    assert result.total_rows == 1
    assert result.valid_rows == 1
    assert result.problem_rows == 0
    assert result.planned_actions == [{"row_index": 2, "action": "create", "lead_id": None, "matched_on": None}]
    assert result.rows[0]["_row_index"] == 2
    payload = result.as_dict()
    assert payload["source_ref"] == "leads.csv"
    assert {"value": "home_email", "label": "Email"} in payload["lead_fields"]
    assert db.session.query(Lead).count() == 0
    assert db.session.query(ImportRun).count() == 0


def test_preview_reports_row_problems_and_planned_updates(lead_runner, import_ctx):
    lead_runner.execute(_csv(FIRST_IMPORT), import_ctx, MAPPING)
    data = (
        "First Name,Email,Loan Amount\n"
        ",,5\n"
        "Ada,not-an-email,1\n"
        "TestImport,testimport@example.com,2\n"
    )

    result = lead_runner.preview(_csv(data), import_ctx)

    codes = [(entry["row_index"], entry["code"]) for entry in result.validation_errors]
    assert codes == [(2, "missing_identifier"), (3, "invalid_email")]
    assert result.problem_rows == 2
    assert result.valid_rows == 1
    assert [action["action"] for action in result.planned_actions] == ["skip", "create", "update"]
    assert result.planned_actions[2]["matched_on"] == "email"


def test_preview_reports_mapping_conflict(lead_runner, import_ctx):
    result = lead_runner.preview(
        _csv(FIRST_IMPORT), import_ctx, mapping={"Email": "home_email", "Phone": "home_email"}
    )

    assert result.validation_errors[0]["code"] == "mapping_conflict"
    assert result.validation_errors[0]["duplicates"] == {"home_email": ["Email", "Phone"]}
    assert result.planned_actions == []


def test_preview_overlays_default_profile(lead_runner, import_ctx):
    MappingProfileStore(db.session).save(import_ctx, "Vendor", {"Phone": "home_phone"}, is_default=True)

    result = lead_runner.preview(_csv(FIRST_IMPORT), import_ctx)

    assert result.suggested_mapping["Phone"] == "home_phone"
    assert "mobile_phone" not in result.suggested_mapping.values()


def test_execute_creates_then_updates_same_lead(lead_runner, import_ctx):
    first = lead_runner.execute(_csv(FIRST_IMPORT), import_ctx, MAPPING)

    assert first.success
    assert (first.total_rows, first.imported, first.updated, first.skipped, first.errors) == (1, 1, 0, 0, 0)
    lead = db.session.query(Lead).one()
    lead_id = lead.id
    created_at = lead.created_at
    first_updated_at = lead.updated_at
    assert lead.first_name == "TestImport"
    assert lead.last_name == "User"
    assert lead.home_email == "testimport@example.com"
    assert lead.mobile_phone == "5559999"
    assert lead.loan_amount == 600000.0
    assert lead.created_by_run_id == first.import_run_id

    second = lead_runner.execute(_csv(SECOND_IMPORT), import_ctx, MAPPING)

    assert (second.imported, second.updated, second.skipped, second.errors) == (0, 1, 0, 0)
    db.session.expire_all()
    lead = db.session.query(Lead).one()
    assert lead.id == lead_id
    assert lead.last_name == "UserUpdated"
    assert lead.loan_amount == 700000.0
    assert lead.created_at == created_at
    assert lead.updated_at > first_updated_at
    assert lead.created_by_run_id == first.import_run_id
    assert lead.last_import_run_id == second.import_run_id


def test_execute_is_idempotent(lead_runner, import_ctx):
    lead_runner.execute(_csv(FIRST_IMPORT), import_ctx, MAPPING)
    again = lead_runner.execute(_csv(FIRST_IMPORT), import_ctx, MAPPING)

    assert (again.imported, again.updated) == (0, 1)
    assert db.session.query(Lead).count() == 1


def test_execute_collapses_duplicates_within_one_batch(lead_runner, import_ctx):
    data = (
        "First Name,Email,Phone\n"
        "Ada,ada@example.com,555-0100\n"
        "Ada L,ADA@example.com,\n"
        "Ada,,(555) 010-0\n"
    )

    result = lead_runner.execute(_csv(data), import_ctx, MAPPING)

    assert result.total_rows == 3
    assert result.imported == 1
    assert result.imported + result.updated + result.skipped == 3
    assert db.session.query(Lead).count() == 1


def test_execute_records_run_audit(lead_runner, import_ctx, test_user):
    options = ImportOptions(default_source="Open House", skip_validation=True)

    result = lead_runner.execute(_csv(FIRST_IMPORT, filename="open_house.csv"), import_ctx, MAPPING, options)

    run = db.session.get(ImportRun, result.import_run_id)
    assert run.status == ImportRunStatus.COMPLETED
    assert run.is_finalized
    assert run.organization_id == import_ctx.organization_id
    assert run.triggered_by_user_id == test_user.id
    assert run.source_type == "csv"
    assert run.source_ref == "open_house.csv"
    assert run.mapping_json == MAPPING
    assert run.options_json["default_source"] == "Open House"
    assert run.started_at is not None and run.finished_at is not None
    assert run.error_report_ref is None
    assert db.session.query(Lead).one().source == "Open House"


def test_execute_counts_skips_and_warnings(lead_runner, import_ctx):
    data = (
        "First Name,Email,Loan Amount\n"
        ",,100\n"
        "Ada,not-an-email,200\n"
        "Grace,grace@example.com,300\n"
    )

    result = lead_runner.execute(_csv(data), import_ctx, {"First Name": "first_name", "Email": "home_email"})

    assert (result.total_rows, result.imported, result.skipped, result.errors) == (3, 2, 1, 2)
    assert [(d["row_index"], d["kind"], d["code"]) for d in result.error_details] == [
        (2, "skipped", "missing_identifier"),
        (3, "warning", "invalid_email"),
    ]
    assert result.error_report_ref == f"/importer/api/runs/{result.import_run_id}/errors.csv"

    report = build_error_report_csv(db.session.get(ImportRun, result.import_run_id))
    rows = list(csv.reader(io.StringIO(report)))
    assert rows[0] == ["Row", "Error"]
    assert rows[1][0] == "2" and rows[1][1].startswith("[skipped] Row needs")
    assert rows[2][0] == "3" and rows[2][1].startswith("[warning] Email")


def test_error_sample_is_capped(import_ctx, app):
    settings = ImportSettings.from_config({**app.config, "IMPORTER_ERROR_SAMPLE_LIMIT": 3})
    runner = LeadImportRunner(db.session, settings)
    data = "Loan Amount\n" + "".join(f"{i}\n" for i in range(1, 8))

    result = runner.execute(_csv(data), import_ctx, {"Loan Amount": "loan_amount"})

    assert result.skipped == 7
    assert result.errors == 7
    assert len(result.error_details) == 3


def test_empty_mapping_skips_every_row(lead_runner, import_ctx):
    result = lead_runner.execute(_csv(FIRST_IMPORT), import_ctx, {})

    assert result.success
    assert (result.skipped, result.errors) == (1, 1)


def test_mapping_conflict_creates_no_run(lead_runner, import_ctx):
    with pytest.raises(MappingConflict):
        lead_runner.execute(_csv(FIRST_IMPORT), import_ctx, {"Email": "home_email", "Phone": "home_email"})

    assert db.session.query(ImportRun).count() == 0


def test_source_failure_marks_run_failed(lead_runner, import_ctx):
    with pytest.raises(SourceUnavailable) as excinfo:
        lead_runner.execute(_csv("   \n"), import_ctx, MAPPING)

    run = db.session.get(ImportRun, excinfo.value.import_run_id)
    assert run.status == ImportRunStatus.FAILED
    assert run.error_summary == "CSV data is empty."
    assert run.finished_at is not None
    assert db.session.query(Lead).count() == 0


def test_execute_saves_mapping_profile_when_asked(lead_runner, import_ctx):
    options = ImportOptions(save_mapping_as="Zillow", save_mapping_default=True)

    lead_runner.execute(_csv(FIRST_IMPORT), import_ctx, MAPPING, options)

    profile = MappingProfileStore(db.session).get_default(import_ctx)
    assert profile.name == "Zillow"
    assert profile.mapping_json == MAPPING


def test_finalized_run_cannot_be_modified(lead_runner, import_ctx):
    result = lead_runner.execute(_csv(FIRST_IMPORT), import_ctx, MAPPING)
    run = db.session.get(ImportRun, result.import_run_id)

    with pytest.raises(ImportRunFinalizedError):
        run.finalize(ImportRunStatus.FAILED)

    run.imported_count = 99
    with pytest.raises(ImportRunFinalizedError):
        db.session.commit()
    db.session.rollback()
    assert db.session.get(ImportRun, result.import_run_id).imported_count == 1


def test_import_options_from_payload():
    options = ImportOptions.from_payload(
        {"skip_validation": "true", "default_source": "  ", "lead_status": "", "save_mapping_as": " Vendor "}
    )

    assert options.skip_validation is True
    assert options.default_source is None
    assert options.lead_status == "new"
    assert options.save_mapping_as == "Vendor"
    assert options.as_json()["save_mapping_default"] is False


def test_suggested_mapping_matches_end_to_end_headers():
    assert suggest_mapping(("First Name", "Last Name", "Email", "Phone", "Loan Amount")) == MAPPING


def test_out_of_range_integer_does_not_abort_the_run(lead_runner, import_ctx):
    data = (
        "Email,FICO\n"
        "a@example.com,720\n"
        "b@example.com,99999999999999999999\n"
        "c@example.com,700\n"
    )

    result = lead_runner.execute(_csv(data), import_ctx, {"Email": "home_email", "FICO": "fico_score"})

    assert result.status == "completed"
    assert (result.total_rows, result.imported, result.errors) == (3, 3, 0)
    scores = {lead.home_email: lead.fico_score for lead in db.session.query(Lead)}
    assert scores == {"a@example.com": 720, "b@example.com": None, "c@example.com": 700}


def test_unexpected_write_error_fails_only_that_row(lead_runner, import_ctx, monkeypatch):
    original_apply = LeadWriter.apply

    def flaky_apply(self, record, decision):
        if record.row_index == 3:
            raise OverflowError("Python int too large to convert to SQLite INTEGER")
        return original_apply(self, record, decision)

    monkeypatch.setattr(LeadWriter, "apply", flaky_apply)
    data = "Email\na@example.com\nb@example.com\nc@example.com\n"

    result = lead_runner.execute(_csv(data), import_ctx, {"Email": "home_email"})

    assert result.status == "completed"
    assert (result.imported, result.errors) == (2, 1)
    assert result.error_details == [
        {
            "row_index": 3,
            "kind": "error",
            "code": "write_failed",
            "message": "Python int too large to convert to SQLite INTEGER",
        }
    ]
    assert sorted(lead.home_email for lead in db.session.query(Lead)) == ["a@example.com", "c@example.com"]
