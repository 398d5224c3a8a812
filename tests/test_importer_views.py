import io
import json

from intake_app.importer import IMPORTER_EXTENSION_KEY
from intake_app.models import ImportRun, ImportRunStatus, Lead, User, db

LEADS_CSV = (
    "First Name,Last Name,Email,Phone,Loan Amount\n"
    "TestImport,User,testimport@example.com,555-9999,600000\n"
    ",,,,100\n"
)
MAPPING = {
    "First Name": "first_name",
    "Last Name": "last_name",
    "Email": "home_email",
    "Phone": "mobile_phone",
    "Loan Amount": "loan_amount",
}


class _HtmlResponse:
    status_code = 200
    ok = True
    content = b"<html>Sign in</html>"
    headers = {"Content-Type": "text/html"}


class _LoginPageSession:
    def get(self, url, headers=None, params=None, timeout=None):
        return _HtmlResponse()


def _post(client, payload):
    return client.post("/importer/api/leads", json=payload)


def _import(client, data=LEADS_CSV, mapping=MAPPING):
    return _post(client, {"action": "import", "data": data, "filename": "leads.csv", "mapping": mapping})


def test_importer_health_lists_adapters(client):
    response = client.get("/importer/health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["enabled"] is True
    assert [adapter["name"] for adapter in payload["adapters"]] == ["csv", "google_sheets"]


def test_leads_api_requires_login(client):
    response = _post(client, {"action": "preview", "data": LEADS_CSV})

    assert response.status_code == 401
    assert response.get_json() == {"success": False, "error": "Authentication required."}


def test_leads_api_hidden_when_importer_disabled(app, auth_client, monkeypatch):
    monkeypatch.setitem(app.config, "IMPORTER_ENABLED", False)

    response = _post(auth_client, {"action": "preview", "data": LEADS_CSV})

    assert response.status_code == 404


def test_leads_api_requires_membership(app, test_organization, test_user, other_organization):
    client = app.test_client(user=test_user)

    response = _post(client, {"action": "preview", "data": LEADS_CSV, "org_id": other_organization.id})

    assert response.status_code == 403
    assert response.get_json()["success"] is False


def test_unknown_action_is_rejected(auth_client):
    response = _post(auth_client, {"action": "explode"})

    assert response.status_code == 400
    assert "Unknown action" in response.get_json()["error"]


def test_preview_action(auth_client):
    response = _post(auth_client, {"action": "preview", "data": LEADS_CSV})

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["suggested_mapping"] == MAPPING
    assert payload["total_rows"] == 2
    assert payload["problem_rows"] == 1
    assert payload["validation_errors"][0]["code"] == "missing_identifier"
    assert db.session.query(ImportRun).count() == 0


def test_import_action_with_multipart_upload(auth_client, test_organization):
    response = auth_client.post(
        "/importer/api/leads",
        data={
            "action": "import",
            "mapping": json.dumps(MAPPING),
            "options": json.dumps({"default_source": "Upload"}),
            "file": (io.BytesIO(LEADS_CSV.encode("utf-8")), "march leads.csv"),
        },
        content_type="multipart/form-data",
    )

    assert response.status_code == 200, response.get_data(as_text=True)
    payload = response.get_json()
    assert payload["success"] is True
    assert (payload["imported"], payload["updated"], payload["skipped"], payload["errors"]) == (1, 0, 1, 1)
    assert payload["error_details"][0]["row_index"] == 3
    run = db.session.get(ImportRun, payload["import_run_id"])
    assert run.source_ref == "march_leads.csv"
    assert run.organization_id == test_organization.id
    lead = db.session.query(Lead).one()
    assert lead.source == "Upload"


def test_import_rejects_non_csv_upload(auth_client):
    response = auth_client.post(
        "/importer/api/leads",
        data={"action": "preview", "file": (io.BytesIO(b"x"), "leads.xlsx")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 400


def test_import_requires_mapping(auth_client):
    response = _post(auth_client, {"action": "import", "data": LEADS_CSV})

    assert response.status_code == 400
    assert "mapping" in response.get_json()["error"]


def test_import_mapping_conflict(auth_client):
    response = _import(auth_client, mapping={"Email": "home_email", "Phone": "home_email"})

    assert response.status_code == 400
    payload = response.get_json()
    assert payload["duplicates"] == {"home_email": ["Email", "Phone"]}
    assert db.session.query(ImportRun).count() == 0


def test_too_many_rows_returns_413(app, auth_client, monkeypatch):
    monkeypatch.setitem(app.config, "IMPORTER_MAX_ROWS", 1)

    response = _post(auth_client, {"action": "preview", "data": LEADS_CSV + "Grace,Hopper,,,\n"})

    assert response.status_code == 413


def test_private_public_sheet_fails_run(app, auth_client):
    app.extensions[IMPORTER_EXTENSION_KEY]["http_session"] = _LoginPageSession()

    response = _post(
        auth_client,
        {
            "action": "import",
            "sheet_url": "https://docs.google.com/spreadsheets/d/1AbCdEfGhIjKlMnOpQrStUvWxYz/edit",
            "mapping": MAPPING,
        },
    )

    assert response.status_code == 400
    payload = response.get_json()
    assert "not publicly viewable" in payload["error"]
    run = db.session.get(ImportRun, payload["import_run_id"])
    assert run.status == ImportRunStatus.FAILED
    assert run.source_type == "csv"


def test_list_tabs_without_connection_needs_reconnect(auth_client):
    response = _post(auth_client, {"action": "list_tabs", "spreadsheet_id": "1AbCdEfGhIjKlMnOpQrStUvWxYz"})

    assert response.status_code == 403
    assert response.get_json()["needs_reconnect"] is True


def test_mapping_profile_actions(auth_client):
    saved = _post(auth_client, {"action": "save_mapping", "name": "Zillow", "mapping": MAPPING, "is_default": True})
    assert saved.status_code == 200
    profile = saved.get_json()["profile"]
    assert profile["is_default"] is True

    listed = _post(auth_client, {"action": "list_mappings"})
    assert [item["name"] for item in listed.get_json()["profiles"]] == ["Zillow"]

    deleted = _post(auth_client, {"action": "delete_mapping", "profile_id": profile["id"]})
    assert deleted.get_json() == {"success": True, "deleted": profile["id"]}

    missing = _post(auth_client, {"action": "delete_mapping", "profile_id": profile["id"]})
    assert missing.status_code == 404


def test_runs_list_and_detail(auth_client):
    run_id = _import(auth_client).get_json()["import_run_id"]

    listing = auth_client.get("/importer/api/runs?status=completed&per_page=50")
    assert listing.status_code == 200
    payload = listing.get_json()
    assert payload["total"] == 1
    assert payload["page_size"] == 50
    assert payload["filters"]["statuses"] == ["completed"]
    assert payload["runs"][0]["id"] == run_id

    detail = auth_client.get(f"/importer/api/runs/{run_id}")
    assert detail.status_code == 200
    body = detail.get_json()
    assert body["mapping"] == MAPPING
    assert body["imported"] == 1
    assert body["error_details"][0]["code"] == "missing_identifier"
    assert body["triggered_by"]["username"] == "testuser"


def test_runs_list_rejects_bad_filters(auth_client):
    response = auth_client.get("/importer/api/runs?status=bogus")

    assert response.status_code == 400


def test_error_report_download(auth_client):
    run_id = _import(auth_client).get_json()["import_run_id"]

    response = auth_client.get(f"/importer/api/runs/{run_id}/errors.csv")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert response.get_data(as_text=True).startswith("Row,Error\n3,")


def test_error_report_missing_when_run_is_clean(auth_client):
    run_id = _import(auth_client, data="Email\nada@example.com\n", mapping={"Email": "home_email"}).get_json()[
        "import_run_id"
    ]

    response = auth_client.get(f"/importer/api/runs/{run_id}/errors.csv")

    assert response.status_code == 404


def test_runs_of_other_organizations_are_hidden(app, auth_client, run_factory, other_organization):
    foreign = run_factory(organization_id=other_organization.id)

    assert auth_client.get(f"/importer/api/runs/{foreign.id}").status_code == 404
    assert auth_client.get(f"/importer/api/runs/{foreign.id}/errors.csv").status_code == 404
    assert auth_client.get("/importer/api/runs").get_json()["total"] == 0


def test_super_admin_can_select_any_organization(app, test_organization):
    admin = User(username="root", email="root@example.com", is_super_admin=True)
    db.session.add(admin)
    db.session.commit()
    client = app.test_client(user=admin)

    response = client.get(f"/importer/api/runs?org_id={test_organization.id}")

    assert response.status_code == 200


def test_save_mapping_accepts_mapping_json(auth_client):
    response = _post(auth_client, {"action": "save_mapping", "name": "Zillow", "mapping_json": {"Email": "home_email"}})

    assert response.status_code == 200, response.get_data(as_text=True)
    profile = response.get_json()["profile"]
    assert profile["name"] == "Zillow"
    assert profile["mapping"] == {"Email": "home_email"}
    assert profile["is_default"] is False


def test_save_mapping_from_form_fields(auth_client):
    response = auth_client.post(
        "/importer/api/leads",
        data={
            "action": "save_mapping",
            "name": "Open House",
            "mapping_json": json.dumps({"Phone": "mobile_phone"}),
            "is_default": "false",
        },
        content_type="multipart/form-data",
    )

    assert response.status_code == 200, response.get_data(as_text=True)
    profile = response.get_json()["profile"]
    assert profile["mapping"] == {"Phone": "mobile_phone"}
    assert profile["is_default"] is False


def test_save_mapping_requires_a_mapping(auth_client):
    response = _post(auth_client, {"action": "save_mapping", "name": "Empty"})

    assert response.status_code == 400
    assert "mapping_json" in response.get_json()["error"]


def test_non_text_data_is_rejected(auth_client):
    response = _post(auth_client, {"action": "preview", "data": 123})

    assert response.status_code == 400
    assert response.get_json()["error"] == "'data' must be CSV text."
