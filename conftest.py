# conftest.py

import os
from datetime import datetime, timedelta, timezone

import pytest
from flask_login import FlaskLoginClient

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from intake_app.importer import IMPORTER_EXTENSION_KEY, ImportContext, ImportSettings, init_importer  # noqa: E402
from intake_app.models import ImportRun, ImportRunStatus, Organization, User, UserOrganization, db  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "MONITORING_ENABLED": False,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "WARNING",
            "IMPORTER_ENABLED": True,
            "IMPORTER_ADAPTERS": ("csv", "google_sheets"),
            "IMPORTER_PREVIEW_ROWS": 25,
            "IMPORTER_ERROR_SAMPLE_LIMIT": 50,
            "IMPORTER_WRITE_RETRIES": 3,
            "GOOGLE_SHEETS_BACKOFF_SECONDS": 0.0,
        }
    )
    flask_app.test_client_class = FlaskLoginClient
    init_importer(flask_app)
    flask_app.extensions[IMPORTER_EXTENSION_KEY]["http_session"] = None

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Anonymous test client"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def test_organization():
    """Persisted active organization"""
    organization = Organization(name="Acme Lending", slug="acme", is_active=True)
    db.session.add(organization)
    db.session.commit()
    return organization


@pytest.fixture
def other_organization():
    organization = Organization(name="Other Lending", slug="other", is_active=True)
    db.session.add(organization)
    db.session.commit()
    return organization


@pytest.fixture
def test_user():
    """Persisted operator account"""
    user = User(
        username="testuser",
        email="test@example.com",
        first_name="Test",
        last_name="User",
        is_active=True,
        is_super_admin=False,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def membership(test_user, test_organization):
    link = UserOrganization(user_id=test_user.id, organization_id=test_organization.id, is_active=True)
    db.session.add(link)
    db.session.commit()
    return link


@pytest.fixture
def auth_client(app, test_user, membership):
    """Client logged in as ``test_user``, a member of ``test_organization``"""
    return app.test_client(user=test_user)


@pytest.fixture
def import_ctx(test_organization, test_user):
    return ImportContext(organization_id=test_organization.id, user_id=test_user.id)


@pytest.fixture
def import_settings(app):
    return ImportSettings.from_config(app.config)


@pytest.fixture
def run_factory(test_organization):
    """Insert finished ``ImportRun`` rows directly for listing tests."""

    def _factory(
        *,
        organization_id=None,
        source_type="csv",
        source_ref="leads.csv",
        status=ImportRunStatus.COMPLETED,
        started_offset_minutes=0,
        duration_seconds=30,
        imported=1,
        errors=0,
        error_sample=None,
        triggered_by_user_id=None,
    ):
        started = datetime.now(timezone.utc) - timedelta(minutes=started_offset_minutes)
        run = ImportRun(
            organization_id=organization_id or test_organization.id,
            triggered_by_user_id=triggered_by_user_id,
            source_type=source_type,
            source_ref=source_ref,
            status=status,
            started_at=started,
            finished_at=started + timedelta(seconds=duration_seconds) if status.is_terminal else None,
            total_rows=imported + errors,
            imported_count=imported,
            error_count=errors,
            error_sample_json=list(error_sample or []),
            mapping_json={"Email": "home_email"},
            options_json={},
        )
        db.session.add(run)
        db.session.commit()
        return run

    return _factory
