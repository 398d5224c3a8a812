"""
Importer blueprint endpoints: lead import actions, runs APIs, and health.
"""

from __future__ import annotations

import time
from http import HTTPStatus
from typing import Any, Mapping

from flask import Blueprint, Response, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import NoResultFound

from config.monitoring import ImporterMonitoring
from intake_app.models import db
from intake_app.utils.permissions import get_current_organization, require_organization_membership

from .adapters import SourceDescriptor, list_sheet_tabs
from .context import ImportContext, ImportSettings, is_importer_enabled
from .errors import (
    ImportContextError,
    MappingError,
    SourceTooLarge,
    SourceUnauthorized,
    SourceUnavailable,
)
from .pipeline.error_report import build_error_report_csv
from .pipeline.profiles import MappingProfileStore
from .pipeline.run_service import ImportRunService, RunFilters
from .pipeline.runner import ImportOptions, LeadImportRunner
from .registry import AdapterDescriptor
from .utils import build_source_payload, is_truthy, read_upload

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")

LEAD_ACTIONS = ("preview", "import", "save_mapping", "list_mappings", "delete_mapping", "list_tabs")


def _serialize_adapter(adapter: AdapterDescriptor) -> dict:
    return adapter.as_dict()


@importer_blueprint.get("/health")
def importer_healthcheck():
    """
    Lightweight health endpoint proving the importer blueprint mounted correctly.
    """
    importer_state = current_app.extensions.get("importer", {})
    adapters = importer_state.get("active_adapters", ())
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": importer_state.get("enabled", False),
                "adapters": [_serialize_adapter(adapter) for adapter in adapters],
            }
        ),
        200,
    )


_run_service = ImportRunService()


def _json_error(message: str, status: HTTPStatus, **extra: Any):
    payload = {"success": False, "error": message}
    payload.update(extra)
    return jsonify(payload), status


def _ensure_importer_enabled_api():
    if not is_importer_enabled(current_app):
        return _json_error("Importer is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _ensure_authenticated_api():
    if not current_user.is_authenticated:
        return _json_error("Authentication required.", HTTPStatus.UNAUTHORIZED)
    return None


def _resolve_context() -> ImportContext:
    organization = get_current_organization()
    if organization is None:
        raise ImportContextError("Select an organization (org_id) before importing leads.")
    if not require_organization_membership(current_user, organization):
        raise ImportContextError("You are not a member of this organization.")
    return ImportContext(organization_id=organization.id, user_id=current_user.id)


def _guard_request():
    return _ensure_importer_enabled_api() or _ensure_authenticated_api()


def _settings() -> ImportSettings:
    return ImportSettings.from_config(current_app.config)


def _runner(settings: ImportSettings) -> LeadImportRunner:
    importer_state = current_app.extensions.get("importer", {})
    return LeadImportRunner(db.session, settings, http=importer_state.get("http_session"))


def _request_payload(settings: ImportSettings) -> dict[str, Any]:
    json_body = request.get_json(silent=True) if request.is_json else None
    payload = build_source_payload(request.form, json_body if isinstance(json_body, Mapping) else None)
    upload = request.files.get("file")
    if upload is not None and upload.filename:
        filename, content = read_upload(upload, max_bytes=settings.max_upload_bytes)
        payload["data"] = content
        payload.setdefault("filename", filename)
    for key in ("mapping", "mapping_json", "options"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            payload[key] = current_app.json.loads(value)
    return payload


def _mapping_payload(payload: Mapping[str, Any], key: str = "mapping") -> dict[str, str] | None:
    mapping = payload.get(key)
    if mapping is None:
        return None
    if not isinstance(mapping, Mapping):
        raise ValueError(f"'{key}' must be an object of {{header: field}}.")
    return dict(mapping)


# ---------------------------------------------------------------------------
# Lead import actions
# ---------------------------------------------------------------------------


def _action_preview(runner: LeadImportRunner, ctx: ImportContext, payload: Mapping[str, Any]):
    source = SourceDescriptor.from_payload(payload)
    result = runner.preview(source, ctx, mapping=_mapping_payload(payload))
    return {"success": True, **result.as_dict()}, HTTPStatus.OK


def _action_import(runner: LeadImportRunner, ctx: ImportContext, payload: Mapping[str, Any]):
    source = SourceDescriptor.from_payload(payload)
    mapping = _mapping_payload(payload)
    if mapping is None:
        raise ValueError("'mapping' is required to import leads.")
    options_payload = dict(payload.get("options") or {})
    for key in ("skip_validation", "default_source", "lead_status", "save_mapping_as", "save_mapping_default"):
        if key in payload and key not in options_payload:
            options_payload[key] = payload[key]
    result = runner.execute(source, ctx, mapping, ImportOptions.from_payload(options_payload))
    return result.as_dict(), HTTPStatus.OK


def _action_save_mapping(runner: LeadImportRunner, ctx: ImportContext, payload: Mapping[str, Any]):
    mapping = _mapping_payload(payload, "mapping_json")
    if mapping is None:
        mapping = _mapping_payload(payload)
    if mapping is None:
        raise ValueError("'mapping_json' is required to save a mapping profile.")
    profile = MappingProfileStore(runner.session).save(
        ctx,
        str(payload.get("name") or ""),
        mapping,
        is_default=is_truthy(payload.get("is_default")),
    )
    return {"success": True, "profile": profile.to_dict()}, HTTPStatus.OK


def _action_list_mappings(runner: LeadImportRunner, ctx: ImportContext, payload: Mapping[str, Any]):
    profiles = MappingProfileStore(runner.session).list(ctx)
    return {"success": True, "profiles": [profile.to_dict() for profile in profiles]}, HTTPStatus.OK


def _action_delete_mapping(runner: LeadImportRunner, ctx: ImportContext, payload: Mapping[str, Any]):
    try:
        profile_id = int(payload.get("profile_id"))
    except (TypeError, ValueError):
        raise ValueError("'profile_id' must be an integer.") from None
    try:
        MappingProfileStore(runner.session).delete(ctx, profile_id)
    except NoResultFound:
        return _json_error(f"Mapping profile {profile_id} not found.", HTTPStatus.NOT_FOUND)
    return {"success": True, "deleted": profile_id}, HTTPStatus.OK


def _action_list_tabs(runner: LeadImportRunner, ctx: ImportContext, payload: Mapping[str, Any]):
    spreadsheet_id = str(payload.get("spreadsheet_id") or "").strip()
    if not spreadsheet_id:
        raise ValueError("'spreadsheet_id' is required to list sheet tabs.")
    tabs = list_sheet_tabs(
        spreadsheet_id,
        ctx,
        runner.settings,
        session=runner.session,
        http=runner.http,
        sleep_fn=runner.sleep_fn,
    )
    return {"success": True, "tabs": [tab.as_dict() for tab in tabs]}, HTTPStatus.OK


_ACTION_HANDLERS = {
    "preview": _action_preview,
    "import": _action_import,
    "save_mapping": _action_save_mapping,
    "list_mappings": _action_list_mappings,
    "delete_mapping": _action_delete_mapping,
    "list_tabs": _action_list_tabs,
}


@importer_blueprint.post("/api/leads")
def importer_leads_action():
    guard_response = _guard_request()
    if guard_response:
        return guard_response

    settings = _settings()
    start_time = time.perf_counter()
    action = "unknown"
    status = "error"
    try:
        payload = _request_payload(settings)
        action = str(payload.get("action") or "").strip().lower()
        handler = _ACTION_HANDLERS.get(action)
        if handler is None:
            status = "invalid_request"
            return _json_error(
                f"Unknown action '{action}'. Expected one of: {', '.join(LEAD_ACTIONS)}.", HTTPStatus.BAD_REQUEST
            )
        ctx = _resolve_context()
        response = handler(_runner(settings), ctx, payload)
        body, http_status = response
        if isinstance(body, dict):
            status = "success"
            return jsonify(body), http_status
        status = "not_found"
        return response
    except ImportContextError as exc:
        status = "forbidden"
        return _json_error(str(exc), HTTPStatus.FORBIDDEN)
    except SourceUnauthorized as exc:
        status = "unauthorized_source"
        return _json_error(str(exc), HTTPStatus.FORBIDDEN, needs_reconnect=True, import_run_id=exc.import_run_id)
    except SourceTooLarge as exc:
        status = "too_large"
        return _json_error(str(exc), HTTPStatus.REQUEST_ENTITY_TOO_LARGE, import_run_id=exc.import_run_id)
    except SourceUnavailable as exc:
        status = "source_unavailable"
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST, import_run_id=exc.import_run_id)
    except MappingError as exc:
        status = "invalid_mapping"
        extra = {}
        duplicates = getattr(exc, "duplicates", None)
        if duplicates:
            extra["duplicates"] = {target: list(headers) for target, headers in duplicates.items()}
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST, **extra)
    except ValueError as exc:
        status = "invalid_request"
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    finally:
        duration = time.perf_counter() - start_time
        ImporterMonitoring.record_lead_action(
            action=action if action in _ACTION_HANDLERS else "unknown",
            duration_seconds=duration,
            status=status,
        )
        current_app.logger.info(
            "Lead import action handled",
            extra={
                "importer_action": action,
                "importer_status": status,
                "importer_response_time_ms": round(duration * 1000, 2),
                "user_id": current_user.get_id(),
            },
        )


# ---------------------------------------------------------------------------
# Runs APIs
# ---------------------------------------------------------------------------


def _split_csv(value: str | None):
    if value in (None, "", ()):
        return ()
    return tuple(token.strip() for token in value.split(",") if token.strip())


def _parse_filters(ctx: ImportContext) -> RunFilters:
    raw = request.args
    page_sizes = current_app.config.get("IMPORTER_RUNS_PAGE_SIZES") or (25, 50, 100)
    return RunFilters.coerce(
        organization_id=ctx.organization_id,
        page=raw.get("page"),
        page_size=(
            raw.get("per_page") or raw.get("page_size") or current_app.config.get("IMPORTER_RUNS_PAGE_SIZE_DEFAULT")
        ),
        sort=raw.get("sort"),
        statuses=_split_csv(raw.get("status")),
        source_types=_split_csv(raw.get("source_type")),
        search=raw.get("search"),
        started_from=raw.get("started_from"),
        started_to=raw.get("started_to"),
        max_page_size=max(page_sizes),
    )


@importer_blueprint.get("/api/runs")
def importer_runs_list():
    guard_response = _guard_request()
    if guard_response:
        return guard_response

    try:
        ctx = _resolve_context()
    except ImportContextError as exc:
        ImporterMonitoring.record_runs_list(duration_seconds=0.0, status="forbidden", result_count=0)
        return _json_error(str(exc), HTTPStatus.FORBIDDEN)

    try:
        filters = _parse_filters(ctx)
    except ValueError as exc:
        ImporterMonitoring.record_runs_list(duration_seconds=0.0, status="invalid_request", result_count=0)
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    start_time = time.perf_counter()
    result = _run_service.list_runs(filters)
    duration = time.perf_counter() - start_time
    ImporterMonitoring.record_runs_list(duration_seconds=duration, status="success", result_count=len(result.items))

    response_payload = {
        "runs": [item.to_dict() for item in result.items],
        "total": result.total,
        "page": result.page,
        "page_size": result.page_size,
        "total_pages": result.total_pages,
        "filters": {
            "sort": filters.sort,
            "statuses": [status.value for status in filters.statuses],
            "source_types": list(filters.source_types),
            "search": filters.search,
            "started_from": filters.started_from.isoformat() if filters.started_from else None,
            "started_to": filters.started_to.isoformat() if filters.started_to else None,
        },
    }
    current_app.logger.info(
        "Importer runs list retrieved",
        extra={
            "importer_run_count": len(result.items),
            "importer_total_runs": result.total,
            "importer_response_time_ms": round(duration * 1000, 2),
            "organization_id": ctx.organization_id,
            "user_id": current_user.id,
        },
    )
    return jsonify(response_payload), HTTPStatus.OK


@importer_blueprint.get("/api/runs/<int:run_id>")
def importer_run_detail(run_id: int):
    guard_response = _guard_request()
    if guard_response:
        return guard_response

    start_time = time.perf_counter()
    try:
        ctx = _resolve_context()
        run = _run_service.get_run(run_id, organization_id=ctx.organization_id)
    except ImportContextError as exc:
        ImporterMonitoring.record_runs_detail(duration_seconds=time.perf_counter() - start_time, status="forbidden")
        return _json_error(str(exc), HTTPStatus.FORBIDDEN)
    except NoResultFound:
        ImporterMonitoring.record_runs_detail(duration_seconds=time.perf_counter() - start_time, status="not_found")
        return _json_error(f"Import run {run_id} not found.", HTTPStatus.NOT_FOUND)

    summary = _run_service.summarize(run)
    payload = summary.to_dict()
    payload.update(
        {
            "mapping": run.mapping_json or {},
            "options": run.options_json or {},
            "error_details": list(run.error_sample_json or []),
        }
    )
    duration = time.perf_counter() - start_time
    ImporterMonitoring.record_runs_detail(duration_seconds=duration, status="success")
    current_app.logger.info(
        "Importer run detail accessed",
        extra={
            "importer_run_id": run_id,
            "importer_status": payload["status"],
            "importer_response_time_ms": round(duration * 1000, 2),
            "user_id": current_user.id,
        },
    )
    return jsonify(payload), HTTPStatus.OK


@importer_blueprint.get("/api/runs/<int:run_id>/errors.csv")
def importer_run_error_report(run_id: int):
    guard_response = _guard_request()
    if guard_response:
        return guard_response

    try:
        ctx = _resolve_context()
        run = _run_service.get_run(run_id, organization_id=ctx.organization_id)
    except ImportContextError as exc:
        ImporterMonitoring.record_error_report(status="forbidden")
        return _json_error(str(exc), HTTPStatus.FORBIDDEN)
    except NoResultFound:
        ImporterMonitoring.record_error_report(status="not_found")
        return _json_error(f"Import run {run_id} not found.", HTTPStatus.NOT_FOUND)

    if not run.error_count:
        ImporterMonitoring.record_error_report(status="empty")
        return _json_error(f"Import run {run_id} has no errors to report.", HTTPStatus.NOT_FOUND)

    ImporterMonitoring.record_error_report(status="success")
    return Response(
        build_error_report_csv(run),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=import_run_{run_id}_errors.csv"},
    )
