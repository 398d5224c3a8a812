"""
CLI commands for previewing and running lead imports.

Runs execute inline in the CLI process; there is no worker queue.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from flask.cli import ScriptInfo
from sqlalchemy.exc import NoResultFound

from intake_app.importer.adapters import SourceDescriptor
from intake_app.importer.context import ImportContext, ImportSettings, get_importer_adapters, is_importer_enabled
from intake_app.importer.errors import LeadImportError
from intake_app.importer.mapping import dump_mapping_file, load_mapping_file
from intake_app.importer.pipeline import (
    ImportOptions,
    ImportRunService,
    LeadImportRunner,
    MappingProfileStore,
    RunFilters,
    build_error_report_csv,
)
from intake_app.importer.utils import resolve_upload_directory
from intake_app.models import Organization, User, db


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Lead importer commands.

    Displays configured adapters when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. " "Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        adapters = get_importer_adapters(app)
        if not adapters:
            click.echo("No importer adapters configured.")
        else:
            click.echo("Enabled importer adapters:")
            for adapter in adapters:
                click.echo(f"  - {adapter}")


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _load_app(ctx):
    return ctx.ensure_object(ScriptInfo).load_app()


def _resolve_context(org: str, username: Optional[str]) -> ImportContext:
    organization = None
    if org.isdigit():
        organization = Organization.find_by_id(int(org))
    if organization is None:
        organization = Organization.find_by_slug(org)
    if organization is None or not organization.is_active:
        raise click.ClickException(f"Organization '{org}' not found or inactive.")

    user_id = None
    if username:
        user = User.find_by_username(username)
        if user is None:
            raise click.ClickException(f"User '{username}' not found.")
        user_id = user.id
    return ImportContext(organization_id=organization.id, user_id=user_id)


def _resolve_file(app, file_path: Path) -> Path:
    if file_path.is_file():
        return file_path.resolve()
    candidate = resolve_upload_directory(app) / file_path
    if candidate.is_file():
        return candidate.resolve()
    raise click.ClickException(f"File '{file_path}' does not exist.")


def _build_source(
    app,
    *,
    file_path: Optional[Path],
    sheet_url: Optional[str],
    spreadsheet_id: Optional[str],
    sheet_name: Optional[str],
) -> SourceDescriptor:
    provided = [value for value in (file_path, sheet_url, spreadsheet_id) if value]
    if len(provided) != 1:
        raise click.ClickException("Provide exactly one of --file, --sheet-url or --spreadsheet-id.")

    if file_path is not None:
        path = _resolve_file(app, file_path)
        return SourceDescriptor(source_type="csv", data=path.read_bytes(), filename=path.name)
    if sheet_url:
        return SourceDescriptor(source_type="google_sheets", sheet_url=sheet_url)
    return SourceDescriptor(source_type="google_sheets", spreadsheet_id=spreadsheet_id, sheet_name=sheet_name)


def _runner(app) -> LeadImportRunner:
    return LeadImportRunner(db.session, ImportSettings.from_config(app.config))


def _source_options(func):
    func = click.option("--sheet-name", help="Tab name for --spreadsheet-id (defaults to Sheet1).")(func)
    func = click.option("--spreadsheet-id", help="Authorized Google Sheets id or URL.")(func)
    func = click.option("--sheet-url", help="Public Google Sheets share URL.")(func)
    func = click.option(
        "--file",
        "file_path",
        type=click.Path(path_type=Path, dir_okay=False),
        help="CSV file path (absolute, relative, or inside IMPORTER_UPLOAD_DIR).",
    )(func)
    func = click.option("--org", required=True, help="Organization id or slug.")(func)
    return func


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@importer_cli.command("preview")
@_source_options
@click.option(
    "--mapping-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="YAML mapping file to validate against the source.",
)
@click.pass_context
def importer_preview(ctx, org, file_path, sheet_url, spreadsheet_id, sheet_name, mapping_file):
    """Show headers, suggested mapping, and row problems without writing anything."""
    app = _load_app(ctx)
    import_ctx = _resolve_context(org, None)
    source = _build_source(
        app, file_path=file_path, sheet_url=sheet_url, spreadsheet_id=spreadsheet_id, sheet_name=sheet_name
    )
    try:
        mapping = load_mapping_file(mapping_file)[1] if mapping_file else None
        result = _runner(app).preview(source, import_ctx, mapping=mapping)
    except LeadImportError as exc:
        raise click.ClickException(str(exc)) from exc

    payload = result.as_dict()
    payload.pop("lead_fields", None)
    click.echo(json.dumps(payload, indent=2, default=str))


@importer_cli.command("run")
@_source_options
@click.option(
    "--mapping-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="YAML mapping file. Without it the named or default profile, then the suggestion, is used.",
)
@click.option("--profile", "profile_name", help="Saved mapping profile name to apply.")
@click.option("--save-mapping", "save_mapping_as", help="Save the effective mapping under this profile name.")
@click.option("--default-source", help="Lead source recorded for rows without one.")
@click.option("--skip-validation", is_flag=True, help="Suppress email format warnings.")
@click.option("--user", "username", help="Username recorded as the run's trigger.")
@click.option("--summary-json", is_flag=True, help="Emit a machine-readable summary payload after completion.")
@click.pass_context
def importer_run(
    ctx,
    org: str,
    file_path: Optional[Path],
    sheet_url: Optional[str],
    spreadsheet_id: Optional[str],
    sheet_name: Optional[str],
    mapping_file: Optional[Path],
    profile_name: Optional[str],
    save_mapping_as: Optional[str],
    default_source: Optional[str],
    skip_validation: bool,
    username: Optional[str],
    summary_json: bool,
):
    """Import leads from a CSV file or Google Sheet."""
    app = _load_app(ctx)
    import_ctx = _resolve_context(org, username)
    source = _build_source(
        app, file_path=file_path, sheet_url=sheet_url, spreadsheet_id=spreadsheet_id, sheet_name=sheet_name
    )
    runner = _runner(app)
    store = MappingProfileStore(db.session)

    try:
        if mapping_file:
            mapping = load_mapping_file(mapping_file)[1]
        elif profile_name:
            profile = store.get_by_name(import_ctx, profile_name)
            if profile is None:
                raise click.ClickException(f"Mapping profile '{profile_name}' not found.")
            mapping = dict(profile.mapping_json or {})
        else:
            mapping = dict(runner.preview(source, import_ctx).suggested_mapping)
            click.echo(f"Using suggested mapping: {json.dumps(mapping, sort_keys=True)}")

        result = runner.execute(
            source,
            import_ctx,
            mapping,
            ImportOptions(
                skip_validation=skip_validation,
                default_source=default_source,
                save_mapping_as=save_mapping_as,
            ),
        )
    except LeadImportError as exc:
        run_id = getattr(exc, "import_run_id", None)
        suffix = f" (import run {run_id})" if run_id else ""
        raise click.ClickException(f"{exc}{suffix}") from exc

    click.echo(
        f"Import run {result.import_run_id} {result.status}: "
        f"{result.imported} imported, {result.updated} updated, "
        f"{result.skipped} skipped, {result.errors} errors (of {result.total_rows} rows)."
    )
    if result.error_report_ref:
        click.echo(f"Error report: flask importer errors {result.import_run_id}")
    if summary_json:
        click.echo(json.dumps(result.as_dict(), indent=2, sort_keys=True, default=str))


@importer_cli.command("runs")
@click.option("--org", required=True, help="Organization id or slug.")
@click.option("--status", "statuses", multiple=True, help="Filter by run status (repeatable).")
@click.option("--limit", default=20, show_default=True, type=int, help="Maximum runs to list.")
@click.pass_context
def importer_runs(ctx, org: str, statuses: tuple[str, ...], limit: int):
    """List recent import runs for an organization."""
    _load_app(ctx)
    import_ctx = _resolve_context(org, None)
    try:
        filters = RunFilters.coerce(organization_id=import_ctx.organization_id, page_size=limit, statuses=statuses)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    result = ImportRunService(db.session).list_runs(filters)
    if not result.items:
        click.echo("No import runs found.")
        return
    for summary in result.items:
        started = summary.started_at.isoformat() if summary.started_at else "-"
        click.echo(
            f"#{summary.id} {summary.status:<9} {summary.source_type:<13} {started} "
            f"imported={summary.imported} updated={summary.updated} "
            f"skipped={summary.skipped} errors={summary.errors} {summary.source_ref or ''}".rstrip()
        )


@importer_cli.command("errors")
@click.argument("run_id", type=int)
@click.option(
    "--output",
    type=click.Path(path_type=Path, dir_okay=False, writable=True),
    help="Write the CSV report to this path instead of stdout.",
)
@click.pass_context
def importer_errors(ctx, run_id: int, output: Optional[Path]):
    """Print the Row,Error report for an import run."""
    _load_app(ctx)
    try:
        run = ImportRunService(db.session).get_run(run_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    if not run.error_count:
        raise click.ClickException(f"Import run {run_id} has no errors to report.")

    report = build_error_report_csv(run)
    if output is None:
        click.echo(report, nl=False)
        return
    output.write_text(report, encoding="utf-8")
    click.echo(f"Wrote error report for run {run_id} to {output}")


@importer_cli.group(name="mappings")
def mappings_group():
    """Manage saved mapping profiles."""


@mappings_group.command("list")
@click.option("--org", required=True, help="Organization id or slug.")
@click.pass_context
def mappings_list(ctx, org: str):
    _load_app(ctx)
    import_ctx = _resolve_context(org, None)
    profiles = MappingProfileStore(db.session).list(import_ctx)
    if not profiles:
        click.echo("No mapping profiles saved.")
        return
    for profile in profiles:
        marker = " (default)" if profile.is_default else ""
        click.echo(f"{profile.id}: {profile.name}{marker} [{len(profile.mapping_json or {})} fields]")


@mappings_group.command("save")
@click.option("--org", required=True, help="Organization id or slug.")
@click.option(
    "--mapping-file",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="YAML mapping file to store.",
)
@click.option("--name", help="Profile name (defaults to the file's name attribute).")
@click.option("--default", "is_default", is_flag=True, help="Make this the organization's default profile.")
@click.pass_context
def mappings_save(ctx, org: str, mapping_file: Path, name: Optional[str], is_default: bool):
    _load_app(ctx)
    import_ctx = _resolve_context(org, None)
    try:
        file_name, mapping = load_mapping_file(mapping_file)
        profile = MappingProfileStore(db.session).save(
            import_ctx, name or file_name or mapping_file.stem, mapping, is_default=is_default
        )
    except (LeadImportError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Saved mapping profile {profile.id}: {profile.name}")


@mappings_group.command("export")
@click.option("--org", required=True, help="Organization id or slug.")
@click.option("--name", required=True, help="Profile name to export.")
@click.option("--output", required=True, type=click.Path(path_type=Path, dir_okay=False, writable=True))
@click.pass_context
def mappings_export(ctx, org: str, name: str, output: Path):
    _load_app(ctx)
    import_ctx = _resolve_context(org, None)
    profile = MappingProfileStore(db.session).get_by_name(import_ctx, name)
    if profile is None:
        raise click.ClickException(f"Mapping profile '{name}' not found.")
    dump_mapping_file(profile.mapping_json or {}, output, name=profile.name)
    click.echo(f"Exported mapping profile '{profile.name}' to {output}")


@mappings_group.command("delete")
@click.option("--org", required=True, help="Organization id or slug.")
@click.argument("profile_id", type=int)
@click.pass_context
def mappings_delete(ctx, org: str, profile_id: int):
    _load_app(ctx)
    import_ctx = _resolve_context(org, None)
    try:
        MappingProfileStore(db.session).delete(import_ctx, profile_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Deleted mapping profile {profile_id}")
