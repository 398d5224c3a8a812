"""
Lead import orchestration: preview a source, or execute it into the lead store.

``preview`` never writes. ``execute`` records one ``ImportRun`` per call,
processes rows strictly in source order, commits each row independently, and
finalizes the run exactly once.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import requests
from sqlalchemy.orm import Session

from intake_app.models.importer.schema import ImportRun, ImportRunStatus
from intake_app.models.lead import LEAD_STATUS_NEW

from ..adapters import SourceDescriptor, SourceTable, read_source
from ..context import ImportContext, ImportSettings
from ..contracts import lead_field_choices
from ..errors import MappingConflict, SourceError
from ..mapping import FieldMapping, overlay_mapping, suggest_mapping, validate_mapping
from ..metrics import record_row_outcome, record_run
from ..utils import is_truthy
from .deterministic import BatchKeyRegistry, resolve
from .error_report import error_report_ref
from .load_core import LeadWriter, RowOutcome, RowOutcomeKind
from .profiles import MappingProfileStore
from .validation import RowError, validate_row

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportOptions:
    """Caller-supplied knobs for ``execute``."""

    skip_validation: bool = False
    default_source: str | None = None
    lead_status: str = LEAD_STATUS_NEW
    save_mapping_as: str | None = None
    save_mapping_default: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "ImportOptions":
        payload = payload or {}
        return cls(
            skip_validation=is_truthy(payload.get("skip_validation")),
            default_source=_clean_text(payload.get("default_source")),
            lead_status=str(payload.get("lead_status") or LEAD_STATUS_NEW).strip() or LEAD_STATUS_NEW,
            save_mapping_as=_clean_text(payload.get("save_mapping_as")),
            save_mapping_default=is_truthy(payload.get("save_mapping_default")),
        )

    def as_json(self) -> dict[str, Any]:
        return {
            "skip_validation": self.skip_validation,
            "default_source": self.default_source,
            "lead_status": self.lead_status,
            "save_mapping_as": self.save_mapping_as,
            "save_mapping_default": self.save_mapping_default,
        }


@dataclass
class RunTally:
    """In-memory counters for a run; written to the ``ImportRun`` at finalize."""

    sample_limit: int = 50
    total_rows: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    sample: list[dict[str, Any]] = field(default_factory=list)

    def record(self, outcome: RowOutcome) -> None:
        kind = outcome.kind
        if kind is RowOutcomeKind.CREATED:
            self.imported += 1
        elif kind is RowOutcomeKind.UPDATED:
            self.updated += 1
        elif kind is RowOutcomeKind.SKIPPED:
            self.skipped += 1
            self.errors += 1
            if outcome.error is not None:
                self._add_sample(outcome.error.as_detail())
        elif kind is RowOutcomeKind.SKIPPED_DUPLICATE:
            self.skipped += 1
        elif kind is RowOutcomeKind.FAILED:
            self.errors += 1
            self._add_sample(
                {
                    "row_index": outcome.row_index,
                    "kind": "error",
                    "code": "write_failed",
                    "message": outcome.message or "Lead could not be saved.",
                }
            )

        if outcome.is_write and outcome.warnings:
            self.errors += 1
            for warning in outcome.warnings:
                self._add_sample(warning.as_detail())

    def _add_sample(self, detail: dict[str, Any]) -> None:
        if len(self.sample) < self.sample_limit:
            self.sample.append(detail)

    def apply_to(self, run: ImportRun) -> None:
        run.total_rows = self.total_rows
        run.imported_count = self.imported
        run.updated_count = self.updated
        run.skipped_count = self.skipped
        run.error_count = self.errors
        run.error_sample_json = list(self.sample)


@dataclass(frozen=True)
class PreviewResult:
    headers: tuple[str, ...]
    rows: list[dict[str, Any]]
    total_rows: int
    suggested_mapping: FieldMapping
    validation_errors: list[dict[str, Any]]
    valid_rows: int
    problem_rows: int
    planned_actions: list[dict[str, Any]]
    source_ref: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "headers": list(self.headers),
            "rows": self.rows,
            "total_rows": self.total_rows,
            "suggested_mapping": dict(self.suggested_mapping),
            "validation_errors": self.validation_errors,
            "valid_rows": self.valid_rows,
            "problem_rows": self.problem_rows,
            "planned_actions": self.planned_actions,
            "source_ref": self.source_ref,
            "lead_fields": lead_field_choices(),
        }


@dataclass(frozen=True)
class ImportRunResult:
    import_run_id: int
    status: str
    total_rows: int
    imported: int
    updated: int
    skipped: int
    errors: int
    error_details: list[dict[str, Any]]
    error_summary: str | None = None
    error_report_ref: str | None = None

    @property
    def success(self) -> bool:
        return self.status == ImportRunStatus.COMPLETED.value

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "import_run_id": self.import_run_id,
            "status": self.status,
            "total_rows": self.total_rows,
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_details": self.error_details,
            "error_summary": self.error_summary,
            "error_report_ref": self.error_report_ref,
        }


class LeadImportRunner:
    """Preview and execute lead imports for one organization at a time."""

    def __init__(
        self,
        session: Session,
        settings: ImportSettings,
        *,
        http: requests.Session | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.settings = settings
        self.http = http
        self.sleep_fn = sleep_fn

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def read(self, source: SourceDescriptor, ctx: ImportContext) -> SourceTable:
        return read_source(
            source,
            ctx,
            self.settings,
            session=self.session,
            http=self.http,
            sleep_fn=self.sleep_fn,
        )

    def preview(
        self,
        source: SourceDescriptor,
        ctx: ImportContext,
        mapping: Mapping[str, str] | None = None,
    ) -> PreviewResult:
        """
        Read the source and dry-run the first ``preview_rows`` rows.

        Without an explicit mapping the suggestion is the alias heuristic
        overlaid with the organization's default profile.
        """

        table = self.read(source, ctx)
        sample = table.rows[: self.settings.preview_rows]

        if mapping is None:
            suggested = overlay_mapping(
                suggest_mapping(table.headers),
                MappingProfileStore(self.session).default_mapping(ctx),
                table.headers,
            )
            candidate: Mapping[str, str] = suggested
        else:
            suggested = suggest_mapping(table.headers)
            candidate = mapping

        validation_errors: list[dict[str, Any]] = []
        planned: list[dict[str, Any]] = []
        valid_rows = 0
        problem_rows = 0

        try:
            effective = validate_mapping(candidate)
        except MappingConflict as exc:
            validation_errors.append(
                {
                    "row_index": None,
                    "kind": "mapping",
                    "code": "mapping_conflict",
                    "message": str(exc),
                    "duplicates": {target: list(headers) for target, headers in exc.duplicates.items()},
                }
            )
            effective = None

        if effective is not None:
            batch = BatchKeyRegistry()
            for row in sample:
                result = validate_row(row, effective)
                if isinstance(result, RowError):
                    problem_rows += 1
                    validation_errors.append(result.as_detail())
                    planned.append({"row_index": row.row_index, "action": "skip", "matched_on": None})
                    continue
                decision = resolve(self.session, result, ctx, batch)
                batch.register(result)
                if result.warnings:
                    problem_rows += 1
                    validation_errors.extend(warning.as_detail() for warning in result.warnings)
                else:
                    valid_rows += 1
                planned.append(
                    {
                        "row_index": row.row_index,
                        "action": decision.action,
                        "lead_id": decision.lead_id,
                        "matched_on": decision.matched_on,
                    }
                )

        logger.info(
            "Lead import preview generated",
            extra={
                "organization_id": ctx.organization_id,
                "source_type": source.source_type,
                "total_rows": table.total_rows,
                "problem_rows": problem_rows,
            },
        )
        return PreviewResult(
            headers=table.headers,
            rows=[row.as_preview() for row in sample],
            total_rows=table.total_rows,
            suggested_mapping=suggested,
            validation_errors=validation_errors,
            valid_rows=valid_rows,
            problem_rows=problem_rows,
            planned_actions=planned,
            source_ref=table.source_ref,
        )

    def execute(
        self,
        source: SourceDescriptor,
        ctx: ImportContext,
        mapping: Mapping[str, str],
        options: ImportOptions | None = None,
    ) -> ImportRunResult:
        """
        Import every row of ``source`` and return the finalized run summary.

        Raises ``MappingConflict`` before any run is created, and re-raises
        source errors after recording the run as failed.
        """

        options = options or ImportOptions()
        effective = validate_mapping(mapping)

        run = ImportRun(
            organization_id=ctx.organization_id,
            triggered_by_user_id=ctx.user_id,
            source_type=source.source_type,
            source_ref=source.source_ref(self.settings.sheets_default_tab),
            mapping_json=dict(effective),
            options_json=options.as_json(),
            status=ImportRunStatus.QUEUED,
        )
        self.session.add(run)
        self.session.commit()
        run.mark_running()
        self.session.commit()

        started = time.perf_counter()
        tally = RunTally(sample_limit=self.settings.error_sample_limit)
        logger.info(
            "Lead import run started",
            extra={
                "import_run_id": run.id,
                "organization_id": ctx.organization_id,
                "source_type": source.source_type,
                "adapter": source.adapter,
            },
        )

        try:
            table = self.read(source, ctx)
        except SourceError as exc:
            exc.import_run_id = run.id
            self._finalize(run, tally, ImportRunStatus.FAILED, error_summary=str(exc))
            record_run(adapter=source.adapter, status="failed", duration_seconds=time.perf_counter() - started)
            logger.warning(
                "Lead import source could not be read",
                extra={"import_run_id": run.id, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise

        tally.total_rows = table.total_rows
        writer = LeadWriter(
            self.session,
            ctx,
            run_id=run.id,
            lead_status=options.lead_status,
            default_source=options.default_source,
            max_attempts=self.settings.write_retries,
        )
        batch = BatchKeyRegistry()

        try:
            for row in table:
                outcome = self._process_row(row, effective, ctx, options, writer, batch)
                tally.record(outcome)
                record_row_outcome(outcome.kind.value)
        except Exception as exc:
            self.session.rollback()
            self._finalize(run, tally, ImportRunStatus.FAILED, error_summary=f"Import aborted: {exc}")
            record_run(adapter=source.adapter, status="failed", duration_seconds=time.perf_counter() - started)
            logger.exception("Lead import run failed", extra={"import_run_id": run.id})
            raise

        self._finalize(run, tally, ImportRunStatus.COMPLETED)
        duration = time.perf_counter() - started
        record_run(adapter=source.adapter, status="completed", duration_seconds=duration)
        logger.info(
            "Lead import run completed",
            extra={
                "import_run_id": run.id,
                "organization_id": ctx.organization_id,
                "duration_seconds": round(duration, 3),
                **run.counters(),
            },
        )

        if options.save_mapping_as:
            MappingProfileStore(self.session).save(
                ctx, options.save_mapping_as, effective, is_default=options.save_mapping_default
            )

        return self._result(run)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _process_row(
        self,
        row,
        mapping: FieldMapping,
        ctx: ImportContext,
        options: ImportOptions,
        writer: LeadWriter,
        batch: BatchKeyRegistry,
    ) -> RowOutcome:
        result = validate_row(row, mapping, skip_validation=options.skip_validation)
        if isinstance(result, RowError):
            return RowOutcome.skipped(result)

        decision = resolve(self.session, result, ctx, batch)
        if decision.action == "skip_duplicate":
            return RowOutcome.duplicate(result, decision)

        try:
            return writer.apply(result, decision)
        except Exception as exc:
            self.session.rollback()
            logger.warning(
                "Lead row could not be written",
                extra={
                    "row_index": row.row_index,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "organization_id": ctx.organization_id,
                },
            )
            return RowOutcome.failed(row.row_index, str(exc))
        finally:
            batch.register(result)

    def _finalize(
        self,
        run: ImportRun,
        tally: RunTally,
        status: ImportRunStatus,
        *,
        error_summary: str | None = None,
    ) -> None:
        tally.apply_to(run)
        if tally.errors:
            run.error_report_ref = error_report_ref(run.id)
        run.finalize(status, error_summary=error_summary)
        self.session.commit()

    @staticmethod
    def _result(run: ImportRun) -> ImportRunResult:
        return ImportRunResult(
            import_run_id=run.id,
            status=ImportRunStatus(run.status).value,
            total_rows=run.total_rows or 0,
            imported=run.imported_count or 0,
            updated=run.updated_count or 0,
            skipped=run.skipped_count or 0,
            errors=run.error_count or 0,
            error_details=list(run.error_sample_json or []),
            error_summary=run.error_summary,
            error_report_ref=run.error_report_ref,
        )


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None
