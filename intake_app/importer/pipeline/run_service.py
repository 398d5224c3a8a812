"""
Service helpers for import run querying, filtering, and serialization.

The runs API and ``flask importer runs`` consume these helpers to provide
paginated, organization-scoped listings, detail payloads, and aggregate
statistics while keeping SQLAlchemy logic centralized and easily testable.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from intake_app.models import User, db
from intake_app.models.importer.schema import ImportRun, ImportRunStatus, as_utc

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100
DEFAULT_SORT = "-started_at"

VALID_SORT_FIELDS = {
    "id": ImportRun.id,
    "run_id": ImportRun.id,
    "source_type": ImportRun.source_type,
    "status": ImportRun.status,
    "started_at": ImportRun.started_at,
    "finished_at": ImportRun.finished_at,
    "created_at": ImportRun.created_at,
}


@dataclass(frozen=True)
class RunFilters:
    """Canonical set of filter options applied to import run queries."""

    organization_id: int | None = None
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    sort: str = DEFAULT_SORT
    statuses: tuple[ImportRunStatus, ...] = field(default_factory=tuple)
    source_types: tuple[str, ...] = field(default_factory=tuple)
    search: str | None = None
    started_from: datetime | None = None
    started_to: datetime | None = None

    @classmethod
    def coerce(
        cls,
        *,
        organization_id: int | None = None,
        page: int | str | None = None,
        page_size: int | str | None = None,
        sort: str | None = None,
        statuses: Iterable[str] | None = None,
        source_types: Iterable[str] | None = None,
        search: str | None = None,
        started_from: str | datetime | None = None,
        started_to: str | datetime | None = None,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> "RunFilters":
        """
        Coerce mixed user input into a validated ``RunFilters`` instance.
        """

        resolved_page = _coerce_positive_int(page, fallback=DEFAULT_PAGE)
        resolved_size = min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), max_page_size)

        resolved_sort = sort or DEFAULT_SORT
        sort_key = resolved_sort.lstrip("-")
        if sort_key not in VALID_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field '{sort_key}'.")

        resolved_statuses = tuple(_coerce_status(value) for value in (statuses or ()) if value not in (None, ""))
        resolved_sources = tuple(sorted({s.strip().lower() for s in (source_types or ()) if s and s.strip()}))
        resolved_search = search.strip() if isinstance(search, str) and search.strip() else None

        resolved_started_from = _coerce_datetime(started_from)
        resolved_started_to = _coerce_datetime(started_to, end_of_day=True)
        if resolved_started_from and resolved_started_to and resolved_started_from > resolved_started_to:
            raise ValueError("started_from must be before started_to.")

        return cls(
            organization_id=organization_id,
            page=resolved_page,
            page_size=resolved_size,
            sort=resolved_sort,
            statuses=resolved_statuses,
            source_types=resolved_sources,
            search=resolved_search,
            started_from=resolved_started_from,
            started_to=resolved_started_to,
        )


@dataclass(slots=True)
class RunSummary:
    """Summarized representation of an import run."""

    id: int
    organization_id: int
    source_type: str
    source_ref: str | None
    status: str
    started_at: datetime | None
    finished_at: datetime | None
    duration_seconds: float | None
    total_rows: int
    imported: int
    updated: int
    skipped: int
    errors: int
    error_summary: str | None
    error_report_ref: str | None
    triggered_by: Mapping[str, Any] | None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat() if self.started_at else None
        payload["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return payload


@dataclass(slots=True)
class RunListResult:
    """Paginated result set for import runs."""

    items: list[RunSummary]
    total: int
    page: int
    page_size: int
    total_pages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


@dataclass(slots=True)
class RunStats:
    """Aggregate statistics across the filtered runs."""

    total: int
    statuses: Mapping[str, int]
    source_types: Mapping[str, int]


class ImportRunService:
    """Facade for querying import runs with consistent filtering semantics."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def list_runs(self, filters: RunFilters) -> RunListResult:
        query = self._apply_filters(self._base_query(), filters, include_sort=False)

        total = query.count()
        if total == 0:
            return RunListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        paginated = (
            query.order_by(_resolve_sort_expression(filters.sort), ImportRun.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
            .all()
        )
        total_pages = (total + filters.page_size - 1) // filters.page_size
        return RunListResult(
            items=[self._summarize_run(run) for run in paginated],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=total_pages,
        )

    def get_run(self, run_id: int, *, organization_id: int | None = None) -> ImportRun:
        query = self._base_query().filter(ImportRun.id == run_id)
        if organization_id is not None:
            query = query.filter(ImportRun.organization_id == organization_id)
        run = query.one_or_none()
        if run is None:
            raise NoResultFound(f"Import run {run_id} not found.")
        return run

    def get_run_summary(self, run_id: int, *, organization_id: int | None = None) -> RunSummary:
        return self._summarize_run(self.get_run(run_id, organization_id=organization_id))

    def summarize(self, run: ImportRun) -> RunSummary:
        return self._summarize_run(run)

    def get_stats(self, filters: RunFilters) -> RunStats:
        query = self._apply_filters(self._base_query(), filters, include_sort=False)

        status_counts = {
            status.value if isinstance(status, ImportRunStatus) else str(status): count
            for status, count in query.with_entities(ImportRun.status, func.count()).group_by(ImportRun.status).all()
        }
        source_counts = {
            source_type: count
            for source_type, count in (
                query.with_entities(ImportRun.source_type, func.count()).group_by(ImportRun.source_type).all()
            )
        }
        return RunStats(total=sum(status_counts.values()), statuses=status_counts, source_types=source_counts)

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _base_query(self):
        return self.session.query(ImportRun)

    def _apply_filters(self, query, filters: RunFilters, *, include_sort: bool = True):
        predicates = []

        if filters.organization_id is not None:
            predicates.append(ImportRun.organization_id == filters.organization_id)

        if filters.statuses:
            predicates.append(ImportRun.status.in_(filters.statuses))

        if filters.source_types:
            predicates.append(ImportRun.source_type.in_(filters.source_types))

        if filters.started_from:
            predicates.append(ImportRun.started_at >= filters.started_from)

        if filters.started_to:
            predicates.append(ImportRun.started_at <= filters.started_to)

        if filters.search:
            predicates.append(_build_search_predicate(filters.search))

        if predicates:
            query = query.filter(and_(*predicates))

        if include_sort:
            query = query.order_by(_resolve_sort_expression(filters.sort))

        return query

    def _summarize_run(self, run: ImportRun) -> RunSummary:
        started_at = as_utc(run.started_at)
        finished_at = as_utc(run.finished_at)

        duration_seconds: float | None = None
        if started_at:
            finished = finished_at or datetime.now(timezone.utc)
            duration_seconds = (finished - started_at).total_seconds()

        triggered_by_user = None
        if run.triggered_by_user_id:
            user: User | None = self.session.get(User, run.triggered_by_user_id)
            if user:
                triggered_by_user = {
                    "id": user.id,
                    "username": user.username,
                    "email": user.email,
                    "display_name": user.display_name,
                }

        counters = run.counters()
        return RunSummary(
            id=run.id,
            organization_id=run.organization_id,
            source_type=run.source_type,
            source_ref=run.source_ref,
            status=ImportRunStatus(run.status).value,
            started_at=started_at,
            finished_at=finished_at,
            duration_seconds=duration_seconds,
            total_rows=counters["total_rows"],
            imported=counters["imported"],
            updated=counters["updated"],
            skipped=counters["skipped"],
            errors=counters["errors"],
            error_summary=run.error_summary,
            error_report_ref=run.error_report_ref,
            triggered_by=triggered_by_user,
        )


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def _coerce_positive_int(candidate: int | str | None, *, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, int):
        return max(1, candidate)
    if isinstance(candidate, str) and candidate.isdigit():
        return max(1, int(candidate))
    raise ValueError(f"Expected positive integer for pagination, received '{candidate}'.")


def _coerce_status(value: str | ImportRunStatus) -> ImportRunStatus:
    if isinstance(value, ImportRunStatus):
        return value
    normalized = str(value).strip().lower()
    try:
        return ImportRunStatus(normalized)
    except ValueError:
        raise ValueError(f"Unsupported status filter '{value}'.") from None


def _coerce_datetime(candidate: str | datetime | None, *, end_of_day: bool = False) -> datetime | None:
    if candidate in (None, ""):
        return None
    if isinstance(candidate, datetime):
        return candidate if candidate.tzinfo else candidate.replace(tzinfo=timezone.utc)
    text = str(candidate).strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if fmt == "%Y-%m-%d":
            parsed = datetime.combine(parsed.date(), time.max if end_of_day else time.min)
        return parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unable to parse datetime value '{candidate}'. Expected ISO-like formats.")


def _resolve_sort_expression(sort: str):
    descending = sort.startswith("-")
    sort_key = sort.lstrip("-")
    expression = VALID_SORT_FIELDS.get(sort_key)
    if expression is None:
        raise ValueError(f"Unsupported sort field '{sort}'.")
    return expression.desc() if descending else expression.asc()


def _build_search_predicate(term: str):
    """Search by run id exact match, or source type/reference partial match."""
    like_pattern = f"%{term.lower()}%"
    predicates = [
        func.lower(ImportRun.source_type).like(like_pattern),
        func.lower(ImportRun.source_ref).like(like_pattern),
    ]
    if term.isdigit():
        predicates.append(ImportRun.id == int(term))
    return or_(*predicates)
