"""
SQLAlchemy models backing lead imports.

``ImportRun`` is the audit record for one execution, ``LeadMappingProfile``
stores reusable header mappings, ``LeadMatchKey`` guards match-key uniqueness
for concurrent imports, and ``ConnectorCredential`` holds the access token
written by the external Google Sheets connector flow.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ImportRunFinalizedError(RuntimeError):
    """Raised when code attempts to modify an import run after it was finalized."""

    def __init__(self, run_id: int | None, status: str) -> None:
        super().__init__(f"Import run {run_id} is already {status} and cannot be modified.")
        self.run_id = run_id
        self.status = status


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for an import run."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportRunStatus.COMPLETED, ImportRunStatus.FAILED)


class ImportRun(BaseModel):
    """Audit record describing a single lead import execution."""

    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    triggered_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    source_type: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    source_ref: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    mapping_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    options_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.QUEUED,
        index=True,
    )
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    imported_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    updated_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    error_sample_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    error_report_ref: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))

    triggered_by_user = relationship("User", foreign_keys=[triggered_by_user_id])
    organization = relationship("Organization", foreign_keys=[organization_id])

    __table_args__ = (Index("idx_import_runs_org_started", "organization_id", "started_at"),)

    def __repr__(self) -> str:
        return f"<ImportRun {self.id} {self.status}>"

    @property
    def is_finalized(self) -> bool:
        return ImportRunStatus(self.status).is_terminal

    def mark_running(self, *, started_at: datetime | None = None) -> None:
        if self.is_finalized:
            raise ImportRunFinalizedError(self.id, ImportRunStatus(self.status).value)
        self.status = ImportRunStatus.RUNNING
        self.started_at = started_at or datetime.now(timezone.utc)

    def finalize(
        self,
        status: ImportRunStatus,
        *,
        error_summary: str | None = None,
        finished_at: datetime | None = None,
    ) -> None:
        """Move the run to a terminal state exactly once."""

        if not ImportRunStatus(status).is_terminal:
            raise ValueError(f"Cannot finalize import run with non-terminal status '{status}'.")
        if self.is_finalized:
            raise ImportRunFinalizedError(self.id, ImportRunStatus(self.status).value)
        self.status = status
        self.finished_at = finished_at or datetime.now(timezone.utc)
        if error_summary is not None:
            self.error_summary = error_summary

    def counters(self) -> dict[str, int]:
        return {
            "total_rows": self.total_rows or 0,
            "imported": self.imported_count or 0,
            "updated": self.updated_count or 0,
            "skipped": self.skipped_count or 0,
            "errors": self.error_count or 0,
        }


@event.listens_for(ImportRun, "before_update")
def _guard_finalized_run(mapper, connection, target):
    state = inspect(target)
    if not any(attr.history.has_changes() for attr in state.attrs):
        return
    status_history = state.attrs.status.history
    previous = status_history.deleted[0] if status_history.deleted else target.status
    if previous is not None and ImportRunStatus(previous).is_terminal:
        raise ImportRunFinalizedError(target.id, ImportRunStatus(previous).value)


class LeadMappingProfile(BaseModel):
    """Named, reusable header-to-field mapping owned by an organization."""

    __tablename__ = "lead_mapping_profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    mapping_json: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    is_default: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_lead_mapping_profile_name"),)

    def __repr__(self) -> str:
        return f"<LeadMappingProfile {self.name!r} org={self.organization_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "mapping": dict(self.mapping_json or {}),
            "is_default": bool(self.is_default),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class LeadMatchKey(BaseModel):
    """Claims a match key for one lead so concurrent creates collide in the database."""

    __tablename__ = "lead_match_keys"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    key_type: Mapped[str] = mapped_column(db.String(20), nullable=False)
    key_value: Mapped[str] = mapped_column(db.String(500), nullable=False)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)

    lead = relationship("Lead")

    __table_args__ = (
        UniqueConstraint("organization_id", "key_type", "key_value", name="uq_lead_match_key"),
    )

    def __repr__(self) -> str:
        return f"<LeadMatchKey {self.key_type}={self.key_value!r} lead={self.lead_id}>"


class ConnectorCredential(BaseModel):
    """OAuth access token stored by the external connector flow."""

    __tablename__ = "connector_credentials"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    provider: Mapped[str] = mapped_column(db.String(50), nullable=False)
    access_token: Mapped[str] = mapped_column(db.Text, nullable=False)
    account_email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "provider", name="uq_connector_credential_provider"),
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = now or datetime.now(timezone.utc)
        return as_utc(self.expires_at) <= as_utc(current)
