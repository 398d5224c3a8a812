"""
Create/update helpers that write validated lead records into the ``leads`` table.

Every row is committed on its own. Creating a lead also claims its match keys
in ``lead_match_keys``; the unique constraint on that table is what turns two
concurrent imports of the same email into one create and one update.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from intake_app.models.importer.schema import LeadMatchKey
from intake_app.models.lead import LEAD_STATUS_NEW, Lead, email_match_key, phone_match_key

from ..context import ImportContext
from ..errors import LeadWriteConflict
from ..metrics import record_write_conflict
from .deterministic import MATCH_PRIORITY, DedupeDecision, find_matching_lead_id
from .validation import RowError, RowWarning, ValidatedLeadRecord

logger = logging.getLogger(__name__)

# Fields whose value is also a unique-ish match key.
_GUARDED_KEY_FIELDS = {
    "home_email": ("email", email_match_key, Lead.email_key),
    "mobile_phone": ("phone", phone_match_key, Lead.phone_key),
}


class RowOutcomeKind(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class RowOutcome:
    """What happened to one source row."""

    row_index: int
    kind: RowOutcomeKind
    lead_id: int | None = None
    matched_on: str | None = None
    warnings: tuple[RowWarning, ...] = field(default_factory=tuple)
    error: RowError | None = None
    message: str | None = None

    @property
    def is_write(self) -> bool:
        return self.kind in (RowOutcomeKind.CREATED, RowOutcomeKind.UPDATED)

    @classmethod
    def skipped(cls, error: RowError) -> "RowOutcome":
        return cls(row_index=error.row_index, kind=RowOutcomeKind.SKIPPED, error=error, message=error.message)

    @classmethod
    def duplicate(cls, record: ValidatedLeadRecord, decision: DedupeDecision) -> "RowOutcome":
        return cls(
            row_index=record.row_index,
            kind=RowOutcomeKind.SKIPPED_DUPLICATE,
            matched_on=decision.matched_on,
            warnings=record.warnings,
            message=f"Duplicate of an earlier row in this batch (matched on {decision.matched_on}).",
        )

    @classmethod
    def failed(cls, row_index: int, message: str) -> "RowOutcome":
        return cls(row_index=row_index, kind=RowOutcomeKind.FAILED, message=message)


class LeadWriter:
    """Apply dedupe decisions to the lead store, one committed row at a time."""

    def __init__(
        self,
        session: Session,
        ctx: ImportContext,
        *,
        run_id: int | None = None,
        lead_status: str = LEAD_STATUS_NEW,
        default_source: str | None = None,
        max_attempts: int = 3,
    ) -> None:
        self.session = session
        self.ctx = ctx
        self.run_id = run_id
        self.lead_status = lead_status or LEAD_STATUS_NEW
        self.default_source = default_source
        self.max_attempts = max(1, max_attempts)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply(self, record: ValidatedLeadRecord, decision: DedupeDecision) -> RowOutcome:
        """
        Write ``record`` according to ``decision`` and commit.

        A unique-key collision on create means another writer claimed the key
        first; the row is rolled back, re-resolved, and retried (usually as an
        update). Raises ``LeadWriteConflict`` once attempts run out.
        """

        action, lead_id, matched_on = decision.action, decision.lead_id, decision.matched_on
        if action == "skip_duplicate":
            raise ValueError("skip_duplicate decisions are not written.")

        for attempt in range(1, self.max_attempts + 1):
            try:
                target = self._live_lead(lead_id) if action == "update" else None
                if target is not None:
                    lead, warnings = self._update(target, record)
                    kind = RowOutcomeKind.UPDATED
                else:
                    lead, warnings = self._create(record), ()
                    kind = RowOutcomeKind.CREATED
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                record_write_conflict()
                logger.info(
                    "Lead write collided with a concurrent claim; re-resolving",
                    extra={
                        "row_index": record.row_index,
                        "attempt": attempt,
                        "organization_id": self.ctx.organization_id,
                    },
                )
                lead_id, matched_on = self._reresolve(record)
                action = "update" if lead_id is not None else "create"
                continue

            return RowOutcome(
                row_index=record.row_index,
                kind=kind,
                lead_id=lead.id,
                matched_on=matched_on,
                warnings=tuple(record.warnings) + tuple(warnings),
            )

        raise LeadWriteConflict(record.row_index, self.max_attempts)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _create(self, record: ValidatedLeadRecord) -> Lead:
        lead = Lead(
            organization_id=self.ctx.organization_id,
            status=self.lead_status,
            is_deleted=False,
            created_by_run_id=self.run_id,
            last_import_run_id=self.run_id,
        )
        for name, value in record.fields.items():
            setattr(lead, name, value)
        if not lead.source and self.default_source:
            lead.source = self.default_source
        lead.refresh_match_keys()
        self.session.add(lead)
        self.session.flush()

        for key_type, value in lead.match_keys().items():
            self.session.add(
                LeadMatchKey(
                    organization_id=self.ctx.organization_id,
                    key_type=key_type,
                    key_value=value,
                    lead_id=lead.id,
                )
            )
        self.session.flush()
        return lead

    def _live_lead(self, lead_id: int | None) -> Lead | None:
        if lead_id is None:
            return None
        lead = self.session.get(Lead, lead_id)
        if lead is None or lead.is_deleted:
            return None
        return lead

    def _update(self, lead: Lead, record: ValidatedLeadRecord) -> tuple[Lead, tuple[RowWarning, ...]]:
        warnings: list[RowWarning] = []
        for name, value in record.fields.items():
            guarded = _GUARDED_KEY_FIELDS.get(name)
            if guarded is not None:
                _, key_fn, column = guarded
                new_key = key_fn(value)
                if new_key and new_key != getattr(lead, column.key) and self._key_in_use(column, new_key, lead.id):
                    warnings.append(
                        RowWarning(
                            row_index=record.row_index,
                            code="key_conflict",
                            message=f"{name} '{value}' already belongs to another lead; kept the existing value.",
                            field=name,
                        )
                    )
                    continue
            setattr(lead, name, value)

        lead.last_import_run_id = self.run_id
        lead.touch()
        lead.refresh_match_keys()
        self._sync_claims(lead)
        self.session.flush()
        return lead, tuple(warnings)

    def _key_in_use(self, column, value: str, lead_id: int) -> bool:
        return (
            self.session.query(Lead.id)
            .filter(
                Lead.organization_id == self.ctx.organization_id,
                Lead.is_deleted.is_(False),
                Lead.id != lead_id,
                column == value,
            )
            .first()
            is not None
        )

    def _sync_claims(self, lead: Lead) -> None:
        """Release claims for keys the lead no longer has and claim its current keys."""

        desired = lead.match_keys()
        held = {claim.key_type: claim for claim in self.session.query(LeadMatchKey).filter_by(lead_id=lead.id)}
        for key_type, claim in held.items():
            if desired.get(key_type) != claim.key_value:
                self.session.delete(claim)
        self.session.flush()

        for key_type, value in desired.items():
            claim = held.get(key_type)
            if claim is not None and claim.key_value == value:
                continue
            owner = self._claim_for(key_type, value)
            if owner is None:
                self.session.add(
                    LeadMatchKey(
                        organization_id=self.ctx.organization_id,
                        key_type=key_type,
                        key_value=value,
                        lead_id=lead.id,
                    )
                )
            elif owner.lead_id != lead.id and self._claim_is_stale(owner):
                owner.lead_id = lead.id

    def _claim_for(self, key_type: str, value: str) -> LeadMatchKey | None:
        return (
            self.session.query(LeadMatchKey)
            .filter_by(organization_id=self.ctx.organization_id, key_type=key_type, key_value=value)
            .one_or_none()
        )

    def _claim_is_stale(self, claim: LeadMatchKey) -> bool:
        owner = self.session.get(Lead, claim.lead_id)
        if owner is None or owner.is_deleted:
            return True
        return owner.match_keys().get(claim.key_type) != claim.key_value

    def _reresolve(self, record: ValidatedLeadRecord) -> tuple[int | None, str | None]:
        """
        Find the lead that won a key collision.

        Checks the live store first, then the claim owners. Stale claims
        (deleted owner, or owner no longer carrying the key) are released so
        the next attempt can create.
        """

        keys = record.match_keys()
        for key_type in MATCH_PRIORITY:
            value = keys.get(key_type)
            if value:
                lead_id = find_matching_lead_id(self.session, self.ctx.organization_id, key_type, value)
                if lead_id is not None:
                    return lead_id, key_type

        released = False
        for key_type in MATCH_PRIORITY:
            value = keys.get(key_type)
            if not value:
                continue
            claim = self._claim_for(key_type, value)
            if claim is None:
                continue
            if self._claim_is_stale(claim):
                self.session.delete(claim)
                released = True
                continue
            return claim.lead_id, key_type

        if released:
            self.session.commit()
        return None, None
