"""
Deterministic email/phone/name+address matching for lead imports.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from sqlalchemy.orm import Session

from intake_app.models.lead import Lead

from ..context import ImportContext
from .validation import ValidatedLeadRecord

logger = logging.getLogger(__name__)

MATCH_PRIORITY: tuple[str, ...] = ("email", "phone", "name_address")

_KEY_COLUMNS = {
    "email": Lead.email_key,
    "phone": Lead.phone_key,
    "name_address": Lead.name_address_key,
}


@dataclass(frozen=True)
class DedupeDecision:
    """
    Outcome of matching one validated record.

    Attributes:
        action: ``create``, ``update`` (store match) or ``skip_duplicate``
            (an earlier row in the same batch already carries the key).
        lead_id: Matched lead for ``update``.
        matched_on: Key type that decided the match.
    """

    action: Literal["create", "update", "skip_duplicate"]
    lead_id: int | None = None
    matched_on: str | None = None

    @property
    def is_match(self) -> bool:
        return self.action == "update"


@dataclass
class BatchKeyRegistry:
    """Match keys already applied earlier in the current batch."""

    _seen: dict[str, set[str]] = field(default_factory=lambda: {key_type: set() for key_type in MATCH_PRIORITY})

    def seen(self, key_type: str, value: str | None) -> bool:
        return bool(value) and value in self._seen.get(key_type, ())

    def register(self, record: ValidatedLeadRecord) -> None:
        for key_type, value in record.match_keys().items():
            self._seen.setdefault(key_type, set()).add(value)

    def __len__(self) -> int:
        return sum(len(values) for values in self._seen.values())


def find_matching_lead_id(session: Session, organization_id: int, key_type: str, value: str) -> int | None:
    """Oldest non-deleted lead in the organization whose stored key equals ``value``."""

    column = _KEY_COLUMNS[key_type]
    ids = [
        row[0]
        for row in session.query(Lead.id)
        .filter(
            Lead.organization_id == organization_id,
            Lead.is_deleted.is_(False),
            column == value,
        )
        .order_by(Lead.id.asc())
        .limit(2)
        .all()
    ]
    if not ids:
        return None
    if len(ids) > 1:
        logger.warning(
            "Multiple leads share a match key; updating the oldest",
            extra={"organization_id": organization_id, "match_key_type": key_type, "lead_id": ids[0]},
        )
    return ids[0]


def resolve(
    session: Session,
    record: ValidatedLeadRecord,
    ctx: ImportContext,
    batch_seen: BatchKeyRegistry,
) -> DedupeDecision:
    """
    Decide whether ``record`` creates, updates, or duplicates an earlier batch row.

    Keys are tried in priority order (email, phone, name+address) and the first
    store match wins.
    """

    keys = record.match_keys()
    for key_type in MATCH_PRIORITY:
        value = keys.get(key_type)
        if not value:
            continue
        lead_id = find_matching_lead_id(session, ctx.organization_id, key_type, value)
        if lead_id is not None:
            return DedupeDecision(action="update", lead_id=lead_id, matched_on=key_type)

    for key_type in MATCH_PRIORITY:
        if batch_seen.seen(key_type, keys.get(key_type)):
            return DedupeDecision(action="skip_duplicate", matched_on=key_type)

    return DedupeDecision(action="create")
