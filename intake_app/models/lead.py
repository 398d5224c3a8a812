# intake_app/models/lead.py
"""
Canonical lead record and the match keys used to reconcile imports.

The ``*_key`` columns are derived from the contact fields on every insert and
update so deduplication can use indexed equality lookups regardless of how the
lead was written.
"""

from __future__ import annotations

import re

from sqlalchemy import Index, event

from .base import BaseModel, db

_NON_DIGIT = re.compile(r"\D+")

LEAD_STATUS_NEW = "new"


def email_match_key(value):
    """Lower-cased, trimmed email or ``None`` when blank."""
    if value is None:
        return None
    token = str(value).strip().lower()
    return token or None


def phone_match_key(value):
    """Digits-only phone or ``None`` when no digits remain."""
    if value is None:
        return None
    digits = _NON_DIGIT.sub("", str(value))
    return digits or None


def name_address_match_key(first_name, last_name, street):
    """Case-insensitive composite of name and street; all three parts are required."""
    parts = []
    for value in (first_name, last_name, street):
        token = " ".join(str(value or "").split()).lower()
        if not token:
            return None
        parts.append(token)
    return "|".join(parts)


class Lead(BaseModel):
    """Prospective borrower/property record owned by an organization."""

    __tablename__ = "leads"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default=LEAD_STATUS_NEW)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    # Contact
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    home_email = db.Column(db.String(255), nullable=True)
    work_email = db.Column(db.String(255), nullable=True)
    mobile_phone = db.Column(db.String(32), nullable=True)
    home_phone = db.Column(db.String(32), nullable=True)
    work_phone = db.Column(db.String(32), nullable=True)

    # Property
    property_street = db.Column(db.String(255), nullable=True)
    property_city = db.Column(db.String(100), nullable=True)
    property_state = db.Column(db.String(50), nullable=True)
    property_zip = db.Column(db.String(20), nullable=True)
    property_county = db.Column(db.String(100), nullable=True)
    property_type = db.Column(db.String(100), nullable=True)
    occupancy = db.Column(db.String(100), nullable=True)
    estimated_value = db.Column(db.Float, nullable=True)
    zillow_link = db.Column(db.String(500), nullable=True)

    # Loan
    loan_amount = db.Column(db.Float, nullable=True)
    loan_type = db.Column(db.String(100), nullable=True)
    loan_purpose = db.Column(db.String(100), nullable=True)
    fico_score = db.Column(db.Integer, nullable=True)
    current_rate = db.Column(db.Float, nullable=True)
    current_balance = db.Column(db.Float, nullable=True)
    monthly_rental_income = db.Column(db.Float, nullable=True)

    source = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Import provenance
    created_by_run_id = db.Column(db.Integer, db.ForeignKey("import_runs.id"), nullable=True)
    last_import_run_id = db.Column(db.Integer, db.ForeignKey("import_runs.id"), nullable=True)

    # Derived match keys
    email_key = db.Column(db.String(255), nullable=True)
    phone_key = db.Column(db.String(32), nullable=True)
    name_address_key = db.Column(db.String(500), nullable=True)

    __table_args__ = (
        Index("idx_leads_org_email_key", "organization_id", "email_key"),
        Index("idx_leads_org_phone_key", "organization_id", "phone_key"),
        Index("idx_leads_org_name_address_key", "organization_id", "name_address_key"),
    )

    def __repr__(self):
        return f"<Lead {self.id} org={self.organization_id}>"

    def refresh_match_keys(self):
        self.email_key = email_match_key(self.home_email)
        self.phone_key = phone_match_key(self.mobile_phone)
        self.name_address_key = name_address_match_key(self.first_name, self.last_name, self.property_street)

    def match_keys(self):
        """Return ``{key_type: key_value}`` for every populated match key."""
        self.refresh_match_keys()
        keys = {
            "email": self.email_key,
            "phone": self.phone_key,
            "name_address": self.name_address_key,
        }
        return {key_type: value for key_type, value in keys.items() if value}

    def to_dict(self, fields=None):
        from intake_app.importer.contracts import LEAD_FIELD_NAMES

        payload = {
            "id": self.id,
            "organization_id": self.organization_id,
            "status": self.status,
            "is_deleted": self.is_deleted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        for name in fields or LEAD_FIELD_NAMES:
            payload[name] = getattr(self, name)
        return payload


@event.listens_for(Lead, "before_insert")
@event.listens_for(Lead, "before_update")
def _sync_lead_match_keys(mapper, connection, target):
    target.refresh_match_keys()
