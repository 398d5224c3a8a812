# intake_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .importer import (
    ConnectorCredential,
    ImportRun,
    ImportRunStatus,
    LeadMappingProfile,
    LeadMatchKey,
)
from .lead import Lead
from .membership import UserOrganization
from .organization import Organization
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    "Organization",
    "UserOrganization",
    "Lead",
    "ImportRun",
    "ImportRunStatus",
    "LeadMappingProfile",
    "LeadMatchKey",
    "ConnectorCredential",
]
