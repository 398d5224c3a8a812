"""
Importer-specific SQLAlchemy models: runs, mapping profiles, match-key claims
and connector credentials.
"""

from .schema import (
    ConnectorCredential,
    ImportRun,
    ImportRunFinalizedError,
    ImportRunStatus,
    LeadMappingProfile,
    LeadMatchKey,
    as_utc,
)

__all__ = [
    "ConnectorCredential",
    "ImportRun",
    "ImportRunFinalizedError",
    "ImportRunStatus",
    "LeadMappingProfile",
    "LeadMatchKey",
    "as_utc",
]
