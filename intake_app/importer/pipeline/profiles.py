"""
Persistence for named, reusable header mappings.
"""

from __future__ import annotations

import logging
from typing import Mapping

from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from intake_app.models.importer.schema import LeadMappingProfile

from ..context import ImportContext
from ..mapping import FieldMapping, validate_mapping

logger = logging.getLogger(__name__)


class MappingProfileStore:
    """Organization-scoped CRUD for ``LeadMappingProfile`` rows."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def save(
        self,
        ctx: ImportContext,
        name: str,
        mapping: Mapping[str, str],
        *,
        is_default: bool = False,
    ) -> LeadMappingProfile:
        """
        Create or replace the profile called ``name``.

        Saving with ``is_default=True`` clears the flag on every other profile
        of the organization.
        """

        clean_name = (name or "").strip()
        if not clean_name:
            raise ValueError("Mapping profile name is required.")
        cleaned = validate_mapping(mapping)

        profile = (
            self.session.query(LeadMappingProfile)
            .filter_by(organization_id=ctx.organization_id, name=clean_name)
            .one_or_none()
        )
        if profile is None:
            profile = LeadMappingProfile(
                organization_id=ctx.organization_id,
                name=clean_name,
                created_by_user_id=ctx.user_id,
            )
            self.session.add(profile)
        profile.mapping_json = dict(cleaned)
        profile.is_default = bool(is_default)

        if is_default:
            self.session.query(LeadMappingProfile).filter(
                LeadMappingProfile.organization_id == ctx.organization_id,
                LeadMappingProfile.name != clean_name,
                LeadMappingProfile.is_default.is_(True),
            ).update({LeadMappingProfile.is_default: False}, synchronize_session="fetch")

        self.session.commit()
        logger.info(
            "Saved lead mapping profile",
            extra={"organization_id": ctx.organization_id, "profile_name": clean_name, "is_default": is_default},
        )
        return profile

    def list(self, ctx: ImportContext) -> list[LeadMappingProfile]:
        return (
            self.session.query(LeadMappingProfile)
            .filter(LeadMappingProfile.organization_id == ctx.organization_id)
            .order_by(LeadMappingProfile.is_default.desc(), LeadMappingProfile.name.asc())
            .all()
        )

    def get(self, ctx: ImportContext, profile_id: int) -> LeadMappingProfile:
        profile = (
            self.session.query(LeadMappingProfile)
            .filter_by(organization_id=ctx.organization_id, id=profile_id)
            .one_or_none()
        )
        if profile is None:
            raise NoResultFound(f"Mapping profile {profile_id} not found.")
        return profile

    def get_by_name(self, ctx: ImportContext, name: str) -> LeadMappingProfile | None:
        return (
            self.session.query(LeadMappingProfile)
            .filter_by(organization_id=ctx.organization_id, name=(name or "").strip())
            .one_or_none()
        )

    def get_default(self, ctx: ImportContext) -> LeadMappingProfile | None:
        return (
            self.session.query(LeadMappingProfile)
            .filter_by(organization_id=ctx.organization_id, is_default=True)
            .order_by(LeadMappingProfile.updated_at.desc())
            .first()
        )

    def default_mapping(self, ctx: ImportContext) -> FieldMapping:
        profile = self.get_default(ctx)
        if profile is None:
            return {}
        return dict(profile.mapping_json or {})

    def delete(self, ctx: ImportContext, profile_id: int) -> None:
        profile = self.get(ctx, profile_id)
        self.session.delete(profile)
        self.session.commit()
        logger.info(
            "Deleted lead mapping profile",
            extra={"organization_id": ctx.organization_id, "profile_id": profile_id},
        )
