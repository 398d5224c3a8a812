# intake_app/middleware/org_context.py

from flask import current_app, g, request, session
from flask_login import current_user

from intake_app.models import Organization
from intake_app.utils.permissions import get_user_organizations, set_current_organization


def init_org_context_middleware(app):
    """Initialize organization context middleware"""

    @app.before_request
    def set_organization_context():
        """Set the current organization from request parameters or session"""
        g.current_organization = None

        if request.endpoint in ("static", "metrics"):
            return

        org_id = request.args.get("org_id") or request.headers.get("X-Organization-Id")
        org_slug = request.args.get("org_slug")

        if not org_id and not org_slug and request.is_json:
            payload = request.get_json(silent=True) or {}
            if isinstance(payload, dict):
                org_id = payload.get("org_id")

        if not org_id and not org_slug:
            org_id = session.get("current_organization_id")
            org_slug = session.get("current_organization_slug")

        organization = None

        if org_id:
            try:
                organization = Organization.find_by_id(int(org_id))
            except (ValueError, TypeError):
                current_app.logger.warning(f"Invalid organization ID: {org_id}")

        if not organization and org_slug:
            organization = Organization.find_by_slug(org_slug)

        if organization:
            if not organization.is_active:
                current_app.logger.warning(f"Attempted access to inactive organization: {organization.id}")
                organization = None
            else:
                set_current_organization(organization)
                session["current_organization_id"] = organization.id
                session["current_organization_slug"] = organization.slug

        # A user with exactly one organization does not need to name it
        if not organization and current_user.is_authenticated:
            user_orgs = get_user_organizations(current_user)
            if len(user_orgs) == 1:
                set_current_organization(user_orgs[0])
                session["current_organization_id"] = user_orgs[0].id
                session["current_organization_slug"] = user_orgs[0].slug
