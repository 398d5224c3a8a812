# intake_app/utils/permissions.py

from flask import g

from intake_app.models import Organization, UserOrganization


def get_user_organizations(user):
    """Get all organizations a user belongs to"""
    if not user or not user.is_authenticated:
        return []

    if user.is_super_admin:
        # Super admins can access all organizations
        return Organization.query.filter_by(is_active=True).all()

    user_orgs = UserOrganization.query.filter_by(user_id=user.id, is_active=True).all()

    return [uo.organization for uo in user_orgs if uo.organization.is_active]


def require_organization_membership(user, organization):
    """Check if user is a member of the organization"""
    if not user or not user.is_authenticated or not organization:
        return False

    if user.is_super_admin:
        return True

    user_org = UserOrganization.query.filter_by(
        user_id=user.id,
        organization_id=organization.id,
        is_active=True,
    ).first()

    return user_org is not None


def set_current_organization(organization):
    """Set the current organization in Flask g"""
    g.current_organization = organization


def get_current_organization():
    """Get the current organization from Flask g"""
    return getattr(g, "current_organization", None)
