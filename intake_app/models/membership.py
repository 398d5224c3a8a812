# intake_app/models/membership.py

from .base import BaseModel, db


class UserOrganization(BaseModel):
    """Junction table recording which organizations a user may import into."""

    __tablename__ = "user_organizations"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    user = db.relationship("User", back_populates="user_organizations")
    organization = db.relationship("Organization", back_populates="users")

    # Unique constraint - user can only join an organization once
    __table_args__ = (db.UniqueConstraint("user_id", "organization_id", name="_user_org_uc"),)

    def __repr__(self):
        return f"<UserOrganization user={self.user_id} org={self.organization_id}>"
