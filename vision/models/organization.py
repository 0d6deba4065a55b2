"""
Organization domain models: tenancy, membership and invitations.

Models:
    - Organization: a nonprofit tenant (soft-deletable)
    - OrganizationMember: user ↔ organization with a role
    - OrganizationInvite: pending email invitation with token and expiry
"""

from datetime import datetime, timezone

from vision.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ROLES = ("Viewer", "Editor", "Admin", "Owner")
ROLE_LEVELS = {name: level for level, name in enumerate(ROLES, start=1)}

INVITE_STATUSES = {"pending", "accepted", "expired", "cancelled"}

ORGANIZATION_TYPES = {"nonprofit", "foundation", "government", "community_group", "other"}

DEFAULT_PRIMARY_COLOR = "#2563eb"
DEFAULT_SECONDARY_COLOR = "#9333ea"


def role_at_least(role: str | None, min_role: str) -> bool:
    """True when ``role`` ranks at or above ``min_role``."""
    return ROLE_LEVELS.get(role or "", 0) >= ROLE_LEVELS[min_role]


class Organization(db.Model):
    """Nonprofit organization (tenant)."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    type = db.Column(db.String(30), default="nonprofit")
    ein = db.Column(db.String(20), comment="US Employer Identification Number")
    mission = db.Column(db.Text)
    industry = db.Column(db.String(100))
    founded_year = db.Column(db.Integer)
    staff_count = db.Column(db.Integer)
    annual_budget = db.Column(db.Numeric(14, 2))
    focus_areas = db.Column(db.JSON, default=list)
    website = db.Column(db.String(500))
    phone = db.Column(db.String(50))
    email = db.Column(db.String(255))

    # Address
    address_street = db.Column(db.String(255))
    address_city = db.Column(db.String(100))
    address_state = db.Column(db.String(100))
    address_postal_code = db.Column(db.String(20))
    address_country = db.Column(db.String(100))

    # Branding
    logo_url = db.Column(db.String(500))
    brand_primary_color = db.Column(db.String(7), default=DEFAULT_PRIMARY_COLOR)
    brand_secondary_color = db.Column(db.String(7), default=DEFAULT_SECONDARY_COLOR)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    deleted_at = db.Column(db.DateTime(timezone=True))

    members = db.relationship(
        "OrganizationMember", back_populates="organization", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "type": self.type,
            "ein": self.ein,
            "mission": self.mission,
            "industry": self.industry,
            "founded_year": self.founded_year,
            "staff_count": self.staff_count,
            "annual_budget": float(self.annual_budget) if self.annual_budget is not None else None,
            "focus_areas": self.focus_areas or [],
            "website": self.website,
            "phone": self.phone,
            "email": self.email,
            "address": {
                "street": self.address_street,
                "city": self.address_city,
                "state": self.address_state,
                "postal_code": self.address_postal_code,
                "country": self.address_country,
            },
            "logo_url": self.logo_url,
            "brand_colors": {
                "primary": self.brand_primary_color or DEFAULT_PRIMARY_COLOR,
                "secondary": self.brand_secondary_color or DEFAULT_SECONDARY_COLOR,
            },
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class OrganizationMember(db.Model):
    """Membership of a user in an organization, scoped by role."""

    __tablename__ = "organization_members"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(20), nullable=False, default="Viewer", comment="Owner | Admin | Editor | Viewer")
    invited_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    joined_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    deleted_at = db.Column(db.DateTime(timezone=True))

    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_org_member_user"),
    )

    organization = db.relationship("Organization", back_populates="members")
    user = db.relationship("User", back_populates="memberships", foreign_keys=[user_id])

    def to_dict(self):
        user = self.user
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "email": user.email if user else None,
            "full_name": user.full_name if user else None,
            "avatar_url": user.avatar_url if user else None,
            "role": self.role,
            "invited_by": self.invited_by,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }


class OrganizationInvite(db.Model):
    """Email invitation to join an organization."""

    __tablename__ = "organization_invites"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    email = db.Column(db.String(255), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="Viewer")
    token = db.Column(db.String(64), unique=True, nullable=False)
    status = db.Column(db.String(20), default="pending", comment="pending | accepted | expired | cancelled")
    message = db.Column(db.Text)
    metadata_json = db.Column("metadata", db.JSON, default=dict)

    invited_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    resend_count = db.Column(db.Integer, default=0)
    last_sent_at = db.Column(db.DateTime(timezone=True))
    accepted_at = db.Column(db.DateTime(timezone=True))
    accepted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    deleted_at = db.Column(db.DateTime(timezone=True))

    organization = db.relationship("Organization")
    inviter = db.relationship("User", foreign_keys=[invited_by])

    def to_dict(self, include_token=False):
        d = {
            "id": self.id,
            "organization_id": self.organization_id,
            "organization_name": self.organization.name if self.organization else None,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "message": self.message,
            "invited_by": self.invited_by,
            "invited_by_name": self.inviter.display_name if self.inviter else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "resend_count": self.resend_count or 0,
            "last_sent_at": self.last_sent_at.isoformat() if self.last_sent_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_token:
            d["token"] = self.token
        return d
