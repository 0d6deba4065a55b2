"""
Auth Models: users and per-user preferences.

Users are global; access to organizations is granted through
OrganizationMember rows (see vision.models.organization).
"""

from datetime import datetime, timezone

from vision.models import db


THEMES = {"light", "dark", "system"}


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256))
    full_name = db.Column(db.String(200))
    avatar_url = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    preference = db.relationship(
        "UserPreference", back_populates="user", uselist=False, cascade="all, delete-orphan",
    )
    memberships = db.relationship(
        "OrganizationMember", back_populates="user", lazy="dynamic",
        foreign_keys="OrganizationMember.user_id",
    )

    @property
    def display_name(self):
        return self.full_name or self.email.split("@")[0]

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. USER PREFERENCES
# ═══════════════════════════════════════════════════════════════
class UserPreference(db.Model):
    __tablename__ = "user_preferences"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    theme = db.Column(db.String(20), default="system")
    language = db.Column(db.String(10), default="en")
    timezone = db.Column(db.String(64), default="UTC")
    email_notifications = db.Column(db.Boolean, default=True)

    user = db.relationship("User", back_populates="preference")

    def to_dict(self):
        return {
            "theme": self.theme,
            "language": self.language,
            "timezone": self.timezone,
            "email_notifications": self.email_notifications,
        }
