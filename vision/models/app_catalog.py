"""
App catalog models: platform apps and per-organization installations.
"""

from datetime import datetime, timezone

from vision.models import db


APP_CATEGORIES = ("engagement", "documents", "fundraising", "operations", "analytics")


class App(db.Model):
    __tablename__ = "apps"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(30), default="operations")
    icon = db.Column(db.String(50))
    route = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True)
    requires_subscription = db.Column(db.Boolean, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
            "route": self.route,
            "is_active": self.is_active,
            "requires_subscription": self.requires_subscription,
        }


class AppInstallation(db.Model):
    __tablename__ = "app_installations"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    app_id = db.Column(db.Integer, db.ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    is_enabled = db.Column(db.Boolean, default=True)
    installed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    installed_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("organization_id", "app_id", name="uq_app_installation"),
    )

    app = db.relationship("App")

    def to_dict(self):
        return {
            "app": self.app.to_dict() if self.app else None,
            "is_enabled": self.is_enabled,
            "installed_by": self.installed_by,
            "installed_at": self.installed_at.isoformat() if self.installed_at else None,
        }
