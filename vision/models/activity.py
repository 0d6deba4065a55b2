"""
Activity feed, KPI snapshots and app-usage tracking.

Models:
    - Activity: who did what to which entity (organization feed)
    - KpiSnapshot: dashboard KPI value captured at a point in time
    - AppUsage: per-user launch counter for catalog apps
"""

from datetime import datetime, timezone

from vision.models import db


ENTITY_TYPES = (
    "organization", "member", "invite", "folder", "document",
    "engagement", "task", "deadline", "approval", "subscription", "app",
)
ACTIVITY_ACTIONS = (
    "created", "updated", "deleted", "moved", "uploaded", "downloaded",
    "invited", "joined", "removed", "role_changed", "completed",
    "approved", "rejected", "installed", "uninstalled", "exported",
)
KPI_SEMANTICS = ("info", "success", "warning", "error")


class Activity(db.Model):
    __tablename__ = "activities"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), index=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.Integer)
    action = db.Column(db.String(30), nullable=False)
    description = db.Column(db.String(500))
    metadata_json = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_activities_org_created", "organization_id", "created_at"),
    )

    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "user_name": self.user.display_name if self.user else None,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "description": self.description,
            "metadata": self.metadata_json or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class KpiSnapshot(db.Model):
    __tablename__ = "kpi_snapshots"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kpi_key = db.Column(db.String(50), nullable=False)
    label = db.Column(db.String(100))
    sublabel = db.Column(db.String(200))
    href = db.Column(db.String(200))
    value = db.Column(db.Float, default=0)
    semantic = db.Column(db.String(10), default="info", comment="info | success | warning | error")
    captured_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "kpi_key": self.kpi_key,
            "label": self.label,
            "sublabel": self.sublabel,
            "href": self.href,
            "value": self.value,
            "semantic": self.semantic,
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
        }


class AppUsage(db.Model):
    __tablename__ = "app_usage"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    app_slug = db.Column(db.String(100), nullable=False)
    launch_count = db.Column(db.Integer, default=0)
    last_used_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", "app_slug", name="uq_app_usage"),
    )

    def to_dict(self):
        return {
            "app_slug": self.app_slug,
            "launch_count": self.launch_count or 0,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }
