"""
VISION Platform
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
    - NotificationPreference: per-user delivery settings with per-type overrides
"""

from datetime import datetime, timezone

from vision.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = (
    "invitation",
    "member_added",
    "member_removed",
    "role_changed",
    "organization_updated",
    "task_assigned",
    "task_completed",
    "approval_requested",
    "approval_decided",
    "file_shared",
    "comment_added",
    "mention",
    "system",
)
NOTIFICATION_PRIORITIES = ("low", "medium", "high", "urgent")
DIGEST_FREQUENCIES = ("realtime", "daily", "weekly", "never")


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(30), nullable=False, default="system")
    priority = db.Column(db.String(10), default="medium")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    action_url = db.Column(db.String(500))
    metadata_json = db.Column("metadata", db.JSON, default=dict)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "type": self.type,
            "priority": self.priority,
            "title": self.title,
            "message": self.message,
            "action_url": self.action_url,
            "metadata": self.metadata_json or {},
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"


class NotificationPreference(db.Model):
    """Delivery settings for one user. No row means all defaults."""

    __tablename__ = "notification_preferences"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False,
    )
    in_app_enabled = db.Column(db.Boolean, default=True)
    email_enabled = db.Column(db.Boolean, default=True)
    # {"task_assigned": {"in_app": true, "email": false}, ...}; missing keys inherit the globals
    type_settings = db.Column(db.JSON, default=dict)
    email_digest_frequency = db.Column(db.String(10), default="realtime",
                                       comment="realtime | daily | weekly | never")
    quiet_hours_enabled = db.Column(db.Boolean, default=False)
    quiet_hours_start = db.Column(db.String(5), comment="HH:MM")
    quiet_hours_end = db.Column(db.String(5), comment="HH:MM")
    quiet_hours_timezone = db.Column(db.String(64), default="UTC")
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def channel_enabled(self, notification_type: str, channel: str) -> bool:
        """Global switch AND per-type override (``channel`` is "in_app" or "email")."""
        global_flag = self.in_app_enabled if channel == "in_app" else self.email_enabled
        if global_flag is False:
            return False
        override = (self.type_settings or {}).get(notification_type, {})
        return bool(override.get(channel, True))

    def to_dict(self):
        settings = self.type_settings or {}
        return {
            "in_app_enabled": self.in_app_enabled is not False,
            "email_enabled": self.email_enabled is not False,
            "types": {
                t: {
                    "in_app": bool(settings.get(t, {}).get("in_app", True)),
                    "email": bool(settings.get(t, {}).get("email", True)),
                }
                for t in NOTIFICATION_TYPES
            },
            "email_digest_frequency": self.email_digest_frequency or "realtime",
            "quiet_hours_enabled": bool(self.quiet_hours_enabled),
            "quiet_hours_start": self.quiet_hours_start,
            "quiet_hours_end": self.quiet_hours_end,
            "quiet_hours_timezone": self.quiet_hours_timezone or "UTC",
        }
