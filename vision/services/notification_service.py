"""
VISION Platform
Notification Service.

Central service for creating and querying per-user notifications and
for honoring each user's delivery preferences (in-app / email, per-type
overrides, digest frequency, quiet hours).
"""

import html
import logging
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from vision.core.exceptions import NotFoundError, ValidationError
from vision.models import db
from vision.models.auth import User
from vision.models.notification import (
    DIGEST_FREQUENCIES,
    NOTIFICATION_PRIORITIES,
    NOTIFICATION_TYPES,
    Notification,
    NotificationPreference,
)
from vision.services.email_service import EmailService

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def in_quiet_hours(pref: NotificationPreference, now: datetime | None = None) -> bool:
    """True when ``now`` falls inside the user's quiet-hours window.

    Windows may wrap midnight (22:00 → 07:00).
    """
    if not pref or not pref.quiet_hours_enabled:
        return False
    if not pref.quiet_hours_start or not pref.quiet_hours_end:
        return False
    try:
        tz = ZoneInfo(pref.quiet_hours_timezone or "UTC")
    except ZoneInfoNotFoundError:
        tz = timezone.utc
    local = (now or datetime.now(timezone.utc)).astimezone(tz).strftime("%H:%M")
    start, end = pref.quiet_hours_start, pref.quiet_hours_end
    if start <= end:
        return start <= local < end
    return local >= start or local < end


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, type, title, message="", organization_id=None,
               priority="medium", action_url=None, metadata=None, commit=True):
        """
        Create a notification for one user, honoring their preferences.

        Returns:
            The created Notification, or None when the user disabled in-app
            delivery for this type.

        Raises:
            ValidationError: Unknown type or priority.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type: {type}")
        if priority not in NOTIFICATION_PRIORITIES:
            raise ValidationError(f"Unknown notification priority: {priority}")

        pref = NotificationPreference.query.filter_by(user_id=user_id).first()

        notif = None
        if pref is None or pref.channel_enabled(type, "in_app"):
            notif = Notification(
                organization_id=organization_id,
                user_id=user_id,
                type=type,
                priority=priority,
                title=title,
                message=message,
                action_url=action_url,
                metadata_json=metadata or {},
            )
            db.session.add(notif)

        NotificationService._maybe_email(user_id, type, title, message, action_url, pref)

        if commit:
            db.session.commit()
        return notif

    @staticmethod
    def _maybe_email(user_id, type, title, message, action_url, pref):
        """Send the email copy when enabled, realtime and outside quiet hours."""
        if pref is not None:
            if not pref.channel_enabled(type, "email"):
                return
            if (pref.email_digest_frequency or "realtime") != "realtime":
                return
            if in_quiet_hours(pref):
                return
        user = db.session.get(User, user_id)
        if not user or (user.preference and user.preference.email_notifications is False):
            return
        base_url = current_app.config.get("APP_BASE_URL", "")
        try:
            EmailService.send_from_template(
                to_email=user.email,
                to_name=user.full_name,
                template_name="notification",
                context={
                    "title": title,
                    "message": message,
                    "action_url": f"{base_url}{action_url}" if action_url else "",
                    "action_block": (
                        f'<p><a href="{html.escape(base_url + action_url)}">Open in VISION</a></p>'
                        if action_url else ""
                    ),
                },
            )
        except Exception:
            logger.exception("Notification email failed user=%s type=%s", user_id, type)

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, *, unread_only=False, type=None, organization_id=None,
                      limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.

        Returns:
            (items, total)
        """
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        if type:
            q = q.filter_by(type=type)
        if organization_id:
            q = q.filter_by(organization_id=organization_id)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def _get_own(user_id, notification_id):
        notif = db.session.get(Notification, notification_id)
        if not notif or notif.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        return notif

    @staticmethod
    def mark_read(user_id, notification_id):
        """Mark a single notification as read."""
        notif = NotificationService._get_own(user_id, notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all of a user's notifications as read. Returns the count."""
        now = datetime.now(timezone.utc)
        count = Notification.query.filter_by(user_id=user_id, is_read=False).update(
            {"is_read": True, "read_at": now}, synchronize_session=False,
        )
        db.session.commit()
        return count

    @staticmethod
    def delete(user_id, notification_id):
        notif = NotificationService._get_own(user_id, notification_id)
        db.session.delete(notif)
        db.session.commit()

    @staticmethod
    def delete_all_read(user_id):
        """Delete every read notification of the user. Returns the count."""
        count = Notification.query.filter_by(user_id=user_id, is_read=True).delete(
            synchronize_session=False,
        )
        db.session.commit()
        return count

    # ── Preferences ───────────────────────────────────────────────────────

    @staticmethod
    def get_preferences(user_id):
        """Return the user's preference row, creating one with defaults."""
        pref = NotificationPreference.query.filter_by(user_id=user_id).first()
        if pref is None:
            pref = NotificationPreference(user_id=user_id, type_settings={})
            db.session.add(pref)
            db.session.commit()
        return pref

    @staticmethod
    def update_preferences(user_id, updates):
        """
        Partially update preferences.

        Accepted keys: in_app_enabled, email_enabled, email_digest_frequency,
        quiet_hours_enabled, quiet_hours_start, quiet_hours_end,
        quiet_hours_timezone, types ({type: {"in_app": bool, "email": bool}}).
        """
        pref = NotificationService.get_preferences(user_id)

        for flag in ("in_app_enabled", "email_enabled", "quiet_hours_enabled"):
            if flag in updates:
                setattr(pref, flag, bool(updates[flag]))

        if "email_digest_frequency" in updates:
            freq = updates["email_digest_frequency"]
            if freq not in DIGEST_FREQUENCIES:
                raise ValidationError(f"email_digest_frequency must be one of {list(DIGEST_FREQUENCIES)}")
            pref.email_digest_frequency = freq

        for key in ("quiet_hours_start", "quiet_hours_end"):
            if key in updates:
                value = updates[key]
                if value is not None and not _HHMM.match(str(value)):
                    raise ValidationError(f"{key} must be HH:MM", details={key: "invalid_time"})
                setattr(pref, key, value)

        if "quiet_hours_timezone" in updates:
            tz_name = updates["quiet_hours_timezone"] or "UTC"
            try:
                ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValidationError(f"Unknown timezone: {tz_name}") from e
            pref.quiet_hours_timezone = tz_name

        if "types" in updates:
            types = updates["types"] or {}
            if not isinstance(types, dict):
                raise ValidationError("types must be an object")
            settings = dict(pref.type_settings or {})
            for ntype, channels in types.items():
                if ntype not in NOTIFICATION_TYPES:
                    raise ValidationError(f"Unknown notification type: {ntype}")
                merged = dict(settings.get(ntype, {}))
                for channel in ("in_app", "email"):
                    if isinstance(channels, dict) and channel in channels:
                        merged[channel] = bool(channels[channel])
                settings[ntype] = merged
            pref.type_settings = settings

        db.session.commit()
        logger.info("Notification preferences updated user=%s", user_id)
        return pref
