"""
Activity Service: organization activity feed, dashboard KPIs and app usage.

``log_activity`` only adds to the session by default so that it rides in
the caller's transaction; pass ``commit=True`` for standalone use.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from vision.core.exceptions import ValidationError
from vision.models import db
from vision.models.activity import ACTIVITY_ACTIONS, ENTITY_TYPES, Activity, AppUsage, KpiSnapshot
from vision.models.app_catalog import AppInstallation
from vision.models.notification import Notification
from vision.models.worklist import Approval, Task

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# Activity feed
# ──────────────────────────────────────────────────────────────────────────────

def log_activity(
    organization_id: int,
    user_id: int | None,
    entity_type: str,
    action: str,
    *,
    entity_id: int | None = None,
    description: str | None = None,
    metadata: dict | None = None,
    commit: bool = False,
) -> Activity:
    """Record one activity row.

    Raises:
        ValidationError: Unknown entity type or action.
    """
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(f"Unknown entity_type: {entity_type}")
    if action not in ACTIVITY_ACTIONS:
        raise ValidationError(f"Unknown action: {action}")

    activity = Activity(
        organization_id=organization_id,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        description=(description or "")[:500] or None,
        metadata_json=metadata or {},
    )
    db.session.add(activity)
    if commit:
        db.session.commit()
    return activity


def list_activities(
    organization_id: int,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    user_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Activity], int]:
    """Return (items, total) newest first."""
    q = Activity.query.filter_by(organization_id=organization_id)
    if entity_type:
        q = q.filter_by(entity_type=entity_type)
    if entity_id is not None:
        q = q.filter_by(entity_id=entity_id)
    if user_id:
        q = q.filter_by(user_id=user_id)
    total = q.count()
    items = (
        q.order_by(Activity.created_at.desc(), Activity.id.desc())
        .offset(offset).limit(limit).all()
    )
    return items, total


def recent_activities(organization_id: int, limit: int = 10) -> list[Activity]:
    items, _ = list_activities(organization_id, limit=limit)
    return items


# ──────────────────────────────────────────────────────────────────────────────
# Dashboard KPIs
# ──────────────────────────────────────────────────────────────────────────────

def _unread_semantic(count: int) -> str:
    if count > 3:
        return "error"
    return "warning" if count > 0 else "info"


def compute_dashboard_kpis(organization_id: int, user_id: int | None = None) -> list[KpiSnapshot]:
    """Count the dashboard metrics, persist them as snapshots and return them.

    Unread notifications are the given user's own when ``user_id`` is set,
    otherwise the organization-wide count.
    """
    active_apps = AppInstallation.query.filter_by(
        organization_id=organization_id, is_enabled=True,
    ).count()
    pending_approvals = Approval.query.filter_by(
        organization_id=organization_id, status="pending",
    ).count()
    unread_q = Notification.query.filter_by(organization_id=organization_id, is_read=False)
    if user_id is not None:
        unread_q = unread_q.filter_by(user_id=user_id)
    unread_notifications = unread_q.count()
    open_q = Task.query.filter(
        Task.organization_id == organization_id,
        Task.status != "done",
        Task.deleted_at.is_(None),
    )
    open_tasks = open_q.count()
    overdue_tasks = open_q.filter(Task.due_date < datetime.now(timezone.utc).date()).count()

    specs = [
        ("active_apps", "Active Apps", active_apps, "Installed apps", "/applications", "info"),
        ("pending_approvals", "Requests Pending", pending_approvals, "Awaiting review", "/approvals",
         "warning" if pending_approvals > 0 else "info"),
        ("unread_notifications", "Unread Alerts", unread_notifications, "Across all workspaces",
         "/notifications", _unread_semantic(unread_notifications)),
        ("open_tasks", "Open Tasks", open_tasks,
         f"{overdue_tasks} overdue" if overdue_tasks else "In progress", "/tasks",
         "warning" if overdue_tasks else "success"),
    ]

    now = datetime.now(timezone.utc)
    snapshots = []
    for key, label, value, sublabel, href, semantic in specs:
        snap = KpiSnapshot(
            organization_id=organization_id,
            kpi_key=key,
            label=label,
            sublabel=sublabel,
            href=href,
            value=value,
            semantic=semantic,
            captured_at=now,
        )
        db.session.add(snap)
        snapshots.append(snap)
    db.session.commit()
    logger.debug("KPIs computed org=%s values=%s", organization_id,
                 {s.kpi_key: s.value for s in snapshots})
    return snapshots


def latest_kpis(organization_id: int) -> list[KpiSnapshot]:
    """Most recent snapshot per KPI key."""
    latest = (
        db.session.query(KpiSnapshot.kpi_key, func.max(KpiSnapshot.id).label("max_id"))
        .filter(KpiSnapshot.organization_id == organization_id)
        .group_by(KpiSnapshot.kpi_key)
        .subquery()
    )
    return (
        KpiSnapshot.query.join(latest, KpiSnapshot.id == latest.c.max_id)
        .order_by(KpiSnapshot.id)
        .all()
    )


# ──────────────────────────────────────────────────────────────────────────────
# App usage
# ──────────────────────────────────────────────────────────────────────────────

def track_app_usage(organization_id: int, user_id: int, app_slug: str) -> AppUsage:
    """Increment the launch counter for (org, user, app)."""
    usage = AppUsage.query.filter_by(
        organization_id=organization_id, user_id=user_id, app_slug=app_slug,
    ).first()
    if usage is None:
        usage = AppUsage(organization_id=organization_id, user_id=user_id,
                         app_slug=app_slug, launch_count=0)
        db.session.add(usage)
    usage.launch_count = (usage.launch_count or 0) + 1
    usage.last_used_at = datetime.now(timezone.utc)
    db.session.commit()
    return usage


def recent_apps(organization_id: int, user_id: int, limit: int = 5) -> list[AppUsage]:
    return (
        AppUsage.query.filter_by(organization_id=organization_id, user_id=user_id)
        .order_by(AppUsage.last_used_at.desc())
        .limit(limit)
        .all()
    )
