"""
App Catalog Service: platform apps and per-organization installations.
"""

import logging

from vision.core.exceptions import ConflictError, NotFoundError, ValidationError
from vision.models import db
from vision.models.app_catalog import App, AppInstallation
from vision.services import billing_service
from vision.services.activity_service import log_activity

logger = logging.getLogger(__name__)

APP_SEED = [
    {"slug": "community-pulse", "name": "CommunityPulse", "category": "engagement", "icon": "users",
     "route": "/apps/community-pulse",
     "description": "Plan equitable community engagement in seven guided stages."},
    {"slug": "documents", "name": "Document Library", "category": "documents", "icon": "folder",
     "route": "/documents", "description": "Store, organize and search organization documents."},
    {"slug": "tasks", "name": "Tasks & Deadlines", "category": "operations", "icon": "check-square",
     "route": "/tasks", "description": "Track tasks, grant deadlines and approvals."},
    {"slug": "grant-tracker", "name": "Grant Tracker", "category": "fundraising", "icon": "dollar-sign",
     "route": "/apps/grant-tracker", "requires_subscription": True,
     "description": "Pipeline of grant opportunities, applications and reports."},
    {"slug": "impact-dashboard", "name": "Impact Dashboard", "category": "analytics", "icon": "bar-chart",
     "route": "/apps/impact-dashboard", "requires_subscription": True,
     "description": "Program outcome metrics for boards and funders."},
]


def get_app(slug: str) -> App:
    app = App.query.filter_by(slug=slug).first()
    if app is None:
        raise NotFoundError("App", slug)
    return app


def list_apps(org_id: int, category: str | None = None, installed_only: bool = False) -> list[dict]:
    """Active catalog entries, each with ``installed`` / ``is_enabled`` for this organization."""
    q = App.query.filter_by(is_active=True)
    if category:
        q = q.filter_by(category=category)
    installs = {i.app_id: i for i in AppInstallation.query.filter_by(organization_id=org_id).all()}
    result = []
    for app in q.order_by(App.name).all():
        inst = installs.get(app.id)
        if installed_only and inst is None:
            continue
        d = app.to_dict()
        d["installed"] = inst is not None
        d["is_enabled"] = bool(inst and inst.is_enabled)
        result.append(d)
    return result


def _installation(org_id: int, app: App) -> AppInstallation | None:
    return AppInstallation.query.filter_by(organization_id=org_id, app_id=app.id).first()


def install_app(org_id: int, user_id: int, slug: str) -> AppInstallation:
    """
    Raises:
        NotFoundError: Unknown app.
        ValidationError: App inactive, or it needs a paid plan.
        ConflictError: Already installed.
    """
    app = get_app(slug)
    if not app.is_active:
        raise ValidationError(f"{app.name} is not available", details={"app": "inactive"})
    if app.requires_subscription and billing_service.get_subscription(org_id).plan == "free":
        raise ValidationError(f"{app.name} requires a paid plan", details={"plan": "upgrade_required"})
    if _installation(org_id, app) is not None:
        raise ConflictError("AppInstallation", "app", slug)

    inst = AppInstallation(organization_id=org_id, app_id=app.id, is_enabled=True, installed_by=user_id)
    db.session.add(inst)
    log_activity(org_id, user_id, "app", "installed", entity_id=app.id, description=f"Installed {app.name}")
    db.session.commit()
    logger.info("App installed org=%s app=%s", org_id, slug)
    return inst


def uninstall_app(org_id: int, user_id: int, slug: str) -> None:
    app = get_app(slug)
    inst = _installation(org_id, app)
    if inst is None:
        raise NotFoundError("AppInstallation", slug, org_id)
    db.session.delete(inst)
    log_activity(org_id, user_id, "app", "uninstalled", entity_id=app.id, description=f"Uninstalled {app.name}")
    db.session.commit()
    logger.info("App uninstalled org=%s app=%s", org_id, slug)


def toggle_app(org_id: int, slug: str, enabled: bool | None = None) -> AppInstallation:
    """Flip (or set) ``is_enabled`` on an installed app."""
    app = get_app(slug)
    inst = _installation(org_id, app)
    if inst is None:
        raise NotFoundError("AppInstallation", slug, org_id)
    inst.is_enabled = (not inst.is_enabled) if enabled is None else bool(enabled)
    db.session.commit()
    return inst


def seed_apps() -> int:
    """Insert missing catalog apps. Idempotent; returns the number added."""
    added = 0
    for row in APP_SEED:
        if App.query.filter_by(slug=row["slug"]).first() is None:
            db.session.add(App(is_active=True, **row))
            added += 1
    db.session.commit()
    logger.info("Seeded %d apps", added)
    return added
