"""
CommunityPulse Service: the 7-stage engagement-strategy wizard.

Stage progression is a monotonic counter: ``current_stage`` only changes
through ``continue_engagement``, by exactly one, after the current stage's
required fields are present. Partial updates never touch the stage or the
status.

Concurrent editors: callers may pass ``expected_updated_at`` (the
``updated_at`` they loaded); a mismatch raises StaleWriteError (409).
Without it the last write wins.
"""

import logging
from decimal import Decimal

from sqlalchemy import and_, or_

from vision.core.exceptions import NotFoundError, StaleWriteError, ValidationError
from vision.models import db
from vision.models.community_pulse import (
    AUDIT_ACTIONS,
    ENGAGEMENT_STATUSES,
    LAST_STAGE,
    MATERIAL_TYPES,
    STAGE_NAMES,
    Engagement,
    EngagementAuditLog,
    EngagementMaterial,
    EngagementMethod,
    EngagementTemplate,
)
from vision.schemas.community_pulse import (
    EngagementCreate,
    EngagementUpdate,
    MaterialSave,
    TemplateCreate,
    validate_payload,
)
from vision.services.activity_service import log_activity
from vision.utils.helpers import as_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)

# Fields that must be filled before leaving a stage.
STAGE_REQUIREMENTS = {
    1: ("learning_goal", "goal_type"),
    3: ("primary_method",),
    4: ("participation_model",),
}

_CENT = Decimal("0.01")


# ═══════════════════════════════════════════════════════════════
# Internal helpers
# ═══════════════════════════════════════════════════════════════
def _audit(engagement: Engagement, user_id: int | None, action: str, details: dict | None = None):
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action {action}")
    db.session.add(EngagementAuditLog(
        engagement_id=engagement.id,
        organization_id=engagement.organization_id,
        user_id=user_id,
        action=action,
        details=details or {},
    ))


def _check_fresh(engagement: Engagement, expected_updated_at) -> None:
    if expected_updated_at is None:
        return
    expected = parse_datetime(expected_updated_at)
    if expected is None:
        raise ValidationError("expected_updated_at must be an ISO timestamp",
                              details={"expected_updated_at": "invalid"})
    if as_utc(engagement.updated_at) != expected:
        raise StaleWriteError("Engagement", engagement.id)


def _ensure_editable(engagement: Engagement) -> None:
    if engagement.status == "archived":
        raise ValidationError("Archived engagements cannot be modified", details={"status": "archived"})


def _apply(engagement: Engagement, fields: dict) -> list[str]:
    """Write validated fields; returns the names that actually changed."""
    changed = []
    for name, value in fields.items():
        if name == "budget_estimate" and value is not None:
            value = Decimal(value).quantize(_CENT)
        if getattr(engagement, name) != value:
            setattr(engagement, name, value)
            changed.append(name)
    if engagement.start_date and engagement.end_date and engagement.end_date < engagement.start_date:
        raise ValidationError("end_date must not be before start_date", details={"end_date": "before_start"})
    return changed


def missing_stage_fields(engagement: Engagement, stage: int | None = None) -> list[str]:
    """Required fields of ``stage`` (default: current) that are still empty."""
    stage = stage or engagement.current_stage
    return [f for f in STAGE_REQUIREMENTS.get(stage, ()) if getattr(engagement, f) in (None, "", [])]


# ═══════════════════════════════════════════════════════════════
# Engagements
# ═══════════════════════════════════════════════════════════════
def list_engagements(org_id: int, status: str | None = None) -> list[Engagement]:
    """Newest ``updated_at`` first. Archived rows only appear when asked for by status."""
    q = Engagement.query.filter_by(organization_id=org_id)
    if status:
        if status not in ENGAGEMENT_STATUSES:
            raise ValidationError(f"status must be one of {list(ENGAGEMENT_STATUSES)}",
                                  details={"status": "invalid"})
        q = q.filter_by(status=status)
    else:
        q = q.filter(Engagement.status != "archived")
    return q.order_by(Engagement.updated_at.desc(), Engagement.id.desc()).all()


def get_engagement(org_id: int, engagement_id: int) -> Engagement:
    """Raises NotFoundError for missing or other-organization engagements."""
    engagement = db.session.get(Engagement, engagement_id)
    if not engagement or engagement.organization_id != org_id:
        raise NotFoundError("Engagement", engagement_id, org_id)
    return engagement


def create_engagement(org_id: int, user_id: int, data: dict) -> Engagement:
    """New draft at stage 1. Raises ValidationError on a bad payload."""
    fields = validate_payload(EngagementCreate, data)
    engagement = Engagement(
        organization_id=org_id,
        created_by=user_id,
        title=fields["title"].strip(),
        learning_goal=fields.get("learning_goal"),
        goal_type=fields.get("goal_type"),
        status="draft",
        current_stage=1,
    )
    db.session.add(engagement)
    db.session.flush()
    _audit(engagement, user_id, "engagement.created", {"title": engagement.title})
    log_activity(org_id, user_id, "engagement", "created", entity_id=engagement.id,
                 description=f"Created engagement {engagement.title}")
    db.session.commit()
    logger.info("Engagement created id=%s org=%s", engagement.id, org_id)
    return engagement


def update_engagement(org_id: int, engagement_id: int, user_id: int, data: dict,
                      expected_updated_at=None) -> Engagement:
    """
    Partial update: only the supplied keys are validated and written.

    Raises:
        NotFoundError: Engagement missing.
        ValidationError: Invalid field, archived engagement, or an attempt
            to write ``current_stage`` / ``status``.
        StaleWriteError: ``expected_updated_at`` does not match.
    """
    engagement = get_engagement(org_id, engagement_id)
    _ensure_editable(engagement)
    _check_fresh(engagement, expected_updated_at)
    fields = validate_payload(EngagementUpdate, data)

    old_method = engagement.primary_method
    changed = _apply(engagement, fields)
    if changed:
        _audit(engagement, user_id, "engagement.updated",
               {"fields": sorted(changed), "stage": engagement.current_stage})
        if "primary_method" in changed and engagement.primary_method:
            _audit(engagement, user_id, "method.selected",
                   {"method": engagement.primary_method, "previous": old_method})
        engagement.updated_at = utcnow()
    db.session.commit()
    logger.info("Engagement updated id=%s fields=%s", engagement.id, sorted(changed))
    return engagement


def continue_engagement(org_id: int, engagement_id: int, user_id: int, data: dict | None = None,
                        expected_updated_at=None) -> Engagement:
    """
    "Save & Continue": apply the optional partial update, check the current
    stage's required fields, then advance exactly one stage.

    Raises:
        ValidationError: Already at the last stage, required fields missing,
            or invalid payload.
        StaleWriteError: ``expected_updated_at`` does not match.
    """
    engagement = get_engagement(org_id, engagement_id)
    _ensure_editable(engagement)
    _check_fresh(engagement, expected_updated_at)
    if engagement.current_stage >= LAST_STAGE:
        raise ValidationError("Engagement is already at the final stage",
                              details={"current_stage": engagement.current_stage})

    changed = _apply(engagement, validate_payload(EngagementUpdate, data)) if data else []
    missing = missing_stage_fields(engagement)
    if missing:
        db.session.rollback()
        raise ValidationError(
            f"Complete {STAGE_NAMES[engagement.current_stage - 1]} before continuing",
            details={f: "required" for f in missing},
        )

    completed_stage = engagement.current_stage
    engagement.current_stage = completed_stage + 1
    if engagement.status == "draft":
        engagement.status = "in_progress"
    engagement.updated_at = utcnow()
    _audit(engagement, user_id, "engagement.stage_completed", {
        "stage": completed_stage,
        "stage_name": STAGE_NAMES[completed_stage - 1],
        "fields": sorted(changed),
    })
    db.session.commit()
    logger.info("Engagement id=%s advanced %d→%d", engagement.id, completed_stage, engagement.current_stage)
    return engagement


def complete_engagement(org_id: int, engagement_id: int, user_id: int) -> Engagement:
    """Mark the strategy complete. Only allowed on the final stage."""
    engagement = get_engagement(org_id, engagement_id)
    _ensure_editable(engagement)
    if engagement.current_stage != LAST_STAGE:
        raise ValidationError(f"Engagement must reach stage {LAST_STAGE} before completion",
                              details={"current_stage": engagement.current_stage})
    engagement.status = "completed"
    engagement.completed_at = utcnow()
    _audit(engagement, user_id, "engagement.completed")
    log_activity(org_id, user_id, "engagement", "completed", entity_id=engagement.id,
                 description=f"Completed engagement {engagement.title}")
    db.session.commit()
    logger.info("Engagement completed id=%s", engagement.id)
    return engagement


def archive_engagement(org_id: int, engagement_id: int, user_id: int) -> Engagement:
    engagement = get_engagement(org_id, engagement_id)
    if engagement.status != "archived":
        previous = engagement.status
        engagement.status = "archived"
        _audit(engagement, user_id, "engagement.archived", {"previous_status": previous})
        db.session.commit()
        logger.info("Engagement archived id=%s", engagement.id)
    return engagement


def delete_engagement(org_id: int, engagement_id: int, user_id: int) -> None:
    """Hard delete; materials and audit entries cascade."""
    engagement = get_engagement(org_id, engagement_id)
    log_activity(org_id, user_id, "engagement", "deleted", entity_id=engagement.id,
                 description=f"Deleted engagement {engagement.title}")
    db.session.delete(engagement)
    db.session.commit()
    logger.info("Engagement deleted id=%s org=%s", engagement_id, org_id)


# ═══════════════════════════════════════════════════════════════
# Method catalog
# ═══════════════════════════════════════════════════════════════
def list_methods(active_only: bool = True, category: str | None = None) -> list[EngagementMethod]:
    q = EngagementMethod.query
    if active_only:
        q = q.filter_by(is_active=True)
    if category:
        q = q.filter_by(category=category)
    return q.order_by(EngagementMethod.name).all()


def get_method_by_slug(slug: str) -> EngagementMethod:
    method = EngagementMethod.query.filter_by(slug=slug).first()
    if method is None:
        raise NotFoundError("Method", slug)
    return method


def recommend_methods(org_id: int, engagement_id: int, limit: int = 3) -> list[EngagementMethod]:
    """Active methods ranked by their fit score for the engagement's goal type."""
    engagement = get_engagement(org_id, engagement_id)
    methods = list_methods(active_only=True)
    if engagement.goal_type:
        methods.sort(key=lambda m: (m.fit_scores or {}).get(engagement.goal_type, 0), reverse=True)
    return methods[:limit]


# ═══════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════
def _visible_to(org_id: int):
    """System templates (no organization) plus the organization's own."""
    system = and_(EngagementTemplate.is_public.is_(True), EngagementTemplate.organization_id.is_(None))
    return or_(system, EngagementTemplate.organization_id == org_id)


def list_templates(org_id: int) -> list[EngagementTemplate]:
    """System templates plus the organization's own, most used first."""
    return (
        EngagementTemplate.query
        .filter(_visible_to(org_id))
        .order_by(EngagementTemplate.use_count.desc(), EngagementTemplate.name)
        .all()
    )


def _get_template(org_id: int, template_id: int) -> EngagementTemplate:
    template = db.session.get(EngagementTemplate, template_id)
    is_system = template is not None and template.is_public and template.organization_id is None
    if not template or not (is_system or template.organization_id == org_id):
        raise NotFoundError("Template", template_id, org_id)
    return template


def create_template(org_id: int, user_id: int, data: dict, source_engagement_id: int | None = None) -> EngagementTemplate:
    """
    Create a template private to the organization. With ``source_engagement_id`` the
    engagement's stage fields become the template data.
    """
    fields = validate_payload(TemplateCreate, data)
    template_data = fields["template_data"]
    if source_engagement_id is not None:
        source = get_engagement(org_id, source_engagement_id)
        template_data = {
            k: v for k, v in source.to_dict().items()
            if k in EngagementUpdate.model_fields and k != "title" and v not in (None, [], {})
        }
    validate_payload(EngagementUpdate, template_data)

    template = EngagementTemplate(
        organization_id=org_id,
        created_by=user_id,
        name=fields["name"].strip(),
        description=fields.get("description"),
        method_slug=fields.get("method_slug") or template_data.get("primary_method"),
        template_data=template_data,
        is_public=False,
        use_count=0,
    )
    db.session.add(template)
    db.session.commit()
    logger.info("Engagement template created id=%s org=%s", template.id, org_id)
    return template


def create_from_template(org_id: int, user_id: int, template_id: int, title: str | None = None) -> Engagement:
    """New draft engagement pre-filled from a template; bumps the template's use count."""
    template = _get_template(org_id, template_id)
    fields = validate_payload(EngagementUpdate, template.template_data or {})
    fields.pop("title", None)
    if template.method_slug and not fields.get("primary_method"):
        fields["primary_method"] = template.method_slug

    create_fields = validate_payload(EngagementCreate, {"title": (title or template.name)[:200]})
    engagement = Engagement(
        organization_id=org_id,
        created_by=user_id,
        title=create_fields["title"],
        status="draft",
        current_stage=1,
    )
    _apply(engagement, fields)
    db.session.add(engagement)
    db.session.flush()

    template.use_count = (template.use_count or 0) + 1
    _audit(engagement, user_id, "engagement.created", {"title": engagement.title})
    _audit(engagement, user_id, "template.used", {"template_id": template.id, "template_name": template.name})
    log_activity(org_id, user_id, "engagement", "created", entity_id=engagement.id,
                 description=f"Created engagement {engagement.title} from template {template.name}")
    db.session.commit()
    logger.info("Engagement id=%s created from template id=%s", engagement.id, template.id)
    return engagement


# ═══════════════════════════════════════════════════════════════
# Materials
# ═══════════════════════════════════════════════════════════════
def list_materials(org_id: int, engagement_id: int) -> list[EngagementMaterial]:
    engagement = get_engagement(org_id, engagement_id)
    return engagement.materials.order_by(EngagementMaterial.material_type).all()


def save_material(org_id: int, engagement_id: int, user_id: int, material_type: str, data: dict) -> EngagementMaterial:
    """Upsert by (engagement, type); an update bumps ``version``."""
    if material_type not in MATERIAL_TYPES:
        raise ValidationError(f"material_type must be one of {list(MATERIAL_TYPES)}",
                              details={"material_type": "invalid"})
    engagement = get_engagement(org_id, engagement_id)
    _ensure_editable(engagement)
    fields = validate_payload(MaterialSave, data)

    material = engagement.materials.filter_by(material_type=material_type).first()
    if material is None:
        material = EngagementMaterial(engagement_id=engagement.id, material_type=material_type, version=1)
        db.session.add(material)
    else:
        material.version = (material.version or 1) + 1
    material.title = fields["title"]
    material.content = fields.get("content")
    material.file_url = fields.get("file_url")
    material.is_customized = fields["is_customized"]

    _audit(engagement, user_id, "material.saved",
           {"material_type": material_type, "version": material.version})
    db.session.commit()
    logger.info("Material saved engagement=%s type=%s v=%s", engagement.id, material_type, material.version)
    return material


def delete_material(org_id: int, engagement_id: int, user_id: int, material_type: str) -> None:
    engagement = get_engagement(org_id, engagement_id)
    material = engagement.materials.filter_by(material_type=material_type).first()
    if material is None:
        raise NotFoundError("Material", material_type)
    db.session.delete(material)
    _audit(engagement, user_id, "material.deleted", {"material_type": material_type})
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Audit log
# ═══════════════════════════════════════════════════════════════
def get_audit_log(org_id: int, engagement_id: int) -> list[EngagementAuditLog]:
    engagement = get_engagement(org_id, engagement_id)
    return engagement.audit_entries.order_by(
        EngagementAuditLog.created_at.desc(), EngagementAuditLog.id.desc(),
    ).all()


def list_org_audit_log(org_id: int, action: str | None = None, limit: int = 50,
                       offset: int = 0) -> tuple[list[EngagementAuditLog], int]:
    q = EngagementAuditLog.query.filter_by(organization_id=org_id)
    if action:
        q = q.filter_by(action=action)
    total = q.count()
    items = (
        q.order_by(EngagementAuditLog.created_at.desc(), EngagementAuditLog.id.desc())
        .offset(offset).limit(limit).all()
    )
    return items, total


# ═══════════════════════════════════════════════════════════════
# Seed data (flask seed-methods)
# ═══════════════════════════════════════════════════════════════
METHOD_SEED = [
    {
        "slug": "focus_groups", "name": "Focus Groups", "category": "discussion",
        "description": "Facilitated small-group conversations exploring shared experiences.",
        "best_for": "Understanding perceptions and experiences in depth",
        "group_size_min": 6, "group_size_max": 12, "duration_min": 60, "duration_max": 120,
        "cost_estimate_low": 500, "cost_estimate_high": 2500,
        "equity_considerations": ["Offer childcare and transportation", "Provide interpretation"],
        "fit_scores": {"explore": 90, "test": 70, "decide": 50},
    },
    {
        "slug": "listening_sessions", "name": "Listening Sessions", "category": "discussion",
        "description": "Open community gatherings where residents speak and staff listen.",
        "best_for": "Surfacing community priorities and building trust",
        "group_size_min": 10, "group_size_max": 60, "duration_min": 90, "duration_max": 150,
        "cost_estimate_low": 300, "cost_estimate_high": 2000,
        "equity_considerations": ["Hold sessions in trusted community spaces"],
        "fit_scores": {"explore": 85, "test": 40, "decide": 45},
    },
    {
        "slug": "community_forums", "name": "Community Forums", "category": "workshop",
        "description": "Structured public meetings with presentations and small-group breakouts.",
        "best_for": "Weighing options and building shared decisions",
        "group_size_min": 20, "group_size_max": 150, "duration_min": 90, "duration_max": 180,
        "cost_estimate_low": 800, "cost_estimate_high": 5000,
        "equity_considerations": ["Manage dominant voices", "Offer anonymous input options"],
        "fit_scores": {"explore": 60, "test": 65, "decide": 85},
    },
    {
        "slug": "interviews", "name": "One-on-One Interviews", "category": "discussion",
        "description": "Individual conversations following a semi-structured protocol.",
        "best_for": "Sensitive topics and hard-to-reach voices",
        "group_size_min": 1, "group_size_max": 1, "duration_min": 30, "duration_max": 60,
        "cost_estimate_low": 200, "cost_estimate_high": 3000,
        "equity_considerations": ["Compensate participants for their time"],
        "fit_scores": {"explore": 85, "test": 75, "decide": 40},
    },
    {
        "slug": "surveys", "name": "Community Surveys", "category": "survey",
        "description": "Short questionnaires distributed on paper and online.",
        "best_for": "Measuring how widely views are held",
        "group_size_min": 30, "group_size_max": 5000, "duration_min": 10, "duration_max": 20,
        "cost_estimate_low": 100, "cost_estimate_high": 1500,
        "equity_considerations": ["Translate the survey", "Offer paper and phone options"],
        "fit_scores": {"explore": 50, "test": 85, "decide": 70},
    },
    {
        "slug": "photovoice", "name": "Photovoice", "category": "creative",
        "description": "Participants document their community through photography and discuss the images.",
        "best_for": "Youth engagement and lived-experience storytelling",
        "group_size_min": 5, "group_size_max": 15, "duration_min": 120, "duration_max": 240,
        "cost_estimate_low": 1000, "cost_estimate_high": 4000,
        "equity_considerations": ["Provide cameras", "Agree on consent for people pictured"],
        "fit_scores": {"explore": 95, "test": 40, "decide": 30},
    },
    {
        "slug": "world_cafe", "name": "World Café", "category": "workshop",
        "description": "Rotating small-table conversations that build on each other.",
        "best_for": "Generating ideas across a large, diverse group",
        "group_size_min": 12, "group_size_max": 100, "duration_min": 90, "duration_max": 180,
        "cost_estimate_low": 500, "cost_estimate_high": 3000,
        "equity_considerations": ["Train table hosts to balance participation"],
        "fit_scores": {"explore": 80, "test": 55, "decide": 60},
    },
    {
        "slug": "online_discussion", "name": "Online Discussion Board", "category": "digital",
        "description": "Asynchronous moderated discussion over several weeks.",
        "best_for": "Participants with limited time for in-person meetings",
        "group_size_min": 10, "group_size_max": 500, "duration_min": 15, "duration_max": 30,
        "cost_estimate_low": 0, "cost_estimate_high": 1000,
        "equity_considerations": ["Check digital access before relying on this method"],
        "fit_scores": {"explore": 65, "test": 60, "decide": 55},
    },
]

TEMPLATE_SEED = [
    {
        "name": "Youth Voice in Program Design",
        "description": "Engage young people to co-design programs that serve them. "
                       "Uses focus groups with youth-friendly facilitation.",
        "method_slug": "focus_groups",
        "template_data": {"goal_type": "explore", "participation_model": "collaborative"},
    },
    {
        "name": "Community Needs Assessment",
        "description": "Understand community needs using surveys and listening sessions.",
        "method_slug": "listening_sessions",
        "template_data": {"goal_type": "explore", "secondary_methods": ["surveys"],
                          "participation_model": "consultative"},
    },
    {
        "name": "Community Advisory Board Launch",
        "description": "Recruit and onboard community members to serve on an advisory board.",
        "method_slug": "community_forums",
        "template_data": {"goal_type": "decide", "participation_model": "community_controlled"},
    },
    {
        "name": "Service Improvement Feedback",
        "description": "Gather feedback from service recipients to improve program delivery.",
        "method_slug": "interviews",
        "template_data": {"goal_type": "test", "participation_model": "informational"},
    },
]


def seed_methods() -> tuple[int, int]:
    """Insert missing catalog methods and public templates. Idempotent.

    Returns:
        (methods_added, templates_added)
    """
    methods_added = 0
    for row in METHOD_SEED:
        if EngagementMethod.query.filter_by(slug=row["slug"]).first() is None:
            db.session.add(EngagementMethod(is_active=True, **row))
            methods_added += 1

    templates_added = 0
    for row in TEMPLATE_SEED:
        exists = EngagementTemplate.query.filter(
            EngagementTemplate.organization_id.is_(None), EngagementTemplate.name == row["name"],
        ).first()
        if exists is None:
            db.session.add(EngagementTemplate(organization_id=None, is_public=True, use_count=0, **row))
            templates_added += 1

    db.session.commit()
    logger.info("Seeded %d methods, %d templates", methods_added, templates_added)
    return methods_added, templates_added
