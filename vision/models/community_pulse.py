"""
CommunityPulse domain models: engagement-strategy wizard.

Models:
    - Engagement: one strategy record that accumulates fields over 7 stages
    - EngagementMethod: catalog of engagement methods (focus group, survey, ...)
    - EngagementTemplate: reusable pre-filled engagement (public or per organization)
    - EngagementMaterial: generated material per engagement and type
    - EngagementAuditLog: append-only history of wizard actions
"""

from datetime import datetime, timezone

from vision.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STAGE_NAMES = (
    "Learning Goal",
    "Community Context",
    "Method Selection",
    "Strategy Design",
    "Materials",
    "Timeline",
    "Export",
)
STAGE_DESCRIPTIONS = (
    "Define what you want to learn",
    "Understand your community",
    "Select engagement methods",
    "Design your strategy",
    "Generate materials",
    "Build your timeline",
    "Export and launch",
)
FIRST_STAGE = 1
LAST_STAGE = len(STAGE_NAMES)

ENGAGEMENT_STATUSES = ("draft", "in_progress", "completed", "exported", "archived")
GOAL_TYPES = ("explore", "test", "decide")
PARTICIPATION_MODELS = ("informational", "consultative", "collaborative", "community_controlled")
MATERIAL_TYPES = (
    "facilitator_guide",
    "consent_form",
    "question_protocol",
    "participant_materials",
    "recruitment_flyer",
    "note_template",
    "follow_up_template",
    "timeline",
    "budget",
)
METHOD_CATEGORIES = ("discussion", "survey", "workshop", "creative", "observation", "digital")

AUDIT_ACTIONS = (
    "engagement.created",
    "engagement.updated",
    "engagement.stage_completed",
    "engagement.completed",
    "engagement.archived",
    "engagement.exported",
    "material.saved",
    "material.deleted",
    "template.created",
    "template.used",
    "method.selected",
)

# Columns a client may write through a partial update, grouped by stage.
STAGE_FIELDS = {
    1: ("title", "learning_goal", "goal_type"),
    2: ("target_population", "estimated_participants", "demographics",
        "relationship_history", "accessibility_needs", "cultural_considerations"),
    3: ("primary_method", "secondary_methods", "method_rationale"),
    4: ("participation_model", "recruitment_plan", "facilitation_plan",
        "questions", "equity_checklist", "risk_assessment"),
    5: ("generated_materials",),
    6: ("timeline", "budget_estimate", "start_date", "end_date"),
    7: ("exported_to",),
}


def _iso(value):
    return value.isoformat() if value else None


class Engagement(db.Model):
    """CommunityPulse engagement strategy."""

    __tablename__ = "engagements"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    title = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft",
                       comment="draft | in_progress | completed | exported | archived")
    current_stage = db.Column(db.Integer, nullable=False, default=FIRST_STAGE)

    # Stage 1: Learning Goal
    learning_goal = db.Column(db.Text)
    goal_type = db.Column(db.String(20))

    # Stage 2: Community Context
    target_population = db.Column(db.Text)
    estimated_participants = db.Column(db.Integer)
    demographics = db.Column(db.JSON)
    relationship_history = db.Column(db.Text)
    accessibility_needs = db.Column(db.JSON)
    cultural_considerations = db.Column(db.Text)

    # Stage 3: Method Selection
    primary_method = db.Column(db.String(100))
    secondary_methods = db.Column(db.JSON, default=list)
    method_rationale = db.Column(db.Text)

    # Stage 4: Strategy Design
    participation_model = db.Column(db.String(30))
    recruitment_plan = db.Column(db.Text)
    facilitation_plan = db.Column(db.JSON)
    questions = db.Column(db.JSON, default=list)
    equity_checklist = db.Column(db.JSON)
    risk_assessment = db.Column(db.JSON)

    # Stage 5: Materials
    generated_materials = db.Column(db.JSON, default=list)

    # Stage 6: Timeline
    timeline = db.Column(db.JSON)
    budget_estimate = db.Column(db.Numeric(12, 2))
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)

    # Stage 7: Export
    exported_to = db.Column(db.JSON, default=list)
    exported_at = db.Column(db.DateTime(timezone=True))

    completed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("current_stage BETWEEN 1 AND 7", name="ck_engagement_stage_bounds"),
        db.CheckConstraint("budget_estimate IS NULL OR budget_estimate >= 0",
                           name="ck_engagement_budget_non_negative"),
        db.Index("ix_engagements_org_updated", "organization_id", "updated_at"),
    )

    materials = db.relationship(
        "EngagementMaterial", back_populates="engagement", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    audit_entries = db.relationship(
        "EngagementAuditLog", back_populates="engagement", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def stage_name(self):
        return STAGE_NAMES[self.current_stage - 1]

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "created_by": self.created_by,
            "title": self.title,
            "status": self.status,
            "current_stage": self.current_stage,
            "stage_name": self.stage_name,
            "learning_goal": self.learning_goal,
            "goal_type": self.goal_type,
            "target_population": self.target_population,
            "estimated_participants": self.estimated_participants,
            "demographics": self.demographics,
            "relationship_history": self.relationship_history,
            "accessibility_needs": self.accessibility_needs,
            "cultural_considerations": self.cultural_considerations,
            "primary_method": self.primary_method,
            "secondary_methods": self.secondary_methods or [],
            "method_rationale": self.method_rationale,
            "participation_model": self.participation_model,
            "recruitment_plan": self.recruitment_plan,
            "facilitation_plan": self.facilitation_plan,
            "questions": self.questions or [],
            "equity_checklist": self.equity_checklist,
            "risk_assessment": self.risk_assessment,
            "generated_materials": self.generated_materials or [],
            "timeline": self.timeline,
            "budget_estimate": float(self.budget_estimate) if self.budget_estimate is not None else None,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "exported_to": self.exported_to or [],
            "exported_at": _iso(self.exported_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Engagement {self.id}: {self.title[:40]} stage={self.current_stage}>"


class EngagementMethod(db.Model):
    """Catalog entry describing one engagement method."""

    __tablename__ = "engagement_methods"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(30), nullable=False, comment="discussion | survey | workshop | ...")
    description = db.Column(db.Text)
    best_for = db.Column(db.Text)
    group_size_min = db.Column(db.Integer)
    group_size_max = db.Column(db.Integer)
    duration_min = db.Column(db.Integer, comment="minutes")
    duration_max = db.Column(db.Integer, comment="minutes")
    cost_estimate_low = db.Column(db.Integer, comment="USD")
    cost_estimate_high = db.Column(db.Integer, comment="USD")
    equity_considerations = db.Column(db.JSON, default=list)
    requirements = db.Column(db.JSON, default=dict)
    fit_scores = db.Column(db.JSON, default=dict, comment='{"explore": 0-100, "test": ..., "decide": ...}')
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "best_for": self.best_for,
            "group_size_min": self.group_size_min,
            "group_size_max": self.group_size_max,
            "duration_min": self.duration_min,
            "duration_max": self.duration_max,
            "cost_estimate_low": self.cost_estimate_low,
            "cost_estimate_high": self.cost_estimate_high,
            "equity_considerations": self.equity_considerations or [],
            "requirements": self.requirements or {},
            "fit_scores": self.fit_scores or {},
        }


class EngagementTemplate(db.Model):
    """Reusable engagement blueprint. ``organization_id`` NULL = system template."""

    __tablename__ = "engagement_templates"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000))
    method_slug = db.Column(db.String(100))
    template_data = db.Column(db.JSON, default=dict)
    is_public = db.Column(db.Boolean, default=False)
    use_count = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "created_by": self.created_by,
            "name": self.name,
            "description": self.description,
            "method_slug": self.method_slug,
            "template_data": self.template_data or {},
            "is_public": self.is_public,
            "use_count": self.use_count or 0,
            "created_at": _iso(self.created_at),
        }


class EngagementMaterial(db.Model):
    """One generated material (guide, consent form, ...) per engagement and type."""

    __tablename__ = "engagement_materials"

    id = db.Column(db.Integer, primary_key=True)
    engagement_id = db.Column(
        db.Integer, db.ForeignKey("engagements.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    material_type = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text)
    file_url = db.Column(db.String(1000))
    version = db.Column(db.Integer, default=1)
    is_customized = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("engagement_id", "material_type", name="uq_engagement_material_type"),
    )

    engagement = db.relationship("Engagement", back_populates="materials")

    def to_dict(self):
        return {
            "id": self.id,
            "engagement_id": self.engagement_id,
            "material_type": self.material_type,
            "title": self.title,
            "content": self.content,
            "file_url": self.file_url,
            "version": self.version,
            "is_customized": self.is_customized,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class EngagementAuditLog(db.Model):
    """Append-only audit trail for an engagement."""

    __tablename__ = "engagement_audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    engagement_id = db.Column(
        db.Integer, db.ForeignKey("engagements.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    action = db.Column(db.String(50), nullable=False)
    details = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    engagement = db.relationship("Engagement", back_populates="audit_entries")

    def to_dict(self):
        return {
            "id": self.id,
            "engagement_id": self.engagement_id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "action": self.action,
            "details": self.details or {},
            "created_at": _iso(self.created_at),
        }
