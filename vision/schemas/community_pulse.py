"""
CommunityPulse request schemas (pydantic v2).

Payloads may use snake_case or camelCase keys. Nested JSON fields are
stored as the snake_case ``model_dump`` of their schema.

``validate_payload`` converts pydantic errors into the domain
``ValidationError`` with a ``{"field.path": "message"}`` details map.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from vision.core.exceptions import ValidationError

GoalType = Literal["explore", "test", "decide"]
ParticipationModel = Literal["informational", "consultative", "collaborative", "community_controlled"]
MaterialType = Literal[
    "facilitator_guide",
    "consent_form",
    "question_protocol",
    "participant_materials",
    "recruitment_flyer",
    "note_template",
    "follow_up_template",
    "timeline",
    "budget",
]

MAX_BUDGET = Decimal("10000000")


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid",
                              str_strip_whitespace=True)


class _Nested(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ── Nested JSON shapes ────────────────────────────────────────────────────

class Demographics(_Nested):
    languages: list[str] | None = None
    age_ranges: list[str] | None = None
    geographic_distribution: str | None = None
    digital_access: str | None = None


class AccessibilityNeeds(_Nested):
    transportation: bool | None = None
    childcare: bool | None = None
    interpretation: list[str] | None = None
    physical_access: bool | None = None
    scheduling: str | None = None


class SafetyChecks(_Nested):
    physical_safety: bool | None = None
    emotional_safety: bool | None = None
    distress_protocol: bool | None = None


class TrustChecks(_Nested):
    purpose_explained: bool | None = None
    use_of_input_communicated: bool | None = None
    action_promises: bool | None = None


class AccessibilityChecks(_Nested):
    language_access: bool | None = None
    physical_access: bool | None = None
    scheduling_options: bool | None = None
    compensation: bool | None = None


class PowerDynamicsChecks(_Nested):
    co_facilitators: bool | None = None
    dominance_management: bool | None = None
    anonymous_options: bool | None = None


class CommunityBenefitChecks(_Nested):
    direct_benefit: bool | None = None
    findings_shared: bool | None = None
    informed_consent: bool | None = None


class EquityChecklist(_Nested):
    safety: SafetyChecks | None = None
    trustworthiness: TrustChecks | None = None
    accessibility: AccessibilityChecks | None = None
    power_dynamics: PowerDynamicsChecks | None = None
    community_benefit: CommunityBenefitChecks | None = None


class Question(_Nested):
    id: str
    type: Literal["opening", "core", "closing"]
    question: str = Field(min_length=1)
    purpose: str | None = None
    probes: list[str] | None = None
    estimated_time: int | None = Field(default=None, ge=0)
    equity_note: str | None = None


class GeneratedMaterialRef(_Nested):
    id: str
    type: MaterialType
    title: str
    url: str | None = None
    generated_at: str


# ── Engagement payloads ───────────────────────────────────────────────────

class EngagementCreate(_Schema):
    title: str = Field(min_length=1, max_length=200)
    learning_goal: str | None = Field(default=None, max_length=2000)
    goal_type: GoalType | None = None


class EngagementUpdate(_Schema):
    """Fully partial update; ``current_stage`` and ``status`` are not writable here."""

    title: str = Field(default=None, min_length=1, max_length=200)
    # Stage 1
    learning_goal: str | None = Field(default=None, max_length=2000)
    goal_type: GoalType | None = None
    # Stage 2
    target_population: str | None = Field(default=None, max_length=1000)
    estimated_participants: int | None = Field(default=None, ge=1, le=100_000)
    demographics: Demographics | None = None
    relationship_history: str | None = Field(default=None, max_length=2000)
    accessibility_needs: AccessibilityNeeds | None = None
    cultural_considerations: str | None = Field(default=None, max_length=2000)
    # Stage 3
    primary_method: str | None = Field(default=None, max_length=100)
    secondary_methods: list[str] | None = None
    method_rationale: str | None = Field(default=None, max_length=2000)
    # Stage 4
    participation_model: ParticipationModel | None = None
    recruitment_plan: str | None = Field(default=None, max_length=5000)
    facilitation_plan: dict[str, Any] | None = None
    questions: list[Question] | None = None
    equity_checklist: EquityChecklist | None = None
    risk_assessment: dict[str, Any] | None = None
    # Stage 5
    generated_materials: list[GeneratedMaterialRef] | None = None
    # Stage 6
    timeline: dict[str, Any] | None = None
    budget_estimate: Decimal | None = Field(default=None, ge=0, le=MAX_BUDGET)
    start_date: date | None = None
    end_date: date | None = None
    # Stage 7
    exported_to: list[str] | None = None

    @model_validator(mode="after")
    def _dates_in_order(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TemplateCreate(_Schema):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    method_slug: str | None = Field(default=None, max_length=100)
    template_data: dict[str, Any] = Field(default_factory=dict)


class MaterialSave(_Schema):
    title: str = Field(min_length=1, max_length=200)
    content: str | None = Field(default=None, max_length=200_000)
    file_url: str | None = Field(default=None, max_length=1000)
    is_customized: bool = False


def validate_payload(schema: type[BaseModel], data: dict | None) -> dict:
    """
    Validate ``data`` against ``schema`` and return only the supplied fields
    (snake_case, nested models as plain dicts).

    Raises:
        ValidationError: With per-field details.
    """
    if data is not None and not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        model = schema.model_validate(data or {})
    except PydanticValidationError as e:
        names = {f.alias or n: n for n, f in schema.model_fields.items()}
        details = {}
        for err in e.errors():
            parts = [str(p) for p in err["loc"]]
            if parts:
                parts[0] = names.get(parts[0], parts[0])
            loc = ".".join(parts) or "__root__"
            details[loc] = err["msg"]
        first = next(iter(details.items()))
        raise ValidationError(f"Invalid {first[0]}: {first[1]}", details=details) from e

    result = {}
    for name in model.model_fields_set:
        value = getattr(model, name)
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json", exclude_none=True)
        elif isinstance(value, list) and value and isinstance(value[0], BaseModel):
            value = [v.model_dump(mode="json", exclude_none=True) for v in value]
        result[name] = value
    for name, field in schema.model_fields.items():
        if name not in result and field.default_factory is not None:
            result[name] = field.default_factory()
        elif name not in result and field.default is not None and not field.is_required():
            result[name] = field.default
    return result
