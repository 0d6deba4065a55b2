"""
Organization Service: tenancy, membership and role management.

Every organization-scoped query goes through ``get_membership`` (used by
``org_role_required``) so that a soft-deleted organization or a removed
membership behaves exactly like a missing one.
"""

import logging
import re
from decimal import Decimal, InvalidOperation

from vision.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from vision.models import db
from vision.models.organization import (
    ORGANIZATION_TYPES,
    ROLES,
    Organization,
    OrganizationMember,
    role_at_least,
)
from vision.services.activity_service import log_activity
from vision.services.notification_service import NotificationService
from vision.utils.helpers import slugify, utcnow

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")

# Flat, directly writable fields and their max lengths (None = unbounded text).
_TEXT_FIELDS = {
    "name": 200,
    "ein": 20,
    "mission": None,
    "industry": 100,
    "website": 500,
    "phone": 50,
    "email": 255,
    "logo_url": 500,
}
_ADDRESS_KEYS = {
    "street": "address_street",
    "city": "address_city",
    "state": "address_state",
    "postal_code": "address_postal_code",
    "postalCode": "address_postal_code",
    "zip": "address_postal_code",
    "country": "address_country",
}


# ═══════════════════════════════════════════════════════════════
# Membership lookups
# ═══════════════════════════════════════════════════════════════
def get_membership(org_id: int | None, user_id: int) -> OrganizationMember | None:
    """Live membership of ``user_id`` in a live organization, or None."""
    if org_id is None:
        return None
    return (
        OrganizationMember.query.join(Organization)
        .filter(
            OrganizationMember.organization_id == org_id,
            OrganizationMember.user_id == user_id,
            OrganizationMember.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
        .first()
    )


def list_user_organizations(user_id: int) -> list[dict]:
    """Organizations the user belongs to, each tagged with the caller's role."""
    rows = (
        db.session.query(Organization, OrganizationMember.role)
        .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
        .filter(
            OrganizationMember.user_id == user_id,
            OrganizationMember.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
        .order_by(Organization.name)
        .all()
    )
    result = []
    for org, role in rows:
        d = org.to_dict()
        d["role"] = role
        result.append(d)
    return result


def _get_org(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id)
    if not org or org.deleted_at is not None:
        raise NotFoundError("Organization", org_id)
    return org


def get_organization(org_id: int) -> Organization:
    """Raises NotFoundError for missing or soft-deleted organizations."""
    return _get_org(org_id)


# ═══════════════════════════════════════════════════════════════
# Organization CRUD
# ═══════════════════════════════════════════════════════════════
def _unique_slug(name: str) -> str:
    base = slugify(name, max_length=90)
    slug, n = base, 2
    while Organization.query.filter_by(slug=slug).first() is not None:
        slug = f"{base}-{n}"
        n += 1
    return slug


def _apply_fields(org: Organization, data: dict) -> None:
    """Validate and copy writable fields (flat, ``address`` and ``brand_colors``)."""
    for field, max_len in _TEXT_FIELDS.items():
        if field not in data:
            continue
        value = data[field]
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{field} must be a string", details={field: "invalid"})
        value = value.strip() if value else value
        if field == "name" and not value:
            raise ValidationError("name is required", details={"name": "required"})
        if max_len and value and len(value) > max_len:
            raise ValidationError(
                f"{field} must be at most {max_len} characters", details={field: "too_long"},
            )
        setattr(org, field, value or None)

    if "type" in data:
        if not isinstance(data["type"], str) or data["type"] not in ORGANIZATION_TYPES:
            raise ValidationError(
                f"type must be one of {sorted(ORGANIZATION_TYPES)}", details={"type": "invalid"},
            )
        org.type = data["type"]

    for field in ("founded_year", "staff_count"):
        if field in data:
            value = data[field]
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
                raise ValidationError(f"{field} must be a non-negative integer", details={field: "invalid"})
            setattr(org, field, value)

    if "annual_budget" in data:
        value = data["annual_budget"]
        if value is None:
            org.annual_budget = None
        else:
            try:
                amount = Decimal(str(value))
            except InvalidOperation as e:
                raise ValidationError("annual_budget must be a number",
                                      details={"annual_budget": "invalid"}) from e
            if amount < 0:
                raise ValidationError("annual_budget must be non-negative",
                                      details={"annual_budget": "negative"})
            org.annual_budget = amount

    if "focus_areas" in data:
        areas = data["focus_areas"] or []
        if not isinstance(areas, list) or not all(isinstance(a, str) for a in areas):
            raise ValidationError("focus_areas must be a list of strings", details={"focus_areas": "invalid"})
        org.focus_areas = [a.strip() for a in areas if a.strip()]

    address = data.get("address")
    if isinstance(address, dict):
        for key, column in _ADDRESS_KEYS.items():
            if key in address:
                value = address[key]
                if value is not None and not isinstance(value, str):
                    raise ValidationError(f"address.{key} must be a string",
                                          details={f"address.{key}": "invalid"})
                setattr(org, column, (value or "").strip() or None)

    colors = data.get("brand_colors", data.get("brandColors"))
    if isinstance(colors, dict):
        for key, column in (("primary", "brand_primary_color"), ("secondary", "brand_secondary_color")):
            if key in colors:
                value = colors[key]
                if value and not (isinstance(value, str) and _HEX_COLOR.match(value)):
                    raise ValidationError(
                        f"brand_colors.{key} must be a #RRGGBB hex color",
                        details={f"brand_colors.{key}": "invalid"},
                    )
                setattr(org, column, value or None)


def create_organization(user_id: int, data: dict) -> Organization:
    """Create an organization; the creator becomes its Owner.

    Raises:
        ValidationError: Missing name or invalid field.
    """
    name = data.get("name")
    if name is not None and not isinstance(name, str):
        raise ValidationError("name must be a string", details={"name": "invalid"})
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})

    org = Organization(name=name, created_by=user_id, focus_areas=[])
    _apply_fields(org, data)
    org.slug = _unique_slug(name)
    db.session.add(org)
    db.session.flush()

    db.session.add(OrganizationMember(
        organization_id=org.id, user_id=user_id, role="Owner", joined_at=utcnow(),
    ))
    log_activity(org.id, user_id, "organization", "created", entity_id=org.id,
                 description=f"Created organization {org.name}")
    db.session.commit()
    logger.info("Organization created id=%s slug=%s by user=%s", org.id, org.slug, user_id)
    return org


def update_organization(org_id: int, actor_id: int, data: dict) -> Organization:
    """Partial update of profile, address and branding.

    Raises:
        NotFoundError: Organization missing.
        ValidationError: Invalid field value.
    """
    org = _get_org(org_id)
    _apply_fields(org, data)
    log_activity(org.id, actor_id, "organization", "updated", entity_id=org.id,
                 description="Updated organization settings")
    db.session.commit()
    logger.info("Organization updated id=%s by user=%s", org.id, actor_id)
    return org


def delete_organization(org_id: int, actor_id: int) -> None:
    """Soft delete; memberships stay but no longer resolve."""
    org = _get_org(org_id)
    org.deleted_at = utcnow()
    db.session.commit()
    logger.info("Organization soft-deleted id=%s by user=%s", org_id, actor_id)


# ═══════════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════════
def list_members(org_id: int) -> list[OrganizationMember]:
    members = (
        OrganizationMember.query.filter_by(organization_id=org_id)
        .filter(OrganizationMember.deleted_at.is_(None))
        .all()
    )
    return sorted(members, key=lambda m: (-ROLES.index(m.role) if m.role in ROLES else 0,
                                          (m.user.email if m.user else "")))


def _get_member(org_id: int, member_id: int) -> OrganizationMember:
    member = db.session.get(OrganizationMember, member_id)
    if not member or member.organization_id != org_id or member.deleted_at is not None:
        raise NotFoundError("Member", member_id, org_id)
    return member


def update_member_role(org_id: int, actor: OrganizationMember, member_id: int, role: str) -> OrganizationMember:
    """Change a member's role.

    Raises:
        ValidationError: Unknown role, or the actor targets themselves.
        PermissionDeniedError: A non-Owner grants Owner or changes an Owner.
        NotFoundError: Member not in this organization.
    """
    if role not in ROLES:
        raise ValidationError(f"role must be one of {list(ROLES)}", details={"role": "invalid"})
    member = _get_member(org_id, member_id)
    if member.user_id == actor.user_id:
        raise ValidationError("You cannot change your own role")
    if (role == "Owner" or member.role == "Owner") and not role_at_least(actor.role, "Owner"):
        raise PermissionDeniedError("Only an Owner can grant or change the Owner role")

    old_role = member.role
    if old_role == role:
        return member
    member.role = role
    log_activity(org_id, actor.user_id, "member", "role_changed", entity_id=member.id,
                 description=f"Changed role from {old_role} to {role}",
                 metadata={"old_role": old_role, "new_role": role})
    NotificationService.create(
        user_id=member.user_id,
        organization_id=org_id,
        type="role_changed",
        title="Your role has changed",
        message=f"Your role was changed from {old_role} to {role}.",
        action_url=f"/organizations/{org_id}",
        commit=False,
    )
    db.session.commit()
    logger.info("Member role changed org=%s member=%s %s→%s", org_id, member.id, old_role, role)
    return member


def remove_member(org_id: int, actor: OrganizationMember, member_id: int) -> None:
    """Soft-remove a member.

    Raises:
        ValidationError: The actor targets themselves.
        PermissionDeniedError: A non-Owner removes an Owner or Admin.
        NotFoundError: Member not in this organization.
    """
    member = _get_member(org_id, member_id)
    if member.user_id == actor.user_id:
        raise ValidationError("You cannot remove yourself from the organization")
    if role_at_least(member.role, "Admin") and not role_at_least(actor.role, "Owner"):
        raise PermissionDeniedError("Only an Owner can remove an Owner or Admin")

    member.deleted_at = utcnow()
    log_activity(org_id, actor.user_id, "member", "removed", entity_id=member.id,
                 description=f"Removed {member.user.email if member.user else 'member'}")
    NotificationService.create(
        user_id=member.user_id,
        organization_id=org_id,
        type="member_removed",
        title="Removed from organization",
        message=f"You were removed from {member.organization.name}.",
        commit=False,
    )
    db.session.commit()
    logger.info("Member removed org=%s member=%s by user=%s", org_id, member.id, actor.user_id)


def add_member(org_id: int, user_id: int, role: str, invited_by: int | None = None) -> OrganizationMember:
    """Create or revive a membership (used by invite acceptance). Does not commit."""
    member = OrganizationMember.query.filter_by(organization_id=org_id, user_id=user_id).first()
    if member is None:
        member = OrganizationMember(organization_id=org_id, user_id=user_id)
        db.session.add(member)
    member.role = role
    member.invited_by = invited_by
    member.joined_at = utcnow()
    member.deleted_at = None
    return member
