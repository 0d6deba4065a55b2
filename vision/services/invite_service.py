"""
Invite Service: email invitations into an organization.

Lifecycle:
    pending ──accept──► accepted
       │  └──expiry───► expired   (marked lazily when someone touches it)
       └────cancel────► cancelled

Tokens are 64 hex characters (32 random bytes) and are only returned to
the inviter at creation time and embedded in the emailed accept link.
"""

import html
import logging
from datetime import timedelta

from flask import current_app

from vision.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from vision.models import db
from vision.models.auth import User
from vision.models.organization import (
    INVITE_STATUSES,
    ROLES,
    OrganizationInvite,
    OrganizationMember,
    role_at_least,
)
from vision.services.activity_service import log_activity
from vision.services.email_service import EmailService
from vision.services.notification_service import NotificationService
from vision.services.organization_service import add_member, get_membership, get_organization
from vision.services.user_service import normalize_email
from vision.utils.crypto import generate_invite_token
from vision.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


def _expiry():
    return utcnow() + timedelta(days=current_app.config.get("INVITE_EXPIRY_DAYS", 7))


def _is_expired(invite: OrganizationInvite) -> bool:
    return as_utc(invite.expires_at) <= utcnow()


def _send_invite_email(invite: OrganizationInvite) -> None:
    """Send (or resend) the invitation email. Failures are logged, never raised."""
    org = invite.organization
    inviter = invite.inviter
    base_url = current_app.config.get("APP_BASE_URL", "")
    accept_url = f"{base_url}/invites/{invite.token}"
    try:
        EmailService.send_from_template(
            to_email=invite.email,
            template_name="invitation",
            context={
                "organization_name": org.name if org else "VISION",
                "inviter_name": inviter.display_name if inviter else "A teammate",
                "role": invite.role,
                "accept_url": accept_url,
                "expires_at": as_utc(invite.expires_at).strftime("%B %d, %Y"),
                "message": invite.message or "",
                "message_block": (
                    f'<blockquote style="color: #475569;">{html.escape(invite.message)}</blockquote>'
                    if invite.message else ""
                ),
                "brand_color": org.brand_primary_color if org else "#1e293b",
            },
        )
    except Exception:
        logger.exception("Invitation email failed invite=%s", invite.id)


def _get_invite(org_id: int, invite_id: int) -> OrganizationInvite:
    invite = db.session.get(OrganizationInvite, invite_id)
    if not invite or invite.organization_id != org_id or invite.deleted_at is not None:
        raise NotFoundError("Invite", invite_id, org_id)
    return invite


# ═══════════════════════════════════════════════════════════════
# Inviter side
# ═══════════════════════════════════════════════════════════════
def create_invite(org_id: int, actor: OrganizationMember, email: str, role: str = "Viewer",
                  message: str | None = None, metadata: dict | None = None) -> OrganizationInvite:
    """Invite ``email`` to the organization with ``role``.

    Raises:
        ValidationError: Invalid email, role or message.
        PermissionDeniedError: A non-Owner invites an Owner.
        ConflictError: Already a member, or a pending invite exists.
    """
    email = normalize_email(email)
    if role not in ROLES:
        raise ValidationError(f"role must be one of {list(ROLES)}", details={"role": "invalid"})
    if role == "Owner" and not role_at_least(actor.role, "Owner"):
        raise PermissionDeniedError("Only an Owner can invite another Owner")
    if message and len(message) > 1000:
        raise ValidationError("message must be at most 1000 characters", details={"message": "too_long"})

    get_organization(org_id)

    existing_user = User.query.filter_by(email=email).first()
    if existing_user and get_membership(org_id, existing_user.id) is not None:
        raise ConflictError("Member", "email", email)

    pending = OrganizationInvite.query.filter_by(
        organization_id=org_id, email=email, status="pending",
    ).filter(OrganizationInvite.deleted_at.is_(None)).first()
    if pending is not None:
        if not _is_expired(pending):
            raise ConflictError("Invite", "email", email)
        pending.status = "expired"

    invite = OrganizationInvite(
        organization_id=org_id,
        email=email,
        role=role,
        token=generate_invite_token(),
        status="pending",
        message=(message or "").strip() or None,
        metadata_json=metadata or {},
        invited_by=actor.user_id,
        expires_at=_expiry(),
        last_sent_at=utcnow(),
        resend_count=0,
    )
    db.session.add(invite)
    db.session.flush()
    log_activity(org_id, actor.user_id, "invite", "invited", entity_id=invite.id,
                 description=f"Invited {email} as {role}")
    db.session.commit()
    logger.info("Invite created id=%s org=%s role=%s", invite.id, org_id, role)

    if existing_user is not None:
        try:
            NotificationService.create(
                user_id=existing_user.id,
                organization_id=org_id,
                type="invitation",
                title=f"Invitation to join {invite.organization.name}",
                message=f"You were invited as {role}.",
                action_url=f"/invites/{invite.token}",
            )
        except Exception:
            db.session.rollback()
            logger.exception("Invitation notification failed invite=%s", invite.id)

    _send_invite_email(invite)
    return invite


def list_invites(org_id: int, status: str | None = None) -> list[OrganizationInvite]:
    """Invites of the organization, newest first. Lapsed pending invites read as expired."""
    if status and status not in INVITE_STATUSES:
        raise ValidationError(f"status must be one of {sorted(INVITE_STATUSES)}")
    invites = (
        OrganizationInvite.query.filter_by(organization_id=org_id)
        .filter(OrganizationInvite.deleted_at.is_(None))
        .order_by(OrganizationInvite.created_at.desc(), OrganizationInvite.id.desc())
        .all()
    )
    changed = False
    for invite in invites:
        if invite.status == "pending" and _is_expired(invite):
            invite.status = "expired"
            changed = True
    if changed:
        db.session.commit()
    if status:
        invites = [i for i in invites if i.status == status]
    return invites


def resend_invite(org_id: int, invite_id: int) -> OrganizationInvite:
    """Resend a pending (or lapsed) invite and push its expiry out again.

    Raises:
        NotFoundError: Invite missing.
        ValidationError: Invite already accepted or cancelled.
    """
    invite = _get_invite(org_id, invite_id)
    if invite.status not in ("pending", "expired"):
        raise ValidationError(f"Cannot resend an invite that is {invite.status}")
    invite.status = "pending"
    invite.resend_count = (invite.resend_count or 0) + 1
    invite.last_sent_at = utcnow()
    invite.expires_at = _expiry()
    db.session.commit()
    logger.info("Invite resent id=%s count=%s", invite.id, invite.resend_count)
    _send_invite_email(invite)
    return invite


def cancel_invite(org_id: int, invite_id: int) -> OrganizationInvite:
    """Raises ValidationError unless the invite is pending."""
    invite = _get_invite(org_id, invite_id)
    if invite.status != "pending":
        raise ValidationError(f"Cannot cancel an invite that is {invite.status}")
    invite.status = "cancelled"
    db.session.commit()
    logger.info("Invite cancelled id=%s org=%s", invite.id, org_id)
    return invite


# ═══════════════════════════════════════════════════════════════
# Invitee side (public token routes)
# ═══════════════════════════════════════════════════════════════
def get_invite_by_token(token: str) -> dict:
    """Public invite preview. Includes ``is_valid``; never includes the token."""
    invite = OrganizationInvite.query.filter_by(token=token).filter(
        OrganizationInvite.deleted_at.is_(None),
    ).first()
    if invite is None or invite.organization is None or invite.organization.deleted_at is not None:
        raise NotFoundError("Invite")
    if invite.status == "pending" and _is_expired(invite):
        invite.status = "expired"
        db.session.commit()
    d = invite.to_dict()
    d["is_valid"] = invite.status == "pending"
    return d


def accept_invite(token: str, user_id: int) -> OrganizationMember:
    """Accept an invite as the logged-in user.

    Raises:
        NotFoundError: Unknown token, or the organization was deleted.
        ValidationError: Not pending, expired, or sent to a different email.
        ConflictError: The user is already a member.
    """
    invite = OrganizationInvite.query.filter_by(token=token).filter(
        OrganizationInvite.deleted_at.is_(None),
    ).first()
    if invite is None or invite.organization is None or invite.organization.deleted_at is not None:
        raise NotFoundError("Invite")
    if invite.status != "pending":
        raise ValidationError(f"Invitation is {invite.status}", details={"status": invite.status})
    if _is_expired(invite):
        invite.status = "expired"
        db.session.commit()
        raise ValidationError("Invitation has expired", details={"status": "expired"})

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    if user.email.lower() != invite.email.lower():
        raise ValidationError("This invitation was sent to a different email address",
                              details={"email": "mismatch"})
    if get_membership(invite.organization_id, user_id) is not None:
        raise ConflictError("Member", "user_id", str(user_id))

    member = add_member(invite.organization_id, user_id, invite.role, invited_by=invite.invited_by)
    invite.status = "accepted"
    invite.accepted_at = utcnow()
    invite.accepted_by = user_id
    db.session.flush()
    log_activity(invite.organization_id, user_id, "member", "joined", entity_id=member.id,
                 description=f"{user.display_name} joined as {invite.role}")
    if invite.invited_by:
        NotificationService.create(
            user_id=invite.invited_by,
            organization_id=invite.organization_id,
            type="member_added",
            title="Invitation accepted",
            message=f"{user.display_name} joined {invite.organization.name} as {invite.role}.",
            action_url=f"/organizations/{invite.organization_id}/members",
            commit=False,
        )
    db.session.commit()
    logger.info("Invite accepted id=%s user=%s org=%s", invite.id, user_id, invite.organization_id)
    return member
