"""
Permission Decorators: JWT-aware route protection.

Provides decorators that check the authenticated user (``g.user_id``, set by
the JWT middleware) and, for organization-scoped routes, their membership
role before allowing access to an endpoint.

Usage:
    @bp.route("/organizations/<int:org_id>/folders", methods=["POST"])
    @org_role_required("Editor")
    def create_folder(org_id):
        member = g.org_member
        ...

    @bp.route("/notifications", methods=["GET"])
    @login_required
    def list_notifications():
        ...

Role order: Viewer < Editor < Admin < Owner. A non-member (or a member of a
deleted organization) gets 404 so that organization ids are not disclosed.
"""

import functools
import logging

from flask import g

from vision.models.organization import role_at_least
from vision.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def _unauthorized():
    message = getattr(g, "token_error", None) or "Authentication required"
    return api_error(E.UNAUTHORIZED, message)


def login_required(f):
    """Decorator: require a valid access token."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "user_id", None) is None:
            return _unauthorized()
        return f(*args, **kwargs)
    return decorated


def org_role_required(min_role: str = "Viewer", org_arg: str = "org_id"):
    """
    Decorator: require membership of the organization in ``kwargs[org_arg]``
    with at least ``min_role``. Stores the membership on ``g.org_member``.

    Args:
        min_role: One of Viewer, Editor, Admin, Owner.
        org_arg: Name of the URL variable holding the organization id.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            from vision.services.organization_service import get_membership

            user_id = getattr(g, "user_id", None)
            if user_id is None:
                return _unauthorized()

            org_id = kwargs.get(org_arg)
            member = get_membership(org_id, user_id)
            if member is None:
                return api_error(E.NOT_FOUND, "Organization not found")

            if not role_at_least(member.role, min_role):
                logger.warning(
                    "User %d denied: role %s < %s on %s (org=%s)",
                    user_id, member.role, min_role, f.__name__, org_id,
                )
                return api_error(
                    E.FORBIDDEN,
                    "Permission denied",
                    details={"required_role": min_role, "role": member.role},
                )

            g.org_member = member
            return f(*args, **kwargs)
        return decorated
    return decorator
