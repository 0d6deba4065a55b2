"""
Invite Blueprint: organization invitations.

Inviter side (Admin+):
  GET    /api/v1/organizations/<org_id>/invites?status=
  POST   /api/v1/organizations/<org_id>/invites
  POST   /api/v1/organizations/<org_id>/invites/<id>/resend
  DELETE /api/v1/organizations/<org_id>/invites/<id>

Invitee side:
  GET    /api/v1/invites/<token>            public preview
  POST   /api/v1/invites/<token>/accept     logged-in user joins
"""

from flask import Blueprint, g, jsonify, request

from vision.blueprints import json_body, register_error_handlers
from vision.middleware.permission_required import login_required, org_role_required
from vision.services import invite_service

invite_bp = Blueprint("invite_bp", __name__, url_prefix="/api/v1")
register_error_handlers(invite_bp)


# ═══════════════════════════════════════════════════════════════
# Inviter side
# ═══════════════════════════════════════════════════════════════
@invite_bp.route("/organizations/<int:org_id>/invites", methods=["GET"])
@org_role_required("Admin")
def list_invites(org_id):
    invites = invite_service.list_invites(org_id, request.args.get("status"))
    return jsonify({"items": [i.to_dict() for i in invites], "total": len(invites)}), 200


@invite_bp.route("/organizations/<int:org_id>/invites", methods=["POST"])
@org_role_required("Admin")
def create_invite(org_id):
    """Body: { "email", "role"?, "message"?, "metadata"? }"""
    data = json_body()
    if not data.get("email"):
        return jsonify({"error": "email is required"}), 400
    invite = invite_service.create_invite(
        org_id, g.org_member, data["email"],
        role=data.get("role") or "Viewer",
        message=data.get("message"),
        metadata=data.get("metadata"),
    )
    return jsonify(invite.to_dict(include_token=True)), 201


@invite_bp.route("/organizations/<int:org_id>/invites/<int:invite_id>/resend", methods=["POST"])
@org_role_required("Admin")
def resend_invite(org_id, invite_id):
    return jsonify(invite_service.resend_invite(org_id, invite_id).to_dict()), 200


@invite_bp.route("/organizations/<int:org_id>/invites/<int:invite_id>", methods=["DELETE"])
@org_role_required("Admin")
def cancel_invite(org_id, invite_id):
    invite_service.cancel_invite(org_id, invite_id)
    return "", 204


# ═══════════════════════════════════════════════════════════════
# Invitee side
# ═══════════════════════════════════════════════════════════════
@invite_bp.route("/invites/<token>", methods=["GET"])
def get_invite(token):
    return jsonify(invite_service.get_invite_by_token(token)), 200


@invite_bp.route("/invites/<token>/accept", methods=["POST"])
@login_required
def accept_invite(token):
    member = invite_service.accept_invite(token, g.user_id)
    return jsonify(member.to_dict()), 200
