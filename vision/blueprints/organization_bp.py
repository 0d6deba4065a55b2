"""
Organization Blueprint: organizations and their members.

  GET    /api/v1/organizations                                caller's organizations
  POST   /api/v1/organizations                                create (caller → Owner)
  GET    /api/v1/organizations/<org_id>                       Viewer+
  PATCH  /api/v1/organizations/<org_id>                       Admin+
  DELETE /api/v1/organizations/<org_id>                       Owner
  GET    /api/v1/organizations/<org_id>/members               Viewer+
  PATCH  /api/v1/organizations/<org_id>/members/<id>          Admin+ (role change)
  DELETE /api/v1/organizations/<org_id>/members/<id>          Admin+
"""

from flask import Blueprint, g, jsonify

from vision.blueprints import json_body, register_error_handlers
from vision.middleware.permission_required import login_required, org_role_required
from vision.services import organization_service

organization_bp = Blueprint("organization_bp", __name__, url_prefix="/api/v1")
register_error_handlers(organization_bp)


# ═══════════════════════════════════════════════════════════════
# Organizations
# ═══════════════════════════════════════════════════════════════
@organization_bp.route("/organizations", methods=["GET"])
@login_required
def list_organizations():
    items = organization_service.list_user_organizations(g.user_id)
    return jsonify({"items": items, "total": len(items)}), 200


@organization_bp.route("/organizations", methods=["POST"])
@login_required
def create_organization():
    data = json_body()
    name = data.get("name")
    if name is None or (isinstance(name, str) and not name.strip()):
        return jsonify({"error": "name is required"}), 400
    org = organization_service.create_organization(g.user_id, data)
    result = org.to_dict()
    result["role"] = "Owner"
    return jsonify(result), 201


@organization_bp.route("/organizations/<int:org_id>", methods=["GET"])
@org_role_required("Viewer")
def get_organization(org_id):
    result = organization_service.get_organization(org_id).to_dict()
    result["role"] = g.org_member.role
    return jsonify(result), 200


@organization_bp.route("/organizations/<int:org_id>", methods=["PATCH"])
@org_role_required("Admin")
def update_organization(org_id):
    data = json_body()
    org = organization_service.update_organization(org_id, g.user_id, data)
    return jsonify(org.to_dict()), 200


@organization_bp.route("/organizations/<int:org_id>", methods=["DELETE"])
@org_role_required("Owner")
def delete_organization(org_id):
    organization_service.delete_organization(org_id, g.user_id)
    return "", 204


# ═══════════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════════
@organization_bp.route("/organizations/<int:org_id>/members", methods=["GET"])
@org_role_required("Viewer")
def list_members(org_id):
    members = organization_service.list_members(org_id)
    return jsonify({"items": [m.to_dict() for m in members], "total": len(members)}), 200


@organization_bp.route("/organizations/<int:org_id>/members/<int:member_id>", methods=["PATCH"])
@org_role_required("Admin")
def update_member(org_id, member_id):
    """Body: { "role": "Viewer" | "Editor" | "Admin" | "Owner" }"""
    data = json_body()
    if not data.get("role"):
        return jsonify({"error": "role is required"}), 400
    member = organization_service.update_member_role(org_id, g.org_member, member_id, data["role"])
    return jsonify(member.to_dict()), 200


@organization_bp.route("/organizations/<int:org_id>/members/<int:member_id>", methods=["DELETE"])
@org_role_required("Admin")
def remove_member(org_id, member_id):
    organization_service.remove_member(org_id, g.org_member, member_id)
    return "", 204
