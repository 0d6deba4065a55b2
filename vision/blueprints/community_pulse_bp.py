"""
CommunityPulse Blueprint: engagement-strategy wizard API.

Engagements (Viewer+ read, Editor+ write, Admin+ delete):
  GET/POST   /organizations/<org_id>/engagements?status=
  GET/PATCH/DELETE /organizations/<org_id>/engagements/<id>
  POST       /organizations/<org_id>/engagements/<id>/continue
  POST       /organizations/<org_id>/engagements/<id>/complete
  POST       /organizations/<org_id>/engagements/<id>/archive
  GET        /organizations/<org_id>/engagements/<id>/export?format=json|csv|markdown|html|xlsx
  GET        /organizations/<org_id>/engagements/<id>/recommended-methods
  GET        /organizations/<org_id>/engagements/<id>/materials
  PUT/DELETE /organizations/<org_id>/engagements/<id>/materials/<material_type>
  GET        /organizations/<org_id>/engagements/<id>/audit-log
  GET        /organizations/<org_id>/engagement-audit-log?action=

Catalog & templates:
  GET        /community-pulse/methods?category=
  GET        /community-pulse/methods/<slug>
  GET/POST   /organizations/<org_id>/engagement-templates
  POST       /organizations/<org_id>/engagement-templates/<id>/use

PATCH and continue accept an optional ``expected_updated_at``; a stale
value answers 409.
"""

import io

from flask import Blueprint, Response, g, jsonify, request, send_file

from vision.blueprints import json_body, page_args, register_error_handlers
from vision.middleware.permission_required import login_required, org_role_required
from vision.services import community_pulse_export, community_pulse_service as cps

community_pulse_bp = Blueprint("community_pulse_bp", __name__, url_prefix="/api/v1")
register_error_handlers(community_pulse_bp)


def _engagement_json(engagement, status=200):
    result = engagement.to_dict()
    result["missing_fields"] = cps.missing_stage_fields(engagement)
    return jsonify(result), status


# ═══════════════════════════════════════════════════════════════
# Engagements
# ═══════════════════════════════════════════════════════════════
@community_pulse_bp.route("/organizations/<int:org_id>/engagements", methods=["GET"])
@org_role_required("Viewer")
def list_engagements(org_id):
    items = cps.list_engagements(org_id, status=request.args.get("status"))
    return jsonify({"items": [e.to_dict() for e in items], "total": len(items)}), 200


@community_pulse_bp.route("/organizations/<int:org_id>/engagements", methods=["POST"])
@org_role_required("Editor")
def create_engagement(org_id):
    """Body: { "title", "learning_goal"?, "goal_type"? } (camelCase accepted)"""
    data = json_body()
    return _engagement_json(cps.create_engagement(org_id, g.user_id, data), 201)


@community_pulse_bp.route("/organizations/<int:org_id>/engagements/<int:engagement_id>", methods=["GET"])
@org_role_required("Viewer")
def get_engagement(org_id, engagement_id):
    return _engagement_json(cps.get_engagement(org_id, engagement_id))


@community_pulse_bp.route("/organizations/<int:org_id>/engagements/<int:engagement_id>", methods=["PATCH"])
@org_role_required("Editor")
def update_engagement(org_id, engagement_id):
    data = json_body()
    expected = data.pop("expected_updated_at", None) or data.pop("expectedUpdatedAt", None)
    engagement = cps.update_engagement(org_id, engagement_id, g.user_id, data, expected_updated_at=expected)
    return _engagement_json(engagement)


@community_pulse_bp.route("/organizations/<int:org_id>/engagements/<int:engagement_id>", methods=["DELETE"])
@org_role_required("Admin")
def delete_engagement(org_id, engagement_id):
    cps.delete_engagement(org_id, engagement_id, g.user_id)
    return "", 204


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/continue", methods=["POST"],
)
@org_role_required("Editor")
def continue_engagement(org_id, engagement_id):
    """Save the optional body, then advance one stage."""
    data = json_body()
    expected = data.pop("expected_updated_at", None) or data.pop("expectedUpdatedAt", None)
    engagement = cps.continue_engagement(org_id, engagement_id, g.user_id, data or None,
                                         expected_updated_at=expected)
    return _engagement_json(engagement)


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/complete", methods=["POST"],
)
@org_role_required("Editor")
def complete_engagement(org_id, engagement_id):
    return _engagement_json(cps.complete_engagement(org_id, engagement_id, g.user_id))


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/archive", methods=["POST"],
)
@org_role_required("Editor")
def archive_engagement(org_id, engagement_id):
    return _engagement_json(cps.archive_engagement(org_id, engagement_id, g.user_id))


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/export", methods=["GET"],
)
@org_role_required("Viewer")
def export_engagement(org_id, engagement_id):
    content, mimetype, filename = community_pulse_export.export_engagement(
        org_id, engagement_id, g.user_id, request.args.get("format", "json"),
    )
    if isinstance(content, bytes):
        return send_file(io.BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=filename)
    return Response(
        content,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/recommended-methods", methods=["GET"],
)
@org_role_required("Viewer")
def recommended_methods(org_id, engagement_id):
    limit = request.args.get("limit", 3, type=int)
    methods = cps.recommend_methods(org_id, engagement_id, limit=max(1, min(limit, 20)))
    return jsonify({"items": [m.to_dict() for m in methods]}), 200


# ═══════════════════════════════════════════════════════════════
# Materials & audit
# ═══════════════════════════════════════════════════════════════
@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/materials", methods=["GET"],
)
@org_role_required("Viewer")
def list_materials(org_id, engagement_id):
    materials = cps.list_materials(org_id, engagement_id)
    return jsonify({"items": [m.to_dict() for m in materials]}), 200


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/materials/<material_type>",
    methods=["PUT"],
)
@org_role_required("Editor")
def save_material(org_id, engagement_id, material_type):
    """Body: { "title", "content"?, "file_url"?, "is_customized"? }"""
    data = json_body()
    material = cps.save_material(org_id, engagement_id, g.user_id, material_type, data)
    return jsonify(material.to_dict()), 200


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/materials/<material_type>",
    methods=["DELETE"],
)
@org_role_required("Editor")
def delete_material(org_id, engagement_id, material_type):
    cps.delete_material(org_id, engagement_id, g.user_id, material_type)
    return "", 204


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagements/<int:engagement_id>/audit-log", methods=["GET"],
)
@org_role_required("Viewer")
def engagement_audit_log(org_id, engagement_id):
    entries = cps.get_audit_log(org_id, engagement_id)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)}), 200


@community_pulse_bp.route("/organizations/<int:org_id>/engagement-audit-log", methods=["GET"])
@org_role_required("Admin")
def org_audit_log(org_id):
    limit, offset = page_args()
    items, total = cps.list_org_audit_log(org_id, action=request.args.get("action"), limit=limit, offset=offset)
    return jsonify({"items": [e.to_dict() for e in items], "total": total}), 200


# ═══════════════════════════════════════════════════════════════
# Method catalog
# ═══════════════════════════════════════════════════════════════
@community_pulse_bp.route("/community-pulse/methods", methods=["GET"])
@login_required
def list_methods():
    methods = cps.list_methods(category=request.args.get("category"))
    return jsonify({"items": [m.to_dict() for m in methods], "total": len(methods)}), 200


@community_pulse_bp.route("/community-pulse/methods/<slug>", methods=["GET"])
@login_required
def get_method(slug):
    return jsonify(cps.get_method_by_slug(slug).to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════
@community_pulse_bp.route("/organizations/<int:org_id>/engagement-templates", methods=["GET"])
@org_role_required("Viewer")
def list_templates(org_id):
    templates = cps.list_templates(org_id)
    return jsonify({"items": [t.to_dict() for t in templates], "total": len(templates)}), 200


@community_pulse_bp.route("/organizations/<int:org_id>/engagement-templates", methods=["POST"])
@org_role_required("Editor")
def create_template(org_id):
    """Body: { "name", "description"?, "method_slug"?, "template_data"?,
    "source_engagement_id"? }"""
    data = json_body()
    source_id = data.pop("source_engagement_id", None) or data.pop("sourceEngagementId", None)
    template = cps.create_template(org_id, g.user_id, data, source_engagement_id=source_id)
    return jsonify(template.to_dict()), 201


@community_pulse_bp.route(
    "/organizations/<int:org_id>/engagement-templates/<int:template_id>/use", methods=["POST"],
)
@org_role_required("Editor")
def use_template(org_id, template_id):
    """Body: { "title"? } → new draft engagement (201)."""
    data = json_body()
    engagement = cps.create_from_template(org_id, g.user_id, template_id, title=data.get("title"))
    return _engagement_json(engagement, 201)
