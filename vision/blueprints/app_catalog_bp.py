"""
App Catalog Blueprint: browse apps and manage installations.

  GET    /organizations/<org_id>/apps?category=&installed=     Viewer+
  POST   /organizations/<org_id>/apps/<slug>/install            Admin+
  PATCH  /organizations/<org_id>/apps/<slug>                    Admin+ { "is_enabled"? }
  DELETE /organizations/<org_id>/apps/<slug>                    Admin+
"""

from flask import Blueprint, g, jsonify, request

from vision.blueprints import json_body, register_error_handlers
from vision.middleware.permission_required import org_role_required
from vision.services import app_catalog_service

app_catalog_bp = Blueprint("app_catalog_bp", __name__, url_prefix="/api/v1")
register_error_handlers(app_catalog_bp)


@app_catalog_bp.route("/organizations/<int:org_id>/apps", methods=["GET"])
@org_role_required("Viewer")
def list_apps(org_id):
    installed_only = request.args.get("installed", "").lower() in ("1", "true")
    apps = app_catalog_service.list_apps(org_id, category=request.args.get("category"),
                                         installed_only=installed_only)
    return jsonify({"items": apps, "total": len(apps)}), 200


@app_catalog_bp.route("/organizations/<int:org_id>/apps/<slug>/install", methods=["POST"])
@org_role_required("Admin")
def install_app(org_id, slug):
    return jsonify(app_catalog_service.install_app(org_id, g.user_id, slug).to_dict()), 201


@app_catalog_bp.route("/organizations/<int:org_id>/apps/<slug>", methods=["PATCH"])
@org_role_required("Admin")
def toggle_app(org_id, slug):
    """Omit ``is_enabled`` to flip the current state."""
    data = json_body()
    inst = app_catalog_service.toggle_app(org_id, slug, enabled=data.get("is_enabled"))
    return jsonify(inst.to_dict()), 200


@app_catalog_bp.route("/organizations/<int:org_id>/apps/<slug>", methods=["DELETE"])
@org_role_required("Admin")
def uninstall_app(org_id, slug):
    app_catalog_service.uninstall_app(org_id, g.user_id, slug)
    return "", 204
