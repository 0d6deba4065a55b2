"""
Folder Blueprint: hierarchical document folders.

  GET    /organizations/<org_id>/folders?parent_id=&all=     Viewer+
  POST   /organizations/<org_id>/folders                     Editor+
  GET    /organizations/<org_id>/folders/tree
  GET    /organizations/<org_id>/folders/search?q=
  GET    /organizations/<org_id>/folders/recent
  GET    /organizations/<org_id>/folders/stats
  GET    /organizations/<org_id>/folders/<id>
  PATCH  /organizations/<org_id>/folders/<id>                Editor+
  DELETE /organizations/<org_id>/folders/<id>                Editor+
  POST   /organizations/<org_id>/folders/<id>/move           Editor+
  GET    /organizations/<org_id>/folders/<id>/breadcrumb
"""

from flask import Blueprint, g, jsonify, request

from vision.blueprints import json_body, page_args, register_error_handlers
from vision.middleware.permission_required import org_role_required
from vision.services import folder_service

folder_bp = Blueprint("folder_bp", __name__, url_prefix="/api/v1")
register_error_handlers(folder_bp)


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


# ═══════════════════════════════════════════════════════════════
# Listing & lookups
# ═══════════════════════════════════════════════════════════════
@folder_bp.route("/organizations/<int:org_id>/folders", methods=["GET"])
@org_role_required("Viewer")
def list_folders(org_id):
    folders = folder_service.list_folders(
        org_id, parent_id=request.args.get("parent_id", type=int), all_levels=_flag("all"),
    )
    return jsonify({"items": [f.to_dict() for f in folders], "total": len(folders)}), 200


@folder_bp.route("/organizations/<int:org_id>/folders/tree", methods=["GET"])
@org_role_required("Viewer")
def folder_tree(org_id):
    return jsonify({"items": folder_service.get_folder_tree(org_id)}), 200


@folder_bp.route("/organizations/<int:org_id>/folders/search", methods=["GET"])
@org_role_required("Viewer")
def search_folders(org_id):
    limit, _ = page_args(default_limit=20, max_limit=100)
    folders = folder_service.search_folders(org_id, request.args.get("q", ""), limit=limit)
    return jsonify({"items": [f.to_dict() for f in folders], "total": len(folders)}), 200


@folder_bp.route("/organizations/<int:org_id>/folders/recent", methods=["GET"])
@org_role_required("Viewer")
def recent_folders(org_id):
    limit, _ = page_args(default_limit=10, max_limit=50)
    folders = folder_service.get_recent_folders(org_id, limit=limit)
    return jsonify({"items": [f.to_dict() for f in folders]}), 200


@folder_bp.route("/organizations/<int:org_id>/folders/stats", methods=["GET"])
@org_role_required("Viewer")
def folder_stats(org_id):
    return jsonify(folder_service.get_folder_statistics(org_id)), 200


@folder_bp.route("/organizations/<int:org_id>/folders/<int:folder_id>", methods=["GET"])
@org_role_required("Viewer")
def get_folder(org_id, folder_id):
    folder = folder_service.get_folder(org_id, folder_id)
    result = folder.to_dict()
    result["document_count"] = folder_service.get_document_count(
        org_id, folder_id, include_subfolders=_flag("include_subfolders"),
    )
    return jsonify(result), 200


@folder_bp.route("/organizations/<int:org_id>/folders/<int:folder_id>/breadcrumb", methods=["GET"])
@org_role_required("Viewer")
def breadcrumb(org_id, folder_id):
    trail = folder_service.get_breadcrumb(org_id, folder_id)
    return jsonify({"items": [{"id": f.id, "name": f.name} for f in trail]}), 200


# ═══════════════════════════════════════════════════════════════
# Mutations
# ═══════════════════════════════════════════════════════════════
@folder_bp.route("/organizations/<int:org_id>/folders", methods=["POST"])
@org_role_required("Editor")
def create_folder(org_id):
    """Body: { "name", "parent_folder_id"?, "description"?, "color"?, "icon"?, "metadata"? }"""
    data = json_body()
    folder = folder_service.create_folder(org_id, g.user_id, data)
    return jsonify(folder.to_dict()), 201


@folder_bp.route("/organizations/<int:org_id>/folders/<int:folder_id>", methods=["PATCH"])
@org_role_required("Editor")
def update_folder(org_id, folder_id):
    data = json_body()
    return jsonify(folder_service.update_folder(org_id, folder_id, g.user_id, data).to_dict()), 200


@folder_bp.route("/organizations/<int:org_id>/folders/<int:folder_id>/move", methods=["POST"])
@org_role_required("Editor")
def move_folder(org_id, folder_id):
    """Body: { "parent_folder_id": int | null }"""
    data = json_body()
    if "parent_folder_id" not in data:
        return jsonify({"error": "parent_folder_id is required (null for root)"}), 400
    folder = folder_service.move_folder(org_id, folder_id, data["parent_folder_id"], g.user_id)
    return jsonify(folder.to_dict()), 200


@folder_bp.route("/organizations/<int:org_id>/folders/<int:folder_id>", methods=["DELETE"])
@org_role_required("Editor")
def delete_folder(org_id, folder_id):
    folder_service.delete_folder(org_id, folder_id, g.user_id)
    return "", 204
