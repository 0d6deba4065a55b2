"""
Search Blueprint: one query across an organization's content.

  GET /organizations/<org_id>/search?q=&limit=
"""

from flask import Blueprint, jsonify, request

from vision.blueprints import register_error_handlers
from vision.middleware.permission_required import org_role_required
from vision.services import search_service

search_bp = Blueprint("search_bp", __name__, url_prefix="/api/v1")
register_error_handlers(search_bp)


@search_bp.route("/organizations/<int:org_id>/search", methods=["GET"])
@org_role_required("Viewer")
def global_search(org_id):
    limit = request.args.get("limit", 5, type=int)
    return jsonify(search_service.global_search(org_id, request.args.get("q", ""),
                                                limit=max(1, min(limit, 20)))), 200
