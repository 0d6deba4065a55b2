"""
Activity Blueprint: organization activity feed, dashboard KPIs and
per-user app launch tracking.

  GET  /organizations/<org_id>/activity?entity_type=&entity_id=&user_id=&limit=&offset=
  GET  /organizations/<org_id>/activity/recent?limit=
  GET  /organizations/<org_id>/dashboard/kpis            recomputes and snapshots
  GET  /organizations/<org_id>/dashboard/kpis/latest     last snapshot per KPI
  POST /organizations/<org_id>/apps/<slug>/launch
  GET  /organizations/<org_id>/apps/recent
"""

from flask import Blueprint, g, jsonify, request

from vision.blueprints import page_args, register_error_handlers
from vision.middleware.permission_required import org_role_required
from vision.services import activity_service

activity_bp = Blueprint("activity_bp", __name__, url_prefix="/api/v1")
register_error_handlers(activity_bp)


@activity_bp.route("/organizations/<int:org_id>/activity", methods=["GET"])
@org_role_required("Viewer")
def list_activity(org_id):
    limit, offset = page_args(default_limit=50, max_limit=200)
    items, total = activity_service.list_activities(
        org_id,
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        user_id=request.args.get("user_id", type=int),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [a.to_dict() for a in items], "total": total}), 200


@activity_bp.route("/organizations/<int:org_id>/activity/recent", methods=["GET"])
@org_role_required("Viewer")
def recent_activity(org_id):
    limit, _ = page_args(default_limit=10, max_limit=50)
    items = activity_service.recent_activities(org_id, limit=limit)
    return jsonify({"items": [a.to_dict() for a in items]}), 200


# ═══════════════════════════════════════════════════════════════
# Dashboard
# ═══════════════════════════════════════════════════════════════
@activity_bp.route("/organizations/<int:org_id>/dashboard/kpis", methods=["GET"])
@org_role_required("Viewer")
def dashboard_kpis(org_id):
    snapshots = activity_service.compute_dashboard_kpis(org_id, g.user_id)
    return jsonify({"items": [s.to_dict() for s in snapshots]}), 200


@activity_bp.route("/organizations/<int:org_id>/dashboard/kpis/latest", methods=["GET"])
@org_role_required("Viewer")
def latest_kpis(org_id):
    return jsonify({"items": [s.to_dict() for s in activity_service.latest_kpis(org_id)]}), 200


# ═══════════════════════════════════════════════════════════════
# App usage
# ═══════════════════════════════════════════════════════════════
@activity_bp.route("/organizations/<int:org_id>/apps/<slug>/launch", methods=["POST"])
@org_role_required("Viewer")
def launch_app(org_id, slug):
    return jsonify(activity_service.track_app_usage(org_id, g.user_id, slug).to_dict()), 200


@activity_bp.route("/organizations/<int:org_id>/apps/recent", methods=["GET"])
@org_role_required("Viewer")
def recent_apps(org_id):
    limit, _ = page_args(default_limit=5, max_limit=20)
    usage = activity_service.recent_apps(org_id, g.user_id, limit=limit)
    return jsonify({"items": [u.to_dict() for u in usage]}), 200
