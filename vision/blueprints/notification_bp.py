"""
Notification Blueprint: the caller's in-app notifications and preferences.

  GET    /api/v1/notifications?unread_only=&type=&organization_id=&limit=&offset=
  GET    /api/v1/notifications/unread-count
  POST   /api/v1/notifications/<id>/read
  POST   /api/v1/notifications/read-all
  DELETE /api/v1/notifications/<id>
  DELETE /api/v1/notifications/read            purge read notifications
  GET    /api/v1/notifications/preferences
  PATCH  /api/v1/notifications/preferences
"""

from flask import Blueprint, g, jsonify, request

from vision.blueprints import json_body, page_args, register_error_handlers
from vision.middleware.permission_required import login_required
from vision.services.notification_service import NotificationService

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
@login_required
def list_notifications():
    limit, offset = page_args(default_limit=50, max_limit=200)
    items, total = NotificationService.list_for_user(
        g.user_id,
        unread_only=request.args.get("unread_only", "").lower() in ("1", "true"),
        type=request.args.get("type"),
        organization_id=request.args.get("organization_id", type=int),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(g.user_id),
    }), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@login_required
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.user_id)}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_read(notification_id):
    return jsonify(NotificationService.mark_read(g.user_id, notification_id).to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
@login_required
def mark_all_read():
    return jsonify({"updated": NotificationService.mark_all_read(g.user_id)}), 200


@notification_bp.route("/notifications/read", methods=["DELETE"])
@login_required
def delete_read():
    return jsonify({"deleted": NotificationService.delete_all_read(g.user_id)}), 200


@notification_bp.route("/notifications/<int:notification_id>", methods=["DELETE"])
@login_required
def delete_notification(notification_id):
    NotificationService.delete(g.user_id, notification_id)
    return "", 204


# ═══════════════════════════════════════════════════════════════
# Preferences
# ═══════════════════════════════════════════════════════════════
@notification_bp.route("/notifications/preferences", methods=["GET"])
@login_required
def get_preferences():
    return jsonify(NotificationService.get_preferences(g.user_id).to_dict()), 200


@notification_bp.route("/notifications/preferences", methods=["PATCH"])
@login_required
def update_preferences():
    data = json_body()
    return jsonify(NotificationService.update_preferences(g.user_id, data).to_dict()), 200
