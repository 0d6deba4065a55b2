"""
Task Blueprint: tasks, deadlines and approvals.

Tasks:
  GET    /organizations/<org_id>/tasks?status=&assigned_to=&mine=
  POST   /organizations/<org_id>/tasks                        Editor+
  GET    /organizations/<org_id>/tasks/dashboard?all=
  GET/PATCH/DELETE /organizations/<org_id>/tasks/<id>

Deadlines:
  GET    /organizations/<org_id>/deadlines?include_completed=
  GET    /organizations/<org_id>/deadlines/upcoming?days=
  POST   /organizations/<org_id>/deadlines                    Editor+
  PATCH/DELETE /organizations/<org_id>/deadlines/<id>

Approvals:
  GET    /organizations/<org_id>/approvals?status=&assigned_to=
  POST   /organizations/<org_id>/approvals                    Editor+
  POST   /organizations/<org_id>/approvals/<id>/decision      assignee (any member when unassigned)
  POST   /organizations/<org_id>/approvals/<id>/cancel        requester
"""

from flask import Blueprint, g, jsonify, request

from vision.blueprints import json_body, register_error_handlers
from vision.middleware.permission_required import org_role_required
from vision.services import task_service

task_bp = Blueprint("task_bp", __name__, url_prefix="/api/v1")
register_error_handlers(task_bp)


def _flag(name: str, default: str = "") -> bool:
    return request.args.get(name, default).lower() in ("1", "true", "yes")


# ═══════════════════════════════════════════════════════════════
# Tasks
# ═══════════════════════════════════════════════════════════════
@task_bp.route("/organizations/<int:org_id>/tasks", methods=["GET"])
@org_role_required("Viewer")
def list_tasks(org_id):
    assigned_to = g.user_id if _flag("mine") else request.args.get("assigned_to", type=int)
    tasks = task_service.list_tasks(org_id, status=request.args.get("status"), assigned_to=assigned_to)
    items = [t.to_dict(task_service.status_label(t)) for t in tasks]
    return jsonify({"items": items, "total": len(items)}), 200


@task_bp.route("/organizations/<int:org_id>/tasks/dashboard", methods=["GET"])
@org_role_required("Viewer")
def task_dashboard(org_id):
    user_id = None if _flag("all") else g.user_id
    return jsonify(task_service.get_task_dashboard(org_id, user_id=user_id)), 200


@task_bp.route("/organizations/<int:org_id>/tasks", methods=["POST"])
@org_role_required("Editor")
def create_task(org_id):
    """Body: { "title", "description"?, "priority"?, "due_date"?, "assigned_to"? }"""
    data = json_body()
    task = task_service.create_task(org_id, g.user_id, data)
    return jsonify(task.to_dict(task_service.status_label(task))), 201


@task_bp.route("/organizations/<int:org_id>/tasks/<int:task_id>", methods=["GET"])
@org_role_required("Viewer")
def get_task(org_id, task_id):
    task = task_service.get_task(org_id, task_id)
    return jsonify(task.to_dict(task_service.status_label(task))), 200


@task_bp.route("/organizations/<int:org_id>/tasks/<int:task_id>", methods=["PATCH"])
@org_role_required("Editor")
def update_task(org_id, task_id):
    data = json_body()
    task = task_service.update_task(org_id, task_id, g.user_id, data)
    return jsonify(task.to_dict(task_service.status_label(task))), 200


@task_bp.route("/organizations/<int:org_id>/tasks/<int:task_id>", methods=["DELETE"])
@org_role_required("Editor")
def delete_task(org_id, task_id):
    task_service.delete_task(org_id, task_id, g.user_id)
    return "", 204


# ═══════════════════════════════════════════════════════════════
# Deadlines
# ═══════════════════════════════════════════════════════════════
@task_bp.route("/organizations/<int:org_id>/deadlines", methods=["GET"])
@org_role_required("Viewer")
def list_deadlines(org_id):
    deadlines = task_service.list_deadlines(org_id, include_completed=_flag("include_completed", "true"))
    return jsonify({"items": [d.to_dict() for d in deadlines], "total": len(deadlines)}), 200


@task_bp.route("/organizations/<int:org_id>/deadlines/upcoming", methods=["GET"])
@org_role_required("Viewer")
def upcoming_deadlines(org_id):
    days = request.args.get("days", 30, type=int)
    deadlines = task_service.upcoming_deadlines(org_id, days=max(1, min(days, 365)))
    return jsonify({"items": [d.to_dict() for d in deadlines], "total": len(deadlines)}), 200


@task_bp.route("/organizations/<int:org_id>/deadlines", methods=["POST"])
@org_role_required("Editor")
def create_deadline(org_id):
    """Body: { "title", "due_date", "type"?, "description"?, "is_completed"? }"""
    data = json_body()
    return jsonify(task_service.create_deadline(org_id, g.user_id, data).to_dict()), 201


@task_bp.route("/organizations/<int:org_id>/deadlines/<int:deadline_id>", methods=["PATCH"])
@org_role_required("Editor")
def update_deadline(org_id, deadline_id):
    data = json_body()
    return jsonify(task_service.update_deadline(org_id, deadline_id, g.user_id, data).to_dict()), 200


@task_bp.route("/organizations/<int:org_id>/deadlines/<int:deadline_id>", methods=["DELETE"])
@org_role_required("Editor")
def delete_deadline(org_id, deadline_id):
    task_service.delete_deadline(org_id, deadline_id, g.user_id)
    return "", 204


# ═══════════════════════════════════════════════════════════════
# Approvals
# ═══════════════════════════════════════════════════════════════
@task_bp.route("/organizations/<int:org_id>/approvals", methods=["GET"])
@org_role_required("Viewer")
def list_approvals(org_id):
    assigned_to = g.user_id if _flag("mine") else request.args.get("assigned_to", type=int)
    approvals = task_service.list_approvals(org_id, status=request.args.get("status"), assigned_to=assigned_to)
    return jsonify({"items": [a.to_dict() for a in approvals], "total": len(approvals)}), 200


@task_bp.route("/organizations/<int:org_id>/approvals", methods=["POST"])
@org_role_required("Editor")
def create_approval(org_id):
    """Body: { "title", "assigned_to"?, "type"?, "description"?, "due_date"? }"""
    data = json_body()
    return jsonify(task_service.create_approval(org_id, g.user_id, data).to_dict()), 201


@task_bp.route("/organizations/<int:org_id>/approvals/<int:approval_id>/decision", methods=["POST"])
@org_role_required("Viewer")
def decide_approval(org_id, approval_id):
    """Body: { "decision": "approved" | "rejected", "note"? }"""
    data = json_body()
    if not data.get("decision"):
        return jsonify({"error": "decision is required"}), 400
    approval = task_service.decide_approval(org_id, approval_id, g.user_id, data["decision"], data.get("note"))
    return jsonify(approval.to_dict()), 200


@task_bp.route("/organizations/<int:org_id>/approvals/<int:approval_id>/cancel", methods=["POST"])
@org_role_required("Editor")
def cancel_approval(org_id, approval_id):
    return jsonify(task_service.cancel_approval(org_id, approval_id, g.user_id).to_dict()), 200
