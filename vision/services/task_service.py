"""
Task Service: tasks, deadlines and approvals for the organization worklist.

Assignees must be live members of the organization. Assignment, completion
and approval decisions notify the affected user.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import or_

from vision.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from vision.models import db
from vision.models.worklist import (
    APPROVAL_TYPES,
    DEADLINE_TYPES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    Approval,
    Deadline,
    Task,
)
from vision.services.activity_service import log_activity
from vision.services.notification_service import NotificationService
from vision.utils.helpers import as_utc, parse_date, utcnow

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 300


# ═══════════════════════════════════════════════════════════════
# Validation helpers
# ═══════════════════════════════════════════════════════════════
def _title(value) -> str:
    title = (value or "").strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters",
                              details={"title": "too_long"})
    return title


def _choice(field: str, value, allowed) -> str:
    if value not in allowed:
        raise ValidationError(f"{field} must be one of {list(allowed)}", details={field: "invalid"})
    return value


def _date(field: str, value, required: bool = False):
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD)", details={field: "invalid"})
    return parsed


def _assignee(org_id: int, user_id):
    if user_id in (None, ""):
        return None
    from vision.services.organization_service import get_membership

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise ValidationError("assigned_to must be a user id", details={"assigned_to": "invalid"})
    if get_membership(org_id, user_id) is None:
        raise ValidationError("assigned_to must be a member of the organization",
                              details={"assigned_to": "not_a_member"})
    return user_id


def _today() -> date:
    return utcnow().date()


# ═══════════════════════════════════════════════════════════════
# Tasks
# ═══════════════════════════════════════════════════════════════
def status_label(task: Task, today: date | None = None) -> str:
    """overdue | due_today | upcoming | no_due_date | completed"""
    if task.status == "done":
        return "completed"
    if task.due_date is None:
        return "no_due_date"
    today = today or _today()
    if task.due_date < today:
        return "overdue"
    if task.due_date == today:
        return "due_today"
    return "upcoming"


def _get_task(org_id: int, task_id: int) -> Task:
    task = db.session.get(Task, task_id)
    if not task or task.organization_id != org_id or task.deleted_at is not None:
        raise NotFoundError("Task", task_id, org_id)
    return task


def get_task(org_id: int, task_id: int) -> Task:
    return _get_task(org_id, task_id)


def list_tasks(org_id: int, status: str | None = None, assigned_to: int | None = None) -> list[Task]:
    """Live tasks; nearest due date first, undated last."""
    q = Task.query.filter(Task.organization_id == org_id, Task.deleted_at.is_(None))
    if status:
        q = q.filter(Task.status == _choice("status", status, TASK_STATUSES))
    if assigned_to is not None:
        q = q.filter(Task.assigned_to == assigned_to)
    return q.order_by(Task.due_date.is_(None), Task.due_date, Task.id).all()


def get_task_dashboard(org_id: int, user_id: int | None = None, recent_days: int = 7) -> dict:
    """
    Bucket the caller's open tasks (assigned to or created by them) by urgency.

    Returns:
        dict with overdue, due_today, upcoming, no_due_date and
        completed_recent lists plus counts.
    """
    q = Task.query.filter(Task.organization_id == org_id, Task.deleted_at.is_(None))
    if user_id is not None:
        q = q.filter(or_(Task.assigned_to == user_id, Task.created_by == user_id))
    today = _today()
    since = utcnow() - timedelta(days=recent_days)

    buckets = {"overdue": [], "due_today": [], "upcoming": [], "no_due_date": [], "completed_recent": []}
    for task in q.order_by(Task.due_date.is_(None), Task.due_date, Task.id).all():
        label = status_label(task, today)
        if label == "completed":
            completed_at = as_utc(task.completed_at)
            if completed_at and completed_at >= since:
                buckets["completed_recent"].append(task.to_dict(label))
        else:
            buckets[label].append(task.to_dict(label))
    buckets["counts"] = {k: len(v) for k, v in buckets.items() if isinstance(v, list)}
    return buckets


def _notify_assignee(task: Task, actor_id: int) -> None:
    if task.assigned_to and task.assigned_to != actor_id:
        NotificationService.create(
            user_id=task.assigned_to,
            type="task_assigned",
            title="New task assigned",
            message=f'You were assigned "{task.title}"',
            organization_id=task.organization_id,
            priority="high" if task.priority == "high" else "medium",
            action_url=f"/tasks/{task.id}",
            metadata={"task_id": task.id},
            commit=False,
        )


def create_task(org_id: int, user_id: int, data: dict) -> Task:
    """
    Raises:
        ValidationError: Bad title, status, priority, date or assignee.
    """
    task = Task(
        organization_id=org_id,
        title=_title(data.get("title")),
        description=data.get("description"),
        status=_choice("status", data.get("status") or "todo", TASK_STATUSES),
        priority=_choice("priority", data.get("priority") or "medium", TASK_PRIORITIES),
        due_date=_date("due_date", data.get("due_date")),
        assigned_to=_assignee(org_id, data.get("assigned_to")),
        created_by=user_id,
    )
    if task.status == "done":
        task.completed_at = utcnow()
    db.session.add(task)
    db.session.flush()
    _notify_assignee(task, user_id)
    log_activity(org_id, user_id, "task", "created", entity_id=task.id, description=f"Created task {task.title}")
    db.session.commit()
    logger.info("Task created id=%s org=%s", task.id, org_id)
    return task


def update_task(org_id: int, task_id: int, user_id: int, data: dict) -> Task:
    """
    Partial update. Moving to ``done`` stamps ``completed_at`` and notifies
    the creator; leaving ``done`` clears it. Re-assignment notifies the new
    assignee.
    """
    task = _get_task(org_id, task_id)
    was_done = task.status == "done"
    old_assignee = task.assigned_to

    if "title" in data:
        task.title = _title(data["title"])
    if "description" in data:
        task.description = data["description"]
    if "priority" in data:
        task.priority = _choice("priority", data["priority"], TASK_PRIORITIES)
    if "due_date" in data:
        task.due_date = _date("due_date", data["due_date"])
    if "assigned_to" in data:
        task.assigned_to = _assignee(org_id, data["assigned_to"])
    if "status" in data:
        task.status = _choice("status", data["status"], TASK_STATUSES)

    if task.status == "done" and not was_done:
        task.completed_at = utcnow()
        if task.created_by and task.created_by != user_id:
            NotificationService.create(
                user_id=task.created_by,
                type="task_completed",
                title="Task completed",
                message=f'"{task.title}" was marked done',
                organization_id=org_id,
                action_url=f"/tasks/{task.id}",
                metadata={"task_id": task.id},
                commit=False,
            )
        log_activity(org_id, user_id, "task", "completed", entity_id=task.id,
                     description=f"Completed task {task.title}")
    elif task.status != "done" and was_done:
        task.completed_at = None

    if task.assigned_to != old_assignee:
        _notify_assignee(task, user_id)
    db.session.commit()
    logger.info("Task updated id=%s status=%s", task.id, task.status)
    return task


def delete_task(org_id: int, task_id: int, user_id: int) -> None:
    task = _get_task(org_id, task_id)
    task.deleted_at = utcnow()
    log_activity(org_id, user_id, "task", "deleted", entity_id=task.id, description=f"Deleted task {task.title}")
    db.session.commit()
    logger.info("Task soft-deleted id=%s", task.id)


# ═══════════════════════════════════════════════════════════════
# Deadlines
# ═══════════════════════════════════════════════════════════════
def _get_deadline(org_id: int, deadline_id: int) -> Deadline:
    deadline = db.session.get(Deadline, deadline_id)
    if not deadline or deadline.organization_id != org_id:
        raise NotFoundError("Deadline", deadline_id, org_id)
    return deadline


def list_deadlines(org_id: int, include_completed: bool = True) -> list[Deadline]:
    q = Deadline.query.filter_by(organization_id=org_id)
    if not include_completed:
        q = q.filter_by(is_completed=False)
    return q.order_by(Deadline.due_date, Deadline.id).all()


def upcoming_deadlines(org_id: int, days: int = 30) -> list[Deadline]:
    """Open deadlines due between today and ``days`` from now."""
    today = _today()
    return (
        Deadline.query.filter(
            Deadline.organization_id == org_id,
            Deadline.is_completed.is_(False),
            Deadline.due_date >= today,
            Deadline.due_date <= today + timedelta(days=days),
        )
        .order_by(Deadline.due_date, Deadline.id)
        .all()
    )


def create_deadline(org_id: int, user_id: int, data: dict) -> Deadline:
    deadline = Deadline(
        organization_id=org_id,
        title=_title(data.get("title")),
        description=data.get("description"),
        type=_choice("type", data.get("type") or "other", DEADLINE_TYPES),
        due_date=_date("due_date", data.get("due_date"), required=True),
        is_completed=bool(data.get("is_completed", False)),
        created_by=user_id,
    )
    db.session.add(deadline)
    db.session.flush()
    log_activity(org_id, user_id, "deadline", "created", entity_id=deadline.id,
                 description=f"Added deadline {deadline.title}")
    db.session.commit()
    return deadline


def update_deadline(org_id: int, deadline_id: int, user_id: int, data: dict) -> Deadline:
    deadline = _get_deadline(org_id, deadline_id)
    if "title" in data:
        deadline.title = _title(data["title"])
    if "description" in data:
        deadline.description = data["description"]
    if "type" in data:
        deadline.type = _choice("type", data["type"], DEADLINE_TYPES)
    if "due_date" in data:
        deadline.due_date = _date("due_date", data["due_date"], required=True)
    if "is_completed" in data:
        completed = bool(data["is_completed"])
        if completed and not deadline.is_completed:
            log_activity(org_id, user_id, "deadline", "completed", entity_id=deadline.id,
                         description=f"Completed deadline {deadline.title}")
        deadline.is_completed = completed
    db.session.commit()
    return deadline


def delete_deadline(org_id: int, deadline_id: int, user_id: int) -> None:
    deadline = _get_deadline(org_id, deadline_id)
    log_activity(org_id, user_id, "deadline", "deleted", entity_id=deadline.id,
                 description=f"Deleted deadline {deadline.title}")
    db.session.delete(deadline)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Approvals
# ═══════════════════════════════════════════════════════════════
def _get_approval(org_id: int, approval_id: int) -> Approval:
    approval = db.session.get(Approval, approval_id)
    if not approval or approval.organization_id != org_id:
        raise NotFoundError("Approval", approval_id, org_id)
    return approval


def list_approvals(org_id: int, status: str | None = None, assigned_to: int | None = None) -> list[Approval]:
    q = Approval.query.filter_by(organization_id=org_id)
    if status:
        q = q.filter_by(status=status)
    if assigned_to is not None:
        q = q.filter_by(assigned_to=assigned_to)
    return q.order_by(Approval.created_at.desc(), Approval.id.desc()).all()


def create_approval(org_id: int, user_id: int, data: dict) -> Approval:
    """Open a pending approval request; the approver (if any) is notified."""
    approval = Approval(
        organization_id=org_id,
        title=_title(data.get("title")),
        description=data.get("description"),
        type=_choice("type", data.get("type") or "review", APPROVAL_TYPES),
        status="pending",
        requested_by=user_id,
        assigned_to=_assignee(org_id, data.get("assigned_to")),
        due_date=_date("due_date", data.get("due_date")),
    )
    db.session.add(approval)
    db.session.flush()
    if approval.assigned_to and approval.assigned_to != user_id:
        NotificationService.create(
            user_id=approval.assigned_to,
            type="approval_requested",
            title="Approval requested",
            message=f'Your review is requested for "{approval.title}"',
            organization_id=org_id,
            action_url=f"/approvals/{approval.id}",
            metadata={"approval_id": approval.id},
            commit=False,
        )
    log_activity(org_id, user_id, "approval", "created", entity_id=approval.id,
                 description=f"Requested approval {approval.title}")
    db.session.commit()
    logger.info("Approval created id=%s org=%s", approval.id, org_id)
    return approval


def decide_approval(org_id: int, approval_id: int, user_id: int, decision: str, note: str | None = None) -> Approval:
    """
    Approve or reject a pending request and notify the requester.

    Raises:
        ValidationError: Unknown decision, or the approval is no longer pending.
        PermissionDeniedError: The caller is not the assigned approver.
    """
    if decision not in ("approved", "rejected"):
        raise ValidationError("decision must be 'approved' or 'rejected'", details={"decision": "invalid"})
    approval = _get_approval(org_id, approval_id)
    if approval.assigned_to and approval.assigned_to != user_id:
        raise PermissionDeniedError("Only the assigned approver can decide this request")
    if approval.status != "pending":
        raise ValidationError(f"Approval is already {approval.status}", details={"status": approval.status})

    approval.status = decision
    approval.decided_by = user_id
    approval.decided_at = utcnow()
    approval.decision_note = note
    if approval.requested_by and approval.requested_by != user_id:
        NotificationService.create(
            user_id=approval.requested_by,
            type="approval_decided",
            title=f"Request {decision}",
            message=f'"{approval.title}" was {decision}' + (f": {note}" if note else ""),
            organization_id=org_id,
            priority="high" if decision == "rejected" else "medium",
            action_url=f"/approvals/{approval.id}",
            metadata={"approval_id": approval.id, "decision": decision},
            commit=False,
        )
    log_activity(org_id, user_id, "approval", decision, entity_id=approval.id,
                 description=f"{decision.capitalize()} {approval.title}")
    db.session.commit()
    logger.info("Approval id=%s %s by user=%s", approval.id, decision, user_id)
    return approval


def cancel_approval(org_id: int, approval_id: int, user_id: int) -> Approval:
    """Withdraw a pending request. Only the requester may cancel."""
    approval = _get_approval(org_id, approval_id)
    if approval.requested_by != user_id:
        raise PermissionDeniedError("Only the requester can cancel this approval")
    if approval.status != "pending":
        raise ValidationError(f"Approval is already {approval.status}", details={"status": approval.status})
    approval.status = "cancelled"
    db.session.commit()
    return approval
