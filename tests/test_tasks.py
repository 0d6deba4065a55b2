"""
Worklist tests: tasks, deadlines and approvals.

Covers:
  - Task validation, assignee membership, completion stamps
  - Status labels and the urgency dashboard buckets
  - Assignment / completion / approval notifications
  - Upcoming deadline window
  - Approval decisions restricted to the assignee, cancel by requester
"""

from datetime import timedelta

import pytest

from vision.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from vision.models.notification import Notification
from vision.models.worklist import Task
from vision.services import task_service
from vision.utils.helpers import utcnow


def _today():
    return utcnow().date()


def _task(org, user, **data):
    return task_service.create_task(org.id, user.id, {"title": "Call donors", **data})


class TestTasks:
    def test_defaults(self, org, owner):
        task = _task(org, owner)
        assert (task.status, task.priority, task.due_date) == ("todo", "medium", None)
        assert task_service.status_label(task) == "no_due_date"

    @pytest.mark.parametrize("data", [
        {"title": "  "},
        {"title": "x" * 301},
        {"status": "blocked"},
        {"priority": "urgent"},
        {"due_date": "next tuesday"},
    ])
    def test_validation(self, org, owner, data):
        with pytest.raises(ValidationError):
            _task(org, owner, **data)

    def test_assignee_must_be_member(self, org, owner, make_user):
        outsider = make_user()
        with pytest.raises(ValidationError) as exc:
            _task(org, owner, assigned_to=outsider.id)
        assert exc.value.details == {"assigned_to": "not_a_member"}

    def test_assignment_notifies(self, org, owner, make_member):
        user, _, _ = make_member("Editor")
        task = _task(org, owner, assigned_to=user.id, priority="high")
        notif = Notification.query.filter_by(user_id=user.id, type="task_assigned").one()
        assert notif.priority == "high"
        assert notif.metadata_json == {"task_id": task.id}

    def test_self_assignment_is_silent(self, org, owner):
        _task(org, owner, assigned_to=owner.id)
        assert Notification.query.filter_by(user_id=owner.id).count() == 0

    def test_completion_stamps_and_notifies_creator(self, org, owner, make_member):
        user, _, _ = make_member("Editor")
        task = _task(org, owner, assigned_to=user.id)
        task_service.update_task(org.id, task.id, user.id, {"status": "done"})
        assert task.completed_at is not None
        assert task_service.status_label(task) == "completed"
        assert Notification.query.filter_by(user_id=owner.id, type="task_completed").count() == 1

        task_service.update_task(org.id, task.id, user.id, {"status": "in_progress"})
        assert task.completed_at is None

    def test_reassignment_notifies_new_assignee(self, org, owner, make_member):
        first, _, _ = make_member("Editor")
        second, _, _ = make_member("Editor")
        task = _task(org, owner, assigned_to=first.id)
        task_service.update_task(org.id, task.id, owner.id, {"assigned_to": second.id})
        assert Notification.query.filter_by(user_id=second.id, type="task_assigned").count() == 1

    def test_status_labels(self, org, owner):
        today = _today()
        assert task_service.status_label(_task(org, owner, due_date=str(today - timedelta(days=1)))) == "overdue"
        assert task_service.status_label(_task(org, owner, due_date=str(today))) == "due_today"
        assert task_service.status_label(_task(org, owner, due_date=str(today + timedelta(days=3)))) == "upcoming"

    def test_list_orders_by_due_date_undated_last(self, org, owner):
        today = _today()
        undated = _task(org, owner, title="Undated")
        later = _task(org, owner, title="Later", due_date=str(today + timedelta(days=5)))
        sooner = _task(org, owner, title="Sooner", due_date=str(today + timedelta(days=1)))
        assert [t.id for t in task_service.list_tasks(org.id)] == [sooner.id, later.id, undated.id]

    def test_soft_delete(self, org, owner):
        task = _task(org, owner)
        task_service.delete_task(org.id, task.id, owner.id)
        with pytest.raises(NotFoundError):
            task_service.get_task(org.id, task.id)
        assert task_service.list_tasks(org.id) == []


class TestDashboard:
    def test_buckets_for_caller(self, org, owner, make_member):
        user, _, _ = make_member("Editor")
        today = _today()
        _task(org, owner, title="Late", due_date=str(today - timedelta(days=2)), assigned_to=user.id)
        _task(org, owner, title="Today", due_date=str(today), assigned_to=user.id)
        _task(org, owner, title="Someday", assigned_to=user.id)
        done = _task(org, owner, title="Finished", assigned_to=user.id)
        task_service.update_task(org.id, done.id, user.id, {"status": "done"})
        _task(org, owner, title="Not mine")

        board = task_service.get_task_dashboard(org.id, user_id=user.id)
        assert [t["title"] for t in board["overdue"]] == ["Late"]
        assert board["overdue"][0]["status_label"] == "overdue"
        assert [t["title"] for t in board["due_today"]] == ["Today"]
        assert [t["title"] for t in board["no_due_date"]] == ["Someday"]
        assert [t["title"] for t in board["completed_recent"]] == ["Finished"]
        assert board["counts"]["upcoming"] == 0

    def test_old_completions_drop_out(self, org, owner):
        task = _task(org, owner, status="done")
        task.completed_at = utcnow() - timedelta(days=30)
        board = task_service.get_task_dashboard(org.id)
        assert board["completed_recent"] == []


class TestDeadlines:
    def test_due_date_required(self, org, owner):
        with pytest.raises(ValidationError) as exc:
            task_service.create_deadline(org.id, owner.id, {"title": "Grant report"})
        assert exc.value.details == {"due_date": "required"}

    def test_upcoming_window(self, org, owner):
        today = _today()
        make = lambda title, offset, **kw: task_service.create_deadline(  # noqa: E731
            org.id, owner.id, {"title": title, "due_date": str(today + timedelta(days=offset)), **kw})
        make("Past", -1)
        make("Soon", 5, type="grant")
        make("Far", 60)
        make("Done", 2, is_completed=True)
        assert [d.title for d in task_service.upcoming_deadlines(org.id, days=30)] == ["Soon"]
        assert len(task_service.list_deadlines(org.id)) == 4
        assert len(task_service.list_deadlines(org.id, include_completed=False)) == 3

    def test_bad_type(self, org, owner):
        with pytest.raises(ValidationError):
            task_service.create_deadline(org.id, owner.id, {"title": "x", "due_date": "2026-01-01", "type": "party"})

    def test_update_and_delete(self, org, owner):
        d = task_service.create_deadline(org.id, owner.id, {"title": "Audit", "due_date": "2026-09-30"})
        task_service.update_deadline(org.id, d.id, owner.id, {"is_completed": True, "type": "compliance"})
        assert d.is_completed is True
        task_service.delete_deadline(org.id, d.id, owner.id)
        with pytest.raises(NotFoundError):
            task_service.update_deadline(org.id, d.id, owner.id, {"title": "x"})


class TestApprovals:
    def test_request_notifies_approver(self, org, owner, make_member):
        approver, _, _ = make_member("Admin")
        approval = task_service.create_approval(org.id, owner.id, {"title": "Budget FY26", "type": "budget",
                                                                   "assigned_to": approver.id})
        assert approval.status == "pending"
        assert Notification.query.filter_by(user_id=approver.id, type="approval_requested").count() == 1

    def test_only_assignee_decides(self, org, owner, make_member):
        approver, _, _ = make_member("Admin")
        bystander, _, _ = make_member("Admin")
        approval = task_service.create_approval(org.id, owner.id, {"title": "Hire", "assigned_to": approver.id})
        with pytest.raises(PermissionDeniedError):
            task_service.decide_approval(org.id, approval.id, bystander.id, "approved")

        task_service.decide_approval(org.id, approval.id, approver.id, "rejected", "Over budget")
        assert approval.status == "rejected"
        assert approval.decided_by == approver.id
        notif = Notification.query.filter_by(user_id=owner.id, type="approval_decided").one()
        assert notif.priority == "high"
        assert "Over budget" in notif.message

    def test_unassigned_can_be_decided_by_anyone(self, org, owner, make_member):
        user, _, _ = make_member("Viewer")
        approval = task_service.create_approval(org.id, owner.id, {"title": "Logo"})
        task_service.decide_approval(org.id, approval.id, user.id, "approved")
        assert approval.status == "approved"

    def test_decided_once(self, org, owner):
        approval = task_service.create_approval(org.id, owner.id, {"title": "Logo"})
        task_service.decide_approval(org.id, approval.id, owner.id, "approved")
        with pytest.raises(ValidationError):
            task_service.decide_approval(org.id, approval.id, owner.id, "rejected")

    def test_invalid_decision(self, org, owner):
        approval = task_service.create_approval(org.id, owner.id, {"title": "Logo"})
        with pytest.raises(ValidationError):
            task_service.decide_approval(org.id, approval.id, owner.id, "maybe")

    def test_cancel_by_requester_only(self, org, owner, make_member):
        user, _, _ = make_member("Editor")
        approval = task_service.create_approval(org.id, owner.id, {"title": "Logo"})
        with pytest.raises(PermissionDeniedError):
            task_service.cancel_approval(org.id, approval.id, user.id)
        task_service.cancel_approval(org.id, approval.id, owner.id)
        assert approval.status == "cancelled"

    def test_filters(self, org, owner, make_member):
        approver, _, _ = make_member("Admin")
        task_service.create_approval(org.id, owner.id, {"title": "A", "assigned_to": approver.id})
        b = task_service.create_approval(org.id, owner.id, {"title": "B"})
        task_service.decide_approval(org.id, b.id, owner.id, "approved")
        assert [a.title for a in task_service.list_approvals(org.id, status="pending")] == ["A"]
        assert [a.title for a in task_service.list_approvals(org.id, assigned_to=approver.id)] == ["A"]


class TestWorklistAPI:
    def test_task_crud(self, client, org, owner_headers):
        base = f"/api/v1/organizations/{org.id}/tasks"
        res = client.post(base, json={"title": "Print flyers", "due_date": str(_today())}, headers=owner_headers)
        assert res.status_code == 201
        tid = res.get_json()["id"]

        items = client.get(base, headers=owner_headers).get_json()["items"]
        assert items[0]["status_label"] == "due_today"

        res = client.patch(f"{base}/{tid}", json={"status": "done"}, headers=owner_headers)
        assert res.get_json()["completed_at"] is not None
        assert client.delete(f"{base}/{tid}", headers=owner_headers).status_code == 204
        assert client.get(f"{base}/{tid}", headers=owner_headers).status_code == 404

    def test_mine_filter_and_dashboard(self, client, org, owner, make_member):
        user, _, headers = make_member("Editor")
        _task(org, owner, title="Theirs", assigned_to=user.id)
        _task(org, owner, title="Owner's")
        res = client.get(f"/api/v1/organizations/{org.id}/tasks?mine=true", headers=headers)
        assert [t["title"] for t in res.get_json()["items"]] == ["Theirs"]

        board = client.get(f"/api/v1/organizations/{org.id}/tasks/dashboard", headers=headers).get_json()
        assert board["counts"]["no_due_date"] == 1
        board = client.get(f"/api/v1/organizations/{org.id}/tasks/dashboard?all=true", headers=headers).get_json()
        assert board["counts"]["no_due_date"] == 2

    def test_viewer_cannot_create_task(self, client, org, make_member):
        _, _, headers = make_member("Viewer")
        res = client.post(f"/api/v1/organizations/{org.id}/tasks", json={"title": "x"}, headers=headers)
        assert res.status_code == 403

    def test_deadlines_endpoints(self, client, org, owner_headers):
        base = f"/api/v1/organizations/{org.id}/deadlines"
        soon = str(_today() + timedelta(days=3))
        res = client.post(base, json={"title": "990 filing", "type": "compliance", "due_date": soon},
                          headers=owner_headers)
        assert res.status_code == 201
        upcoming = client.get(f"{base}/upcoming?days=7", headers=owner_headers).get_json()
        assert [d["title"] for d in upcoming["items"]] == ["990 filing"]

    def test_approval_decision_endpoint(self, client, org, owner, make_member):
        approver, _, approver_headers = make_member("Viewer")
        approval = task_service.create_approval(org.id, owner.id, {"title": "Press release",
                                                                   "assigned_to": approver.id})
        url = f"/api/v1/organizations/{org.id}/approvals/{approval.id}/decision"
        assert client.post(url, json={}, headers=approver_headers).status_code == 400
        res = client.post(url, json={"decision": "approved", "note": "Looks good"}, headers=approver_headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"

    def test_wrong_approver_is_403(self, client, org, owner, owner_headers, make_member):
        approver, _, _ = make_member("Admin")
        approval = task_service.create_approval(org.id, owner.id, {"title": "X", "assigned_to": approver.id})
        res = client.post(f"/api/v1/organizations/{org.id}/approvals/{approval.id}/decision",
                          json={"decision": "approved"}, headers=owner_headers)
        assert res.status_code == 403
