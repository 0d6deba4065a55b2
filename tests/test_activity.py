"""
Activity feed, dashboard KPI and app-usage tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import bearer
from vision.core.exceptions import ValidationError
from vision.services import activity_service, app_catalog_service, task_service
from vision.services.notification_service import NotificationService


def _days_ago(n):
    return (datetime.now(timezone.utc).date() - timedelta(days=n)).isoformat()


class TestFeed:
    def test_organization_creation_is_logged(self, org, owner):
        items, total = activity_service.list_activities(org.id)
        assert total == 1
        assert (items[0].entity_type, items[0].action) == ("organization", "created")
        assert items[0].to_dict()["user_name"]

    def test_unknown_type_or_action(self, org, owner):
        with pytest.raises(ValidationError):
            activity_service.log_activity(org.id, owner.id, "spaceship", "created")
        with pytest.raises(ValidationError):
            activity_service.log_activity(org.id, owner.id, "task", "teleported")

    def test_filters_and_order(self, org, owner, make_member):
        helper, _, _ = make_member("Editor")
        activity_service.log_activity(org.id, owner.id, "task", "created", entity_id=7, commit=True)
        activity_service.log_activity(org.id, helper.id, "task", "completed", entity_id=7, commit=True)
        activity_service.log_activity(org.id, helper.id, "document", "uploaded", entity_id=3, commit=True)

        items, total = activity_service.list_activities(org.id, entity_type="task", entity_id=7)
        assert total == 2
        assert [a.action for a in items] == ["completed", "created"]

        _, total = activity_service.list_activities(org.id, user_id=helper.id, entity_type="document")
        assert total == 1
        assert len(activity_service.recent_activities(org.id, limit=2)) == 2


class TestKpis:
    def _kpis(self, org_id, user_id=None):
        return {s.kpi_key: s for s in activity_service.compute_dashboard_kpis(org_id, user_id)}

    def test_empty_org(self, org):
        kpis = self._kpis(org.id)
        assert [k for k in kpis] == ["active_apps", "pending_approvals", "unread_notifications", "open_tasks"]
        assert kpis["open_tasks"].semantic == "success"
        assert kpis["open_tasks"].sublabel == "In progress"
        assert kpis["pending_approvals"].semantic == "info"

    def test_overdue_task_warns(self, org, owner):
        task_service.create_task(org.id, owner.id, {"title": "File 990", "due_date": _days_ago(2)})
        task_service.create_task(org.id, owner.id, {"title": "Plan gala"})
        open_tasks = self._kpis(org.id)["open_tasks"]
        assert open_tasks.value == 2
        assert open_tasks.semantic == "warning"
        assert open_tasks.sublabel == "1 overdue"

    def test_pending_approvals_and_active_apps(self, org, owner):
        app_catalog_service.seed_apps()
        app_catalog_service.install_app(org.id, owner.id, "documents")
        app_catalog_service.install_app(org.id, owner.id, "tasks")
        app_catalog_service.toggle_app(org.id, "tasks", enabled=False)
        task_service.create_approval(org.id, owner.id, {"title": "Approve budget"})
        kpis = self._kpis(org.id)
        assert kpis["active_apps"].value == 1
        assert kpis["pending_approvals"].value == 1
        assert kpis["pending_approvals"].semantic == "warning"

    def test_unread_scaled_and_scoped(self, org, owner, make_member):
        helper, _, _ = make_member("Editor")
        for _ in range(4):
            NotificationService.create(user_id=owner.id, type="system", title="Ping", organization_id=org.id)
        NotificationService.create(user_id=helper.id, type="system", title="Ping", organization_id=org.id)
        assert self._kpis(org.id)["unread_notifications"].semantic == "error"
        mine = self._kpis(org.id, helper.id)["unread_notifications"]
        assert mine.value == 1
        assert mine.semantic == "warning"

    def test_latest_returns_one_per_key(self, org, owner):
        activity_service.compute_dashboard_kpis(org.id)
        task_service.create_task(org.id, owner.id, {"title": "Order chairs"})
        activity_service.compute_dashboard_kpis(org.id)
        latest = {s.kpi_key: s.value for s in activity_service.latest_kpis(org.id)}
        assert len(latest) == 4
        assert latest["open_tasks"] == 1


class TestAppUsage:
    def test_launch_count_increments(self, org, owner):
        activity_service.track_app_usage(org.id, owner.id, "documents")
        usage = activity_service.track_app_usage(org.id, owner.id, "documents")
        assert usage.launch_count == 2
        activity_service.track_app_usage(org.id, owner.id, "tasks")
        assert {u.app_slug for u in activity_service.recent_apps(org.id, owner.id)} == {"documents", "tasks"}


class TestActivityAPI:
    def test_feed(self, client, org, owner_headers):
        res = client.get(f"/api/v1/organizations/{org.id}/activity?entity_type=organization", headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["total"] == 1
        res = client.get(f"/api/v1/organizations/{org.id}/activity/recent", headers=owner_headers)
        assert len(res.get_json()["items"]) == 1

    def test_kpis(self, client, org, owner_headers):
        res = client.get(f"/api/v1/organizations/{org.id}/dashboard/kpis", headers=owner_headers)
        assert [k["kpi_key"] for k in res.get_json()["items"]][0] == "active_apps"
        res = client.get(f"/api/v1/organizations/{org.id}/dashboard/kpis/latest", headers=owner_headers)
        assert len(res.get_json()["items"]) == 4

    def test_launch_and_recent(self, client, org, make_member):
        _, _, headers = make_member("Viewer")
        res = client.post(f"/api/v1/organizations/{org.id}/apps/community-pulse/launch", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["launch_count"] == 1
        res = client.get(f"/api/v1/organizations/{org.id}/apps/recent", headers=headers)
        assert res.get_json()["items"][0]["app_slug"] == "community-pulse"

    def test_non_member_forbidden(self, client, org, make_user):
        res = client.get(f"/api/v1/organizations/{org.id}/activity", headers=bearer(make_user()))
        assert res.status_code == 404
