"""
App catalog tests: seeding, plan-gated installs, toggling and the API.
"""

import pytest

from vision.core.exceptions import ConflictError, NotFoundError, ValidationError
from vision.services import app_catalog_service, billing_service


@pytest.fixture()
def catalog():
    return app_catalog_service.seed_apps()


class TestCatalog:
    def test_seed_is_idempotent(self):
        assert app_catalog_service.seed_apps() == 5
        assert app_catalog_service.seed_apps() == 0

    def test_list_marks_installed(self, org, owner, catalog):
        app_catalog_service.install_app(org.id, owner.id, "documents")
        apps = {a["slug"]: a for a in app_catalog_service.list_apps(org.id)}
        assert len(apps) == 5
        assert apps["documents"]["installed"] is True
        assert apps["documents"]["is_enabled"] is True
        assert apps["tasks"]["installed"] is False

        installed = app_catalog_service.list_apps(org.id, installed_only=True)
        assert [a["slug"] for a in installed] == ["documents"]
        assert [a["slug"] for a in app_catalog_service.list_apps(org.id, category="fundraising")] == \
            ["grant-tracker"]

    def test_paid_app_needs_upgrade(self, org, owner, catalog):
        with pytest.raises(ValidationError) as exc:
            app_catalog_service.install_app(org.id, owner.id, "grant-tracker")
        assert exc.value.details == {"plan": "upgrade_required"}

        billing_service.change_plan(org.id, owner.id, "pro")
        inst = app_catalog_service.install_app(org.id, owner.id, "grant-tracker")
        assert inst.is_enabled is True

    def test_install_twice_conflicts(self, org, owner, catalog):
        app_catalog_service.install_app(org.id, owner.id, "tasks")
        with pytest.raises(ConflictError):
            app_catalog_service.install_app(org.id, owner.id, "tasks")

    def test_unknown_app(self, org, owner, catalog):
        with pytest.raises(NotFoundError):
            app_catalog_service.install_app(org.id, owner.id, "time-machine")

    def test_toggle_and_uninstall(self, org, owner, catalog):
        app_catalog_service.install_app(org.id, owner.id, "tasks")
        assert app_catalog_service.toggle_app(org.id, "tasks").is_enabled is False
        assert app_catalog_service.toggle_app(org.id, "tasks").is_enabled is True
        assert app_catalog_service.toggle_app(org.id, "tasks", enabled=True).is_enabled is True

        app_catalog_service.uninstall_app(org.id, owner.id, "tasks")
        with pytest.raises(NotFoundError):
            app_catalog_service.uninstall_app(org.id, owner.id, "tasks")
        with pytest.raises(NotFoundError):
            app_catalog_service.toggle_app(org.id, "tasks")


class TestAppCatalogAPI:
    def test_install_toggle_uninstall(self, client, org, owner_headers, catalog):
        base = f"/api/v1/organizations/{org.id}/apps"
        res = client.post(f"{base}/community-pulse/install", headers=owner_headers)
        assert res.status_code == 201
        assert res.get_json()["app"]["slug"] == "community-pulse"
        assert client.post(f"{base}/community-pulse/install", headers=owner_headers).status_code == 409

        res = client.patch(f"{base}/community-pulse", json={"is_enabled": False}, headers=owner_headers)
        assert res.get_json()["is_enabled"] is False

        body = client.get(f"{base}?installed=true", headers=owner_headers).get_json()
        assert body["total"] == 1
        assert client.delete(f"{base}/community-pulse", headers=owner_headers).status_code == 204

    def test_paid_app_is_422(self, client, org, owner_headers, catalog):
        res = client.post(f"/api/v1/organizations/{org.id}/apps/impact-dashboard/install", headers=owner_headers)
        assert res.status_code == 422

    def test_editor_can_browse_not_install(self, client, org, make_member, catalog):
        _, _, headers = make_member("Editor")
        assert client.get(f"/api/v1/organizations/{org.id}/apps", headers=headers).status_code == 200
        res = client.post(f"/api/v1/organizations/{org.id}/apps/tasks/install", headers=headers)
        assert res.status_code == 403
