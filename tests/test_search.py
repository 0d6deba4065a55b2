"""
Global search tests: grouped hits, minimum query length, tenant scoping.
"""

import io

from werkzeug.datastructures import FileStorage

from conftest import bearer
from vision.services import community_pulse_service, document_service, folder_service, task_service
from vision.services.organization_service import create_organization
from vision.services.search_service import global_search


def _seed(org, owner):
    folder_service.create_folder(org.id, owner.id, {"name": "Pantry Logs"})
    document_service.upload_document(
        org.id, owner.id,
        FileStorage(stream=io.BytesIO(b"stock counts"), filename="pantry-stock.txt", content_type="text/plain"),
    )
    community_pulse_service.create_engagement(org.id, owner.id, {"title": "Pantry Hours Survey"})
    task_service.create_task(org.id, owner.id, {"title": "Restock pantry shelves"})


class TestGlobalSearch:
    def test_groups(self, org, owner):
        _seed(org, owner)
        result = global_search(org.id, "PANTRY")
        groups = result["results"]
        assert [f["name"] for f in groups["folders"]] == ["Pantry Logs"]
        assert [d["name"] for d in groups["documents"]] == ["pantry-stock.txt"]
        assert [e["title"] for e in groups["engagements"]] == ["Pantry Hours Survey"]
        assert [t["title"] for t in groups["tasks"]] == ["Restock pantry shelves"]
        assert groups["members"] == []
        assert result["total"] == 4

    def test_members_by_name_or_email(self, org, owner):
        hits = global_search(org.id, "olivia")["results"]["members"]
        assert hits[0]["email"] == "owner@helpinghands.org"
        assert hits[0]["role"] == "Owner"

    def test_short_query_returns_nothing(self, org, owner):
        _seed(org, owner)
        assert global_search(org.id, " p ")["total"] == 0

    def test_like_wildcards_are_literal(self, org, owner):
        _seed(org, owner)
        assert global_search(org.id, "%%")["total"] == 0

    def test_limit_per_group(self, org, owner):
        for i in range(4):
            task_service.create_task(org.id, owner.id, {"title": f"Call volunteer {i}"})
        assert len(global_search(org.id, "volunteer", limit=2)["results"]["tasks"]) == 2

    def test_other_org_is_invisible(self, org, owner, make_user):
        _seed(org, owner)
        other = create_organization(make_user().id, {"name": "Other Cause"})
        assert global_search(other.id, "pantry")["total"] == 0


class TestSearchAPI:
    def test_endpoint(self, client, org, owner, owner_headers):
        _seed(org, owner)
        res = client.get(f"/api/v1/organizations/{org.id}/search?q=restock", headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["results"]["tasks"][0]["title"] == "Restock pantry shelves"

    def test_requires_membership(self, client, org, make_user):
        res = client.get(f"/api/v1/organizations/{org.id}/search?q=pantry", headers=bearer(make_user()))
        assert res.status_code == 404
