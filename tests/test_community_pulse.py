"""
CommunityPulse wizard tests.

Covers:
  - Create / partial update (camelCase + snake_case), field validation
  - Stage gating on continue, final stage, completion
  - Archived engagements are read-only; expected_updated_at conflicts
  - Method catalog seeding and goal-type recommendations
  - Templates (system, from source engagement, use), materials upsert
  - Exports (json/csv/markdown/html/xlsx) and the audit trail
  - API role gates and export responses
"""

import io
import json

import pytest
from openpyxl import load_workbook

from vision.core.exceptions import NotFoundError, StaleWriteError, ValidationError
from vision.models.community_pulse import EngagementAuditLog
from vision.services import community_pulse_export as cpx
from vision.services import community_pulse_service as cps


def _new(org, owner, **data):
    payload = {"title": "Neighborhood Food Access", **data}
    return cps.create_engagement(org.id, owner.id, payload)


def _advance_to_final(org, owner, engagement):
    cps.continue_engagement(org.id, engagement.id, owner.id,
                            {"learningGoal": "Why families skip the pantry", "goalType": "explore"})
    cps.continue_engagement(org.id, engagement.id, owner.id, {"target_population": "Families on the east side"})
    cps.continue_engagement(org.id, engagement.id, owner.id, {"primaryMethod": "focus_groups"})
    cps.continue_engagement(org.id, engagement.id, owner.id, {"participation_model": "collaborative"})
    cps.continue_engagement(org.id, engagement.id, owner.id)
    cps.continue_engagement(org.id, engagement.id, owner.id)
    return engagement


def _actions(engagement):
    return [e.action for e in EngagementAuditLog.query.filter_by(engagement_id=engagement.id)
            .order_by(EngagementAuditLog.id)]


class TestEngagementCRUD:
    def test_create_is_draft_at_stage_one(self, org, owner):
        e = _new(org, owner)
        assert (e.status, e.current_stage) == ("draft", 1)
        assert e.to_dict()["stage_name"] == "Learning Goal"
        assert cps.missing_stage_fields(e) == ["learning_goal", "goal_type"]
        assert _actions(e) == ["engagement.created"]

    def test_title_required(self, org, owner):
        with pytest.raises(ValidationError) as exc:
            cps.create_engagement(org.id, owner.id, {"title": ""})
        assert "title" in exc.value.details

    def test_camel_case_partial_update(self, org, owner):
        e = _new(org, owner)
        cps.update_engagement(org.id, e.id, owner.id, {
            "targetPopulation": "Seniors",
            "accessibilityNeeds": {"childcare": True, "interpretation": ["es"]},
            "budgetEstimate": "1234.567",
        })
        d = e.to_dict()
        assert d["target_population"] == "Seniors"
        assert d["accessibility_needs"] == {"childcare": True, "interpretation": ["es"]}
        assert d["budget_estimate"] == 1234.57
        assert d["title"] == "Neighborhood Food Access"
        assert "engagement.updated" in _actions(e)

    def test_stage_and_status_not_writable(self, org, owner):
        e = _new(org, owner)
        with pytest.raises(ValidationError) as exc:
            cps.update_engagement(org.id, e.id, owner.id, {"current_stage": 5})
        assert "current_stage" in exc.value.details
        with pytest.raises(ValidationError):
            cps.update_engagement(org.id, e.id, owner.id, {"status": "completed"})

    @pytest.mark.parametrize("payload", [
        {"goal_type": "wander"},
        {"estimated_participants": 0},
        {"budget_estimate": -5},
        {"start_date": "2026-05-10", "end_date": "2026-05-01"},
        {"questions": [{"id": "q1", "type": "core", "question": ""}]},
    ])
    def test_invalid_values(self, org, owner, payload):
        e = _new(org, owner)
        with pytest.raises(ValidationError):
            cps.update_engagement(org.id, e.id, owner.id, payload)

    @pytest.mark.parametrize("field, ok, too_much", [
        ("title", "t" * 200, "t" * 201),
        ("learning_goal", "g" * 2000, "g" * 2001),
        ("estimated_participants", 100_000, 100_001),
        ("budget_estimate", "10000000", "10000000.01"),
    ])
    def test_upper_bounds(self, org, owner, field, ok, too_much):
        e = _new(org, owner)
        cps.update_engagement(org.id, e.id, owner.id, {field: ok})
        with pytest.raises(ValidationError) as exc:
            cps.update_engagement(org.id, e.id, owner.id, {field: too_much})
        assert field in exc.value.details

    def test_blank_title_rejected(self, org, owner):
        with pytest.raises(ValidationError):
            cps.create_engagement(org.id, owner.id, {"title": "   "})
        e = _new(org, owner)
        with pytest.raises(ValidationError):
            cps.update_engagement(org.id, e.id, owner.id, {"title": " \t "})
        cps.update_engagement(org.id, e.id, owner.id, {"title": "  Pantry hours  "})
        assert e.title == "Pantry hours"

    def test_method_selection_is_audited(self, org, owner):
        e = _new(org, owner)
        cps.update_engagement(org.id, e.id, owner.id, {"primary_method": "surveys"})
        entry = EngagementAuditLog.query.filter_by(engagement_id=e.id, action="method.selected").one()
        assert entry.details == {"method": "surveys", "previous": None}

    def test_other_org_is_not_found(self, org, owner):
        from vision.services.organization_service import create_organization
        other = create_organization(owner.id, {"name": "Other Org"})
        e = _new(org, owner)
        with pytest.raises(NotFoundError):
            cps.get_engagement(other.id, e.id)

    def test_list_hides_archived(self, org, owner):
        keep = _new(org, owner)
        gone = _new(org, owner, title="Old effort")
        cps.archive_engagement(org.id, gone.id, owner.id)
        assert [e.id for e in cps.list_engagements(org.id)] == [keep.id]
        assert [e.id for e in cps.list_engagements(org.id, status="archived")] == [gone.id]
        with pytest.raises(ValidationError):
            cps.list_engagements(org.id, status="bogus")

    def test_delete_cascades(self, org, owner):
        e = _new(org, owner)
        cps.save_material(org.id, e.id, owner.id, "consent_form", {"title": "Consent"})
        cps.delete_engagement(org.id, e.id, owner.id)
        with pytest.raises(NotFoundError):
            cps.get_engagement(org.id, e.id)
        assert EngagementAuditLog.query.filter_by(engagement_id=e.id).count() == 0


class TestStageProgression:
    def test_continue_requires_stage_fields(self, org, owner):
        e = _new(org, owner, learning_goal="Understand barriers")
        with pytest.raises(ValidationError) as exc:
            cps.continue_engagement(org.id, e.id, owner.id)
        assert exc.value.details == {"goal_type": "required"}
        assert e.current_stage == 1

    def test_continue_applies_payload_then_advances(self, org, owner):
        e = _new(org, owner)
        cps.continue_engagement(org.id, e.id, owner.id, {"learning_goal": "Barriers", "goal_type": "test"})
        assert e.current_stage == 2
        assert e.status == "in_progress"
        entry = EngagementAuditLog.query.filter_by(engagement_id=e.id, action="engagement.stage_completed").one()
        assert entry.details["stage"] == 1
        assert entry.details["fields"] == ["goal_type", "learning_goal"]

    def test_failed_continue_does_not_persist_payload(self, org, owner):
        e = _new(org, owner)
        with pytest.raises(ValidationError):
            cps.continue_engagement(org.id, e.id, owner.id, {"learning_goal": "Only half"})
        assert cps.get_engagement(org.id, e.id).learning_goal is None

    def test_stage_three_needs_method(self, org, owner):
        e = _new(org, owner, learning_goal="x", goal_type="decide")
        cps.continue_engagement(org.id, e.id, owner.id)
        cps.continue_engagement(org.id, e.id, owner.id)
        with pytest.raises(ValidationError) as exc:
            cps.continue_engagement(org.id, e.id, owner.id)
        assert exc.value.details == {"primary_method": "required"}

    def test_final_stage_and_completion(self, org, owner):
        e = _advance_to_final(org, owner, _new(org, owner))
        assert e.current_stage == 7
        with pytest.raises(ValidationError):
            cps.continue_engagement(org.id, e.id, owner.id)
        cps.complete_engagement(org.id, e.id, owner.id)
        assert e.status == "completed"
        assert e.completed_at is not None

    def test_cannot_complete_early(self, org, owner):
        e = _new(org, owner)
        with pytest.raises(ValidationError):
            cps.complete_engagement(org.id, e.id, owner.id)

    def test_archived_is_read_only(self, org, owner):
        e = _new(org, owner)
        cps.archive_engagement(org.id, e.id, owner.id)
        with pytest.raises(ValidationError) as exc:
            cps.update_engagement(org.id, e.id, owner.id, {"learning_goal": "late edit"})
        assert exc.value.details == {"status": "archived"}
        with pytest.raises(ValidationError):
            cps.save_material(org.id, e.id, owner.id, "budget", {"title": "Budget"})

    def test_stale_write_conflicts(self, org, owner):
        e = _new(org, owner)
        loaded = e.to_dict()["updated_at"]
        cps.update_engagement(org.id, e.id, owner.id, {"learning_goal": "first"}, expected_updated_at=loaded)
        with pytest.raises(StaleWriteError):
            cps.update_engagement(org.id, e.id, owner.id, {"learning_goal": "second"},
                                  expected_updated_at=loaded)
        assert cps.get_engagement(org.id, e.id).learning_goal == "first"

    def test_bad_expected_timestamp(self, org, owner):
        e = _new(org, owner)
        with pytest.raises(ValidationError):
            cps.update_engagement(org.id, e.id, owner.id, {"learning_goal": "x"}, expected_updated_at="yesterday")


class TestMethodsAndTemplates:
    def test_seed_is_idempotent(self):
        assert cps.seed_methods() == (8, 4)
        assert cps.seed_methods() == (0, 0)
        assert len(cps.list_methods()) == 8
        assert {m.slug for m in cps.list_methods(category="workshop")} == {"community_forums", "world_cafe"}

    def test_unknown_method(self):
        with pytest.raises(NotFoundError):
            cps.get_method_by_slug("séance")

    def test_recommendations_follow_goal_type(self, org, owner):
        cps.seed_methods()
        e = _new(org, owner, goal_type="explore")
        assert [m.slug for m in cps.recommend_methods(org.id, e.id, limit=2)] == ["photovoice", "focus_groups"]
        cps.update_engagement(org.id, e.id, owner.id, {"goal_type": "decide"})
        assert cps.recommend_methods(org.id, e.id, limit=1)[0].slug == "community_forums"

    def test_use_system_template(self, org, owner):
        cps.seed_methods()
        template = next(t for t in cps.list_templates(org.id) if t.name == "Youth Voice in Program Design")
        e = cps.create_from_template(org.id, owner.id, template.id)
        assert e.title == "Youth Voice in Program Design"
        assert e.goal_type == "explore"
        assert e.participation_model == "collaborative"
        assert e.primary_method == "focus_groups"
        assert e.current_stage == 1
        assert template.use_count == 1
        assert _actions(e) == ["engagement.created", "template.used"]

    def test_template_from_source_engagement(self, org, owner):
        source = _new(org, owner, learning_goal="Barriers", goal_type="test")
        cps.update_engagement(org.id, source.id, owner.id, {"primary_method": "surveys"})
        template = cps.create_template(org.id, owner.id, {"name": "Survey kit"}, source_engagement_id=source.id)
        assert template.template_data["goal_type"] == "test"
        assert "title" not in template.template_data
        assert template.method_slug == "surveys"
        assert template.is_public is False

        copy = cps.create_from_template(org.id, owner.id, template.id, title="Round two")
        assert copy.title == "Round two"
        assert copy.learning_goal == "Barriers"

    def test_private_template_hidden_from_other_orgs(self, org, owner):
        from vision.services.organization_service import create_organization
        other = create_organization(owner.id, {"name": "Other Org"})
        template = cps.create_template(org.id, owner.id, {"name": "Ours"})
        assert template not in cps.list_templates(other.id)
        with pytest.raises(NotFoundError):
            cps.create_from_template(other.id, owner.id, template.id)

    def test_org_template_cannot_be_made_public(self, org, owner):
        from vision.services.organization_service import create_organization
        other = create_organization(owner.id, {"name": "Other Org"})
        with pytest.raises(ValidationError) as exc:
            cps.create_template(org.id, owner.id, {"name": "Shared", "is_public": True})
        assert "is_public" in exc.value.details

        source = _new(org, owner, learning_goal="Confidential donor plan", goal_type="test")
        template = cps.create_template(org.id, owner.id, {"name": "Donor kit"}, source_engagement_id=source.id)
        assert template in cps.list_templates(org.id)
        assert template not in cps.list_templates(other.id)

    def test_system_templates_visible_to_every_org(self, org, owner):
        from vision.services.organization_service import create_organization
        other = create_organization(owner.id, {"name": "Other Org"})
        cps.seed_methods()
        system = {t.id for t in cps.list_templates(org.id) if t.organization_id is None}
        assert system
        assert system <= {t.id for t in cps.list_templates(other.id)}


class TestMaterials:
    def test_upsert_bumps_version(self, org, owner):
        e = _new(org, owner)
        first = cps.save_material(org.id, e.id, owner.id, "facilitator_guide", {"title": "Guide"})
        second = cps.save_material(org.id, e.id, owner.id, "facilitator_guide",
                                   {"title": "Guide v2", "content": "Welcome everyone", "isCustomized": True})
        assert first.id == second.id
        assert second.version == 2
        assert second.is_customized is True
        assert len(cps.list_materials(org.id, e.id)) == 1

    def test_unknown_type(self, org, owner):
        e = _new(org, owner)
        with pytest.raises(ValidationError):
            cps.save_material(org.id, e.id, owner.id, "poster", {"title": "x"})

    def test_delete(self, org, owner):
        e = _new(org, owner)
        cps.save_material(org.id, e.id, owner.id, "timeline", {"title": "Timeline"})
        cps.delete_material(org.id, e.id, owner.id, "timeline")
        with pytest.raises(NotFoundError):
            cps.delete_material(org.id, e.id, owner.id, "timeline")
        assert "material.deleted" in _actions(e)


class TestExport:
    def _ready(self, org, owner):
        cps.seed_methods()
        e = _advance_to_final(org, owner, _new(org, owner))
        cps.update_engagement(org.id, e.id, owner.id, {
            "equityChecklist": {"safety": {"physicalSafety": True}},
            "questions": [{"id": "q1", "type": "opening", "question": "What brings you here?"}],
        })
        return e

    def test_json(self, org, owner):
        e = self._ready(org, owner)
        content, mime, filename = cpx.export_engagement(org.id, e.id, owner.id, "json")
        payload = json.loads(content)
        assert payload["exportVersion"] == "1.0.0"
        assert payload["engagement"]["title"] == "Neighborhood Food Access"
        assert payload["method"]["slug"] == "focus_groups"
        assert mime == "application/json"
        assert filename == "neighborhood-food-access.json"

    def test_csv_includes_checklist(self, org, owner):
        e = self._ready(org, owner)
        content, _, _ = cpx.export_engagement(org.id, e.id, owner.id, "csv")
        lines = content.splitlines()
        assert lines[0] == "Field,Value"
        assert "Primary Method,Focus Groups" in lines
        assert "Equity: Safety - Physical safety plan in place,Yes" in lines
        assert "Equity: Safety - Emotional safety considered,No" in lines

    def test_markdown(self, org, owner):
        e = self._ready(org, owner)
        content, mime, filename = cpx.export_engagement(org.id, e.id, owner.id, "md")
        assert content.startswith("# Neighborhood Food Access")
        assert "- [x] Physical safety plan in place" in content
        assert "1. (opening) What brings you here?" in content
        assert mime == "text/markdown"
        assert filename.endswith(".md")

    def test_html_escapes_values(self, org, owner):
        e = _new(org, owner, title="<script>alert(1)</script>")
        content, mime, _ = cpx.export_engagement(org.id, e.id, owner.id, "html")
        assert "<script>alert(1)</script>" not in content
        assert "&lt;script&gt;" in content
        assert mime == "text/html"

    def test_xlsx(self, org, owner):
        e = self._ready(org, owner)
        content, _, filename = cpx.export_engagement(org.id, e.id, owner.id, "xlsx")
        wb = load_workbook(io.BytesIO(content))
        assert wb.sheetnames == ["Summary", "Equity Checklist"]
        summary = wb["Summary"]
        assert [c.value for c in summary[1]] == ["Field", "Value"]
        assert summary["A2"].value == "Title"
        assert summary["B2"].value == "Neighborhood Food Access"
        assert filename.endswith(".xlsx")

    def test_export_marks_completed_as_exported(self, org, owner):
        e = self._ready(org, owner)
        cps.complete_engagement(org.id, e.id, owner.id)
        cpx.export_engagement(org.id, e.id, owner.id, "json")
        cpx.export_engagement(org.id, e.id, owner.id, "json")
        cpx.export_engagement(org.id, e.id, owner.id, "csv")
        assert e.status == "exported"
        assert e.exported_to == ["json", "csv"]
        assert e.exported_at is not None
        assert _actions(e).count("engagement.exported") == 3

    def test_unknown_format(self, org, owner):
        e = _new(org, owner)
        with pytest.raises(ValidationError):
            cpx.export_engagement(org.id, e.id, owner.id, "pdf")

    def test_renderers_handle_empty_engagement(self, org, owner):
        data = _new(org, owner).to_dict()
        assert "Not specified" in cpx.export_markdown(data)
        assert "Goal Type,Not specified" in cpx.export_csv(data)


class TestAuditLog:
    def test_newest_first(self, org, owner):
        e = _new(org, owner)
        cps.update_engagement(org.id, e.id, owner.id, {"learning_goal": "x"})
        entries = cps.get_audit_log(org.id, e.id)
        assert [x.action for x in entries] == ["engagement.updated", "engagement.created"]

    def test_org_log_filters_by_action(self, org, owner):
        a = _new(org, owner)
        _new(org, owner, title="Second")
        cps.archive_engagement(org.id, a.id, owner.id)
        items, total = cps.list_org_audit_log(org.id, action="engagement.created")
        assert total == 2
        items, total = cps.list_org_audit_log(org.id, limit=1)
        assert total == 3
        assert len(items) == 1


class TestCommunityPulseAPI:
    def _base(self, org):
        return f"/api/v1/organizations/{org.id}/engagements"

    def test_create_reports_missing_fields(self, client, org, owner_headers):
        res = client.post(self._base(org), json={"title": "Park redesign"}, headers=owner_headers)
        assert res.status_code == 201
        body = res.get_json()
        assert body["current_stage"] == 1
        assert body["missing_fields"] == ["learning_goal", "goal_type"]

    def test_continue_validation_is_422(self, client, org, owner_headers):
        eid = client.post(self._base(org), json={"title": "Park"}, headers=owner_headers).get_json()["id"]
        res = client.post(f"{self._base(org)}/{eid}/continue", headers=owner_headers)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"learning_goal": "required", "goal_type": "required"}

        res = client.post(f"{self._base(org)}/{eid}/continue",
                          json={"learningGoal": "Learn", "goalType": "explore"}, headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["current_stage"] == 2

    def test_stale_patch_is_409(self, client, org, owner_headers):
        created = client.post(self._base(org), json={"title": "Park"}, headers=owner_headers).get_json()
        url = f"{self._base(org)}/{created['id']}"
        ok = client.patch(url, json={"learningGoal": "a", "expectedUpdatedAt": created["updated_at"]},
                          headers=owner_headers)
        assert ok.status_code == 200
        stale = client.patch(url, json={"learningGoal": "b", "expected_updated_at": created["updated_at"]},
                             headers=owner_headers)
        assert stale.status_code == 409
        assert stale.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_role_gates(self, client, org, make_member, owner, owner_headers):
        _, _, viewer = make_member("Viewer")
        _, _, editor = make_member("Editor")
        assert client.post(self._base(org), json={"title": "x"}, headers=viewer).status_code == 403
        e = _new(org, owner)
        assert client.get(f"{self._base(org)}/{e.id}", headers=viewer).status_code == 200
        assert client.delete(f"{self._base(org)}/{e.id}", headers=editor).status_code == 403
        assert client.delete(f"{self._base(org)}/{e.id}", headers=owner_headers).status_code == 204

    def test_export_csv_download(self, client, org, owner, owner_headers):
        e = _new(org, owner)
        res = client.get(f"{self._base(org)}/{e.id}/export?format=csv", headers=owner_headers)
        assert res.status_code == 200
        assert res.mimetype == "text/csv"
        assert 'filename="neighborhood-food-access.csv"' in res.headers["Content-Disposition"]
        assert res.get_data(as_text=True).startswith("Field,Value")

    def test_export_xlsx_download(self, client, org, owner, owner_headers):
        e = _new(org, owner)
        res = client.get(f"{self._base(org)}/{e.id}/export?format=xlsx", headers=owner_headers)
        assert res.status_code == 200
        assert load_workbook(io.BytesIO(res.data)).sheetnames[0] == "Summary"

    def test_materials_endpoints(self, client, org, owner, owner_headers):
        e = _new(org, owner)
        url = f"{self._base(org)}/{e.id}/materials"
        res = client.put(f"{url}/consent_form", json={"title": "Consent"}, headers=owner_headers)
        assert res.status_code == 200
        assert client.get(url, headers=owner_headers).get_json()["items"][0]["material_type"] == "consent_form"
        assert client.delete(f"{url}/consent_form", headers=owner_headers).status_code == 204

    def test_methods_need_login(self, client, owner_headers):
        cps.seed_methods()
        assert client.get("/api/v1/community-pulse/methods").status_code == 401
        res = client.get("/api/v1/community-pulse/methods/photovoice", headers=owner_headers)
        assert res.get_json()["name"] == "Photovoice"

    def test_recommended_methods(self, client, org, owner, owner_headers):
        cps.seed_methods()
        e = _new(org, owner, goal_type="test")
        res = client.get(f"{self._base(org)}/{e.id}/recommended-methods?limit=1", headers=owner_headers)
        assert [m["slug"] for m in res.get_json()["items"]] == ["surveys"]

    def test_template_use_endpoint(self, client, org, owner_headers):
        cps.seed_methods()
        templates = client.get(f"/api/v1/organizations/{org.id}/engagement-templates",
                               headers=owner_headers).get_json()
        assert templates["total"] == 4
        tid = templates["items"][0]["id"]
        res = client.post(f"/api/v1/organizations/{org.id}/engagement-templates/{tid}/use",
                          json={"title": "Our version"}, headers=owner_headers)
        assert res.status_code == 201
        assert res.get_json()["title"] == "Our version"

    def test_org_audit_log_requires_admin(self, client, org, make_member, owner, owner_headers):
        _new(org, owner)
        _, _, editor = make_member("Editor")
        url = f"/api/v1/organizations/{org.id}/engagement-audit-log"
        assert client.get(url, headers=editor).status_code == 403
        assert client.get(url, headers=owner_headers).get_json()["total"] == 1

    def test_template_visibility_over_api(self, client, org, owner, owner_headers):
        from vision.services.organization_service import create_organization
        other = create_organization(owner.id, {"name": "Other Org"})
        url = f"/api/v1/organizations/{org.id}/engagement-templates"
        res = client.post(url, json={"name": "Shared", "is_public": True}, headers=owner_headers)
        assert res.status_code == 422

        res = client.post(url, json={"name": "Donor kit"}, headers=owner_headers)
        assert res.status_code == 201
        assert res.get_json()["is_public"] is False
        ids = [t["id"] for t in client.get(f"/api/v1/organizations/{other.id}/engagement-templates",
                                            headers=owner_headers).get_json()["items"]]
        assert res.get_json()["id"] not in ids

    def test_body_must_be_an_object(self, client, org, owner_headers):
        eid = client.post(self._base(org), json={"title": "Park"}, headers=owner_headers).get_json()["id"]
        res = client.patch(f"{self._base(org)}/{eid}", json=[1, 2], headers=owner_headers)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"body": "not_an_object"}
        res = client.post(f"{self._base(org)}/{eid}/continue", json=["learning_goal"], headers=owner_headers)
        assert res.status_code == 422
