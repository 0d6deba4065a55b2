"""
Document tests.

Covers:
  - Upload validation (empty, size, MIME) and text extraction at upload
  - Storage quota enforcement
  - Versions, soft delete / restore, download counters
  - Search filters, tags, bulk operations
  - API multipart upload and role gates
"""

import io

import pytest
from werkzeug.datastructures import FileStorage

from vision.core.exceptions import NotFoundError, ValidationError
from vision.models.document import DocumentVersion
from vision.services import document_service, folder_service


def _file(content: bytes, filename="notes.txt", mimetype="text/plain"):
    return FileStorage(stream=io.BytesIO(content), filename=filename, content_type=mimetype)


def _upload(org, user, content=b"Food drive volunteers meet on Saturday", filename="notes.txt",
            mimetype="text/plain", **kwargs):
    return document_service.upload_document(org.id, user.id, _file(content, filename, mimetype), **kwargs)


class TestUpload:
    def test_text_is_extracted(self, org, owner):
        doc = _upload(org, owner)
        assert doc.version_number == 1
        assert doc.extension == "txt"
        assert "volunteers" in doc.extracted_text
        assert doc.metadata_json["extraction"]["status"] == "ok"
        assert doc.versions.count() == 1

    def test_mime_falls_back_to_extension(self, org, owner):
        doc = _upload(org, owner, b"name,amount\nrice,10\n", filename="budget.csv",
                      mimetype="application/octet-stream")
        assert doc.mime_type == "text/csv"
        assert doc.metadata_json["extraction"]["row_count"] == 2

    def test_unsupported_text_type_still_uploads(self, org, owner):
        doc = _upload(org, owner, b"\x89PNG fake", filename="logo.png", mimetype="image/png")
        assert doc.extracted_text is None
        assert doc.metadata_json["extraction"] == {"status": "unsupported"}

    def test_corrupt_pdf_is_recorded_not_raised(self, org, owner):
        doc = _upload(org, owner, b"not really a pdf", filename="report.pdf", mimetype="application/pdf")
        assert doc.metadata_json["extraction"]["status"] == "failed"

    def test_empty_file_rejected(self, org, owner):
        with pytest.raises(ValidationError) as exc:
            _upload(org, owner, b"")
        assert exc.value.details == {"file": "empty"}

    def test_oversized_file_rejected(self, org, owner):
        with pytest.raises(ValidationError) as exc:
            _upload(org, owner, b"x" * (1024 * 1024 + 1))
        assert exc.value.details["file"] == "too_large"

    def test_disallowed_type_rejected(self, org, owner):
        with pytest.raises(ValidationError):
            _upload(org, owner, b"MZ", filename="setup.exe", mimetype="application/x-msdownload")

    def test_quota_exceeded(self, app, org, owner, monkeypatch):
        monkeypatch.setitem(app.config, "STORAGE_QUOTA_BYTES", 50)
        _upload(org, owner, b"a" * 40)
        with pytest.raises(ValidationError) as exc:
            _upload(org, owner, b"b" * 20)
        assert exc.value.details["file"] == "quota_exceeded"

    def test_unknown_folder(self, org, owner):
        with pytest.raises(NotFoundError):
            _upload(org, owner, folder_id=999)

    def test_tags_normalized(self, org, owner):
        doc = _upload(org, owner, tags=" grants, Grants ,,board")
        assert doc.tags == ["grants", "board"]


class TestLifecycle:
    def test_new_version_keeps_history(self, org, owner):
        doc = _upload(org, owner)
        document_service.upload_new_version(org.id, doc.id, owner.id,
                                            _file(b"Updated schedule for the drive"), change_note="v2")
        assert doc.version_number == 2
        versions = document_service.list_versions(org.id, doc.id)
        assert [v.version_number for v in versions] == [2, 1]
        assert versions[0].change_note == "v2"
        assert "Updated" in doc.extracted_text

    def test_soft_delete_and_restore_into_root_when_folder_gone(self, org, owner):
        folder = folder_service.create_folder(org.id, owner.id, {"name": "Temp"})
        doc = _upload(org, owner, folder_id=folder.id)
        document_service.delete_document(org.id, doc.id, owner.id)
        with pytest.raises(NotFoundError):
            document_service.get_document(org.id, doc.id)
        folder_service.delete_folder(org.id, folder.id, owner.id)

        restored = document_service.restore_document(org.id, doc.id, owner.id)
        assert restored.deleted_at is None
        assert restored.folder_id is None

    def test_download_counts(self, org, owner):
        doc = _upload(org, owner, name="Minutes")
        path, download_name, mime = document_service.download_document(org.id, doc.id)
        assert path.read_bytes().startswith(b"Food drive")
        assert download_name == "Minutes.txt"
        assert mime == "text/plain"
        assert doc.download_count == 1

    def test_update_requires_a_field(self, org, owner):
        doc = _upload(org, owner)
        with pytest.raises(ValidationError):
            document_service.update_document(org.id, doc.id, owner.id, {"unknown": 1})

    def test_metadata_merges(self, org, owner):
        doc = _upload(org, owner)
        document_service.update_document(org.id, doc.id, owner.id, {"metadata": {"grant": "FY26"}})
        assert doc.metadata_json["grant"] == "FY26"
        assert doc.metadata_json["original_filename"] == "notes.txt"


class TestSearch:
    def test_query_matches_extracted_text(self, org, owner):
        _upload(org, owner, b"Annual gala seating chart", filename="gala.txt")
        _upload(org, owner, b"Pantry inventory", filename="pantry.txt")
        items, total = document_service.search_documents(org.id, {"query": "seating"})
        assert total == 1
        assert items[0].name == "gala.txt"

    def test_tag_filter_and_sorting(self, org, owner):
        _upload(org, owner, b"aaa", filename="a.txt", tags=["board"])
        _upload(org, owner, b"bbbbbb", filename="b.txt", tags=["finance"])
        items, total = document_service.search_documents(org.id, {"tags": ["board"]})
        assert [d.name for d in items] == ["a.txt"]
        items, _ = document_service.search_documents(org.id, {"sort_by": "file_size", "sort_order": "asc"})
        assert [d.name for d in items] == ["a.txt", "b.txt"]

    def test_tags_match_whole_and_non_ascii(self, org, owner):
        _upload(org, owner, filename="cafe.txt", tags=["Café"])
        _upload(org, owner, filename="full.txt", tags=["100%"])
        _upload(org, owner, filename="x.txt", tags=["100x", "board-extra"])
        items, total = document_service.search_documents(org.id, {"tags": ["café"]})
        assert (total, items[0].name) == (1, "cafe.txt")
        items, _ = document_service.search_documents(org.id, {"tags": ["100%"]})
        assert [d.name for d in items] == ["full.txt"]
        assert document_service.search_documents(org.id, {"tags": ["board"]})[1] == 0

    @pytest.mark.parametrize("query", ["%", "_"])
    def test_wildcards_in_query_are_literal(self, org, owner, query):
        _upload(org, owner, b"Pantry inventory", filename="pantry.txt")
        _upload(org, owner, b"Ninety percent: 90% funded", filename="progress.txt")
        items, _ = document_service.search_documents(org.id, {"query": query})
        expected = ["progress.txt"] if query == "%" else []
        assert [d.name for d in items] == expected

    def test_bad_sort_field(self, org, owner):
        with pytest.raises(ValidationError):
            document_service.search_documents(org.id, {"sort_by": "extracted_text"})

    def test_all_tags_counted(self, org, owner):
        _upload(org, owner, filename="a.txt", tags=["board", "finance"])
        _upload(org, owner, filename="b.txt", tags=["board"])
        assert document_service.get_all_tags(org.id) == [
            {"tag": "board", "count": 2}, {"tag": "finance", "count": 1},
        ]

    def test_storage_stats(self, org, owner):
        _upload(org, owner, b"12345")
        stats = document_service.get_storage_stats(org.id)
        assert stats["total_size"] == 5
        assert stats["document_count"] == 1
        assert stats["by_mime_type"][0]["mime_type"] == "text/plain"


class TestBulk:
    def test_partial_failure_reported_per_document(self, org, owner):
        doc = _upload(org, owner)
        result = document_service.bulk_operation(org.id, owner.id, [doc.id, 424242], "delete")
        assert result["success_count"] == 1
        assert result["failure_count"] == 1
        assert result["errors"][0]["document_id"] == 424242
        assert result["success"] is False

    def test_tag_appends(self, org, owner):
        doc = _upload(org, owner, tags=["board"])
        result = document_service.bulk_operation(org.id, owner.id, [doc.id], "tag", {"tags": ["urgent"]})
        assert result["success"] is True
        assert document_service.get_document(org.id, doc.id).tags == ["board", "urgent"]

    def test_move(self, org, owner):
        folder = folder_service.create_folder(org.id, owner.id, {"name": "Archive"})
        doc = _upload(org, owner)
        document_service.bulk_operation(org.id, owner.id, [doc.id], "move", {"folder_id": folder.id})
        assert document_service.get_document(org.id, doc.id).folder_id == folder.id

    def test_unknown_operation(self, org, owner):
        with pytest.raises(ValidationError):
            document_service.bulk_operation(org.id, owner.id, [1], "shred")


class TestDocumentAPI:
    def _post(self, client, org, headers, content=b"Hello neighbors", filename="hello.txt", **form):
        data = {"file": (io.BytesIO(content), filename), **form}
        return client.post(f"/api/v1/organizations/{org.id}/documents", data=data,
                           content_type="multipart/form-data", headers=headers)

    def test_upload_and_fetch(self, client, org, owner_headers):
        res = self._post(client, org, owner_headers, tags='["outreach"]', description="Flyer text")
        assert res.status_code == 201
        body = res.get_json()
        assert body["tags"] == ["outreach"]

        res = client.get(f"/api/v1/organizations/{org.id}/documents/{body['id']}?include_text=true",
                         headers=owner_headers)
        assert res.get_json()["extracted_text"] == "Hello neighbors"
        assert res.get_json()["view_count"] == 1

    def test_upload_requires_file(self, client, org, owner_headers):
        res = client.post(f"/api/v1/organizations/{org.id}/documents", data={"name": "x"},
                          content_type="multipart/form-data", headers=owner_headers)
        assert res.status_code == 400

    def test_viewer_cannot_upload(self, client, org, make_member):
        _, _, headers = make_member("Viewer")
        assert self._post(client, org, headers).status_code == 403

    def test_download(self, client, org, owner_headers):
        doc_id = self._post(client, org, owner_headers).get_json()["id"]
        res = client.get(f"/api/v1/organizations/{org.id}/documents/{doc_id}/download", headers=owner_headers)
        assert res.status_code == 200
        assert res.data == b"Hello neighbors"
        assert "attachment" in res.headers["Content-Disposition"]

    def test_new_version_via_api(self, client, org, owner_headers):
        doc_id = self._post(client, org, owner_headers).get_json()["id"]
        res = client.post(
            f"/api/v1/organizations/{org.id}/documents/{doc_id}/versions",
            data={"file": (io.BytesIO(b"Second draft"), "hello.txt"), "change_note": "typos"},
            content_type="multipart/form-data", headers=owner_headers,
        )
        assert res.status_code == 201
        assert res.get_json()["version_number"] == 2
        versions = client.get(f"/api/v1/organizations/{org.id}/documents/{doc_id}/versions",
                              headers=owner_headers).get_json()
        assert versions["total"] == 2
        assert DocumentVersion.query.filter_by(document_id=doc_id).count() == 2

    def test_search_paginates(self, client, org, owner_headers):
        for i in range(3):
            self._post(client, org, owner_headers, filename=f"doc{i}.txt")
        res = client.get(f"/api/v1/organizations/{org.id}/documents?limit=2", headers=owner_headers)
        body = res.get_json()
        assert body["total"] == 3
        assert len(body["items"]) == 2
        assert body["has_more"] is True

    def test_delete_then_restore(self, client, org, owner_headers):
        doc_id = self._post(client, org, owner_headers).get_json()["id"]
        base = f"/api/v1/organizations/{org.id}/documents/{doc_id}"
        assert client.delete(base, headers=owner_headers).status_code == 204
        assert client.get(base, headers=owner_headers).status_code == 404
        assert client.post(f"{base}/restore", headers=owner_headers).status_code == 200
        assert client.get(base, headers=owner_headers).status_code == 200

    def test_bulk_requires_operation(self, client, org, owner_headers):
        res = client.post(f"/api/v1/organizations/{org.id}/documents/bulk", json={"document_ids": [1]},
                          headers=owner_headers)
        assert res.status_code == 400
