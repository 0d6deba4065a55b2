"""
Document Blueprint: document library.

  GET    /organizations/<org_id>/documents                   search (Viewer+)
  POST   /organizations/<org_id>/documents                   multipart upload (Editor+)
  GET    /organizations/<org_id>/documents/recent
  GET    /organizations/<org_id>/documents/stats
  GET    /organizations/<org_id>/documents/tags
  POST   /organizations/<org_id>/documents/bulk              move | delete | tag | restore (Editor+)
  GET    /organizations/<org_id>/documents/<id>?include_text=
  PATCH  /organizations/<org_id>/documents/<id>              Editor+
  DELETE /organizations/<org_id>/documents/<id>              Editor+ (soft)
  POST   /organizations/<org_id>/documents/<id>/restore      Editor+
  GET    /organizations/<org_id>/documents/<id>/download
  GET    /organizations/<org_id>/documents/<id>/versions
  POST   /organizations/<org_id>/documents/<id>/versions     multipart upload (Editor+)
"""

import json

from flask import Blueprint, g, jsonify, request, send_file

from vision.blueprints import json_body, page_args, register_error_handlers
from vision.middleware.permission_required import org_role_required
from vision.services import document_service

document_bp = Blueprint("document_bp", __name__, url_prefix="/api/v1")
register_error_handlers(document_bp)


# ── Request helpers ───────────────────────────────────────────────────────────


def _csv_arg(name: str) -> list[str] | None:
    raw = request.args.get(name)
    if not raw:
        return None
    return [part.strip() for part in raw.split(",") if part.strip()]


def _form_tags():
    """Tags from a multipart form: a JSON array or a comma-separated string."""
    raw = request.form.get("tags")
    if not raw:
        return None
    if raw.lstrip().startswith("["):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    return raw


def _form_int(name: str):
    raw = request.form.get(name)
    if raw in (None, "", "null"):
        return None
    return int(raw)


# ═══════════════════════════════════════════════════════════════
# Search & listings
# ═══════════════════════════════════════════════════════════════
@document_bp.route("/organizations/<int:org_id>/documents", methods=["GET"])
@org_role_required("Viewer")
def search_documents(org_id):
    """Query: folder_id, q, tags, mime_types, uploaded_by, date_from, date_to,
    min_size, max_size, sort_by, sort_order, limit, offset."""
    limit, offset = page_args(default_limit=50, max_limit=200)
    params = {
        "folder_id": request.args.get("folder_id", type=int),
        "query": request.args.get("q") or request.args.get("query"),
        "tags": _csv_arg("tags"),
        "mime_types": _csv_arg("mime_types"),
        "uploaded_by": request.args.get("uploaded_by", type=int),
        "date_from": request.args.get("date_from"),
        "date_to": request.args.get("date_to"),
        "min_size": request.args.get("min_size", type=int),
        "max_size": request.args.get("max_size", type=int),
        "sort_by": request.args.get("sort_by"),
        "sort_order": request.args.get("sort_order"),
        "limit": limit,
        "offset": offset,
    }
    items, total = document_service.search_documents(org_id, params)
    return jsonify({
        "items": [d.to_dict() for d in items],
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(items) < total,
    }), 200


@document_bp.route("/organizations/<int:org_id>/documents/recent", methods=["GET"])
@org_role_required("Viewer")
def recent_documents(org_id):
    limit, _ = page_args(default_limit=10, max_limit=50)
    mine = request.args.get("mine", "").lower() in ("1", "true")
    docs = document_service.get_recent_documents(org_id, g.user_id if mine else None, limit=limit)
    return jsonify({"items": [d.to_dict() for d in docs]}), 200


@document_bp.route("/organizations/<int:org_id>/documents/stats", methods=["GET"])
@org_role_required("Viewer")
def storage_stats(org_id):
    return jsonify(document_service.get_storage_stats(org_id)), 200


@document_bp.route("/organizations/<int:org_id>/documents/tags", methods=["GET"])
@org_role_required("Viewer")
def all_tags(org_id):
    return jsonify({"items": document_service.get_all_tags(org_id)}), 200


# ═══════════════════════════════════════════════════════════════
# Upload
# ═══════════════════════════════════════════════════════════════
@document_bp.route("/organizations/<int:org_id>/documents", methods=["POST"])
@org_role_required("Editor")
def upload_document(org_id):
    """multipart/form-data: file, folder_id?, name?, description?, tags?"""
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400
    try:
        folder_id = _form_int("folder_id")
    except ValueError:
        return jsonify({"error": "folder_id must be an integer"}), 400
    doc = document_service.upload_document(
        org_id, g.user_id, request.files["file"],
        folder_id=folder_id,
        name=request.form.get("name"),
        description=request.form.get("description"),
        tags=_form_tags(),
    )
    return jsonify(doc.to_dict()), 201


@document_bp.route("/organizations/<int:org_id>/documents/bulk", methods=["POST"])
@org_role_required("Editor")
def bulk_operation(org_id):
    """Body: { "document_ids": [...], "operation": "move"|"delete"|"tag"|"restore", "params"? }"""
    data = json_body()
    if not data.get("operation"):
        return jsonify({"error": "operation is required"}), 400
    result = document_service.bulk_operation(
        org_id, g.user_id, data.get("document_ids"), data["operation"], data.get("params"),
    )
    return jsonify(result), 200


# ═══════════════════════════════════════════════════════════════
# Single document
# ═══════════════════════════════════════════════════════════════
@document_bp.route("/organizations/<int:org_id>/documents/<int:document_id>", methods=["GET"])
@org_role_required("Viewer")
def get_document(org_id, document_id):
    doc = document_service.get_document(org_id, document_id, record_view=True)
    include_text = request.args.get("include_text", "").lower() in ("1", "true")
    return jsonify(doc.to_dict(include_text=include_text)), 200


@document_bp.route("/organizations/<int:org_id>/documents/<int:document_id>", methods=["PATCH"])
@org_role_required("Editor")
def update_document(org_id, document_id):
    data = json_body()
    return jsonify(document_service.update_document(org_id, document_id, g.user_id, data).to_dict()), 200


@document_bp.route("/organizations/<int:org_id>/documents/<int:document_id>", methods=["DELETE"])
@org_role_required("Editor")
def delete_document(org_id, document_id):
    document_service.delete_document(org_id, document_id, g.user_id)
    return "", 204


@document_bp.route("/organizations/<int:org_id>/documents/<int:document_id>/restore", methods=["POST"])
@org_role_required("Editor")
def restore_document(org_id, document_id):
    return jsonify(document_service.restore_document(org_id, document_id, g.user_id).to_dict()), 200


@document_bp.route("/organizations/<int:org_id>/documents/<int:document_id>/download", methods=["GET"])
@org_role_required("Viewer")
def download_document(org_id, document_id):
    path, download_name, mime = document_service.download_document(org_id, document_id)
    return send_file(path, mimetype=mime, as_attachment=True, download_name=download_name)


@document_bp.route("/organizations/<int:org_id>/documents/<int:document_id>/versions", methods=["GET"])
@org_role_required("Viewer")
def list_versions(org_id, document_id):
    versions = document_service.list_versions(org_id, document_id)
    return jsonify({"items": [v.to_dict() for v in versions], "total": len(versions)}), 200


@document_bp.route("/organizations/<int:org_id>/documents/<int:document_id>/versions", methods=["POST"])
@org_role_required("Editor")
def upload_version(org_id, document_id):
    """multipart/form-data: file, change_note?"""
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400
    doc = document_service.upload_new_version(
        org_id, document_id, g.user_id, request.files["file"], change_note=request.form.get("change_note"),
    )
    return jsonify(doc.to_dict()), 201
