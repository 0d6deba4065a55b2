"""
Document Service: upload, search, versioning and download of documents.

Upload pipeline:
    validate size + MIME → store bytes → extract text (best effort)
    → Document row + DocumentVersion v1 → commit (stored file removed on failure)

Text extraction failures never fail an upload; they are recorded in the
document's metadata under ``extraction``.
"""

import logging
import mimetypes
from collections import Counter

from flask import current_app
from sqlalchemy import func, or_

from vision.core.exceptions import NotFoundError, ValidationError
from vision.models import db
from vision.models.document import Document, DocumentVersion, Folder
from vision.services import document_parser, storage_service
from vision.services.activity_service import log_activity
from vision.services.folder_service import get_folder
from vision.utils.helpers import like_pattern, parse_datetime, utcnow

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    # Documents
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/vnd.oasis.opendocument.text",
    "application/vnd.oasis.opendocument.spreadsheet",
    "application/vnd.oasis.opendocument.presentation",
    "application/rtf",
    # Text
    "text/plain",
    "text/markdown",
    "text/csv",
    "text/tab-separated-values",
    "text/html",
    "text/xml",
    "application/xml",
    "application/json",
    # Images
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    # Archives
    "application/zip",
}

SORT_FIELDS = {
    "name": Document.name,
    "created_at": Document.created_at,
    "updated_at": Document.updated_at,
    "file_size": Document.file_size,
}
MAX_TAGS = 20
MAX_TAG_LENGTH = 50
BULK_OPERATIONS = ("move", "delete", "tag", "restore")


# ── Helpers ───────────────────────────────────────────────────────────────

def _resolve_mime(filename: str, declared: str | None) -> str:
    mime = (declared or "").split(";")[0].strip().lower()
    if not mime or mime == "application/octet-stream":
        ext = document_parser.extension_of(filename)
        mime = document_parser.EXTENSION_MIME.get(ext) or mimetypes.guess_type(filename)[0] or mime
    return mime or "application/octet-stream"


def normalize_tags(tags) -> list[str]:
    """Trim, drop blanks and duplicates (case-insensitive, first spelling wins)."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    if not isinstance(tags, (list, tuple)):
        raise ValidationError("tags must be a list of strings", details={"tags": "invalid"})
    seen, result = set(), []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError("tags must be a list of strings", details={"tags": "invalid"})
        tag = tag.strip()
        if not tag or tag.lower() in seen:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(f"Tag '{tag[:20]}…' exceeds {MAX_TAG_LENGTH} characters",
                                  details={"tags": "too_long"})
        seen.add(tag.lower())
        result.append(tag)
    if len(result) > MAX_TAGS:
        raise ValidationError(f"At most {MAX_TAGS} tags are allowed", details={"tags": "too_many"})
    return result


def _validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("File name cannot be empty", details={"name": "required"})
    if len(name) > 255:
        raise ValidationError("File name is too long (max 255 characters)", details={"name": "too_long"})
    if any(c in name for c in '<>:"|?*') or any(ord(c) < 32 for c in name):
        raise ValidationError("File name contains invalid characters", details={"name": "invalid_chars"})
    return name


def _read_upload(file_storage) -> tuple[bytes, str, str]:
    """Validate an uploaded file and return (bytes, filename, mime)."""
    if file_storage is None or not file_storage.filename:
        raise ValidationError("file is required", details={"file": "required"})
    data = file_storage.read()
    if not data:
        raise ValidationError("Uploaded file is empty", details={"file": "empty"})
    max_size = current_app.config["MAX_UPLOAD_SIZE"]
    if len(data) > max_size:
        raise ValidationError(
            f"File size must be at most {max_size // (1024 * 1024)} MB",
            details={"file": "too_large", "max_size": max_size, "size": len(data)},
        )
    filename = file_storage.filename
    mime = _resolve_mime(filename, file_storage.mimetype)
    if mime not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"File type {mime} is not allowed", details={"mime_type": mime})
    return data, filename, mime


def _check_quota(org_id: int, incoming: int) -> None:
    quota = current_app.config.get("STORAGE_QUOTA_BYTES") or 0
    if not quota:
        return
    used = db.session.query(func.coalesce(func.sum(Document.file_size), 0)).filter(
        Document.organization_id == org_id, Document.deleted_at.is_(None),
    ).scalar()
    if int(used) + incoming > quota:
        raise ValidationError(
            "Storage quota exceeded",
            details={"file": "quota_exceeded", "used": int(used), "quota": quota},
        )


def _extract(doc: Document, data: bytes, filename: str, mime: str) -> None:
    """Fill extracted_text fields; record the outcome in metadata."""
    meta = dict(doc.metadata_json or {})
    if not document_parser.is_supported(mime, filename):
        doc.extracted_text = None
        doc.extracted_text_length = None
        meta["extraction"] = {"status": "unsupported"}
        doc.metadata_json = meta
        return
    try:
        parsed = document_parser.parse_document(
            data, mime, filename, max_length=current_app.config["EXTRACTED_TEXT_MAX_LENGTH"],
        )
    except Exception as e:
        logger.warning("Text extraction failed for %s (%s): %s", filename, mime, e)
        meta["extraction"] = {"status": "failed", "error": str(e)[:500]}
        doc.metadata_json = meta
        return
    doc.extracted_text = parsed.text
    doc.extracted_text_length = parsed.character_count
    doc.text_extracted_at = utcnow()
    meta["extraction"] = {
        "status": "ok",
        "word_count": parsed.word_count,
        "language": parsed.language,
        "truncated": parsed.truncated,
        **parsed.metadata,
    }
    doc.metadata_json = meta


def _commit_or_discard(key: str) -> None:
    """Commit; on any failure drop the just-stored file and re-raise."""
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        storage_service.delete(key)
        raise


def get_document(org_id: int, document_id: int, record_view: bool = False) -> Document:
    """Raises NotFoundError for missing, deleted or other-organization documents."""
    doc = db.session.get(Document, document_id)
    if not doc or doc.organization_id != org_id or doc.deleted_at is not None:
        raise NotFoundError("Document", document_id, org_id)
    if record_view:
        doc.view_count = (doc.view_count or 0) + 1
        doc.last_viewed_at = utcnow()
        db.session.commit()
    return doc


# ═══════════════════════════════════════════════════════════════
# Search
# ═══════════════════════════════════════════════════════════════
def _ids_with_any_tag(org_id: int, tags: list[str]) -> list[int]:
    """Ids of live documents carrying any of ``tags`` (case-insensitive, whole tag)."""
    wanted = {t.lower() for t in tags}
    rows = db.session.query(Document.id, Document.tags).filter(
        Document.organization_id == org_id, Document.deleted_at.is_(None),
    )
    return [doc_id for doc_id, doc_tags in rows if wanted.intersection(t.lower() for t in doc_tags or [])]


def search_documents(org_id: int, params: dict) -> tuple[list[Document], int]:
    """
    Filtered, sorted, paginated document search.

    Params (all optional): folder_id, query, tags (any-match), mime_types,
    uploaded_by, date_from, date_to, min_size, max_size, sort_by, sort_order,
    limit (default 50, max 200), offset.

    Returns:
        (items, total)
    """
    q = Document.query.filter(Document.organization_id == org_id, Document.deleted_at.is_(None))

    if params.get("folder_id") is not None:
        q = q.filter(Document.folder_id == params["folder_id"])

    text = (params.get("query") or "").strip()
    if text:
        pattern = like_pattern(text)
        q = q.filter(or_(
            Document.name.ilike(pattern, escape="\\"),
            Document.description.ilike(pattern, escape="\\"),
            Document.extracted_text.ilike(pattern, escape="\\"),
        ))

    tags = normalize_tags(params.get("tags")) if params.get("tags") else []
    if tags:
        q = q.filter(Document.id.in_(_ids_with_any_tag(org_id, tags)))

    if params.get("mime_types"):
        q = q.filter(Document.mime_type.in_(params["mime_types"]))
    if params.get("uploaded_by") is not None:
        q = q.filter(Document.uploaded_by == params["uploaded_by"])

    for key, op in (("date_from", "ge"), ("date_to", "le")):
        if params.get(key):
            value = parse_datetime(params[key])
            if value is None:
                raise ValidationError(f"{key} must be an ISO date/time", details={key: "invalid"})
            q = q.filter(Document.created_at >= value if op == "ge" else Document.created_at <= value)

    if params.get("min_size") is not None:
        q = q.filter(Document.file_size >= int(params["min_size"]))
    if params.get("max_size") is not None:
        q = q.filter(Document.file_size <= int(params["max_size"]))

    sort_by = params.get("sort_by") or "created_at"
    if sort_by not in SORT_FIELDS:
        raise ValidationError(f"sort_by must be one of {sorted(SORT_FIELDS)}", details={"sort_by": "invalid"})
    sort_order = params.get("sort_order") or "desc"
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc", details={"sort_order": "invalid"})
    column = SORT_FIELDS[sort_by]
    q = q.order_by(column.asc() if sort_order == "asc" else column.desc(), Document.id.desc())

    limit = min(max(int(params.get("limit") or 50), 1), 200)
    offset = max(int(params.get("offset") or 0), 0)
    total = q.count()
    return q.offset(offset).limit(limit).all(), total


def get_recent_documents(org_id: int, user_id: int | None = None, limit: int = 10) -> list[Document]:
    """Newest uploads, optionally only the given user's."""
    q = Document.query.filter(Document.organization_id == org_id, Document.deleted_at.is_(None))
    if user_id is not None:
        q = q.filter(Document.uploaded_by == user_id)
    return q.order_by(Document.created_at.desc(), Document.id.desc()).limit(limit).all()


# ═══════════════════════════════════════════════════════════════
# Upload & versions
# ═══════════════════════════════════════════════════════════════
def upload_document(org_id: int, user_id: int, file_storage, folder_id: int | None = None,
                    name: str | None = None, description: str | None = None, tags=None) -> Document:
    """
    Store an uploaded file as a new document (version 1).

    Raises:
        ValidationError: Missing/empty/oversized file, disallowed type, bad name or tags.
        NotFoundError: Target folder missing or in another organization.
    """
    data, filename, mime = _read_upload(file_storage)
    display_name = _validate_name(name or filename)
    tag_list = normalize_tags(tags)
    if folder_id is not None:
        get_folder(org_id, folder_id)
    _check_quota(org_id, len(data))

    key = storage_service.save(org_id, data, filename)
    doc = Document(
        organization_id=org_id,
        folder_id=folder_id,
        name=display_name,
        description=(description or "").strip() or None,
        file_path=key,
        file_size=len(data),
        mime_type=mime,
        extension=document_parser.extension_of(filename) or None,
        version_number=1,
        tags=tag_list,
        metadata_json={"original_filename": filename},
        uploaded_by=user_id,
        updated_by=user_id,
        view_count=0,
        download_count=0,
    )
    _extract(doc, data, filename, mime)
    db.session.add(doc)
    db.session.flush()
    db.session.add(DocumentVersion(
        document_id=doc.id, version_number=1, file_path=key, file_size=len(data),
        mime_type=mime, change_note="Initial upload", created_by=user_id,
    ))
    log_activity(org_id, user_id, "document", "uploaded", entity_id=doc.id,
                 description=f"Uploaded {display_name}")
    _commit_or_discard(key)
    logger.info("Document uploaded id=%s org=%s size=%d mime=%s", doc.id, org_id, len(data), mime)
    return doc


def upload_new_version(org_id: int, document_id: int, user_id: int, file_storage,
                       change_note: str | None = None) -> Document:
    """Replace the document's content, keeping the previous file as an older version."""
    doc = get_document(org_id, document_id)
    data, filename, mime = _read_upload(file_storage)
    _check_quota(org_id, len(data))

    key = storage_service.save(org_id, data, filename)
    doc.version_number = (doc.version_number or 1) + 1
    doc.file_path = key
    doc.file_size = len(data)
    doc.mime_type = mime
    doc.extension = document_parser.extension_of(filename) or doc.extension
    doc.updated_by = user_id
    _extract(doc, data, filename, mime)
    db.session.add(DocumentVersion(
        document_id=doc.id, version_number=doc.version_number, file_path=key, file_size=len(data),
        mime_type=mime, change_note=(change_note or "").strip() or None, created_by=user_id,
    ))
    log_activity(org_id, user_id, "document", "updated", entity_id=doc.id,
                 description=f"Uploaded version {doc.version_number} of {doc.name}")
    _commit_or_discard(key)
    logger.info("Document version uploaded id=%s v=%s", doc.id, doc.version_number)
    return doc


def list_versions(org_id: int, document_id: int) -> list[DocumentVersion]:
    doc = get_document(org_id, document_id)
    return doc.versions.all()


# ═══════════════════════════════════════════════════════════════
# Update / delete / download
# ═══════════════════════════════════════════════════════════════
_UPDATABLE = ("name", "description", "tags", "folder_id", "metadata")


def update_document(org_id: int, document_id: int, user_id: int, data: dict) -> Document:
    """
    Partial update of name, description, tags, folder_id and metadata.

    Raises:
        ValidationError: No updatable field supplied, or an invalid value.
        NotFoundError: Document or target folder missing.
    """
    if not any(k in data for k in _UPDATABLE):
        raise ValidationError(f"Provide at least one of: {', '.join(_UPDATABLE)}")
    doc = get_document(org_id, document_id)

    action = "updated"
    if "name" in data:
        doc.name = _validate_name(data["name"])
    if "description" in data:
        doc.description = (data["description"] or "").strip() or None
    if "tags" in data:
        doc.tags = normalize_tags(data["tags"])
    if "folder_id" in data and data["folder_id"] != doc.folder_id:
        if data["folder_id"] is not None:
            get_folder(org_id, data["folder_id"])
        doc.folder_id = data["folder_id"]
        action = "moved"
    if "metadata" in data:
        if not isinstance(data["metadata"], dict):
            raise ValidationError("metadata must be an object", details={"metadata": "invalid"})
        merged = dict(doc.metadata_json or {})
        merged.update(data["metadata"])
        doc.metadata_json = merged

    doc.updated_by = user_id
    log_activity(org_id, user_id, "document", action, entity_id=doc.id,
                 description=f"{action.capitalize()} {doc.name}")
    db.session.commit()
    logger.info("Document %s id=%s org=%s", action, doc.id, org_id)
    return doc


def delete_document(org_id: int, document_id: int, user_id: int) -> None:
    """Soft delete; the stored file is kept so the document can be restored."""
    doc = get_document(org_id, document_id)
    doc.deleted_at = utcnow()
    doc.deleted_by = user_id
    log_activity(org_id, user_id, "document", "deleted", entity_id=doc.id,
                 description=f"Deleted {doc.name}")
    db.session.commit()
    logger.info("Document soft-deleted id=%s org=%s", doc.id, org_id)


def restore_document(org_id: int, document_id: int, user_id: int) -> Document:
    doc = db.session.get(Document, document_id)
    if not doc or doc.organization_id != org_id:
        raise NotFoundError("Document", document_id, org_id)
    if doc.folder_id is not None:
        folder = db.session.get(Folder, doc.folder_id)
        if folder is None or folder.deleted_at is not None:
            doc.folder_id = None
    doc.deleted_at = None
    doc.deleted_by = None
    doc.updated_by = user_id
    db.session.commit()
    return doc


def download_document(org_id: int, document_id: int):
    """Count the download and return (path, download_name, mime_type)."""
    doc = get_document(org_id, document_id)
    path = storage_service.open_path(doc.file_path)
    doc.download_count = (doc.download_count or 0) + 1
    doc.last_downloaded_at = utcnow()
    db.session.commit()
    download_name = doc.name
    if doc.extension and not download_name.lower().endswith(f".{doc.extension}"):
        download_name = f"{download_name}.{doc.extension}"
    return path, download_name, doc.mime_type


def bulk_operation(org_id: int, user_id: int, document_ids: list, operation: str,
                   params: dict | None = None) -> dict:
    """
    Apply ``operation`` (move, delete, tag, restore) to each document.

    Each document succeeds or fails on its own; failures are reported per id.
    """
    if operation not in BULK_OPERATIONS:
        raise ValidationError(f"operation must be one of {list(BULK_OPERATIONS)}",
                              details={"operation": "invalid"})
    if not isinstance(document_ids, list) or not document_ids:
        raise ValidationError("document_ids must be a non-empty list", details={"document_ids": "required"})
    params = params or {}

    result = {"success_count": 0, "failure_count": 0, "errors": []}
    for doc_id in document_ids:
        try:
            if operation == "move":
                update_document(org_id, doc_id, user_id, {"folder_id": params.get("folder_id")})
            elif operation == "delete":
                delete_document(org_id, doc_id, user_id)
            elif operation == "tag":
                doc = get_document(org_id, doc_id)
                update_document(org_id, doc_id, user_id,
                                {"tags": list(doc.tags or []) + list(params.get("tags") or [])})
            else:
                restore_document(org_id, doc_id, user_id)
            result["success_count"] += 1
        except (NotFoundError, ValidationError) as e:
            db.session.rollback()
            result["failure_count"] += 1
            result["errors"].append({"document_id": doc_id, "error": str(e)})
    result["success"] = result["failure_count"] == 0
    logger.info("Bulk %s org=%s ok=%d failed=%d", operation, org_id,
                result["success_count"], result["failure_count"])
    return result


# ═══════════════════════════════════════════════════════════════
# Statistics
# ═══════════════════════════════════════════════════════════════
def get_storage_stats(org_id: int) -> dict:
    """Total bytes and count of live documents, per-MIME breakdown, and quota usage."""
    rows = (
        db.session.query(Document.mime_type, func.count(Document.id), func.coalesce(func.sum(Document.file_size), 0))
        .filter(Document.organization_id == org_id, Document.deleted_at.is_(None))
        .group_by(Document.mime_type)
        .all()
    )
    by_type = [
        {"mime_type": mime, "count": count, "total_size": int(size)}
        for mime, count, size in sorted(rows, key=lambda r: -int(r[2]))
    ]
    used = sum(t["total_size"] for t in by_type)
    quota = current_app.config.get("STORAGE_QUOTA_BYTES") or 0
    return {
        "total_size": used,
        "document_count": sum(t["count"] for t in by_type),
        "by_mime_type": by_type,
        "quota": quota,
        "percentage": round(min(100.0, used / quota * 100), 2) if quota else 0.0,
    }


def get_all_tags(org_id: int) -> list[dict]:
    """Distinct tags across live documents with usage counts, most used first."""
    counter = Counter()
    for (tags,) in db.session.query(Document.tags).filter(
        Document.organization_id == org_id, Document.deleted_at.is_(None),
    ):
        counter.update(tags or [])
    return [{"tag": tag, "count": count} for tag, count in sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))]
