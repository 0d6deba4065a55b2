"""
Folder Service: hierarchical folders on a materialized path.

Every folder stores ``path`` = parent.path + "<own id>/" (a root folder
with id 5 has path "/5/") and ``depth`` = number of ancestors. A folder's
live subtree is therefore ``path LIKE '<folder.path>%'``.

Sibling names are unique among live folders with the same parent
(case-insensitive).
"""

import logging
import re

from sqlalchemy import func

from vision.core.exceptions import ConflictError, NotFoundError, ValidationError
from vision.models import db
from vision.models.document import Document, Folder
from vision.services.activity_service import log_activity
from vision.utils.helpers import like_pattern, utcnow

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
_INVALID_NAME_CHARS = re.compile(r'[<>:"|?*/\\\x00-\x1f]')
_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def validate_folder_name(name) -> str:
    """Return the trimmed name or raise ValidationError."""
    name = (name or "").strip() if isinstance(name, str) else ""
    if not name:
        raise ValidationError("Folder name cannot be empty", details={"name": "required"})
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Folder name is too long (max {MAX_NAME_LENGTH} characters)", details={"name": "too_long"},
        )
    if _INVALID_NAME_CHARS.search(name):
        raise ValidationError("Folder name contains invalid characters", details={"name": "invalid_chars"})
    return name


def _live(org_id: int):
    return Folder.query.filter(Folder.organization_id == org_id, Folder.deleted_at.is_(None))


def get_folder(org_id: int, folder_id: int) -> Folder:
    """Raises NotFoundError for missing, deleted or other-organization folders."""
    folder = db.session.get(Folder, folder_id)
    if not folder or folder.organization_id != org_id or folder.deleted_at is not None:
        raise NotFoundError("Folder", folder_id, org_id)
    return folder


def _ensure_unique_name(org_id: int, parent_id: int | None, name: str, exclude_id: int | None = None):
    q = _live(org_id).filter(func.lower(Folder.name) == name.lower())
    q = q.filter(Folder.parent_folder_id.is_(None)) if parent_id is None else q.filter(
        Folder.parent_folder_id == parent_id)
    if exclude_id is not None:
        q = q.filter(Folder.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Folder", "name", name)


def _validate_color(color):
    if color and not _HEX_COLOR.match(color):
        raise ValidationError("color must be a #RRGGBB hex color", details={"color": "invalid"})
    return color or None


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def list_folders(org_id: int, parent_id: int | None = None, all_levels: bool = False) -> list[Folder]:
    """Children of ``parent_id`` (roots when None), or every folder with ``all_levels``."""
    q = _live(org_id)
    if not all_levels:
        if parent_id is None:
            q = q.filter(Folder.parent_folder_id.is_(None))
        else:
            get_folder(org_id, parent_id)
            q = q.filter(Folder.parent_folder_id == parent_id)
    return q.order_by(Folder.depth, func.lower(Folder.name)).all()


def _document_counts(org_id: int) -> dict[int, int]:
    rows = (
        db.session.query(Document.folder_id, func.count(Document.id))
        .filter(Document.organization_id == org_id, Document.deleted_at.is_(None))
        .group_by(Document.folder_id)
        .all()
    )
    return {folder_id: count for folder_id, count in rows if folder_id is not None}


def get_folder_tree(org_id: int) -> list[dict]:
    """Nested ``children`` lists from a single query, with direct document counts."""
    folders = list_folders(org_id, all_levels=True)
    counts = _document_counts(org_id)
    nodes = {}
    for f in folders:
        node = f.to_dict()
        node["document_count"] = counts.get(f.id, 0)
        node["children"] = []
        nodes[f.id] = node

    roots = []
    for f in folders:
        node = nodes[f.id]
        parent = nodes.get(f.parent_folder_id)
        if parent is not None:
            parent["children"].append(node)
        else:
            roots.append(node)
    return roots


def get_breadcrumb(org_id: int, folder_id: int) -> list[Folder]:
    """Ancestors root-first, ending with the folder itself."""
    folder = get_folder(org_id, folder_id)
    ids = [int(part) for part in folder.path.strip("/").split("/") if part]
    by_id = {f.id: f for f in Folder.query.filter(
        Folder.organization_id == org_id, Folder.id.in_(ids)).all()}
    return [by_id[i] for i in ids if i in by_id]


def search_folders(org_id: int, query: str, limit: int = 20) -> list[Folder]:
    query = (query or "").strip()
    if not query:
        return []
    return (
        _live(org_id)
        .filter(Folder.name.ilike(like_pattern(query), escape="\\"))
        .order_by(func.lower(Folder.name))
        .limit(limit)
        .all()
    )


def get_recent_folders(org_id: int, limit: int = 10) -> list[Folder]:
    return _live(org_id).order_by(Folder.updated_at.desc(), Folder.id.desc()).limit(limit).all()


def get_document_count(org_id: int, folder_id: int, include_subfolders: bool = False) -> int:
    folder = get_folder(org_id, folder_id)
    q = Document.query.filter(Document.organization_id == org_id, Document.deleted_at.is_(None))
    if include_subfolders:
        subtree = _live(org_id).filter(Folder.path.like(f"{folder.path}%")).with_entities(Folder.id)
        return q.filter(Document.folder_id.in_(subtree)).count()
    return q.filter(Document.folder_id == folder.id).count()


def get_folder_statistics(org_id: int) -> dict:
    folders = list_folders(org_id, all_levels=True)
    counts = _document_counts(org_id)
    parents = {f.parent_folder_id for f in folders if f.parent_folder_id is not None}
    empty = [f for f in folders if f.id not in parents and not counts.get(f.id)]
    return {
        "total_folders": len(folders),
        "root_folders": sum(1 for f in folders if f.parent_folder_id is None),
        "max_depth": max((f.depth or 0 for f in folders), default=0),
        "empty_folders": len(empty),
        "total_documents": Document.query.filter(
            Document.organization_id == org_id, Document.deleted_at.is_(None)).count(),
        "recently_updated": [f.to_dict() for f in get_recent_folders(org_id, 5)],
    }


# ═══════════════════════════════════════════════════════════════
# Mutations
# ═══════════════════════════════════════════════════════════════
def create_folder(org_id: int, user_id: int, data: dict) -> Folder:
    """
    Create a folder under ``parent_folder_id`` (or at the root).

    Raises:
        ValidationError: Invalid name or color.
        NotFoundError: Parent missing or in another organization.
        ConflictError: A live sibling already has this name.
    """
    name = validate_folder_name(data.get("name"))
    parent_id = data.get("parent_folder_id")
    parent = get_folder(org_id, parent_id) if parent_id is not None else None
    _ensure_unique_name(org_id, parent.id if parent else None, name)

    folder = Folder(
        organization_id=org_id,
        parent_folder_id=parent.id if parent else None,
        name=name,
        description=(data.get("description") or "").strip() or None,
        color=_validate_color(data.get("color")),
        icon=data.get("icon"),
        metadata_json=data.get("metadata") or {},
        depth=(parent.depth + 1) if parent else 0,
        path="/",
        created_by=user_id,
        updated_by=user_id,
    )
    db.session.add(folder)
    db.session.flush()
    folder.path = f"{parent.path if parent else '/'}{folder.id}/"

    log_activity(org_id, user_id, "folder", "created", entity_id=folder.id,
                 description=f"Created folder {name}")
    db.session.commit()
    logger.info("Folder created id=%s org=%s path=%s", folder.id, org_id, folder.path)
    return folder


def update_folder(org_id: int, folder_id: int, user_id: int, data: dict) -> Folder:
    """Rename / restyle a folder; a ``parent_folder_id`` change is a move."""
    folder = get_folder(org_id, folder_id)

    if "parent_folder_id" in data and data["parent_folder_id"] != folder.parent_folder_id:
        move_folder(org_id, folder_id, data["parent_folder_id"], user_id, commit=False)

    if "name" in data:
        name = validate_folder_name(data["name"])
        if name.lower() != folder.name.lower():
            _ensure_unique_name(org_id, folder.parent_folder_id, name, exclude_id=folder.id)
        folder.name = name
    if "description" in data:
        folder.description = (data["description"] or "").strip() or None
    if "color" in data:
        folder.color = _validate_color(data["color"])
    if "icon" in data:
        folder.icon = data["icon"]
    if "metadata" in data:
        folder.metadata_json = data["metadata"] or {}

    folder.updated_by = user_id
    log_activity(org_id, user_id, "folder", "updated", entity_id=folder.id,
                 description=f"Updated folder {folder.name}")
    db.session.commit()
    logger.info("Folder updated id=%s org=%s", folder.id, org_id)
    return folder


def move_folder(org_id: int, folder_id: int, new_parent_id: int | None, user_id: int,
                commit: bool = True) -> Folder:
    """
    Re-parent a folder and rewrite path/depth of its whole subtree.

    Raises:
        NotFoundError: Folder or destination missing / in another organization.
        ValidationError: Destination is the folder itself or one of its descendants.
        ConflictError: The destination already holds a folder with this name.
    """
    folder = get_folder(org_id, folder_id)
    new_parent = None
    if new_parent_id is not None:
        new_parent = db.session.get(Folder, new_parent_id)
        if not new_parent or new_parent.deleted_at is not None:
            raise NotFoundError("Folder", new_parent_id, org_id)
        if new_parent.organization_id != org_id:
            raise ValidationError("Cannot move folder to a different organization")
        if new_parent.id == folder.id or new_parent.path.startswith(folder.path):
            raise ValidationError("Cannot move folder into itself or its own subfolder")

    if (new_parent.id if new_parent else None) == folder.parent_folder_id:
        return folder
    _ensure_unique_name(org_id, new_parent.id if new_parent else None, folder.name, exclude_id=folder.id)

    old_path, old_depth = folder.path, folder.depth or 0
    new_path = f"{new_parent.path if new_parent else '/'}{folder.id}/"
    new_depth = (new_parent.depth + 1) if new_parent else 0
    depth_delta = new_depth - old_depth

    descendants = Folder.query.filter(
        Folder.organization_id == org_id,
        Folder.path.like(f"{old_path}%"),
        Folder.id != folder.id,
    ).all()
    for d in descendants:
        d.path = new_path + d.path[len(old_path):]
        d.depth = (d.depth or 0) + depth_delta

    folder.parent_folder_id = new_parent.id if new_parent else None
    folder.path = new_path
    folder.depth = new_depth
    folder.updated_by = user_id

    log_activity(org_id, user_id, "folder", "moved", entity_id=folder.id,
                 description=f"Moved folder {folder.name}",
                 metadata={"from": old_path, "to": new_path})
    if commit:
        db.session.commit()
    logger.info("Folder moved id=%s %s → %s (%d descendants)", folder.id, old_path, new_path,
                len(descendants))
    return folder


def delete_folder(org_id: int, folder_id: int, user_id: int) -> None:
    """
    Soft delete an empty folder.

    Raises:
        ValidationError: System folder, or it still has subfolders or documents.
    """
    folder = get_folder(org_id, folder_id)
    if folder.is_system:
        raise ValidationError("System folders cannot be deleted")
    if _live(org_id).filter(Folder.parent_folder_id == folder.id).count():
        raise ValidationError(
            "Cannot delete folder with subfolders. Delete or move the subfolders first.",
            details={"folder": "has_subfolders"},
        )
    if Document.query.filter(Document.folder_id == folder.id, Document.deleted_at.is_(None)).count():
        raise ValidationError(
            "Cannot delete folder with documents. Delete or move the documents first.",
            details={"folder": "has_documents"},
        )

    folder.deleted_at = utcnow()
    folder.deleted_by = user_id
    log_activity(org_id, user_id, "folder", "deleted", entity_id=folder.id,
                 description=f"Deleted folder {folder.name}")
    db.session.commit()
    logger.info("Folder soft-deleted id=%s org=%s", folder.id, org_id)
