"""
Global search across one organization's documents, folders, engagements,
tasks and members (case-insensitive substring match on name / title).
"""

import logging

from sqlalchemy import or_

from vision.models.auth import User
from vision.models.community_pulse import Engagement
from vision.models.document import Document, Folder
from vision.models.organization import OrganizationMember
from vision.models.worklist import Task
from vision.utils.helpers import like_pattern

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
GROUPS = ("documents", "folders", "engagements", "tasks", "members")


def global_search(org_id: int, query: str, limit: int = 5) -> dict:
    """
    Returns:
        {"query", "total", "results": {group: [dict, ...]}} with at most
        ``limit`` hits per group. Queries shorter than 2 characters return
        empty groups.
    """
    query = (query or "").strip()
    results = {g: [] for g in GROUPS}
    if len(query) < MIN_QUERY_LENGTH:
        return {"query": query, "total": 0, "results": results}

    pattern = like_pattern(query)

    docs = (
        Document.query.filter(
            Document.organization_id == org_id,
            Document.deleted_at.is_(None),
            or_(Document.name.ilike(pattern, escape="\\"), Document.description.ilike(pattern, escape="\\")),
        )
        .order_by(Document.updated_at.desc())
        .limit(limit).all()
    )
    results["documents"] = [
        {"id": d.id, "name": d.name, "mime_type": d.mime_type, "folder_id": d.folder_id} for d in docs
    ]

    folders = (
        Folder.query.filter(
            Folder.organization_id == org_id,
            Folder.deleted_at.is_(None),
            Folder.name.ilike(pattern, escape="\\"),
        )
        .order_by(Folder.name).limit(limit).all()
    )
    results["folders"] = [{"id": f.id, "name": f.name, "path": f.path} for f in folders]

    engagements = (
        Engagement.query.filter(
            Engagement.organization_id == org_id,
            Engagement.status != "archived",
            or_(Engagement.title.ilike(pattern, escape="\\"),
                Engagement.learning_goal.ilike(pattern, escape="\\")),
        )
        .order_by(Engagement.updated_at.desc()).limit(limit).all()
    )
    results["engagements"] = [
        {"id": e.id, "title": e.title, "status": e.status, "current_stage": e.current_stage}
        for e in engagements
    ]

    tasks = (
        Task.query.filter(
            Task.organization_id == org_id,
            Task.deleted_at.is_(None),
            Task.title.ilike(pattern, escape="\\"),
        )
        .order_by(Task.updated_at.desc()).limit(limit).all()
    )
    results["tasks"] = [{"id": t.id, "title": t.title, "status": t.status} for t in tasks]

    members = (
        OrganizationMember.query.join(User, OrganizationMember.user_id == User.id)
        .filter(
            OrganizationMember.organization_id == org_id,
            OrganizationMember.deleted_at.is_(None),
            or_(User.full_name.ilike(pattern, escape="\\"), User.email.ilike(pattern, escape="\\")),
        )
        .order_by(User.full_name).limit(limit).all()
    )
    results["members"] = [
        {"id": m.id, "user_id": m.user_id, "full_name": m.user.full_name, "email": m.user.email, "role": m.role}
        for m in members
    ]

    total = sum(len(v) for v in results.values())
    logger.debug("Global search org=%s q=%r hits=%d", org_id, query, total)
    return {"query": query, "total": total, "results": results}
