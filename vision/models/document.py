"""
Document management models: hierarchical folders, documents and versions.

Models:
    - Folder: materialized-path folder tree (``/<id1>/<id2>/``), per organization
    - Document: uploaded file with tags, extracted text and usage counters
    - DocumentVersion: immutable history entry for each uploaded revision

Folder ``path`` always ends with the folder's own id, so descendants of a
folder are exactly the rows whose path starts with that folder's path.
"""

from datetime import datetime, timezone

from vision.models import db


class Folder(db.Model):
    """Hierarchical folder (materialized path + depth)."""

    __tablename__ = "folders"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    parent_folder_id = db.Column(
        db.Integer, db.ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    color = db.Column(db.String(7), comment="Hex color, e.g. #2563eb")
    icon = db.Column(db.String(50))

    path = db.Column(db.String(1000), default="/", index=True, comment="Materialized path: /1/4/9/")
    depth = db.Column(db.Integer, default=0)

    is_system = db.Column(db.Boolean, default=False)
    metadata_json = db.Column("metadata", db.JSON, default=dict)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    deleted_at = db.Column(db.DateTime(timezone=True))
    deleted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    __table_args__ = (
        db.Index("ix_folders_org_parent", "organization_id", "parent_folder_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "parent_folder_id": self.parent_folder_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
            "path": self.path,
            "depth": self.depth,
            "is_system": self.is_system,
            "metadata": self.metadata_json or {},
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Document(db.Model):
    """Uploaded document with extracted text and usage counters."""

    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    folder_id = db.Column(
        db.Integer, db.ForeignKey("folders.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    file_path = db.Column(db.String(1000), nullable=False, comment="Storage key")
    file_size = db.Column(db.BigInteger, default=0, comment="bytes")
    mime_type = db.Column(db.String(150), nullable=False)
    extension = db.Column(db.String(20))

    version_number = db.Column(db.Integer, default=1)
    tags = db.Column(db.JSON, default=list)
    metadata_json = db.Column("metadata", db.JSON, default=dict)

    extracted_text = db.Column(db.Text)
    extracted_text_length = db.Column(db.Integer)
    text_extracted_at = db.Column(db.DateTime(timezone=True))

    view_count = db.Column(db.Integer, default=0)
    download_count = db.Column(db.Integer, default=0)
    last_viewed_at = db.Column(db.DateTime(timezone=True))
    last_downloaded_at = db.Column(db.DateTime(timezone=True))

    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    deleted_at = db.Column(db.DateTime(timezone=True))
    deleted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    folder = db.relationship("Folder")
    versions = db.relationship(
        "DocumentVersion", back_populates="document", lazy="dynamic",
        cascade="all, delete-orphan", order_by="DocumentVersion.version_number.desc()",
    )

    def to_dict(self, include_text=False):
        d = {
            "id": self.id,
            "organization_id": self.organization_id,
            "folder_id": self.folder_id,
            "folder_name": self.folder.name if self.folder else None,
            "name": self.name,
            "description": self.description,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "extension": self.extension,
            "version_number": self.version_number,
            "tags": self.tags or [],
            "metadata": self.metadata_json or {},
            "extracted_text_length": self.extracted_text_length,
            "text_extracted_at": self.text_extracted_at.isoformat() if self.text_extracted_at else None,
            "view_count": self.view_count or 0,
            "download_count": self.download_count or 0,
            "last_viewed_at": self.last_viewed_at.isoformat() if self.last_viewed_at else None,
            "last_downloaded_at": self.last_downloaded_at.isoformat() if self.last_downloaded_at else None,
            "uploaded_by": self.uploaded_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_text:
            d["extracted_text"] = self.extracted_text
        return d


class DocumentVersion(db.Model):
    """One stored revision of a document."""

    __tablename__ = "document_versions"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    version_number = db.Column(db.Integer, nullable=False)
    file_path = db.Column(db.String(1000), nullable=False)
    file_size = db.Column(db.BigInteger, default=0)
    mime_type = db.Column(db.String(150))
    change_note = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("document_id", "version_number", name="uq_document_version"),
    )

    document = db.relationship("Document", back_populates="versions")

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "version_number": self.version_number,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "change_note": self.change_note,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
