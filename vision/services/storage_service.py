"""Per-organization local file storage.

Keys are relative to ``UPLOAD_FOLDER`` and look like
``<org_id>/<uuid8>_<secure_filename>``; the database only ever stores keys.
"""

import logging
import uuid
from pathlib import Path

from flask import current_app
from werkzeug.utils import secure_filename

from vision.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def _base_path() -> Path:
    return Path(current_app.config.get("UPLOAD_FOLDER", "uploads"))


def _resolve(key: str) -> Path:
    """Absolute path for ``key``; rejects keys that escape the upload root."""
    base = _base_path().resolve()
    path = (base / key).resolve()
    if base != path and base not in path.parents:
        raise NotFoundError("File", key)
    return path


def save(org_id: int, data: bytes, filename: str) -> str:
    """Write ``data`` under the organization's directory and return the storage key."""
    safe_name = secure_filename(filename) or "unnamed_file"
    unique_name = f"{uuid.uuid4().hex[:8]}_{safe_name}"
    org_dir = _base_path() / str(org_id)
    org_dir.mkdir(parents=True, exist_ok=True)
    (org_dir / unique_name).write_bytes(data)
    key = f"{org_id}/{unique_name}"
    logger.debug("Stored file key=%s bytes=%d", key, len(data))
    return key


def open_path(key: str) -> Path:
    """Filesystem path for an existing key.

    Raises:
        NotFoundError: The file is gone from disk.
    """
    path = _resolve(key)
    if not path.is_file():
        raise NotFoundError("File", key)
    return path


def delete(key: str) -> bool:
    """Remove the stored file. Returns False when it did not exist."""
    try:
        path = _resolve(key)
    except NotFoundError:
        return False
    if not path.is_file():
        return False
    path.unlink()
    logger.debug("Deleted file key=%s", key)
    return True
