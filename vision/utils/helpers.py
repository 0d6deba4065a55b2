"""Shared utility functions for services and blueprints.

utcnow / as_utc:      timezone-aware timestamps (SQLite hands back naive values)
parse_date:           returns None on bad input
parse_datetime:       ISO datetime, None on bad input
slugify:              URL-safe slug for organization names
commit_or_conflict:   commit, mapping IntegrityError to ConflictError
"""
import logging
import re
import unicodedata
from datetime import date, datetime, timezone

from sqlalchemy.exc import IntegrityError

from vision.core.exceptions import ConflictError
from vision.models import db

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime.

    SQLite drops tzinfo on round-trip, so values read back from the DB
    are naive even when they were written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO datetime string (``Z`` suffix allowed). None on bad input."""
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        return None


def slugify(value: str, max_length: int = 80) -> str:
    """Lower-case ASCII slug: ``"Helping Hands NGO!"`` → ``"helping-hands-ngo"``."""
    normalized = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug[:max_length].strip("-") or "org"


def like_pattern(term: str) -> str:
    """``%term%`` with LIKE wildcards escaped; pair with ``escape="\\"``."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_conflict(resource: str, field: str, value=None) -> None:
    """Commit the current session; on IntegrityError roll back and raise ConflictError.

    Usage::

        db.session.add(folder)
        commit_or_conflict("Folder", "name", folder.name)

    Other database errors propagate to the blueprint's catch-all handler.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit (%s.%s): %s", resource, field, exc.orig)
        raise ConflictError(resource, field, value) from exc
