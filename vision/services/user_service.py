"""
User Service: registration, login, token refresh, profile and preferences.
"""

import logging
from datetime import datetime, timezone

import jwt as pyjwt
from email_validator import EmailNotValidError, validate_email

from vision.core.exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from vision.models import db
from vision.models.auth import THEMES, User, UserPreference
from vision.services.email_service import EmailService
from vision.services.jwt_service import decode_refresh_token, generate_token_pair
from vision.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str) -> str:
    """Validate and normalize an email address (lower-cased).

    Raises:
        ValidationError: If the address is syntactically invalid.
    """
    try:
        valid = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": str(e)}) from e
    return valid.normalized.lower()


def _check_password(password: str | None) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"password": "too_short"},
        )


# ═══════════════════════════════════════════════════════════════
# Registration & login
# ═══════════════════════════════════════════════════════════════
def register(email: str, password: str, full_name: str | None = None) -> User:
    """Create a new user account.

    Raises:
        ValidationError: Invalid email or weak password.
        ConflictError: Email already registered.
    """
    email = normalize_email(email)
    _check_password(password)

    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=(full_name or "").strip() or None,
    )
    user.preference = UserPreference()
    db.session.add(user)
    db.session.commit()
    logger.info("User registered id=%s", user.id)

    try:
        EmailService.send_from_template(
            to_email=user.email, to_name=user.full_name,
            template_name="welcome", context={"name": user.display_name},
        )
    except Exception:
        logger.exception("Welcome email failed for user id=%s", user.id)
    return user


def login(email: str, password: str) -> dict:
    """Authenticate with email + password and issue a token pair.

    Raises:
        AuthenticationError: Unknown email, wrong password or inactive account.
    """
    email = (email or "").strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password or "", user.password_hash):
        logger.warning("Failed login for email=%s", email)
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is disabled")

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()

    tokens = generate_token_pair(user.id, user.email)
    tokens["user"] = user.to_dict()
    return tokens


def refresh(refresh_token: str) -> dict:
    """Exchange a refresh token for a fresh token pair.

    Raises:
        AuthenticationError: Token invalid/expired or user inactive.
    """
    try:
        payload = decode_refresh_token(refresh_token or "")
        user_id = int(payload["sub"])
    except pyjwt.ExpiredSignatureError as e:
        raise AuthenticationError("Refresh token expired") from e
    except (pyjwt.InvalidTokenError, KeyError, ValueError) as e:
        raise AuthenticationError("Invalid refresh token") from e

    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    return generate_token_pair(user.id, user.email)


# ═══════════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════════
def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User", user_id)
    return user


def update_profile(user_id: int, data: dict) -> User:
    """Update full_name / avatar_url."""
    user = get_user(user_id)
    if "full_name" in data:
        full_name = (data.get("full_name") or "").strip()
        if len(full_name) > 200:
            raise ValidationError("full_name must be ≤ 200 characters")
        user.full_name = full_name or None
    if "avatar_url" in data:
        user.avatar_url = data.get("avatar_url") or None
    db.session.commit()
    logger.info("User profile updated id=%s", user.id)
    return user


def change_password(user_id: int, current_password: str, new_password: str) -> None:
    """Change password after verifying the current one.

    Raises:
        AuthenticationError: Current password is wrong.
        ValidationError: New password too short.
    """
    user = get_user(user_id)
    if not verify_password(current_password or "", user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    _check_password(new_password)
    user.password_hash = hash_password(new_password)
    db.session.commit()
    logger.info("Password changed for user id=%s", user.id)


def get_preferences(user_id: int) -> UserPreference:
    user = get_user(user_id)
    if user.preference is None:
        user.preference = UserPreference()
        db.session.commit()
    return user.preference


def update_preferences(user_id: int, data: dict) -> UserPreference:
    """Partial update of theme / language / timezone / email_notifications."""
    pref = get_preferences(user_id)
    if "theme" in data:
        if data["theme"] not in THEMES:
            raise ValidationError(f"theme must be one of {sorted(THEMES)}")
        pref.theme = data["theme"]
    if "language" in data:
        pref.language = str(data["language"])[:10]
    if "timezone" in data:
        pref.timezone = str(data["timezone"])[:64]
    if "email_notifications" in data:
        pref.email_notifications = bool(data["email_notifications"])
    db.session.commit()
    return pref
