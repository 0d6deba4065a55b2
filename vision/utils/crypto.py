"""
Crypto utilities: bcrypt password hashing and opaque tokens.

Password hashing:
  New hashes are bcrypt ($2b$). Verification also accepts werkzeug
  (scrypt/pbkdf2) hashes for accounts imported from other systems.

Tokens:
  Invitation tokens are 32 random bytes rendered as 64 hex characters.
"""

import secrets

import bcrypt
from werkzeug.security import check_password_hash


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def generate_invite_token() -> str:
    """Return a URL-safe invite token (64 hex chars)."""
    return secrets.token_hex(32)
