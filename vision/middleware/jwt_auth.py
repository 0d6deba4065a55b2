"""
JWT Auth Middleware: parses the Bearer token from the Authorization header.

Sets ``g.user_id`` (int) when a valid access token is present, otherwise
leaves it as None. Enforcement happens in the route decorators of
``vision.middleware.permission_required`` so that public routes (health,
login, invite lookup) need no special casing here.
"""

import logging

import jwt as pyjwt
from flask import g, request

from vision.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.user_id = None
        g.token_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]

        try:
            payload = decode_access_token(token)
            g.user_id = int(payload["sub"])
        except pyjwt.ExpiredSignatureError:
            g.token_error = "Token expired"
        except (pyjwt.InvalidTokenError, KeyError, ValueError):
            logger.debug("Rejected malformed bearer token on %s", path)
            g.token_error = "Invalid token"
