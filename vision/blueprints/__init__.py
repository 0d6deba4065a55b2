"""
VISION Platform
Blueprint registry.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from vision.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StaleWriteError,
    ValidationError,
)
from vision.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def page_args(default_limit=50, max_limit=200):
    """(limit, offset) from the query string.

    Query params:
        limit  max items (default 50, capped at max_limit)
        offset starting position (default 0)
    """
    try:
        limit = max(min(int(request.args.get("limit", default_limit)), max_limit), 1)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def json_body() -> dict:
    """The request's JSON object; an absent or unparseable body is ``{}``.

    Raises:
        ValidationError: The body is JSON but not an object.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "not_an_object"})
    return data


def register_error_handlers(bp):
    """Map the service exception taxonomy to HTTP responses on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.debug("Not found: %s", error)
        return api_error(E.NOT_FOUND, error.public_message)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(StaleWriteError)
    def _handle_stale(error: StaleWriteError):
        return api_error(E.CONFLICT_STATE, str(error), details={"resource_id": error.resource_id})

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        return api_error(E.FORBIDDEN, str(error) or "Permission denied")

    @bp.errorhandler(AuthenticationError)
    def _handle_auth(error: AuthenticationError):
        return api_error(E.UNAUTHORIZED, str(error) or "Authentication required")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
