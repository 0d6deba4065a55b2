"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

Usage:
    from vision.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Folder", resource_id=42, org_id=7)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-organization access
    attempts. A 403 would confirm the resource exists; a 404 does not.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Folder", "Engagement").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        org_id: Optional organization scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        org_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.org_id = org_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if org_id is not None:
            msg += f" (organization={org_id})"
        super().__init__(msg)

    @property
    def public_message(self) -> str:
        return f"{self.resource} not found"


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint). This
    exception signals that the data was well-formed but violated a business
    rule (e.g. invalid stage transition, forbidden folder name).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule or a stale write.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StaleWriteError(ConflictError):
    """Raised when an update carries an outdated ``expected_updated_at`` token."""

    def __init__(self, resource: str, resource_id: int | None = None) -> None:
        super().__init__(resource, "updated_at")
        self.resource_id = resource_id
        self.args = (f"{resource} id={resource_id} was modified by someone else",)


class PermissionDeniedError(Exception):
    """Raised when the caller is authenticated but lacks the required role.

    Maps to HTTP 403.
    """


class AuthenticationError(Exception):
    """Raised when credentials or tokens are missing, invalid or expired.

    Maps to HTTP 401.
    """
