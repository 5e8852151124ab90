from __future__ import annotations

from typing import Any


class AccessGateError(Exception):
    """Base error for accessgate."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class AuthenticationError(AccessGateError):
    """Credential missing, malformed, expired or unverifiable."""

    status_code = 401
    code = "AUTH_UNAUTHORIZED"


class AuthorizationError(AccessGateError):
    """Valid credential without permission for the role, resource or scope."""

    status_code = 403
    code = "AUTH_FORBIDDEN"


class NotFoundError(AccessGateError):
    """Target or referenced resource is absent, soft-deleted or out of scope."""

    status_code = 404
    code = "NOT_FOUND"


class ValidationError(AccessGateError):
    """Caller-supplied data fails shape or content rules."""

    status_code = 400
    code = "VALIDATION_ERROR"


class ConflictError(AccessGateError):
    """Uniqueness violation or mutation of a locked resource."""

    status_code = 409
    code = "CONFLICT"
