"""
core/errors.py -- Error taxonomy shared by auth/, notify/ and api/.

Every failure a caller can observe is an AppError subclass carrying a stable
machine-readable code and an HTTP status. The API layer has one exception
handler for AppError, so the kind-to-status mapping lives here and nowhere
else.

DependencyFailure is the odd one out: it is never raised to clients. The
account flows build one when the notification gateway fails and attach it
to an otherwise successful response.

Layer rule: core/ is the kernel. No imports from api/, auth/ or notify/.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for all expected application errors."""

    code: str = "internal_error"
    status_code: int = 500
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, code: str | None = None, **extra: Any) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        # Additional fields merged into the error envelope, e.g. needs_verification.
        self.extra = extra
        super().__init__(self.message)


class ValidationError(AppError):
    code = "validation_error"
    status_code = 400
    default_message = "Request validation failed."


class ConflictError(AppError):
    code = "conflict"
    status_code = 409
    default_message = "Email or handle already in use."


class UnauthorizedError(AppError):
    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class ForbiddenError(AppError):
    code = "forbidden"
    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFoundError(AppError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class PolicyViolationError(AppError):
    code = "last_admin"
    status_code = 400
    default_message = "Cannot remove the last active admin."


class TokenInvalidError(AppError):
    # One message for expired, consumed and unknown tokens so callers cannot
    # tell which tokens ever existed.
    code = "token_invalid"
    status_code = 400
    default_message = "Verification link is invalid or has expired."


class DependencyFailure(AppError):
    code = "dependency_failure"
    status_code = 502
    default_message = "A downstream service failed."


class InternalError(AppError):
    pass
