"""Application error taxonomy.

Entity methods and the credential store raise these; orchestration code
translates only what it can turn into a specific outcome and lets the rest
reach the single exception handler registered in ``educonnect.main``.
"""

from typing import Any


class AppError(Exception):
    """Base class for errors rendered as ``ErrorResponse`` bodies."""

    status_code = 500
    error = "internal_error"
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed input or a role-conditional rule violation."""

    status_code = 400
    error = "validation_error"
    default_message = "Validation failed"


class AuthenticationError(AppError):
    """Bad credentials or an unusable token."""

    status_code = 401
    error = "authentication_failed"
    default_message = "Authentication failed"


class AuthorizationError(AppError):
    """Identity confirmed but not allowed (wrong role, school or account state)."""

    status_code = 403
    error = "permission_denied"
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    error = "not_found"
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    error = "conflict"
    default_message = "Resource conflict"


class InvalidStateError(AppError):
    """Illegal invitation state transition."""

    status_code = 400
    error = "invalid_state"
    default_message = "Invalid state transition"


class TokenError(AppError):
    """Base class for token verification failures."""

    status_code = 401
    error = "invalid_token"
    default_message = "Invalid token"


class InvalidTokenError(TokenError):
    """Bad signature, malformed token, or a token from another family."""


class ExpiredTokenError(TokenError):
    """Signature valid but the token is past its ``exp``."""

    error = "token_expired"
    default_message = "Token expired"
