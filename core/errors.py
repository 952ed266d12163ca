"""
core/errors.py -- Domain error taxonomy.

Every failure that can reach the HTTP boundary is one of these classes. The
API layer maps them to status codes through a single exception handler in
api/main.py, so route and service code never has to pick status codes.

Messages are deliberately generic for the authentication family: an attacker
probing credentials or refresh tokens must not be able to tell which check
failed from the response body.

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/, search/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that carry an HTTP status and a machine code."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, code: str | None = None, detail: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        if code is not None:
            self.code = code
        self.detail = detail


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class AuthenticationError(AppError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidTokenError(AuthenticationError):
    code = "invalid_token"
    message = "Invalid token."


class ExpiredTokenError(AuthenticationError):
    code = "token_expired"
    message = "Token expired."


class InvalidRefreshTokenError(AuthenticationError):
    """Single collapsed failure for every refresh problem (signature, expiry, user gone)."""

    code = "invalid_refresh_token"
    message = "Invalid refresh token."


class InvalidCredentialsError(AuthenticationError):
    code = "bad_credentials"
    message = "Invalid email or password."


# ---------------------------------------------------------------------------
# 403
# ---------------------------------------------------------------------------


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    message = "Invalid request."


class MissingOrganizationError(ValidationError):
    code = "missing_organization"
    message = "An organization id is required."


# ---------------------------------------------------------------------------
# 404 / 409
# ---------------------------------------------------------------------------


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class UserNotFoundError(NotFoundError):
    message = "User not found."


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists."


# ---------------------------------------------------------------------------
# Internal only
# ---------------------------------------------------------------------------


class DependencyDegraded(Exception):
    """An optional record-store feature could not be probed or used.

    Never surfaced to callers: the search engine catches it and falls back to
    plain substring matching.
    """

    def __init__(self, feature: str, reason: str = "") -> None:
        super().__init__(f"{feature} unavailable: {reason}" if reason else f"{feature} unavailable")
        self.feature = feature
