"""
core/errors.py -- Application error taxonomy.

Every expected failure in the service is an AppError subclass carrying the
HTTP status it maps to and a stable machine-readable code. Stores, the
session manager and the access gate raise these; the single AppError handler
in api/main.py turns them into responses. Nothing between the raise site and
that handler needs its own try/except.

Anything that is not an AppError is unexpected: the catch-all handler logs the
stack and returns a generic 500 without leaking internals.

Layer rule: core/ is the kernel. No imports from api/, auth/, or expenses/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Violation:
    """One failed validation rule, addressed to a request field."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class AppError(Exception):
    """Base class for expected, client-visible failures."""

    status_code: int = 500
    code: str = "error"
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# 400 -- validation
# ---------------------------------------------------------------------------


class ValidationError(AppError):
    """One or more input rules failed. Carries every violation, not just the first."""

    status_code = 400
    code = "validation_error"
    default_message = "Validation failed."

    def __init__(self, violations: list[Violation], message: str | None = None) -> None:
        super().__init__(message)
        self.violations = list(violations)


# ---------------------------------------------------------------------------
# 401 -- authentication
# ---------------------------------------------------------------------------


class AuthenticationError(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class NoTokenError(AuthenticationError):
    code = "no_token"
    default_message = "No session token found."


class InvalidSessionError(AuthenticationError):
    code = "invalid_session"
    default_message = "Invalid session."


class SessionExpiredError(AuthenticationError):
    code = "session_expired"
    default_message = "Session expired."


class UserNotFoundError(AuthenticationError):
    code = "user_not_found"
    default_message = "User not found."


class AccountDeactivatedError(AuthenticationError):
    code = "account_deactivated"
    default_message = "Account is deactivated."


class InvalidCredentialsError(AuthenticationError):
    # Login contract answers bad credentials with 400, not 401.
    status_code = 400
    code = "bad_credentials"
    default_message = "Invalid credentials."


# ---------------------------------------------------------------------------
# 403 / 404 / 409
# ---------------------------------------------------------------------------


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class ForbiddenError(AuthorizationError):
    pass


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Request conflicts with current state."


class DuplicateEmailError(ConflictError):
    # Registration contract answers duplicates with 400.
    status_code = 400
    code = "user_exists"
    default_message = "User already exists"


class InvalidStateError(ConflictError):
    code = "invalid_state"


# ---------------------------------------------------------------------------
# 500
# ---------------------------------------------------------------------------


class InternalError(AppError):
    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."
