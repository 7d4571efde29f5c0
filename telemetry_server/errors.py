"""Domain error types.

Services raise these; ``telemetry_server.main`` maps each class to an HTTP
status and a JSON envelope.
"""

from __future__ import annotations

from typing import Any


class TelemetryError(Exception):
    """Base class for errors raised by the service.

    Parameters
    ----------
    message : str
        Human-readable description.
    **details : Any
        Structured fields copied into the error response body.
    """

    default_message = "Request failed"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(TelemetryError):
    """Input failed validation."""

    default_message = "Invalid request"


class ImportAbortedError(ValidationError):
    """A database import was rolled back.

    Parameters
    ----------
    message : str
        Description of the fatal failure.
    errors : list[dict[str, Any]]
        Row errors collected before the abort.
    """

    default_message = "Import failed and was rolled back"

    def __init__(self, message: str | None = None, *, errors: list[dict[str, Any]]) -> None:
        super().__init__(message, errors=errors)
        self.errors = errors


class AuthError(TelemetryError):
    """Credentials were rejected."""

    default_message = "Invalid username or password"


class SessionError(TelemetryError):
    """Session is missing, expired or revoked."""

    default_message = "Authentication required"


class CsrfError(TelemetryError):
    """CSRF token is missing or does not belong to the session."""

    default_message = "Invalid CSRF token"


class ForbiddenError(TelemetryError):
    """Caller's role does not allow the action."""

    default_message = "Insufficient permissions"


class LastAdministratorError(ForbiddenError):
    """Action would leave no administrator."""

    default_message = "Cannot remove the last administrator"


class SelfTargetError(ForbiddenError):
    """Administrator attempted the action on their own account."""

    default_message = "Cannot perform this action on your own account"


class NotFoundError(TelemetryError):
    """Requested resource does not exist."""

    default_message = "Not found"


class ConflictError(TelemetryError):
    """Request conflicts with existing state."""

    default_message = "Resource already exists"


class RateLimitError(TelemetryError):
    """Caller exceeded its request budget.

    Parameters
    ----------
    retry_after : float
        Seconds until a request would be admitted.
    """

    default_message = "Too many requests"

    def __init__(self, message: str | None = None, *, retry_after: float) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class DependencyError(TelemetryError):
    """A backing service (the database) is unavailable."""

    default_message = "Service temporarily unavailable"


class InternalError(TelemetryError):
    """Unexpected server fault."""

    default_message = "Internal server error"


class StartupError(Exception):
    """Server could not start (database unreachable or migration failed)."""
