"""SDK exception types."""

from __future__ import annotations


class TelemetryClientError(Exception):
    """Base SDK error."""


class TelemetryAPIError(TelemetryClientError):
    """API request failed.

    Parameters
    ----------
    message : str
        Error message.
    status_code : int | None, default=None
        HTTP status code if available.
    error : str | None, default=None
        Server error class name, e.g. ``ValidationError``.
    """

    def __init__(
        self, message: str, status_code: int | None = None, error: str | None = None
    ) -> None:
        self.status_code = status_code
        self.error = error
        super().__init__(message)


class TelemetryAuthError(TelemetryAPIError):
    """Authentication failed."""


class TelemetryValidationError(TelemetryAPIError):
    """Event payload was rejected."""


class TelemetryNotFoundError(TelemetryAPIError):
    """Requested resource was not found."""


class TelemetryRateLimitError(TelemetryAPIError):
    """Caller hit the ingest rate limit and retries were exhausted.

    Parameters
    ----------
    message : str
        Error message.
    status_code : int | None, default=None
        HTTP status code if available.
    error : str | None, default=None
        Server error class name.
    retry_after : float | None, default=None
        Server-advised wait in seconds.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, error=error)
        self.retry_after = retry_after


class TelemetryUnavailableError(TelemetryAPIError):
    """Server or its database was unavailable."""
