"""Python SDK for submitting agent telemetry."""

from telemetry_client.client import TelemetryClient
from telemetry_client.exceptions import (
    TelemetryAPIError,
    TelemetryAuthError,
    TelemetryClientError,
    TelemetryNotFoundError,
    TelemetryRateLimitError,
    TelemetryUnavailableError,
    TelemetryValidationError,
)
from telemetry_client.types import SubmitResult

__all__ = [
    "SubmitResult",
    "TelemetryAPIError",
    "TelemetryAuthError",
    "TelemetryClient",
    "TelemetryClientError",
    "TelemetryNotFoundError",
    "TelemetryRateLimitError",
    "TelemetryUnavailableError",
    "TelemetryValidationError",
]
