"""Synchronous Python SDK client."""

from __future__ import annotations

import functools
import os
import random
import warnings
from collections.abc import Callable
from datetime import datetime, timezone
from time import perf_counter, sleep
from typing import Any, TypeVar
from uuid import uuid4

import httpx

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

F = TypeVar("F", bound=Callable[..., Any])

EVENTS_PATH = "/api/events"
RETRYABLE_STATUS = frozenset({429, 503})


class TelemetryClient:
    """Client for the telemetry ingest API.

    Parameters
    ----------
    base_url : str
        Telemetry server base URL.
    server_id : str | None, default=None
        Org identifier attached to every event.
    version : str | None, default=None
        Agent version attached to every event.
    timeout : float, default=5.0
        Request timeout in seconds.
    max_retries : int, default=3
        Number of retries for ``429``, ``503`` and transport errors.
    backoff_base : float, default=0.25
        First retry delay in seconds; doubles per attempt.
    backoff_max : float, default=10.0
        Ceiling on a single retry delay.
    transport : httpx.BaseTransport | None, default=None
        Optional transport for tests or advanced usage.
    sleep_func : Callable[[float], None], default=time.sleep
        Delay function used between retries.
    """

    def __init__(
        self,
        *,
        base_url: str,
        server_id: str | None = None,
        version: str | None = None,
        timeout: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 0.25,
        backoff_max: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        sleep_func: Callable[[float], None] = sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.server_id = server_id
        self.version = version
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep_func
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls) -> "TelemetryClient":
        """Build a client from environment variables.

        Expected variables
        ------------------
        TELEMETRY_BASE_URL
            Server base URL. Defaults to ``http://127.0.0.1:3100``.
        TELEMETRY_SERVER_ID
            Required org identifier.
        TELEMETRY_VERSION
            Optional agent version.

        Returns
        -------
        TelemetryClient
            Configured SDK client.
        """
        base_url = os.environ.get("TELEMETRY_BASE_URL", "http://127.0.0.1:3100")
        server_id = os.environ.get("TELEMETRY_SERVER_ID")
        if not server_id:
            raise TelemetryClientError("TELEMETRY_SERVER_ID is required to create the client")
        return cls(
            base_url=base_url,
            server_id=server_id,
            version=os.environ.get("TELEMETRY_VERSION"),
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def send(
        self,
        event: str,
        data: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        event_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> SubmitResult:
        """Submit one event.

        A random ``event_id`` is generated when none is given, so a retried
        submission is stored once.

        Parameters
        ----------
        event : str
            Event type, e.g. ``tool_call``.
        data : dict[str, Any] | None, default=None
            Event payload.
        session_id : str | None, default=None
            Agent session identifier.
        user_id : str | None, default=None
            End-user identifier.
        event_id : str | None, default=None
            Idempotency key.
        timestamp : datetime | None, default=None
            Event time; now when omitted.

        Returns
        -------
        SubmitResult
            Server-assigned id and receive time.
        """
        moment = timestamp or datetime.now(timezone.utc)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        payload: dict[str, Any] = {
            "event": event,
            "timestamp": moment.isoformat().replace("+00:00", "Z"),
            "server_id": self.server_id,
            "version": self.version,
            "session_id": session_id,
            "user_id": user_id,
            "event_id": event_id or str(uuid4()),
            "data": data,
        }
        response = self._request(
            "POST",
            EVENTS_PATH,
            json={key: value for key, value in payload.items() if value is not None},
        )
        body = response.json()
        return SubmitResult(
            id=int(body["id"]),
            received_at=_parse_datetime(body["receivedAt"]),
            duplicate=bool(body.get("duplicate", False)),
        )

    def session_start(self, session_id: str, **data: Any) -> SubmitResult:
        """Record the start of an agent session."""
        return self.send("session_start", data or None, session_id=session_id)

    def session_end(self, session_id: str, **data: Any) -> SubmitResult:
        """Record the end of an agent session."""
        return self.send("session_end", data or None, session_id=session_id)

    def tool_call(
        self,
        name: str,
        duration_ms: float | None = None,
        *,
        session_id: str | None = None,
        success: bool = True,
        **data: Any,
    ) -> SubmitResult:
        """Record one tool invocation.

        Parameters
        ----------
        name : str
            Tool name.
        duration_ms : float | None, default=None
            Wall-clock duration.
        session_id : str | None, default=None
            Agent session identifier.
        success : bool, default=True
            Whether the tool completed without raising.
        **data : Any
            Extra payload fields.

        Returns
        -------
        SubmitResult
            Accepted event.
        """
        payload: dict[str, Any] = {"tool": name, "success": success, **data}
        if duration_ms is not None:
            payload["duration_ms"] = round(duration_ms, 3)
        return self.send("tool_call", payload, session_id=session_id)

    def error(
        self, message: str, *, session_id: str | None = None, **data: Any
    ) -> SubmitResult:
        """Record an agent-side error."""
        return self.send("error", {"message": message, **data}, session_id=session_id)

    def track_tool(
        self, name: str | None = None, *, session_id: str | None = None
    ) -> Callable[[F], F]:
        """Decorate a callable so each call is recorded as a ``tool_call``.

        Failures of the wrapped callable are also recorded as an ``error``
        event and then re-raised. Telemetry failures never replace the
        callable's own result or exception; they are reported as warnings.

        Parameters
        ----------
        name : str | None, default=None
            Tool name; defaults to the callable's ``__name__``.
        session_id : str | None, default=None
            Agent session identifier.

        Returns
        -------
        Callable[[F], F]
            Decorator.
        """

        def decorator(func: F) -> F:
            tool_name = name or func.__name__

            @functools.wraps(func)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                started = perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as exc:
                    elapsed = (perf_counter() - started) * 1000
                    self._record_quietly(
                        lambda: self.tool_call(
                            tool_name,
                            elapsed,
                            session_id=session_id,
                            success=False,
                            error_type=type(exc).__name__,
                        )
                    )
                    self._record_quietly(
                        lambda: self.error(str(exc), session_id=session_id, tool=tool_name)
                    )
                    raise
                elapsed = (perf_counter() - started) * 1000
                self._record_quietly(
                    lambda: self.tool_call(tool_name, elapsed, session_id=session_id)
                )
                return result

            return wrapper  # type: ignore[return-value]

        return decorator

    def _record_quietly(self, submit: Callable[[], SubmitResult]) -> None:
        try:
            submit()
        except TelemetryClientError as exc:
            warnings.warn(f"Telemetry submission failed: {exc}", RuntimeWarning, stacklevel=3)

    def _backoff(self, attempt: int, response: httpx.Response | None) -> float:
        """Return the delay before retry ``attempt``.

        Parameters
        ----------
        attempt : int
            Zero-based retry number.
        response : httpx.Response | None
            Failed response, if one was received.

        Returns
        -------
        float
            Seconds to wait.
        """
        retry_after = _retry_after(response) if response is not None else None
        if retry_after is not None:
            return min(retry_after, self.backoff_max)
        ceiling = min(self.backoff_max, self.backoff_base * (2**attempt))
        return random.uniform(ceiling / 2, ceiling)

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send an HTTP request, retrying throttled and unavailable responses.

        Parameters
        ----------
        method : str
            HTTP method.
        path : str
            Relative request path.
        **kwargs : Any
            Additional request arguments.

        Returns
        -------
        httpx.Response
            Successful response.
        """
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                response = self._client.request(method, path, **kwargs)
            except httpx.TransportError as exc:
                if attempt < self.max_retries:
                    self._sleep(self._backoff(attempt, None))
                    continue
                raise TelemetryUnavailableError(str(exc)) from exc

            if response.status_code < 400:
                return response
            if response.status_code in RETRYABLE_STATUS and attempt < self.max_retries:
                self._sleep(self._backoff(attempt, response))
                continue
            raise _exception_for_response(response)
        raise TelemetryAPIError("Request failed")

    def __enter__(self) -> "TelemetryClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        _ = (exc_type, exc_value, traceback)
        self.close()


def _parse_datetime(value: str) -> datetime:
    """Parse an ISO datetime string."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _retry_after(response: httpx.Response) -> float | None:
    """Return the ``Retry-After`` delay in seconds, if the header is numeric."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _exception_for_response(response: httpx.Response) -> TelemetryAPIError:
    """Map an error response to a typed SDK exception.

    Parameters
    ----------
    response : httpx.Response
        HTTP response.

    Returns
    -------
    TelemetryAPIError
        Typed SDK error.
    """
    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}
    message = data.get("message") or f"Telemetry request failed with status {response.status_code}"
    error = data.get("error")
    status_code = response.status_code

    if status_code == 401:
        return TelemetryAuthError(message, status_code=status_code, error=error)
    if status_code == 404:
        return TelemetryNotFoundError(message, status_code=status_code, error=error)
    if status_code == 429:
        return TelemetryRateLimitError(
            message, status_code=status_code, error=error, retry_after=_retry_after(response)
        )
    if status_code == 503:
        return TelemetryUnavailableError(message, status_code=status_code, error=error)
    if status_code in {400, 403, 413, 422}:
        return TelemetryValidationError(message, status_code=status_code, error=error)
    return TelemetryAPIError(message, status_code=status_code, error=error)
