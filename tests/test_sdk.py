"""Python SDK tests."""

import json

import httpx
import pytest

from telemetry_client import (
    TelemetryAuthError,
    TelemetryClient,
    TelemetryClientError,
    TelemetryRateLimitError,
    TelemetryUnavailableError,
    TelemetryValidationError,
)

ACCEPTED = {"status": "ok", "id": 7, "receivedAt": "2026-03-01T12:00:00.000Z"}


def _client(handler, sleeps: list[float] | None = None, **kwargs) -> TelemetryClient:
    recorded = sleeps if sleeps is not None else []
    return TelemetryClient(
        base_url="http://example.test/",
        server_id="srv-1",
        version="1.2.3",
        transport=httpx.MockTransport(handler),
        sleep_func=recorded.append,
        **kwargs,
    )


class TestTelemetryClient:
    """SDK client behavior tests."""

    def test_from_env_requires_server_id(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Reject missing org identifier configuration.

        Parameters
        ----------
        monkeypatch : pytest.MonkeyPatch
            Environment monkeypatch helper.

        Returns
        -------
        None
            Asserts env validation.
        """
        monkeypatch.delenv("TELEMETRY_SERVER_ID", raising=False)
        monkeypatch.setenv("TELEMETRY_BASE_URL", "http://example.test")

        with pytest.raises(TelemetryClientError):
            TelemetryClient.from_env()

    def test_from_env_reads_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Build a client from environment variables."""
        monkeypatch.setenv("TELEMETRY_BASE_URL", "http://example.test/")
        monkeypatch.setenv("TELEMETRY_SERVER_ID", "srv-env")
        monkeypatch.setenv("TELEMETRY_VERSION", "9.9")

        with TelemetryClient.from_env() as client:
            assert client.base_url == "http://example.test"
            assert client.server_id == "srv-env"
            assert client.version == "9.9"

    def test_send_builds_payload_and_parses_result(self) -> None:
        """Send a complete payload with a generated idempotency key.

        Returns
        -------
        None
            Asserts request body and parsed response.
        """
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/api/events"
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json=ACCEPTED)

        with _client(handler) as client:
            result = client.send("tool_call", {"tool": "grep"}, session_id="s-1")

        body = bodies[0]
        assert body["event"] == "tool_call"
        assert body["server_id"] == "srv-1"
        assert body["version"] == "1.2.3"
        assert body["session_id"] == "s-1"
        assert body["data"] == {"tool": "grep"}
        assert body["timestamp"].endswith("Z")
        assert len(body["event_id"]) == 36
        assert "user_id" not in body
        assert result.id == 7
        assert result.received_at.year == 2026
        assert result.received_at.utcoffset().total_seconds() == 0
        assert result.duplicate is False

    def test_duplicate_flag_is_reported(self) -> None:
        """Expose the server's duplicate marker."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={**ACCEPTED, "duplicate": True})

        with _client(handler) as client:
            assert client.send("error", event_id="fixed").duplicate is True

    def test_retries_throttled_requests_with_retry_after(self) -> None:
        """Wait for ``Retry-After`` and reuse the same idempotency key.

        Returns
        -------
        None
            Asserts retry delays and key reuse.
        """
        event_ids: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            event_ids.append(json.loads(request.content)["event_id"])
            if len(event_ids) < 3:
                return httpx.Response(
                    429,
                    headers={"Retry-After": "2"},
                    json={"status": "error", "error": "RateLimitError", "message": "slow down"},
                )
            return httpx.Response(201, json=ACCEPTED)

        sleeps: list[float] = []
        with _client(handler, sleeps) as client:
            result = client.send("tool_call")

        assert result.id == 7
        assert sleeps == [2.0, 2.0]
        assert len(set(event_ids)) == 1

    def test_exhausted_rate_limit_raises(self) -> None:
        """Raise a rate-limit error once retries run out."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429,
                headers={"Retry-After": "60"},
                json={"status": "error", "error": "RateLimitError", "message": "slow down"},
            )

        sleeps: list[float] = []
        with _client(handler, sleeps, max_retries=2, backoff_max=5.0) as client:
            with pytest.raises(TelemetryRateLimitError) as exc_info:
                client.send("tool_call")

        assert sleeps == [5.0, 5.0]
        assert exc_info.value.retry_after == 60.0
        assert exc_info.value.status_code == 429

    def test_backoff_without_retry_after_grows(self) -> None:
        """Use jittered exponential delays for unavailable responses."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"status": "error", "message": "down"})

        sleeps: list[float] = []
        with _client(handler, sleeps, max_retries=3, backoff_base=1.0) as client:
            with pytest.raises(TelemetryUnavailableError):
                client.send("tool_call")

        assert len(sleeps) == 3
        for attempt, delay in enumerate(sleeps):
            ceiling = 2**attempt
            assert ceiling / 2 <= delay <= ceiling

    def test_transport_errors_become_unavailable(self) -> None:
        """Map repeated connection failures to an unavailable error."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("refused", request=request)

        sleeps: list[float] = []
        with _client(handler, sleeps, max_retries=1) as client:
            with pytest.raises(TelemetryUnavailableError):
                client.send("tool_call")

        assert calls == 2
        assert len(sleeps) == 1

    @pytest.mark.parametrize(
        ("status_code", "expected"),
        [(400, TelemetryValidationError), (401, TelemetryAuthError)],
    )
    def test_error_responses_map_to_typed_errors(self, status_code: int, expected: type) -> None:
        """Raise typed errors without retrying client errors.

        Parameters
        ----------
        status_code : int
            Response status.
        expected : type
            Expected SDK exception class.

        Returns
        -------
        None
            Asserts error mapping.
        """
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(
                status_code,
                json={"status": "error", "error": "ValidationError", "message": "bad event"},
            )

        with _client(handler) as client:
            with pytest.raises(expected) as exc_info:
                client.send("")

        assert calls == 1
        assert exc_info.value.status_code == status_code
        assert "bad event" in str(exc_info.value)


class TestTrackTool:
    """Decorator recording tool calls."""

    def test_records_successful_call(self) -> None:
        """Record one successful ``tool_call`` and return the result.

        Returns
        -------
        None
            Asserts the recorded payload.
        """
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json=ACCEPTED)

        with _client(handler) as client:

            @client.track_tool(session_id="s-9")
            def search(query: str) -> str:
                return query.upper()

            assert search("docs") == "DOCS"

        assert len(bodies) == 1
        assert bodies[0]["event"] == "tool_call"
        assert bodies[0]["session_id"] == "s-9"
        assert bodies[0]["data"]["tool"] == "search"
        assert bodies[0]["data"]["success"] is True
        assert bodies[0]["data"]["duration_ms"] >= 0

    def test_records_failure_and_reraises(self) -> None:
        """Record a failed call plus an error event, then re-raise.

        Returns
        -------
        None
            Asserts failure telemetry.
        """
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json=ACCEPTED)

        with _client(handler) as client:

            @client.track_tool("fetch")
            def fetch() -> None:
                raise KeyError("missing")

            with pytest.raises(KeyError):
                fetch()

        assert [body["event"] for body in bodies] == ["tool_call", "error"]
        assert bodies[0]["data"]["success"] is False
        assert bodies[0]["data"]["error_type"] == "KeyError"
        assert bodies[1]["data"]["tool"] == "fetch"

    def test_telemetry_failure_only_warns(self) -> None:
        """Keep the wrapped result when the server rejects the event."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"status": "error", "message": "nope"})

        with _client(handler) as client:

            @client.track_tool()
            def add(left: int, right: int) -> int:
                return left + right

            with pytest.warns(RuntimeWarning):
                assert add(2, 3) == 5
