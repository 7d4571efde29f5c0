"""Correlation id and deadline middleware tests."""

import uuid

import anyio
import pytest
from httpx import ASGITransport, AsyncClient

from telemetry_server.config import Settings
from telemetry_server.middleware import CorrelationIdMiddleware, DeadlineMiddleware


class TestCorrelationId:
    """Correlation id propagation."""

    @pytest.mark.asyncio
    async def test_valid_incoming_id_is_echoed(self, client: AsyncClient) -> None:
        """Reuse a well-formed caller id.

        Parameters
        ----------
        client : AsyncClient
            Anonymous client.

        Returns
        -------
        None
            Asserts the response header.
        """
        incoming = str(uuid.uuid4()).upper()

        response = await client.get("/health", headers={"X-Request-ID": incoming})

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == incoming.lower()

    @pytest.mark.asyncio
    async def test_malformed_id_is_replaced(self, client: AsyncClient) -> None:
        """Generate a fresh id when the caller's is not a UUID."""
        response = await client.get("/health", headers={"X-Correlation-ID": "abc"})

        generated = response.headers["X-Correlation-ID"]
        assert generated != "abc"
        assert uuid.UUID(generated)

    @pytest.mark.asyncio
    async def test_unhandled_error_becomes_500(self) -> None:
        """Turn an unexpected exception into a JSON ``500`` with the id."""

        async def broken(scope, receive, send) -> None:
            raise RuntimeError("boom")

        app = CorrelationIdMiddleware(broken)
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://testserver"
        ) as http:
            response = await http.get("/anything")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "InternalError"
        assert body["correlationId"] == response.headers["X-Correlation-ID"]


class TestDeadline:
    """Per-request deadlines."""

    @pytest.mark.asyncio
    async def test_slow_request_gets_503(self) -> None:
        """Cancel a request that outlives its deadline.

        Returns
        -------
        None
            Asserts the timeout response.
        """

        async def slow(scope, receive, send) -> None:
            await anyio.sleep(5)

        settings = Settings(request_timeout_seconds=0.05)
        app = DeadlineMiddleware(slow, settings_factory=lambda: settings)
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://testserver"
        ) as http:
            response = await http.get("/api/stats")

        assert response.status_code == 503
        assert response.json()["error"] == "DeadlineExceeded"

    @pytest.mark.asyncio
    async def test_fast_request_passes_through(self) -> None:
        """Leave requests that finish in time untouched."""

        async def fast(scope, receive, send) -> None:
            await send({"type": "http.response.start", "status": 204, "headers": []})
            await send({"type": "http.response.body", "body": b""})

        settings = Settings(request_timeout_seconds=1)
        app = DeadlineMiddleware(fast, settings_factory=lambda: settings)
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://testserver"
        ) as http:
            response = await http.get("/")

        assert response.status_code == 204


class TestRoutingErrors:
    """Router-level failures use the JSON error envelope."""

    @pytest.mark.asyncio
    async def test_unknown_route_is_404(self, client: AsyncClient) -> None:
        """Wrap a missing route in the standard error body.

        Parameters
        ----------
        client : AsyncClient
            Anonymous client.

        Returns
        -------
        None
            Asserts the envelope fields.
        """
        response = await client.get("/api/no-such-route")

        assert response.status_code == 404
        body = response.json()
        assert body["status"] == "error"
        assert body["error"] == "HTTPException"
        assert body["message"] == "Not Found"

    @pytest.mark.asyncio
    async def test_wrong_method_keeps_allow_header(self, client: AsyncClient) -> None:
        """Pass the ``Allow`` header of a ``405`` through."""
        response = await client.post("/health")

        assert response.status_code == 405
        assert "GET" in response.headers["Allow"]
        assert response.json()["error"] == "HTTPException"
