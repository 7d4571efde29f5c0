"""Event ingest tests."""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from telemetry_server.config import get_settings
from telemetry_server.models.event import TelemetryEvent
from telemetry_server.models.organization import Org


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TestSubmitEvent:
    """Unauthenticated ``POST /api/events`` behavior."""

    @pytest.mark.asyncio
    async def test_submit_stores_one_row(self, client, session_factory) -> None:
        """Store an accepted event and stamp its receive time.

        Parameters
        ----------
        client : AsyncClient
            Test HTTP client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts the stored row and response shape.
        """
        before = datetime.now(timezone.utc)
        response = await client.post(
            "/api/events",
            json={
                "event": "tool_call",
                "timestamp": _now(),
                "server_id": "srv-1",
                "session_id": "s-1",
                "data": {"tool": "search"},
            },
        )
        after = datetime.now(timezone.utc)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["duplicate"] is False
        received_at = datetime.fromisoformat(body["receivedAt"].replace("Z", "+00:00"))
        assert before <= received_at <= after
        assert response.headers["X-Correlation-ID"]

        async with session_factory() as session:
            event = await session.get(TelemetryEvent, body["id"])
            assert event is not None
            assert event.event == "tool_call"
            assert event.data == {"tool": "search"}
            assert await session.get(Org, "srv-1") is not None

    @pytest.mark.asyncio
    async def test_submit_accepts_legacy_aliases(self, client, session_factory) -> None:
        """Accept camelCase keys and resolve ids from the data object.

        Parameters
        ----------
        client : AsyncClient
            Test HTTP client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts alias resolution.
        """
        response = await client.post(
            "/api/events",
            json={
                "eventType": "session_start",
                "timestamp": _now(),
                "serverId": "srv-2",
                "data": {
                    "session": "s-from-data",
                    "user": {"id": "u-7"},
                    "companyDetails": {"Name": "Initech"},
                },
            },
        )

        assert response.status_code == 201
        async with session_factory() as session:
            event = await session.get(TelemetryEvent, response.json()["id"])
            assert event.server_id == "srv-2"
            assert event.session_id == "s-from-data"
            assert event.user_id == "u-7"
            org = await session.get(Org, "srv-2")
            assert org.company_name == "Initech"

    @pytest.mark.asyncio
    async def test_unknown_top_level_fields_are_kept(self, client, session_factory) -> None:
        """Keep unknown top-level keys alongside the event data.

        Parameters
        ----------
        client : AsyncClient
            Test HTTP client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts forward-compatible storage.
        """
        response = await client.post(
            "/api/events",
            json={
                "event": "brand_new_kind",
                "timestamp": _now(),
                "platform": "linux",
                "data": {"nested": {"anything": [1, 2, 3]}},
            },
        )

        assert response.status_code == 201
        async with session_factory() as session:
            event = await session.get(TelemetryEvent, response.json()["id"])
            assert event.data["nested"] == {"anything": [1, 2, 3]}
            assert event.data["_extra"] == {"platform": "linux"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"timestamp": "2026-01-01T00:00:00Z"},
            {"event": "tool_call"},
            {"event": "tool_call", "timestamp": "not-a-date"},
            {"event": "", "timestamp": "2026-01-01T00:00:00Z"},
            {"event": "tool_call", "timestamp": "2026-01-01T00:00:00Z", "data": [1, 2]},
        ],
    )
    async def test_invalid_payload_is_rejected(self, client, session_factory, payload) -> None:
        """Reject malformed events with ``400`` and store nothing.

        Parameters
        ----------
        client : AsyncClient
            Test HTTP client.
        session_factory : async_sessionmaker
            Test database session factory.
        payload : dict
            Malformed body.

        Returns
        -------
        None
            Asserts validation failure.
        """
        response = await client.post("/api/events", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(TelemetryEvent))
            assert count == 0

    @pytest.mark.asyncio
    async def test_oversized_data_is_rejected(self, client, monkeypatch) -> None:
        """Reject event data above ``EVENT_DATA_MAX_BYTES``.

        Parameters
        ----------
        client : AsyncClient
            Test HTTP client.
        monkeypatch : pytest.MonkeyPatch
            Environment monkeypatch helper.

        Returns
        -------
        None
            Asserts the size ceiling.
        """
        monkeypatch.setenv("EVENT_DATA_MAX_BYTES", "64")

        get_settings.cache_clear()

        response = await client.post(
            "/api/events",
            json={"event": "tool_call", "timestamp": _now(), "data": {"blob": "x" * 200}},
        )

        assert response.status_code == 400
        assert response.json()["field"] == "data"


class TestIdempotentIngest:
    """Replays of a caller-supplied ``event_id``."""

    @pytest.mark.asyncio
    async def test_same_event_id_is_stored_once(self, client, session_factory) -> None:
        """Return the original id for a replayed ``event_id``.

        Parameters
        ----------
        client : AsyncClient
            Test HTTP client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts one stored row for two submissions.
        """
        payload = {
            "event": "tool_call",
            "timestamp": _now(),
            "server_id": "srv-1",
            "event_id": "e1",
        }

        first = await client.post("/api/events", json=payload)
        second = await client.post("/api/events", json=payload)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["duplicate"] is True
        assert first.json()["id"] == second.json()["id"]
        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(TelemetryEvent))
            assert count == 1

    @pytest.mark.asyncio
    async def test_event_id_is_scoped_to_server(self, client) -> None:
        """Store the same ``event_id`` separately for different orgs.

        Parameters
        ----------
        client : AsyncClient
            Test HTTP client.

        Returns
        -------
        None
            Asserts per-org idempotency keys.
        """
        base = {"event": "tool_call", "timestamp": _now(), "event_id": "e1"}

        first = await client.post("/api/events", json={**base, "server_id": "a"})
        second = await client.post("/api/events", json={**base, "server_id": "b"})

        assert first.status_code == 201
        assert second.status_code == 201
        assert first.json()["id"] != second.json()["id"]

    @pytest.mark.asyncio
    async def test_concurrent_replays_store_one_row(self, client, session_factory) -> None:
        """Collapse simultaneous submissions of one ``event_id`` into one row.

        Parameters
        ----------
        client : AsyncClient
            Test HTTP client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts a single insert and a shared id.
        """
        payload = {
            "event": "tool_call",
            "timestamp": _now(),
            "server_id": "srv-1",
            "event_id": "e1",
        }

        responses = await asyncio.gather(
            *(client.post("/api/events", json=payload) for _ in range(5))
        )

        statuses = sorted(response.status_code for response in responses)
        assert statuses == [200, 200, 200, 200, 201]
        assert len({response.json()["id"] for response in responses}) == 1
        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(TelemetryEvent))
            assert count == 1

    @pytest.mark.asyncio
    async def test_unique_key_rejects_direct_duplicates(self, session_factory) -> None:
        """Enforce the idempotency key in the schema, including null orgs."""
        async with session_factory() as session:
            for _ in range(2):
                session.add(
                    TelemetryEvent(
                        event="tool_call",
                        timestamp=datetime.now(timezone.utc),
                        event_id="same",
                    )
                )
            with pytest.raises(IntegrityError):
                await session.flush()
