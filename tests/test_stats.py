"""Dashboard aggregate tests."""

from datetime import datetime, timedelta, timezone

import pytest

from telemetry_server.config import get_settings
from telemetry_server.models.event import TelemetryEvent
from telemetry_server.services.aggregator import format_bytes


def _today_at(hour: int, days_ago: int = 0) -> datetime:
    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return today - timedelta(days=days_ago) + timedelta(hours=hour)


async def _insert(session_factory, *events: TelemetryEvent) -> None:
    async with session_factory() as session:
        session.add_all(events)
        await session.commit()


def _event(kind: str, timestamp: datetime, **fields) -> TelemetryEvent:
    return TelemetryEvent(event=kind, timestamp=timestamp, data=fields.pop("data", {}), **fields)


class TestDailyStats:
    """``GET /api/daily-stats`` behavior."""

    @pytest.mark.asyncio
    async def test_breakdown_counts_today(self, admin_client) -> None:
        """Count tool calls and unclosed sessions submitted today.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.

        Returns
        -------
        None
            Asserts the ingest-then-aggregate scenario.
        """
        now = datetime.now(timezone.utc).isoformat()
        for index, kind in enumerate(("session_start", "tool_call", "tool_call")):
            response = await admin_client.post(
                "/api/events",
                json={"event": kind, "timestamp": now, "session_id": f"s-{index}"},
            )
            assert response.status_code == 201

        response = await admin_client.get("/api/daily-stats?days=1&byEventType=true")

        assert response.status_code == 200
        [day] = response.json()
        assert day["date"] == datetime.now(timezone.utc).strftime("%Y-%m-%d")
        assert day["toolEvents"] == 2
        assert day["startSessionsWithoutEnd"] == 1
        assert day["errorEvents"] == 0
        assert "count" not in day

    @pytest.mark.asyncio
    async def test_session_closed_next_day_is_not_open(
        self, admin_client, session_factory
    ) -> None:
        """Treat a session ended on a later day as closed.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts the reporting-horizon rule.
        """
        await _insert(
            session_factory,
            _event("session_start", _today_at(10, days_ago=2), session_id="s1"),
            _event("session_end", _today_at(9, days_ago=1), session_id="s1"),
        )

        response = await admin_client.get("/api/daily-stats?days=3&byEventType=true")

        assert response.status_code == 200
        days = response.json()
        assert [day["date"] for day in days] == [
            _today_at(0, days_ago=offset).strftime("%Y-%m-%d") for offset in (2, 1, 0)
        ]
        assert days[0]["startSessionsWithoutEnd"] == 0
        assert days[1]["startSessionsWithoutEnd"] == 0

    @pytest.mark.asyncio
    async def test_each_session_counted_once(self, admin_client, session_factory) -> None:
        """Count a repeated ``session_start`` for one session once.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts distinct session counting.
        """
        await _insert(
            session_factory,
            _event("session_start", _today_at(1), session_id="dup"),
            _event("session_start", _today_at(2), session_id="dup"),
            _event("error", _today_at(3), session_id="dup"),
        )

        response = await admin_client.get("/api/daily-stats?days=1&byEventType=true")

        [day] = response.json()
        assert day["startSessionsWithoutEnd"] == 1
        assert day["errorEvents"] == 1

    @pytest.mark.asyncio
    async def test_totals_fill_empty_days(self, admin_client, session_factory) -> None:
        """Return one zero-filled total per day, oldest first.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts dense day buckets.
        """
        await _insert(
            session_factory,
            _event("tool_call", _today_at(5, days_ago=3)),
            _event("tool_call", _today_at(6, days_ago=3)),
            _event("tool_call", _today_at(7)),
            _event("tool_call", _today_at(8, days_ago=30)),
        )

        response = await admin_client.get("/api/daily-stats?days=7")

        counts = [day["count"] for day in response.json()]
        assert counts == [0, 0, 0, 2, 0, 0, 1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, 366])
    async def test_days_out_of_range(self, admin_client, days) -> None:
        """Reject windows outside one to 365 days.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        days : int
            Requested window.

        Returns
        -------
        None
            Asserts parameter validation.
        """
        response = await admin_client.get(f"/api/daily-stats?days={days}")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_requires_session(self, client) -> None:
        """Reject anonymous dashboard reads.

        Parameters
        ----------
        client : AsyncClient
            Anonymous test client.

        Returns
        -------
        None
            Asserts authentication.
        """
        response = await client.get("/api/daily-stats")

        assert response.status_code == 401
        assert response.json()["error"] == "SessionError"


class TestRankings:
    """Top users and top teams."""

    @pytest.mark.asyncio
    async def test_top_users_orders_by_count(self, admin_client, session_factory) -> None:
        """Rank users by event count and label them from their latest event.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts ordering, limit and labels.
        """
        await _insert(
            session_factory,
            _event("tool_call", _today_at(1), user_id="u-a", data={"userName": "Old Ada"}),
            _event("tool_call", _today_at(2), user_id="u-a", data={"userName": "Ada"}),
            _event("tool_call", _today_at(1), user_id="u-b"),
            _event("tool_call", _today_at(2), user_id="u-b"),
            _event("tool_call", _today_at(3), user_id="u-c"),
            _event("tool_call", _today_at(1, days_ago=10), user_id="u-old"),
        )

        response = await admin_client.get("/api/top-users-today?limit=2&days=3")

        assert response.status_code == 200
        assert response.json() == [
            {"id": "u-a", "label": "Ada", "eventCount": 2},
            {"id": "u-b", "label": "u-b", "eventCount": 2},
        ]

    @pytest.mark.asyncio
    async def test_top_teams_sums_member_orgs(self, admin_client) -> None:
        """Rank teams by the events of their orgs.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.

        Returns
        -------
        None
            Asserts team aggregation.
        """
        now = datetime.now(timezone.utc).isoformat()
        for server_id, count in (("srv-a", 3), ("srv-b", 1), ("srv-c", 2)):
            for _ in range(count):
                await admin_client.post(
                    "/api/events",
                    json={"event": "tool_call", "timestamp": now, "server_id": server_id},
                )
        await admin_client.post("/api/teams", json={"name": "Blue", "orgs": ["srv-a", "srv-b"]})
        await admin_client.post(
            "/api/teams", json={"name": "Red", "color": "#FF0000", "orgs": ["srv-c"]}
        )
        await admin_client.post("/api/teams", json={"name": "Idle", "orgs": []})

        response = await admin_client.get("/api/top-teams-today")

        assert response.status_code == 200
        ranked = response.json()
        assert [(team["label"], team["eventCount"]) for team in ranked] == [
            ("Blue", 4),
            ("Red", 2),
        ]
        assert ranked[0]["orgs"] == ["srv-a", "srv-b"]
        assert ranked[1]["color"] == "#ff0000"
        assert ranked[0]["hasLogo"] is False


class TestDatabaseSize:
    """Storage reporting."""

    def test_format_bytes(self) -> None:
        """Format byte counts with binary units.

        Returns
        -------
        None
            Asserts display strings.
        """
        assert format_bytes(0) == "0 Bytes"
        assert format_bytes(512) == "512 Bytes"
        assert format_bytes(1536) == "1.5 KB"
        assert format_bytes(5 * 1024**3) == "5 GB"

    @pytest.mark.asyncio
    async def test_reports_percentage_against_cap(self, admin_client, monkeypatch) -> None:
        """Include a percentage when ``DB_MAX_SIZE`` is configured.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        monkeypatch : pytest.MonkeyPatch
            Environment monkeypatch helper.

        Returns
        -------
        None
            Asserts the size payload.
        """
        monkeypatch.setenv("DB_MAX_SIZE", str(1024**3))
        get_settings.cache_clear()

        response = await admin_client.get("/api/database-size")

        assert response.status_code == 200
        body = response.json()
        assert body["sizeBytes"] > 0
        assert body["maxSizeBytes"] == 1024**3
        assert 0 <= body["percentage"] < 100
        assert body["displayText"].endswith("/ 1 GB)")


class TestEventTotals:
    """``GET /api/stats`` behavior."""

    @pytest.mark.asyncio
    async def test_counts_by_range_and_kind(self, admin_client, session_factory) -> None:
        """Count events by insertion time and kind.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts the unfiltered and filtered totals.
        """
        now = datetime.now(timezone.utc)
        await _insert(
            session_factory,
            _event("tool_call", now, created_at=now - timedelta(days=5)),
            _event("tool_call", now, created_at=now),
            _event("error", now, created_at=now),
        )

        response = await admin_client.get("/api/stats")

        assert response.status_code == 200
        assert response.json() == {"total": 3}

        response = await admin_client.get(
            "/api/stats",
            params={
                "startDate": (now - timedelta(days=2)).isoformat(),
                "eventType": "tool_call",
            },
        )

        assert response.json() == {"total": 1}


class TestEventTypes:
    """``GET /api/event-types`` behavior."""

    @pytest.mark.asyncio
    async def test_counts_kinds_per_session_and_user(
        self, admin_client, session_factory
    ) -> None:
        """Group counts by kind, most frequent first.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts session and user filters.
        """
        await _insert(
            session_factory,
            _event("tool_call", _today_at(1), session_id="s1", user_id="u1"),
            _event("tool_call", _today_at(2), session_id="s1", user_id="u1"),
            _event("error", _today_at(3), session_id="s1", user_id="u1"),
            _event("session_start", _today_at(4), session_id="s2", user_id="u2"),
        )

        response = await admin_client.get("/api/event-types?sessionId=s1")

        assert response.status_code == 200
        assert response.json() == [
            {"event": "tool_call", "count": 2},
            {"event": "error", "count": 1},
        ]

        response = await admin_client.get("/api/event-types?userId=u2&userId=u3")

        assert response.json() == [{"event": "session_start", "count": 1}]

        response = await admin_client.get("/api/event-types?userId=__none__")

        assert response.json() == []

    @pytest.mark.asyncio
    async def test_basic_role_is_refused(self, user_client) -> None:
        """Keep per-kind counts behind the event-log permission.

        Parameters
        ----------
        user_client : Callable
            Operator client factory.

        Returns
        -------
        None
            Asserts the role check.
        """
        viewer = await user_client("viewer", "basic")

        response = await viewer.get("/api/event-types")

        assert response.status_code == 403


class TestSessions:
    """``GET /api/sessions`` behavior."""

    @staticmethod
    async def _seed(session_factory) -> None:
        now = datetime.now(timezone.utc)
        await _insert(
            session_factory,
            _event(
                "session_start",
                now - timedelta(hours=3),
                session_id="s-stale",
                user_id="u1",
                data={"userName": "Ada"},
            ),
            _event("tool_call", now - timedelta(hours=2, minutes=30), session_id="s-stale"),
            _event("session_start", now - timedelta(minutes=10), session_id="s-live", user_id="u2"),
            _event("tool_call", now - timedelta(minutes=5), session_id="s-live", user_id="u2"),
            _event("session_start", now - timedelta(minutes=20), session_id="s-done", user_id="u3"),
            _event("session_end", now - timedelta(minutes=15), session_id="s-done", user_id="u3"),
            _event("tool_call", now - timedelta(minutes=1)),
        )

    @pytest.mark.asyncio
    async def test_summarizes_sessions(self, admin_client, session_factory) -> None:
        """Derive one summary per ``session_id``, latest activity first.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts ordering, counts, names and activity.
        """
        await self._seed(session_factory)

        response = await admin_client.get("/api/sessions")

        assert response.status_code == 200
        summaries = response.json()
        assert [item["sessionId"] for item in summaries] == ["s-live", "s-done", "s-stale"]
        assert [item["isActive"] for item in summaries] == [True, False, False]
        assert [item["count"] for item in summaries] == [2, 2, 2]
        stale = summaries[2]
        assert stale["userId"] == "u1"
        assert stale["userName"] == "Ada"
        assert stale["firstEvent"].endswith("Z")
        assert summaries[0]["userName"] is None

    @pytest.mark.asyncio
    async def test_pages_and_filters_by_user(self, admin_client, session_factory) -> None:
        """Apply ``limit``, ``offset`` and repeated ``userId`` filters.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts paging and filtering.
        """
        await self._seed(session_factory)

        page = await admin_client.get("/api/sessions?limit=1&offset=1")
        by_user = await admin_client.get("/api/sessions?userId=u2&userId=u3")
        nobody = await admin_client.get("/api/sessions?userId=__none__")
        too_many = await admin_client.get("/api/sessions?limit=1001")

        assert [item["sessionId"] for item in page.json()] == ["s-done"]
        assert [item["sessionId"] for item in by_user.json()] == ["s-live", "s-done"]
        assert nobody.json() == []
        assert too_many.status_code == 400


class TestToolUsage:
    """``GET /api/tool-usage-stats`` behavior."""

    @pytest.mark.asyncio
    async def test_ranks_named_tools(self, admin_client, session_factory) -> None:
        """Count calls and errors per tool inside the window.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.
        session_factory : async_sessionmaker
            Test database session factory.

        Returns
        -------
        None
            Asserts tool names, counters and ordering.
        """
        await _insert(
            session_factory,
            *[_event("tool_call", _today_at(1), data={"tool": "search"}) for _ in range(3)],
            _event("tool_call", _today_at(2), data={"toolName": "edit"}),
            _event("error", _today_at(3), data={"tool": "edit"}),
            _event("tool_call", _today_at(4), data={"tool": "  "}),
            _event("tool_call", _today_at(5)),
            _event("session_start", _today_at(6), data={"tool": "search"}),
            _event("tool_call", _today_at(1, days_ago=40), data={"tool": "retired"}),
        )

        response = await admin_client.get("/api/tool-usage-stats?days=7")

        assert response.status_code == 200
        assert response.json() == {
            "tools": [
                {"tool": "search", "successful": 3, "errors": 0},
                {"tool": "edit", "successful": 1, "errors": 1},
            ],
            "days": 7,
        }

    @pytest.mark.asyncio
    async def test_defaults_to_thirty_days(self, admin_client) -> None:
        """Report the default window on an empty store.

        Parameters
        ----------
        admin_client : AsyncClient
            Administrator client.

        Returns
        -------
        None
            Asserts the empty payload.
        """
        response = await admin_client.get("/api/tool-usage-stats")

        assert response.status_code == 200
        assert response.json() == {"tools": [], "days": 30}
        assert (await admin_client.get("/api/tool-usage-stats?days=366")).status_code == 400
