"""Dashboard aggregates.

Every function here is read-only. Day buckets are UTC calendar days,
half-open ``[midnight, midnight + 24h)``, keyed on event time.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Hashable, Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Any, TypeVar

from sqlalchemy import case, exists, func, literal, literal_column, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement

from telemetry_server.database import dialect_name
from telemetry_server.models.event import TelemetryEvent
from telemetry_server.models.mixins import ensure_utc, utcnow
from telemetry_server.models.organization import Org
from telemetry_server.models.team import Team, TeamOrg
from telemetry_server.schemas.stats import (
    DailyStat,
    DatabaseSize,
    EventTotal,
    EventTypeCount,
    SessionSummary,
    TopTeam,
    TopUser,
    ToolUsage,
    ToolUsageStats,
)
from telemetry_server.services.cache import get_aggregate_cache

SESSION_START = "session_start"
SESSION_END = "session_end"
TOOL_CALL = "tool_call"
ERROR = "error"

SESSION_ACTIVE_WINDOW = timedelta(hours=2)

SIZE_TABLES = ("telemetry_events", "users", "orgs", "teams", "team_orgs")
_BYTE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")

T = TypeVar("T")


def day_window(days: int, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return the UTC range covering the last ``days`` calendar days.

    Parameters
    ----------
    days : int
        Number of days, today included.
    now : datetime | None, default=None
        Reference instant; defaults to the current time.

    Returns
    -------
    tuple[datetime, datetime]
        Inclusive start midnight and exclusive end (tomorrow's midnight).
    """
    now = now or utcnow()
    today = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    return today - timedelta(days=days - 1), today + timedelta(days=1)


def _day_expr(session: AsyncSession, column: Any) -> ColumnElement[Any]:
    if dialect_name(session) == "postgresql":
        return func.date(func.timezone(literal_column("'UTC'"), column))
    return func.date(column)


def _day_key(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)[:10]


async def _memoized(key: Hashable, compute: Callable[[], Awaitable[T]]) -> T:
    cache = get_aggregate_cache()
    cached = cache.get(key)
    if cached is not None:
        return cached
    value = await compute()
    cache.set(key, value)
    return value


async def daily_stats(
    session: AsyncSession,
    *,
    days: int,
    by_event_type: bool,
    now: datetime | None = None,
) -> list[DailyStat]:
    """Return one entry per day, oldest first, ending today.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    days : int
        Number of days in ``[1, 365]``.
    by_event_type : bool
        Return the session/tool/error breakdown instead of totals.
    now : datetime | None, default=None
        Reference instant.

    Returns
    -------
    list[DailyStat]
        Exactly ``days`` entries; days without events carry zeros.
    """
    start, end = day_window(days, now)

    async def compute() -> list[DailyStat]:
        if by_event_type:
            return await _breakdown_by_day(session, start=start, end=end, days=days)
        return await _totals_by_day(session, start=start, end=end, days=days)

    return await _memoized(("daily_stats", days, by_event_type, start), compute)


def _day_keys(start: datetime, days: int) -> list[str]:
    return [(start + timedelta(days=offset)).strftime("%Y-%m-%d") for offset in range(days)]


async def _totals_by_day(
    session: AsyncSession, *, start: datetime, end: datetime, days: int
) -> list[DailyStat]:
    day = _day_expr(session, TelemetryEvent.timestamp).label("day")
    result = await session.execute(
        select(day, func.count(TelemetryEvent.id))
        .where(TelemetryEvent.timestamp >= start, TelemetryEvent.timestamp < end)
        .group_by(day)
    )
    counts = {_day_key(row[0]): int(row[1]) for row in result}
    return [DailyStat(date=key, count=counts.get(key, 0)) for key in _day_keys(start, days)]


async def _breakdown_by_day(
    session: AsyncSession, *, start: datetime, end: datetime, days: int
) -> list[DailyStat]:
    day = _day_expr(session, TelemetryEvent.timestamp).label("day")
    kind_counts = await session.execute(
        select(
            day,
            func.sum(case((TelemetryEvent.event == TOOL_CALL, 1), else_=0)),
            func.sum(case((TelemetryEvent.event == ERROR, 1), else_=0)),
        )
        .where(
            TelemetryEvent.timestamp >= start,
            TelemetryEvent.timestamp < end,
            TelemetryEvent.event.in_((TOOL_CALL, ERROR)),
        )
        .group_by(day)
    )
    tools: dict[str, int] = {}
    errors: dict[str, int] = {}
    for row in kind_counts:
        tools[_day_key(row[0])] = int(row[1] or 0)
        errors[_day_key(row[0])] = int(row[2] or 0)

    # Left anti-join: a start counts while no end for the same session_id
    # exists before the reporting horizon.
    starts = aliased(TelemetryEvent)
    ends = aliased(TelemetryEvent)
    start_day = _day_expr(session, starts.timestamp).label("day")
    closed = exists(
        select(literal(1)).where(
            ends.event == SESSION_END,
            ends.session_id == starts.session_id,
            ends.timestamp < end,
        )
    )
    open_counts = await session.execute(
        select(start_day, func.count(starts.session_id.distinct()))
        .where(
            starts.event == SESSION_START,
            starts.session_id.is_not(None),
            starts.timestamp >= start,
            starts.timestamp < end,
            ~closed,
        )
        .group_by(start_day)
    )
    unclosed = {_day_key(row[0]): int(row[1]) for row in open_counts}

    return [
        DailyStat(
            date=key,
            start_sessions_without_end=unclosed.get(key, 0),
            tool_events=tools.get(key, 0),
            error_events=errors.get(key, 0),
        )
        for key in _day_keys(start, days)
    ]


def _label_from_data(data: Any, fallback: str | None) -> str | None:
    if isinstance(data, dict):
        user = data.get("user")
        for candidate in (
            data.get("userName"),
            data.get("user_name"),
            user.get("name") if isinstance(user, dict) else None,
        ):
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return fallback


async def top_users(
    session: AsyncSession,
    *,
    days: int,
    limit: int,
    now: datetime | None = None,
) -> list[TopUser]:
    """Rank agent users by event volume over a rolling window.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    days : int
        Lookback in days from ``now``.
    limit : int
        Maximum number of users.
    now : datetime | None, default=None
        Reference instant.

    Returns
    -------
    list[TopUser]
        Users by descending count, ties broken by id.
    """
    since = (now or utcnow()) - timedelta(days=days)

    async def compute() -> list[TopUser]:
        latest = aliased(TelemetryEvent)
        latest_data = (
            select(latest.data)
            .where(latest.user_id == TelemetryEvent.user_id, latest.timestamp >= since)
            .order_by(latest.timestamp.desc(), latest.id.desc())
            .limit(1)
            .scalar_subquery()
        )
        event_count = func.count(TelemetryEvent.id).label("event_count")
        result = await session.execute(
            select(TelemetryEvent.user_id, event_count, latest_data)
            .where(TelemetryEvent.user_id.is_not(None), TelemetryEvent.timestamp >= since)
            .group_by(TelemetryEvent.user_id)
            .order_by(event_count.desc(), TelemetryEvent.user_id.asc())
            .limit(limit)
        )
        return [
            TopUser(id=user_id, label=_label_from_data(data, user_id), event_count=int(count))
            for user_id, count, data in result
        ]

    return await _memoized(("top_users", days, limit, since.replace(second=0, microsecond=0)), compute)


async def top_teams(
    session: AsyncSession,
    *,
    days: int,
    limit: int,
    now: datetime | None = None,
) -> list[TopTeam]:
    """Rank teams by the event volume of their orgs.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    days : int
        Lookback in days from ``now``.
    limit : int
        Maximum number of teams.
    now : datetime | None, default=None
        Reference instant.

    Returns
    -------
    list[TopTeam]
        Teams with at least one event, by descending count then name.
    """
    since = (now or utcnow()) - timedelta(days=days)

    async def compute() -> list[TopTeam]:
        event_count = func.count(TelemetryEvent.id).label("event_count")
        ranked = (
            await session.execute(
                select(Team.id, Team.name, event_count)
                .join(TeamOrg, TeamOrg.team_id == Team.id)
                .join(TelemetryEvent, TelemetryEvent.server_id == TeamOrg.server_id)
                .where(TelemetryEvent.timestamp >= since)
                .group_by(Team.id, Team.name)
                .having(func.count(TelemetryEvent.id) > 0)
                .order_by(event_count.desc(), Team.name.asc())
                .limit(limit)
            )
        ).all()
        if not ranked:
            return []
        team_ids = [row[0] for row in ranked]
        teams = {
            team.id: team
            for team in (
                await session.execute(select(Team).where(Team.id.in_(team_ids)))
            ).scalars()
        }
        org_names: dict[Any, list[str]] = {team_id: [] for team_id in team_ids}
        memberships = await session.execute(
            select(TeamOrg.team_id, TeamOrg.server_id, Org.company_name)
            .join(Org, Org.server_id == TeamOrg.server_id, isouter=True)
            .where(TeamOrg.team_id.in_(team_ids))
            .order_by(TeamOrg.server_id)
        )
        for team_id, server_id, company_name in memberships:
            org_names[team_id].append(company_name or server_id)
        return [
            TopTeam(
                team_id=team_id,
                label=name,
                orgs=org_names[team_id],
                event_count=int(count),
                color=teams[team_id].color,
                has_logo=teams[team_id].logo_bytes is not None,
            )
            for team_id, name, count in ranked
        ]

    return await _memoized(("top_teams", days, limit, since.replace(second=0, microsecond=0)), compute)


def format_bytes(size: int) -> str:
    """Format a byte count with binary units.

    Parameters
    ----------
    size : int
        Byte count.

    Returns
    -------
    str
        e.g. ``"0 Bytes"``, ``"1.5 KB"``, ``"2 GB"``.
    """
    if size <= 0:
        return "0 Bytes"
    index = 0
    value = float(size)
    while value >= 1024 and index < len(_BYTE_UNITS) - 1:
        value /= 1024
        index += 1
    value = round(value, 2)
    return f"{value:g} {_BYTE_UNITS[index]}"


async def measure_database_size(session: AsyncSession) -> int:
    """Return the bytes used by the telemetry tables.

    Parameters
    ----------
    session : AsyncSession
        Active database session.

    Returns
    -------
    int
        Relation sizes on PostgreSQL, the database file size on SQLite.
    """
    if dialect_name(session) == "postgresql":
        total = literal(0)
        for table in SIZE_TABLES:
            total = total + func.pg_total_relation_size(literal_column(f"'{table}'::regclass"))
        return int(await session.scalar(select(total)) or 0)
    page_count = await session.scalar(text("PRAGMA page_count"))
    page_size = await session.scalar(text("PRAGMA page_size"))
    return int(page_count or 0) * int(page_size or 0)


async def database_size(session: AsyncSession, *, max_size: int | None) -> DatabaseSize:
    """Report storage use against an optional soft cap.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    max_size : int | None
        Soft cap in bytes; percentages are omitted without one.

    Returns
    -------
    DatabaseSize
        Size figures and a display string.
    """

    async def compute() -> DatabaseSize:
        size = await measure_database_size(session)
        formatted = format_bytes(size)
        if not max_size:
            return DatabaseSize(size_bytes=size, size_formatted=formatted, display_text=formatted)
        percentage = round(size / max_size * 100, 1)
        return DatabaseSize(
            size_bytes=size,
            size_formatted=formatted,
            max_size_bytes=max_size,
            percentage=percentage,
            display_text=f"{percentage:g}% ({formatted} / {format_bytes(max_size)})",
        )

    return await _memoized(("database_size", max_size), compute)


async def event_totals(
    session: AsyncSession,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    event: str | None = None,
) -> EventTotal:
    """Count stored events, optionally bounded by insertion time and kind.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    start : datetime | None, default=None
        Inclusive lower bound on ``created_at``.
    end : datetime | None, default=None
        Inclusive upper bound on ``created_at``.
    event : str | None, default=None
        Event kind to count.

    Returns
    -------
    EventTotal
        Matching row count.
    """
    start = ensure_utc(start) if start is not None else None
    end = ensure_utc(end) if end is not None else None

    async def compute() -> EventTotal:
        query = select(func.count(TelemetryEvent.id))
        if start is not None:
            query = query.where(TelemetryEvent.created_at >= start)
        if end is not None:
            query = query.where(TelemetryEvent.created_at <= end)
        if event is not None:
            query = query.where(TelemetryEvent.event == event)
        return EventTotal(total=int(await session.scalar(query) or 0))

    return await _memoized(("event_totals", start, end, event), compute)


async def event_type_counts(
    session: AsyncSession,
    *,
    session_id: str | None = None,
    user_ids: Sequence[str] = (),
) -> list[EventTypeCount]:
    """Count events per kind, most frequent first."""
    count = func.count(TelemetryEvent.id).label("count")
    query = select(TelemetryEvent.event, count)
    if session_id is not None:
        query = query.where(TelemetryEvent.session_id == session_id)
    if user_ids:
        query = query.where(TelemetryEvent.user_id.in_(list(user_ids)))
    result = await session.execute(
        query.group_by(TelemetryEvent.event).order_by(count.desc(), TelemetryEvent.event.asc())
    )
    return [EventTypeCount(event=kind, count=int(total)) for kind, total in result]


async def list_sessions(
    session: AsyncSession,
    *,
    user_ids: Sequence[str] = (),
    limit: int | None = None,
    offset: int = 0,
    now: datetime | None = None,
) -> list[SessionSummary]:
    """Summarize agent sessions, most recently active first.

    A session is active while it has a ``session_start``, no
    ``session_end``, and its last event falls inside
    ``SESSION_ACTIVE_WINDOW``.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    user_ids : Sequence[str], default=()
        Restrict to sessions with events from these agent users.
    limit : int | None, default=None
        Maximum sessions.
    offset : int, default=0
        Sessions to skip.
    now : datetime | None, default=None
        Reference instant for ``is_active``.

    Returns
    -------
    list[SessionSummary]
        One summary per ``session_id``.
    """
    now = now or utcnow()
    last_event = func.max(TelemetryEvent.timestamp).label("last_event")
    query = (
        select(
            TelemetryEvent.session_id,
            func.count(TelemetryEvent.id),
            func.min(TelemetryEvent.timestamp),
            last_event,
            func.max(TelemetryEvent.user_id),
            func.max(case((TelemetryEvent.event == SESSION_START, 1), else_=0)),
            func.max(case((TelemetryEvent.event == SESSION_END, 1), else_=0)),
        )
        .where(TelemetryEvent.session_id.is_not(None))
        .group_by(TelemetryEvent.session_id)
        .order_by(last_event.desc(), TelemetryEvent.session_id.asc())
        .offset(offset)
    )
    if user_ids:
        query = query.where(TelemetryEvent.user_id.in_(list(user_ids)))
    if limit is not None:
        query = query.limit(limit)
    rows = (await session.execute(query)).all()
    if not rows:
        return []

    starts: dict[str, tuple[str | None, Any]] = {}
    start_rows = await session.execute(
        select(TelemetryEvent.session_id, TelemetryEvent.user_id, TelemetryEvent.data)
        .where(
            TelemetryEvent.event == SESSION_START,
            TelemetryEvent.session_id.in_([row[0] for row in rows]),
        )
        .order_by(TelemetryEvent.timestamp.asc(), TelemetryEvent.id.asc())
    )
    for session_id, user_id, data in start_rows:
        starts.setdefault(session_id, (user_id, data))

    summaries = []
    for session_id, count, first, last, any_user, has_start, has_end in rows:
        start_user, start_data = starts.get(session_id, (None, None))
        last = ensure_utc(last)
        summaries.append(
            SessionSummary(
                session_id=session_id,
                count=int(count),
                first_event=ensure_utc(first),
                last_event=last,
                user_id=start_user or any_user,
                user_name=_label_from_data(start_data, None),
                is_active=bool(has_start)
                and not has_end
                and now - last < SESSION_ACTIVE_WINDOW,
            )
        )
    return summaries


async def tool_usage(
    session: AsyncSession,
    *,
    days: int,
    limit: int,
    now: datetime | None = None,
) -> ToolUsageStats:
    """Rank tools by ``tool_call`` plus ``error`` events naming them.

    The tool name is read from ``data.toolName``, falling back to
    ``data.tool``; events without one are ignored.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    days : int
        Number of calendar days, today included.
    limit : int
        Maximum number of tools.
    now : datetime | None, default=None
        Reference instant.

    Returns
    -------
    ToolUsageStats
        Tools by descending usage, ties broken by name.
    """
    start, _ = day_window(days, now)

    async def compute() -> ToolUsageStats:
        named = (
            select(
                TelemetryEvent.event.label("event"),
                func.trim(
                    func.coalesce(
                        TelemetryEvent.data["toolName"].as_string(),
                        TelemetryEvent.data["tool"].as_string(),
                    )
                ).label("tool"),
            )
            .where(
                TelemetryEvent.timestamp >= start,
                TelemetryEvent.event.in_((TOOL_CALL, ERROR)),
            )
            .subquery()
        )
        successful = func.sum(case((named.c.event == TOOL_CALL, 1), else_=0))
        errors = func.sum(case((named.c.event == ERROR, 1), else_=0))
        result = await session.execute(
            select(named.c.tool, successful, errors)
            .where(named.c.tool.is_not(None), named.c.tool != "")
            .group_by(named.c.tool)
            .order_by(func.count().desc(), named.c.tool.asc())
            .limit(limit)
        )
        tools = [
            ToolUsage(tool=tool, successful=int(calls or 0), errors=int(failures or 0))
            for tool, calls, failures in result
        ]
        return ToolUsageStats(tools=tools, days=days)

    return await _memoized(("tool_usage", days, limit, start), compute)
