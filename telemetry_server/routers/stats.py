"""Dashboard aggregate routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.config import get_settings
from telemetry_server.database import get_session
from telemetry_server.routers.dependencies import require_permission
from telemetry_server.schemas.stats import (
    DailyStat,
    DatabaseSize,
    EventTotal,
    EventTypeCount,
    SessionSummary,
    TopTeam,
    TopUser,
    ToolUsageStats,
)
from telemetry_server.services import aggregator
from telemetry_server.services.auth import AuthenticatedSession
from telemetry_server.services.permissions import Permission

router = APIRouter(prefix="/api", tags=["stats"])

dashboard_reader = require_permission(Permission.READ_DASHBOARD)
event_log_reader = require_permission(Permission.READ_EVENT_LOG)

# Sentinel user filter sent by the dashboard when no user is selected.
NO_USERS = "__none__"


@router.get(
    "/daily-stats",
    response_model=list[DailyStat],
    response_model_exclude_none=True,
)
async def daily_stats(
    days: int = Query(default=7, ge=1, le=365),
    by_event_type: bool = Query(default=False, alias="byEventType"),
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> list[DailyStat]:
    """Return per-day counters ending today.

    Parameters
    ----------
    days : int
        Number of days, 1 to 365.
    by_event_type : bool
        Return session/tool/error counters instead of totals.
    _ : AuthenticatedSession
        Authorized operator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    list[DailyStat]
        One entry per day, oldest first.
    """
    return await aggregator.daily_stats(session, days=days, by_event_type=by_event_type)


@router.get("/top-users-today", response_model=list[TopUser])
async def top_users(
    days: int | None = Query(default=None, ge=1, le=365),
    limit: int = Query(default=3, ge=1, le=500),
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> list[TopUser]:
    """Rank agent users by event count."""
    return await aggregator.top_users(
        session, days=days or get_settings().top_users_lookback_days, limit=limit
    )


@router.get("/top-teams-today", response_model=list[TopTeam])
async def top_teams(
    days: int | None = Query(default=None, ge=1, le=365),
    limit: int = Query(default=5, ge=1, le=500),
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> list[TopTeam]:
    """Rank teams by the event count of their orgs."""
    return await aggregator.top_teams(
        session, days=days or get_settings().top_users_lookback_days, limit=limit
    )


@router.get(
    "/database-size",
    response_model=DatabaseSize,
    response_model_exclude_none=True,
)
async def database_size(
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> DatabaseSize:
    """Report database storage use."""
    return await aggregator.database_size(session, max_size=get_settings().db_max_size)


@router.get("/stats", response_model=EventTotal)
async def stats(
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    event: str | None = Query(default=None, alias="eventType", max_length=64),
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> EventTotal:
    """Count stored events.

    Parameters
    ----------
    start_date : datetime | None
        Inclusive lower bound on insertion time.
    end_date : datetime | None
        Inclusive upper bound on insertion time.
    event : str | None
        Event kind to count.
    _ : AuthenticatedSession
        Authorized operator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    EventTotal
        Matching event count.
    """
    return await aggregator.event_totals(session, start=start_date, end=end_date, event=event)


@router.get("/event-types", response_model=list[EventTypeCount])
async def event_types(
    session_id: str | None = Query(default=None, alias="sessionId"),
    user_ids: list[str] = Query(default=[], alias="userId"),
    _: AuthenticatedSession = Depends(event_log_reader),
    session: AsyncSession = Depends(get_session),
) -> list[EventTypeCount]:
    """Count events per kind for an agent session or a set of users."""
    if NO_USERS in user_ids:
        return []
    return await aggregator.event_type_counts(session, session_id=session_id, user_ids=user_ids)


@router.get("/sessions", response_model=list[SessionSummary])
async def sessions(
    user_ids: list[str] = Query(default=[], alias="userId"),
    limit: int | None = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    _: AuthenticatedSession = Depends(event_log_reader),
    session: AsyncSession = Depends(get_session),
) -> list[SessionSummary]:
    """List agent sessions derived from the event log.

    Parameters
    ----------
    user_ids : list[str]
        Agent users to include; repeat ``userId`` for several.
    limit : int | None
        Maximum sessions, at most 1000.
    offset : int
        Sessions to skip.
    _ : AuthenticatedSession
        Authorized operator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    list[SessionSummary]
        Sessions, most recently active first.
    """
    if NO_USERS in user_ids:
        return []
    return await aggregator.list_sessions(session, user_ids=user_ids, limit=limit, offset=offset)


@router.get("/tool-usage-stats", response_model=ToolUsageStats)
async def tool_usage_stats(
    days: int = Query(default=30, ge=1, le=365),
    limit: int = Query(default=6, ge=1, le=100),
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> ToolUsageStats:
    """Rank the most used tools over the last ``days`` days."""
    return await aggregator.tool_usage(session, days=days, limit=limit)
