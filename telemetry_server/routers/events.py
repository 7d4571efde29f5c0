"""Event ingest and event-log routes."""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.config import get_settings
from telemetry_server.database import get_session
from telemetry_server.errors import NotFoundError
from telemetry_server.models.event import TelemetryEvent
from telemetry_server.routers.dependencies import (
    commit_writes,
    enforce_ingest_rate_limit,
    require_permission,
)
from telemetry_server.schemas.common import DeletedCountResponse
from telemetry_server.schemas.events import EventResponse, EventSubmission, SubmitResponse
from telemetry_server.services.admin import delete_events
from telemetry_server.services.auth import AuthenticatedSession
from telemetry_server.services.ingest import submit_event
from telemetry_server.services.permissions import Permission

router = APIRouter(prefix="/api/events", tags=["events"])


@router.post(
    "",
    response_model=SubmitResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_ingest_rate_limit)],
)
async def submit(
    payload: EventSubmission,
    response: Response,
    session: AsyncSession = Depends(get_session),
) -> SubmitResponse:
    """Store one agent event.

    Parameters
    ----------
    payload : EventSubmission
        Event body.
    response : Response
        Outgoing response; replays of a known ``event_id`` answer ``200``.
    session : AsyncSession
        Active database session.

    Returns
    -------
    SubmitResponse
        Stored event id.
    """
    result = await submit_event(
        session, payload, max_data_bytes=get_settings().event_data_max_bytes
    )
    if result.duplicate:
        response.status_code = status.HTTP_200_OK
    else:
        await commit_writes(session)
    return SubmitResponse(id=result.id, received_at=result.received_at, duplicate=result.duplicate)


@router.get("", response_model=list[EventResponse])
async def list_events(
    limit: int = Query(default=100, ge=1, le=1000),
    event: str | None = Query(default=None, max_length=64),
    server_id: str | None = Query(default=None),
    session_id: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    _: AuthenticatedSession = Depends(require_permission(Permission.READ_EVENT_LOG)),
    session: AsyncSession = Depends(get_session),
) -> list[EventResponse]:
    """List the most recently received events.

    Parameters
    ----------
    limit : int
        Maximum rows, at most 1000.
    event : str | None
        Filter by event kind.
    server_id : str | None
        Filter by org.
    session_id : str | None
        Filter by agent session.
    user_id : str | None
        Filter by agent user.
    _ : AuthenticatedSession
        Authorized operator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    list[EventResponse]
        Events, newest first.
    """
    query = select(TelemetryEvent)
    if event is not None:
        query = query.where(TelemetryEvent.event == event)
    if server_id is not None:
        query = query.where(TelemetryEvent.server_id == server_id)
    if session_id is not None:
        query = query.where(TelemetryEvent.session_id == session_id)
    if user_id is not None:
        query = query.where(TelemetryEvent.user_id == user_id)
    result = await session.execute(
        query.order_by(TelemetryEvent.received_at.desc(), TelemetryEvent.id.desc()).limit(limit)
    )
    return [EventResponse.model_validate(row) for row in result.scalars().all()]


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: int,
    _: AuthenticatedSession = Depends(require_permission(Permission.READ_EVENT_LOG)),
    session: AsyncSession = Depends(get_session),
) -> EventResponse:
    """Return a single event."""
    event = await session.get(TelemetryEvent, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    return EventResponse.model_validate(event)


@router.delete("", response_model=DeletedCountResponse)
async def remove_events(
    session_id: str | None = Query(default=None, alias="sessionId"),
    actor: AuthenticatedSession = Depends(require_permission(Permission.DELETE_EVENTS)),
    session: AsyncSession = Depends(get_session),
) -> DeletedCountResponse:
    """Delete every event, or one agent session's events.

    Parameters
    ----------
    session_id : str | None
        Restrict the delete to this agent session.
    actor : AuthenticatedSession
        Authorized operator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    DeletedCountResponse
        Number of deleted rows.
    """
    deleted = await delete_events(session, actor=actor, session_id=session_id)
    await commit_writes(session)
    return DeletedCountResponse(deleted_count=deleted)
