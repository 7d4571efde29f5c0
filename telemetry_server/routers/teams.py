"""Team and org routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.database import get_session
from telemetry_server.errors import NotFoundError
from telemetry_server.routers.dependencies import commit_writes, require_permission
from telemetry_server.schemas.common import MessageResponse
from telemetry_server.schemas.teams import (
    OrgResponse,
    OrgUpdateRequest,
    TeamLogoRequest,
    TeamResponse,
    TeamWriteRequest,
)
from telemetry_server.services import teams as team_service
from telemetry_server.services.auth import AuthenticatedSession
from telemetry_server.services.permissions import Permission

router = APIRouter(prefix="/api/teams", tags=["teams"])
orgs_router = APIRouter(prefix="/api/orgs", tags=["orgs"])

dashboard_reader = require_permission(Permission.READ_DASHBOARD)
team_manager = require_permission(Permission.MANAGE_TEAMS)


def _team_response(view: team_service.TeamView) -> TeamResponse:
    """Build a team response.

    Parameters
    ----------
    view : TeamView
        Team with its orgs.

    Returns
    -------
    TeamResponse
        Serializable team.
    """
    team = view.team
    return TeamResponse(
        id=team.id,
        name=team.name,
        color=team.color,
        orgs=view.orgs,
        has_logo=team.logo_bytes is not None,
        created_at=team.created_at,
        updated_at=team.updated_at,
    )


@router.get("", response_model=list[TeamResponse])
async def list_teams(
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> list[TeamResponse]:
    """List teams with their orgs."""
    return [_team_response(view) for view in await team_service.list_teams(session)]


@router.post("", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    payload: TeamWriteRequest,
    actor: AuthenticatedSession = Depends(team_manager),
    session: AsyncSession = Depends(get_session),
) -> TeamResponse:
    """Create a team.

    Parameters
    ----------
    payload : TeamWriteRequest
        Team definition.
    actor : AuthenticatedSession
        Authorized administrator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    TeamResponse
        Created team.
    """
    view = await team_service.create_team(
        session, actor=actor, name=payload.name, color=payload.color, orgs=payload.orgs
    )
    await commit_writes(session)
    return _team_response(view)


@router.put("/{team_id}", response_model=TeamResponse)
async def update_team(
    team_id: UUID,
    payload: TeamWriteRequest,
    actor: AuthenticatedSession = Depends(team_manager),
    session: AsyncSession = Depends(get_session),
) -> TeamResponse:
    """Replace a team's definition."""
    view = await team_service.update_team(
        session,
        actor=actor,
        team_id=team_id,
        name=payload.name,
        color=payload.color,
        orgs=payload.orgs,
    )
    await commit_writes(session)
    return _team_response(view)


@router.delete("/{team_id}", response_model=MessageResponse)
async def delete_team(
    team_id: UUID,
    actor: AuthenticatedSession = Depends(team_manager),
    session: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Delete a team."""
    await team_service.delete_team(session, actor=actor, team_id=team_id)
    await commit_writes(session)
    return MessageResponse(message="Team deleted")


@router.get("/{team_id}/logo")
async def get_team_logo(
    team_id: UUID,
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> Response:
    """Return a team's logo image."""
    team = await team_service.get_team_or_404(session, team_id)
    if team.logo_bytes is None:
        raise NotFoundError("Team has no logo")
    return Response(
        content=team.logo_bytes,
        media_type=team.logo_mime or "application/octet-stream",
        headers={"Cache-Control": "private, max-age=300"},
    )


@router.put("/{team_id}/logo", response_model=TeamResponse)
async def put_team_logo(
    team_id: UUID,
    payload: TeamLogoRequest,
    actor: AuthenticatedSession = Depends(team_manager),
    session: AsyncSession = Depends(get_session),
) -> TeamResponse:
    """Upload a team logo."""
    team = await team_service.set_team_logo(
        session,
        actor=actor,
        team_id=team_id,
        logo=team_service.decode_logo(payload.logo),
        mime=payload.mime,
    )
    view = await team_service.team_view(session, team)
    await commit_writes(session)
    return _team_response(view)


@router.delete("/{team_id}/logo", response_model=TeamResponse)
async def delete_team_logo(
    team_id: UUID,
    actor: AuthenticatedSession = Depends(team_manager),
    session: AsyncSession = Depends(get_session),
) -> TeamResponse:
    """Remove a team logo."""
    team = await team_service.set_team_logo(
        session, actor=actor, team_id=team_id, logo=None, mime=None
    )
    view = await team_service.team_view(session, team)
    await commit_writes(session)
    return _team_response(view)


@orgs_router.get("", response_model=list[OrgResponse])
async def list_orgs(
    _: AuthenticatedSession = Depends(dashboard_reader),
    session: AsyncSession = Depends(get_session),
) -> list[OrgResponse]:
    """List orgs with their event counts."""
    return [
        OrgResponse(
            server_id=view.org.server_id,
            company_name=view.org.company_name,
            event_count=view.event_count,
            created_at=view.org.created_at,
            updated_at=view.org.updated_at,
        )
        for view in await team_service.list_orgs(session)
    ]


@orgs_router.put("/{server_id}", response_model=OrgResponse)
async def update_org(
    server_id: str,
    payload: OrgUpdateRequest,
    actor: AuthenticatedSession = Depends(team_manager),
    session: AsyncSession = Depends(get_session),
) -> OrgResponse:
    """Create or rename an org."""
    org = await team_service.update_org(
        session, actor=actor, server_id=server_id, company_name=payload.company_name
    )
    await commit_writes(session)
    return OrgResponse.model_validate(org)
