"""Team and org management."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.errors import ConflictError, NotFoundError, ValidationError
from telemetry_server.models.event import TelemetryEvent
from telemetry_server.models.organization import Org
from telemetry_server.models.team import Team, TeamOrg
from telemetry_server.services.audit import log_event
from telemetry_server.services.auth import AuthenticatedSession
from telemetry_server.services.ingest import ensure_org
from telemetry_server.services.permissions import Permission, ensure_permission

MAX_LOGO_BYTES = 512 * 1024


@dataclass(slots=True)
class OrgView:
    """Org row with its event count."""

    org: Org
    event_count: int


@dataclass(slots=True)
class TeamView:
    """Team row with its member server ids."""

    team: Team
    orgs: list[str]


async def list_orgs(session: AsyncSession) -> list[OrgView]:
    """Return every org with its total event count.

    Parameters
    ----------
    session : AsyncSession
        Active database session.

    Returns
    -------
    list[OrgView]
        Orgs ordered by display name, then server id.
    """
    counts = (
        select(TelemetryEvent.server_id, func.count(TelemetryEvent.id).label("event_count"))
        .group_by(TelemetryEvent.server_id)
        .subquery()
    )
    result = await session.execute(
        select(Org, func.coalesce(counts.c.event_count, 0))
        .join(counts, counts.c.server_id == Org.server_id, isouter=True)
        .order_by(func.coalesce(Org.company_name, Org.server_id), Org.server_id)
    )
    return [OrgView(org=org, event_count=int(count)) for org, count in result]


async def update_org(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession,
    server_id: str,
    company_name: str | None,
) -> Org:
    """Create or rename an org.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession
        Acting session.
    server_id : str
        Org key.
    company_name : str | None
        New display name; ``None`` clears it.

    Returns
    -------
    Org
        Updated org row.
    """
    ensure_permission(actor.role, Permission.MANAGE_TEAMS)
    await ensure_org(session, server_id=server_id)
    org = await session.get(Org, server_id, populate_existing=True)
    if org is None:
        raise NotFoundError(f"Org {server_id!r} not found")
    org.company_name = company_name.strip() if company_name and company_name.strip() else None
    await session.flush()
    await log_event(
        session,
        actor=actor.username,
        action="org_updated",
        resource_type="org",
        resource_id=server_id,
        details={"company_name": org.company_name},
    )
    return org


async def _team_orgs(session: AsyncSession, team_ids: list[UUID]) -> dict[UUID, list[str]]:
    members: dict[UUID, list[str]] = {team_id: [] for team_id in team_ids}
    if not team_ids:
        return members
    result = await session.execute(
        select(TeamOrg.team_id, TeamOrg.server_id)
        .where(TeamOrg.team_id.in_(team_ids))
        .order_by(TeamOrg.server_id)
    )
    for team_id, server_id in result:
        members[team_id].append(server_id)
    return members


async def list_teams(session: AsyncSession) -> list[TeamView]:
    """Return every team with its orgs, ordered by name."""
    teams = list((await session.execute(select(Team).order_by(Team.name))).scalars())
    members = await _team_orgs(session, [team.id for team in teams])
    return [TeamView(team=team, orgs=members[team.id]) for team in teams]


async def get_team_or_404(session: AsyncSession, team_id: UUID) -> Team:
    """Return a team or raise ``NotFoundError``."""
    team = await session.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team not found")
    return team


async def team_view(session: AsyncSession, team: Team) -> TeamView:
    """Return a team together with its current orgs."""
    members = await _team_orgs(session, [team.id])
    return TeamView(team=team, orgs=members[team.id])


async def _ensure_team_name_available(
    session: AsyncSession, *, name: str, exclude: UUID | None = None
) -> None:
    query = select(Team.id).where(Team.name == name)
    if exclude is not None:
        query = query.where(Team.id != exclude)
    if (await session.execute(query)).scalar_one_or_none() is not None:
        raise ConflictError(f"Team {name!r} already exists", name=name)


async def replace_team_orgs(session: AsyncSession, team: Team, server_ids: list[str]) -> None:
    """Point a team at exactly ``server_ids``, creating unknown orgs."""
    await session.execute(delete(TeamOrg).where(TeamOrg.team_id == team.id))
    for server_id in server_ids:
        await ensure_org(session, server_id=server_id)
        session.add(TeamOrg(team_id=team.id, server_id=server_id))
    await session.flush()


async def create_team(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession,
    name: str,
    color: str,
    orgs: list[str],
) -> TeamView:
    """Create a team.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession
        Acting session.
    name : str
        Unique team name.
    color : str
        Display color ``#rrggbb``.
    orgs : list[str]
        Member server ids.

    Returns
    -------
    TeamView
        Created team.
    """
    ensure_permission(actor.role, Permission.MANAGE_TEAMS)
    await _ensure_team_name_available(session, name=name)
    team = Team(name=name, color=color)
    session.add(team)
    await session.flush()
    await replace_team_orgs(session, team, orgs)
    await log_event(
        session,
        actor=actor.username,
        action="team_created",
        resource_type="team",
        resource_id=str(team.id),
        details={"name": name, "orgs": len(orgs)},
    )
    return TeamView(team=team, orgs=sorted(orgs))


async def update_team(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession,
    team_id: UUID,
    name: str,
    color: str,
    orgs: list[str],
) -> TeamView:
    """Replace a team's name, color and orgs."""
    ensure_permission(actor.role, Permission.MANAGE_TEAMS)
    team = await get_team_or_404(session, team_id)
    await _ensure_team_name_available(session, name=name, exclude=team.id)
    team.name = name
    team.color = color
    await replace_team_orgs(session, team, orgs)
    await log_event(
        session,
        actor=actor.username,
        action="team_updated",
        resource_type="team",
        resource_id=str(team.id),
        details={"name": name, "orgs": len(orgs)},
    )
    return TeamView(team=team, orgs=sorted(orgs))


async def delete_team(
    session: AsyncSession, *, actor: AuthenticatedSession, team_id: UUID
) -> None:
    """Delete a team and its memberships."""
    ensure_permission(actor.role, Permission.MANAGE_TEAMS)
    team = await get_team_or_404(session, team_id)
    await session.execute(delete(TeamOrg).where(TeamOrg.team_id == team.id))
    await session.delete(team)
    await session.flush()
    await log_event(
        session,
        actor=actor.username,
        action="team_deleted",
        resource_type="team",
        resource_id=str(team_id),
        details={"name": team.name},
    )


def decode_logo(encoded: str) -> bytes:
    """Decode a base64 logo, accepting ``data:`` URLs.

    Parameters
    ----------
    encoded : str
        Base64 text, optionally prefixed with ``data:<mime>;base64,``.

    Returns
    -------
    bytes
        Raw image bytes.
    """
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Logo is not valid base64", field="logo") from exc
    if not raw:
        raise ValidationError("Logo is empty", field="logo")
    if len(raw) > MAX_LOGO_BYTES:
        raise ValidationError(
            f"Logo exceeds {MAX_LOGO_BYTES // 1024} KB", field="logo"
        )
    return raw


async def set_team_logo(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession,
    team_id: UUID,
    logo: bytes | None,
    mime: str | None,
) -> Team:
    """Store or clear a team logo.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession
        Acting session.
    team_id : UUID
        Team identifier.
    logo : bytes | None
        Image bytes; ``None`` clears the logo.
    mime : str | None
        Image content type.

    Returns
    -------
    Team
        Updated team row.
    """
    ensure_permission(actor.role, Permission.MANAGE_TEAMS)
    team = await get_team_or_404(session, team_id)
    team.logo_bytes = logo
    team.logo_mime = mime if logo is not None else None
    await session.flush()
    await log_event(
        session,
        actor=actor.username,
        action="team_logo_updated" if logo is not None else "team_logo_cleared",
        resource_type="team",
        resource_id=str(team.id),
        details={"bytes": len(logo) if logo is not None else 0},
    )
    return team
