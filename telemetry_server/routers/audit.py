"""Audit log routes."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.database import get_session
from telemetry_server.routers.dependencies import require_permission
from telemetry_server.schemas.audit import AuditResponse
from telemetry_server.services.audit import recent_entries
from telemetry_server.services.auth import AuthenticatedSession
from telemetry_server.services.permissions import Permission

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=list[AuditResponse])
async def list_audit_events(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    action: str | None = Query(default=None, max_length=100),
    _: AuthenticatedSession = Depends(require_permission(Permission.MANAGE_USERS)),
    session: AsyncSession = Depends(get_session),
) -> list[AuditResponse]:
    """List audit events, newest first.

    Parameters
    ----------
    limit : int
        Page size.
    offset : int
        Page offset.
    action : str | None
        Only entries with this action.
    _ : AuthenticatedSession
        Authorized administrator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    list[AuditResponse]
        Audit entries.
    """
    entries = await recent_entries(session, limit=limit, offset=offset, action=action)
    return [AuditResponse.model_validate(entry) for entry in entries]
