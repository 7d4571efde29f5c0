"""Database export and import routes."""

from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from telemetry_server.database import get_session, get_sessionmaker
from telemetry_server.models.mixins import utcnow
from telemetry_server.routers.dependencies import commit_session, require_permission
from telemetry_server.schemas.transfer import ImportResponse
from telemetry_server.services.audit import log_event
from telemetry_server.services.auth import AuthenticatedSession
from telemetry_server.services.cache import invalidate_aggregates
from telemetry_server.services.permissions import Permission
from telemetry_server.services.transfer import export_chunks, import_database

router = APIRouter(prefix="/api/database", tags=["database"])

database_manager = require_permission(Permission.MANAGE_DATABASE)


@router.get("/export")
async def export_database(
    actor: AuthenticatedSession = Depends(database_manager),
    session: AsyncSession = Depends(get_session),
    factory: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
) -> StreamingResponse:
    """Stream the whole database as one JSON document.

    Parameters
    ----------
    actor : AuthenticatedSession
        Authorized administrator.
    session : AsyncSession
        Active database session, used for the audit entry.
    factory : async_sessionmaker[AsyncSession]
        Session factory for the export's own snapshot.

    Returns
    -------
    StreamingResponse
        Chunked ``application/json`` attachment.
    """
    await log_event(
        session,
        actor=actor.username,
        action="database_exported",
        resource_type="database",
        resource_id="*",
    )
    await commit_session(session)
    filename = f"telemetry-export-{utcnow():%Y-%m-%d}.json"
    return StreamingResponse(
        export_chunks(factory),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import", response_model=ImportResponse)
async def import_database_route(
    document: Any = Body(...),
    actor: AuthenticatedSession = Depends(database_manager),
    factory: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
) -> ImportResponse:
    """Merge an export document into the database.

    Parameters
    ----------
    document : Any
        Decoded export document.
    actor : AuthenticatedSession
        Authorized administrator.
    factory : async_sessionmaker[AsyncSession]
        Session factory for the import transaction.

    Returns
    -------
    ImportResponse
        Per-table counts and skipped rows.
    """
    result = await import_database(factory, document, actor=actor.username)
    invalidate_aggregates()
    return ImportResponse(imported=result.imported, errors=result.errors)
