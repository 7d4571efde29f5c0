"""Liveness route."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.database import get_session
from telemetry_server.models.mixins import utcnow
from telemetry_server.schemas.common import isoformat_z

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(session: AsyncSession = Depends(get_session)) -> dict[str, str]:
    """Report that the server and its database respond."""
    await session.execute(text("SELECT 1"))
    return {"status": "ok", "database": "ok", "timestamp": isoformat_z(utcnow())}
