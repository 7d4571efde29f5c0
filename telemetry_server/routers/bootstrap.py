"""Bootstrap routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.config import get_settings
from telemetry_server.database import get_session
from telemetry_server.errors import ForbiddenError
from telemetry_server.models.user import Role
from telemetry_server.routers.dependencies import commit_session
from telemetry_server.schemas.bootstrap import BootstrapRequest, BootstrapResponse
from telemetry_server.schemas.users import UserResponse
from telemetry_server.services.admin import create_user
from telemetry_server.services.auth import ensure_bootstrap_allowed

router = APIRouter(prefix="/api", tags=["bootstrap"])


@router.post("/bootstrap", response_model=BootstrapResponse, status_code=status.HTTP_201_CREATED)
async def bootstrap(
    payload: BootstrapRequest,
    session: AsyncSession = Depends(get_session),
) -> BootstrapResponse:
    """Create the first administrator.

    Parameters
    ----------
    payload : BootstrapRequest
        Bootstrap request.
    session : AsyncSession
        Active database session.

    Returns
    -------
    BootstrapResponse
        Created administrator.
    """
    settings = get_settings()
    if not settings.bootstrap_enabled:
        raise ForbiddenError("Bootstrap disabled")
    await ensure_bootstrap_allowed(session)
    user = await create_user(
        session,
        actor=None,
        username=payload.username,
        password=payload.password,
        role=Role.ADMINISTRATOR,
        min_password_length=settings.password_min_length,
    )
    await commit_session(session)
    return BootstrapResponse(user=UserResponse.model_validate(user))
