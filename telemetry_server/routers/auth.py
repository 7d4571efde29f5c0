"""Login, logout and session status routes."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.config import get_settings
from telemetry_server.database import get_session
from telemetry_server.routers.dependencies import (
    commit_session,
    get_current_session,
    get_optional_session,
    require_csrf,
)
from telemetry_server.schemas.auth import AuthStatusResponse, CsrfTokenResponse, LoginRequest
from telemetry_server.services.auth import (
    AuthenticatedSession,
    authenticate,
    issue_csrf,
    logout,
)

router = APIRouter(tags=["auth"])


@router.post("/login", response_model=AuthStatusResponse)
async def login(
    payload: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
) -> AuthStatusResponse:
    """Authenticate an operator and set the session cookie.

    Parameters
    ----------
    payload : LoginRequest
        Submitted credentials.
    response : Response
        Outgoing response carrying the cookie.
    session : AsyncSession
        Active database session.

    Returns
    -------
    AuthStatusResponse
        Session owner and its CSRF token.
    """
    settings = get_settings()
    issued = await authenticate(session, username=payload.username, password=payload.password)
    await commit_session(session)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=issued.token,
        max_age=int(settings.session_ttl_absolute.total_seconds()),
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    return AuthStatusResponse(
        authenticated=True,
        username=issued.session.username,
        role=issued.session.role,
        csrf_token=issue_csrf(issued.session),
    )


@router.post("/logout", response_model=AuthStatusResponse)
async def logout_route(
    response: Response,
    current: AuthenticatedSession = Depends(require_csrf),
    session: AsyncSession = Depends(get_session),
) -> AuthStatusResponse:
    """End the caller's session and clear the cookie."""
    await logout(session, current)
    await commit_session(session)
    response.delete_cookie(get_settings().session_cookie_name, path="/")
    return AuthStatusResponse(authenticated=False)


@router.get("/api/auth/status", response_model=AuthStatusResponse, response_model_exclude_none=True)
async def auth_status(
    current: AuthenticatedSession | None = Depends(get_optional_session),
) -> AuthStatusResponse:
    """Report whether the caller holds a live session."""
    if current is None:
        return AuthStatusResponse(authenticated=False)
    return AuthStatusResponse(
        authenticated=True,
        username=current.username,
        role=current.role,
        csrf_token=issue_csrf(current),
    )


@router.get("/api/csrf-token", response_model=CsrfTokenResponse)
async def csrf_token(
    current: AuthenticatedSession = Depends(get_current_session),
) -> CsrfTokenResponse:
    """Return the CSRF token bound to the caller's session."""
    return CsrfTokenResponse(csrf_token=issue_csrf(current))
