"""Shared router helpers."""

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.config import get_settings
from telemetry_server.database import get_session
from telemetry_server.errors import CsrfError, SessionError
from telemetry_server.services.auth import (
    AuthenticatedSession,
    validate_csrf,
    validate_session,
)
from telemetry_server.services.cache import invalidate_aggregates
from telemetry_server.services.permissions import Permission, ensure_permission
from telemetry_server.services.ratelimit import get_ingest_limiter

CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


async def commit_session(session: AsyncSession) -> None:
    """Commit the current transaction.

    Parameters
    ----------
    session : AsyncSession
        Active database session.

    Returns
    -------
    None
        Commits current transaction.
    """
    await session.commit()


async def commit_writes(session: AsyncSession) -> None:
    """Commit a transaction that changed events, orgs or teams."""
    await session.commit()
    invalidate_aggregates()


async def enforce_ingest_rate_limit(request: Request) -> None:
    """Count one ingest event for the caller or raise ``RateLimitError``."""
    get_ingest_limiter().acquire(get_remote_address(request))


async def get_optional_session(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> AuthenticatedSession | None:
    """Resolve the session cookie if it names a live session.

    Parameters
    ----------
    request : Request
        Incoming request.
    session : AsyncSession
        Active database session.

    Returns
    -------
    AuthenticatedSession | None
        Live session or ``None``.
    """
    settings = get_settings()
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    try:
        current = await validate_session(session, token, settings=settings)
    except SessionError:
        await commit_session(session)
        return None
    await commit_session(session)
    return current


async def get_current_session(
    current: AuthenticatedSession | None = Depends(get_optional_session),
) -> AuthenticatedSession:
    """Require a live session.

    Parameters
    ----------
    current : AuthenticatedSession | None
        Resolved session.

    Returns
    -------
    AuthenticatedSession
        Live session.
    """
    if current is None:
        raise SessionError()
    return current


async def require_csrf(
    request: Request,
    current: AuthenticatedSession = Depends(get_current_session),
) -> AuthenticatedSession:
    """Require a session and, for unsafe methods, its CSRF token.

    Parameters
    ----------
    request : Request
        Incoming request.
    current : AuthenticatedSession
        Live session.

    Returns
    -------
    AuthenticatedSession
        Live session whose CSRF token was presented.
    """
    if request.method not in SAFE_METHODS and not validate_csrf(
        current, request.headers.get(CSRF_HEADER)
    ):
        raise CsrfError()
    return current


def require_permission(
    permission: Permission,
) -> Callable[..., Awaitable[AuthenticatedSession]]:
    """Build a dependency enforcing session, CSRF and role, in that order.

    Parameters
    ----------
    permission : Permission
        Permission the route needs.

    Returns
    -------
    Callable[..., Awaitable[AuthenticatedSession]]
        FastAPI dependency.
    """

    async def dependency(
        current: AuthenticatedSession = Depends(require_csrf),
    ) -> AuthenticatedSession:
        ensure_permission(current.role, permission)
        return current

    return dependency
