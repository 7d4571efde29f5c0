"""Operator authentication and session management."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.config import Settings
from telemetry_server.errors import AuthError, ConflictError, SessionError
from telemetry_server.models.mixins import ensure_utc, utcnow
from telemetry_server.models.session import UserSession
from telemetry_server.models.user import User
from telemetry_server.services.audit import log_event
from telemetry_server.services.security import (
    generate_csrf_token,
    generate_session_token,
    hash_password,
    lookup_hash,
    needs_rehash,
    tokens_match,
    verify_password,
)

# last_seen_at is only rewritten when it is older than this.
_TOUCH_INTERVAL = timedelta(seconds=60)


@dataclass(slots=True)
class AuthenticatedSession:
    """A validated operator session.

    Attributes
    ----------
    user : User
        Session owner.
    record : UserSession
        Server-side session row.
    """

    user: User
    record: UserSession

    @property
    def username(self) -> str:
        """Return the owner's username."""
        return self.user.username

    @property
    def role(self) -> str:
        """Return the owner's role."""
        return self.user.role


@dataclass(slots=True)
class IssuedSession:
    """A freshly created session and its raw token.

    Attributes
    ----------
    token : str
        Raw session token; only its hash is stored.
    session : AuthenticatedSession
        The new session.
    """

    token: str
    session: AuthenticatedSession


async def authenticate(
    session: AsyncSession, *, username: str, password: str
) -> IssuedSession:
    """Verify credentials and open a session.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    username : str
        Submitted username.
    password : str
        Submitted password.

    Returns
    -------
    IssuedSession
        New session with its raw token.
    """
    result = await session.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    verified = verify_password(password, user.password_hash if user else None)
    if user is None or not verified:
        await log_event(
            session,
            actor=None,
            action="login_failed",
            resource_type="user",
            resource_id=username,
        )
        await session.commit()
        logger.info("Rejected login for {}", username)
        raise AuthError()

    now = utcnow()
    user.last_login = now
    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)

    raw_token = generate_session_token()
    record = UserSession(
        token_lookup=lookup_hash(raw_token),
        user_id=user.id,
        csrf_token=generate_csrf_token(),
        created_at=now,
        last_seen_at=now,
    )
    session.add(record)
    await session.flush()
    await log_event(
        session,
        actor=user.username,
        action="login",
        resource_type="user",
        resource_id=str(user.id),
    )
    return IssuedSession(token=raw_token, session=AuthenticatedSession(user=user, record=record))


async def validate_session(
    session: AsyncSession, raw_token: str | None, *, settings: Settings
) -> AuthenticatedSession:
    """Resolve a session token to its user.

    Expired sessions are deleted before ``SessionError`` is raised; the
    caller decides whether to commit that removal.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    raw_token : str | None
        Token from the session cookie.
    settings : Settings
        Runtime settings carrying the TTLs.

    Returns
    -------
    AuthenticatedSession
        Live session and its owner.
    """
    if not raw_token:
        raise SessionError()
    result = await session.execute(
        select(UserSession, User)
        .join(User, User.id == UserSession.user_id)
        .where(UserSession.token_lookup == lookup_hash(raw_token))
    )
    row = result.one_or_none()
    if row is None:
        raise SessionError()
    record, user = row

    now = utcnow()
    idle = now - ensure_utc(record.last_seen_at)
    age = now - ensure_utc(record.created_at)
    if idle > settings.session_ttl_idle or age > settings.session_ttl_absolute:
        await session.delete(record)
        await session.flush()
        raise SessionError("Session expired")

    if idle > _TOUCH_INTERVAL:
        record.last_seen_at = now
        await session.flush()
    return AuthenticatedSession(user=user, record=record)


def issue_csrf(current: AuthenticatedSession) -> str:
    """Return the CSRF token bound to a session."""
    return current.record.csrf_token


def validate_csrf(current: AuthenticatedSession, token: str | None) -> bool:
    """Return whether a presented CSRF token belongs to the session."""
    return tokens_match(current.record.csrf_token, token)


async def logout(session: AsyncSession, current: AuthenticatedSession) -> None:
    """Invalidate a session.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    current : AuthenticatedSession
        Session to revoke.

    Returns
    -------
    None
        Deletes the session row.
    """
    await session.execute(delete(UserSession).where(UserSession.id == current.record.id))
    await log_event(
        session,
        actor=current.username,
        action="logout",
        resource_type="user",
        resource_id=str(current.user.id),
    )


async def revoke_user_sessions(session: AsyncSession, user: User) -> int:
    """Delete every session owned by a user.

    Returns
    -------
    int
        Number of sessions removed.
    """
    result = await session.execute(delete(UserSession).where(UserSession.user_id == user.id))
    return result.rowcount or 0


async def ensure_bootstrap_allowed(session: AsyncSession) -> None:
    """Ensure no operator account exists yet.

    Parameters
    ----------
    session : AsyncSession
        Active database session.

    Returns
    -------
    None
        Raises when bootstrap is already complete.
    """
    count = await session.scalar(select(func.count()).select_from(User))
    if count:
        raise ConflictError("Bootstrap already completed")
