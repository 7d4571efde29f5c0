"""Operator account management and bulk event deletion.

Every operation takes the acting session and re-checks its permission so
callers other than the HTTP routes cannot skip the role gate. ``actor=None``
denotes the local CLI, which runs with operator access to the database.
"""

from __future__ import annotations

from sqlalchemy import ColumnElement, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.errors import (
    ConflictError,
    LastAdministratorError,
    NotFoundError,
    SelfTargetError,
    ValidationError,
)
from telemetry_server.models.event import TelemetryEvent
from telemetry_server.models.user import Role, User
from telemetry_server.services.audit import log_event
from telemetry_server.services.auth import AuthenticatedSession, revoke_user_sessions
from telemetry_server.services.permissions import Permission, ensure_permission
from telemetry_server.services.security import hash_password


def _authorize(actor: AuthenticatedSession | None, permission: Permission) -> str | None:
    if actor is None:
        return None
    ensure_permission(actor.role, permission)
    return actor.username


def check_password_policy(password: str, *, min_length: int) -> None:
    """Raise ``ValidationError`` when a password is too weak.

    Parameters
    ----------
    password : str
        Candidate password.
    min_length : int
        Minimum length.

    Returns
    -------
    None
        Raises on violation.
    """
    if len(password) < min_length:
        raise ValidationError(
            f"Password must be at least {min_length} characters",
            field="password",
        )
    if not password.strip():
        raise ValidationError("Password must not be blank", field="password")


async def get_user_or_404(session: AsyncSession, username: str) -> User:
    """Return a user by username or raise ``NotFoundError``."""
    result = await session.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"User {username!r} not found")
    return user


def _other_administrators_remain() -> ColumnElement[bool]:
    """Return a clause true while more than one administrator exists.

    Evaluated inside the writing statement: SQLite takes its write lock
    before the statement reads, and PostgreSQL re-reads it after the row
    locks taken by ``_count_administrators`` are released.
    """
    administrators = (
        select(func.count())
        .select_from(User)
        .where(User.role == Role.ADMINISTRATOR.value)
        .scalar_subquery()
    )
    return administrators > 1


async def _count_administrators(session: AsyncSession) -> int:
    # PostgreSQL queues concurrent demotions behind these row locks; SQLite
    # drops FOR UPDATE and relies on the guarded statement alone.
    result = await session.execute(
        select(User.id).where(User.role == Role.ADMINISTRATOR.value).with_for_update()
    )
    return len(result.all())


async def _ensure_not_last_administrator(session: AsyncSession, user: User) -> None:
    if user.role != Role.ADMINISTRATOR.value:
        return
    if await _count_administrators(session) <= 1:
        raise LastAdministratorError(username=user.username)


def _unless_last_administrator() -> ColumnElement[bool]:
    return or_(User.role != Role.ADMINISTRATOR.value, _other_administrators_remain())


async def list_users(
    session: AsyncSession, *, actor: AuthenticatedSession | None
) -> list[User]:
    """Return every operator ordered by username.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession | None
        Acting session.

    Returns
    -------
    list[User]
        User rows; callers must not expose ``password_hash``.
    """
    _authorize(actor, Permission.MANAGE_USERS)
    result = await session.execute(select(User).order_by(User.username))
    return list(result.scalars().all())


async def create_user(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession | None,
    username: str,
    password: str,
    role: Role,
    min_password_length: int,
) -> User:
    """Create an operator account.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession | None
        Acting session.
    username : str
        Unique, case-sensitive username.
    password : str
        Initial password.
    role : Role
        Initial role.
    min_password_length : int
        Password policy minimum.

    Returns
    -------
    User
        Flushed user row.
    """
    actor_name = _authorize(actor, Permission.MANAGE_USERS)
    check_password_policy(password, min_length=min_password_length)
    existing = await session.execute(select(User.id).where(User.username == username))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"User {username!r} already exists", username=username)

    user = User(username=username, password_hash=hash_password(password), role=role.value)
    session.add(user)
    await session.flush()
    await log_event(
        session,
        actor=actor_name,
        action="user_created",
        resource_type="user",
        resource_id=str(user.id),
        details={"username": username, "role": role.value},
    )
    return user


async def set_password(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession | None,
    username: str,
    password: str,
    min_password_length: int,
) -> User:
    """Replace a user's password and end their other sessions.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession | None
        Acting session.
    username : str
        Target username.
    password : str
        New password.
    min_password_length : int
        Password policy minimum.

    Returns
    -------
    User
        Updated user row.
    """
    actor_name = _authorize(actor, Permission.MANAGE_USERS)
    check_password_policy(password, min_length=min_password_length)
    user = await get_user_or_404(session, username)
    user.password_hash = hash_password(password)
    if actor is None or actor.user.id != user.id:
        await revoke_user_sessions(session, user)
    await session.flush()
    await log_event(
        session,
        actor=actor_name,
        action="password_changed",
        resource_type="user",
        resource_id=str(user.id),
        details={"username": username},
    )
    return user


async def set_role(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession | None,
    username: str,
    role: Role,
) -> User:
    """Change a user's role.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession | None
        Acting session.
    username : str
        Target username.
    role : Role
        New role.

    Returns
    -------
    User
        Updated user row.
    """
    actor_name = _authorize(actor, Permission.MANAGE_USERS)
    user = await get_user_or_404(session, username)
    previous = user.role
    if previous == role.value:
        return user
    statement = update(User).where(User.id == user.id).values(role=role.value)
    if role is not Role.ADMINISTRATOR:
        await _ensure_not_last_administrator(session, user)
        statement = statement.where(_unless_last_administrator())
    result = await session.execute(statement.execution_options(synchronize_session=False))
    if result.rowcount != 1:
        raise LastAdministratorError(username=username)
    await session.refresh(user)
    await log_event(
        session,
        actor=actor_name,
        action="role_changed",
        resource_type="user",
        resource_id=str(user.id),
        details={"username": username, "from": previous, "to": role.value},
    )
    return user


async def delete_user(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession | None,
    username: str,
) -> None:
    """Delete a user and their sessions.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession | None
        Acting session.
    username : str
        Target username.

    Returns
    -------
    None
        Removes the user row.
    """
    actor_name = _authorize(actor, Permission.MANAGE_USERS)
    user = await get_user_or_404(session, username)
    await _ensure_not_last_administrator(session, user)
    if actor is not None and actor.user.id == user.id:
        raise SelfTargetError(username=username)
    await revoke_user_sessions(session, user)
    result = await session.execute(
        delete(User)
        .where(User.id == user.id, _unless_last_administrator())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise LastAdministratorError(username=username)
    session.expunge(user)
    await log_event(
        session,
        actor=actor_name,
        action="user_deleted",
        resource_type="user",
        resource_id=str(user.id),
        details={"username": username},
    )


async def delete_events(
    session: AsyncSession,
    *,
    actor: AuthenticatedSession | None,
    session_id: str | None = None,
) -> int:
    """Delete all events, or those of one agent session, in one statement.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    actor : AuthenticatedSession | None
        Acting session.
    session_id : str | None, default=None
        Restrict the delete to one agent session.

    Returns
    -------
    int
        Number of deleted rows.
    """
    actor_name = _authorize(actor, Permission.DELETE_EVENTS)
    statement = delete(TelemetryEvent)
    if session_id is not None:
        statement = statement.where(TelemetryEvent.session_id == session_id)
    result = await session.execute(statement)
    deleted = result.rowcount or 0
    await log_event(
        session,
        actor=actor_name,
        action="events_deleted",
        resource_type="telemetry_events",
        resource_id=session_id or "*",
        details={"deleted_count": deleted},
    )
    return deleted


async def count_events(session: AsyncSession) -> int:
    """Return the number of stored events."""
    return int(await session.scalar(select(func.count()).select_from(TelemetryEvent)) or 0)
