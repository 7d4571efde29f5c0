"""Operator account routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.config import get_settings
from telemetry_server.database import get_session
from telemetry_server.routers.dependencies import commit_session, require_permission
from telemetry_server.schemas.common import MessageResponse
from telemetry_server.schemas.users import (
    PasswordUpdateRequest,
    RoleUpdateRequest,
    UserCreateRequest,
    UserResponse,
)
from telemetry_server.services import admin
from telemetry_server.services.auth import AuthenticatedSession
from telemetry_server.services.permissions import Permission

router = APIRouter(prefix="/api/users", tags=["users"])

user_manager = require_permission(Permission.MANAGE_USERS)


@router.get("", response_model=list[UserResponse])
async def list_users(
    actor: AuthenticatedSession = Depends(user_manager),
    session: AsyncSession = Depends(get_session),
) -> list[UserResponse]:
    """List operator accounts.

    Parameters
    ----------
    actor : AuthenticatedSession
        Authorized administrator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    list[UserResponse]
        Accounts without password hashes.
    """
    users = await admin.list_users(session, actor=actor)
    return [UserResponse.model_validate(user) for user in users]


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreateRequest,
    actor: AuthenticatedSession = Depends(user_manager),
    session: AsyncSession = Depends(get_session),
) -> UserResponse:
    """Create an operator account.

    Parameters
    ----------
    payload : UserCreateRequest
        Account details.
    actor : AuthenticatedSession
        Authorized administrator.
    session : AsyncSession
        Active database session.

    Returns
    -------
    UserResponse
        Created account.
    """
    user = await admin.create_user(
        session,
        actor=actor,
        username=payload.username,
        password=payload.password,
        role=payload.role,
        min_password_length=get_settings().password_min_length,
    )
    await commit_session(session)
    return UserResponse.model_validate(user)


@router.put("/{username}/password", response_model=MessageResponse)
async def set_password(
    username: str,
    payload: PasswordUpdateRequest,
    actor: AuthenticatedSession = Depends(user_manager),
    session: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Reset an operator's password."""
    await admin.set_password(
        session,
        actor=actor,
        username=username,
        password=payload.password,
        min_password_length=get_settings().password_min_length,
    )
    await commit_session(session)
    return MessageResponse(message="Password updated")


@router.put("/{username}/role", response_model=UserResponse)
async def set_role(
    username: str,
    payload: RoleUpdateRequest,
    actor: AuthenticatedSession = Depends(user_manager),
    session: AsyncSession = Depends(get_session),
) -> UserResponse:
    """Change an operator's role."""
    user = await admin.set_role(session, actor=actor, username=username, role=payload.role)
    await commit_session(session)
    return UserResponse.model_validate(user)


@router.delete("/{username}", response_model=MessageResponse)
async def delete_user(
    username: str,
    actor: AuthenticatedSession = Depends(user_manager),
    session: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Delete an operator account."""
    await admin.delete_user(session, actor=actor, username=username)
    await commit_session(session)
    return MessageResponse(message="User deleted")
