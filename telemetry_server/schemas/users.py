"""Operator account schemas."""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from telemetry_server.models.user import Role
from telemetry_server.schemas.common import APIModel, UtcDatetime


class UserResponse(APIModel):
    """Operator account without credentials."""

    id: UUID
    username: str
    role: Role
    created_at: UtcDatetime
    last_login: UtcDatetime | None = None


class UserCreateRequest(BaseModel):
    """Create an operator account."""

    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=1024)
    role: Role = Role.BASIC

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value


class PasswordUpdateRequest(BaseModel):
    """Replace an operator's password."""

    password: str = Field(min_length=1, max_length=1024)


class RoleUpdateRequest(BaseModel):
    """Change an operator's role."""

    role: Role
