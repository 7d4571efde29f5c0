"""Login and session schemas."""

from pydantic import BaseModel, Field

from telemetry_server.models.user import Role
from telemetry_server.schemas.common import CamelModel


class LoginRequest(BaseModel):
    """Operator credentials."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)


class AuthStatusResponse(CamelModel):
    """Whether the caller holds a live session."""

    authenticated: bool
    username: str | None = None
    role: Role | None = None
    csrf_token: str | None = None


class CsrfTokenResponse(CamelModel):
    """CSRF token bound to the caller's session."""

    csrf_token: str
