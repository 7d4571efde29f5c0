"""Bootstrap request and response schemas."""

from pydantic import BaseModel, Field

from telemetry_server.schemas.users import UserResponse


class BootstrapRequest(BaseModel):
    """Create the first administrator."""

    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=1024)


class BootstrapResponse(BaseModel):
    """Bootstrap response payload."""

    status: str = "ok"
    user: UserResponse
