"""Database export and import document schemas."""

from typing import Any
from uuid import UUID

from pydantic import ConfigDict, Field

from telemetry_server.models.user import Role
from telemetry_server.schemas.common import APIModel, CamelModel, UtcDatetime

EXPORT_VERSION = "1.0"


class ExportedEvent(APIModel):
    """Event row as written to an export document."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int | None = None
    event: str = Field(min_length=1, max_length=64)
    timestamp: UtcDatetime
    server_id: str | None = None
    version: str | None = None
    session_id: str | None = None
    user_id: str | None = None
    event_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    received_at: UtcDatetime
    created_at: UtcDatetime | None = None


class ExportedUser(APIModel):
    """User row including its password hash."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: UUID | None = None
    username: str = Field(min_length=1, max_length=255)
    password_hash: str = Field(min_length=1)
    role: Role = Role.BASIC
    created_at: UtcDatetime | None = None
    last_login: UtcDatetime | None = None


class ExportedOrg(APIModel):
    """Org row."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    server_id: str = Field(min_length=1, max_length=255)
    company_name: str | None = None
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None


class ExportedTeam(APIModel):
    """Team row with its org memberships and base64 logo."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: UUID | None = None
    name: str = Field(min_length=1, max_length=255)
    color: str = "#6366f1"
    logo: str | None = None
    logo_mime: str | None = None
    orgs: list[str] = Field(default_factory=list)
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None


class ImportResponse(CamelModel):
    """Outcome of a committed import."""

    status: str = "ok"
    imported: dict[str, int]
    errors: list[dict[str, Any]]
