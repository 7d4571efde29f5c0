"""Team and org schemas."""

import re
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from telemetry_server.schemas.common import APIModel, UtcDatetime

_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


class OrgResponse(APIModel):
    """Org with its event volume."""

    server_id: str
    company_name: str | None
    event_count: int = 0
    created_at: UtcDatetime
    updated_at: UtcDatetime


class OrgUpdateRequest(BaseModel):
    """Set an org's display name."""

    company_name: str | None = Field(default=None, max_length=255)


class TeamResponse(APIModel):
    """Team definition."""

    id: UUID
    name: str
    color: str
    orgs: list[str]
    has_logo: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime


class TeamWriteRequest(BaseModel):
    """Create or replace a team."""

    name: str = Field(min_length=1, max_length=255)
    color: str = "#6366f1"
    orgs: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("color")
    @classmethod
    def _check_color(cls, value: str) -> str:
        if not _COLOR.match(value):
            raise ValueError("color must be #RRGGBB")
        return value.lower()

    @field_validator("orgs")
    @classmethod
    def _dedupe_orgs(cls, value: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for server_id in value:
            server_id = server_id.strip()
            if server_id:
                seen.setdefault(server_id, None)
        return list(seen)


class TeamLogoRequest(BaseModel):
    """Upload a team logo."""

    logo: str = Field(min_length=1, description="Base64-encoded image bytes")
    mime: str = Field(default="image/png", pattern=r"^image/[a-z0-9.+-]+$")
