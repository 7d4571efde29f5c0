"""Event ingest and event-log schemas."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from telemetry_server.schemas.common import APIModel, CamelModel, UtcDatetime


def _optional_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class EventSubmission(BaseModel):
    """Event body posted by an agent.

    Top-level keys outside the schema are kept in ``model_extra`` and
    stored with the event data.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event: str = Field(
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("event", "event_type", "eventType"),
    )
    timestamp: UtcDatetime
    server_id: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("server_id", "serverId"),
    )
    version: str | None = Field(default=None, max_length=64)
    session_id: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )
    user_id: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("user_id", "userId"),
    )
    event_id: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("event_id", "eventId"),
    )
    data: dict[str, Any] | None = None

    @field_validator("event", mode="before")
    @classmethod
    def _strip_event(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("server_id", "version", "session_id", "user_id", "event_id", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return _optional_text(value)


class SubmitResponse(CamelModel):
    """Acknowledgement of a stored event."""

    status: str = "ok"
    id: int
    received_at: UtcDatetime
    duplicate: bool = False


class EventResponse(APIModel):
    """Stored event."""

    id: int
    event: str
    timestamp: UtcDatetime
    server_id: str | None
    version: str | None
    session_id: str | None
    user_id: str | None
    event_id: str | None
    data: dict[str, Any]
    received_at: UtcDatetime
    created_at: UtcDatetime
