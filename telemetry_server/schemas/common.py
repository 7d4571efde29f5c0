"""Common schema primitives."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

from telemetry_server.models.mixins import ensure_utc


def isoformat_z(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


UtcDatetime = Annotated[
    datetime,
    AfterValidator(ensure_utc),
    PlainSerializer(isoformat_z, return_type=str, when_used="json"),
]


class APIModel(BaseModel):
    """Base API model with attribute validation enabled."""

    model_config = ConfigDict(from_attributes=True)


class CamelModel(APIModel):
    """API model serialized with camelCase keys."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class MessageResponse(APIModel):
    """Simple message response."""

    status: str = "ok"
    message: str


class DeletedCountResponse(CamelModel):
    """Number of rows removed by a delete."""

    status: str = "ok"
    deleted_count: int
