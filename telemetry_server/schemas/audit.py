"""Audit log schemas."""

from typing import Any
from uuid import UUID

from telemetry_server.schemas.common import APIModel, UtcDatetime


class AuditResponse(APIModel):
    """Audit log entry."""

    id: UUID
    actor: str | None
    action: str
    resource_type: str
    resource_id: str
    details: dict[str, Any]
    timestamp: UtcDatetime
