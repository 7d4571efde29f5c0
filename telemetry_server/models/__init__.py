"""ORM models."""

from telemetry_server.models.audit import AuditLog
from telemetry_server.models.event import TelemetryEvent
from telemetry_server.models.organization import Org
from telemetry_server.models.session import UserSession
from telemetry_server.models.team import Team, TeamOrg
from telemetry_server.models.user import Role, User

__all__ = [
    "AuditLog",
    "Org",
    "Role",
    "Team",
    "TeamOrg",
    "TelemetryEvent",
    "User",
    "UserSession",
]
