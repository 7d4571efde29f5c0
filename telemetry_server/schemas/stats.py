"""Dashboard aggregate schemas."""

from uuid import UUID

from telemetry_server.schemas.common import CamelModel, UtcDatetime


class DailyStat(CamelModel):
    """Counters for one UTC day.

    ``count`` is set for plain totals; the three breakdown counters are
    set when grouping by event type.
    """

    date: str
    count: int | None = None
    start_sessions_without_end: int | None = None
    tool_events: int | None = None
    error_events: int | None = None


class TopUser(CamelModel):
    """Ranked agent user."""

    id: str
    label: str
    event_count: int


class TopTeam(CamelModel):
    """Ranked team."""

    team_id: UUID
    label: str
    orgs: list[str]
    event_count: int
    color: str
    has_logo: bool


class DatabaseSize(CamelModel):
    """Storage used by the telemetry tables."""

    size_bytes: int
    size_formatted: str
    max_size_bytes: int | None = None
    percentage: float | None = None
    display_text: str


class EventTotal(CamelModel):
    """Event count over an optional range."""

    total: int


class EventTypeCount(CamelModel):
    """Number of events of one kind."""

    event: str
    count: int


class SessionSummary(CamelModel):
    """Agent session derived from the events sharing a ``session_id``."""

    session_id: str
    count: int
    first_event: UtcDatetime
    last_event: UtcDatetime
    user_id: str | None = None
    user_name: str | None = None
    is_active: bool


class ToolUsage(CamelModel):
    """Calls and errors attributed to one tool."""

    tool: str
    successful: int
    errors: int


class ToolUsageStats(CamelModel):
    """Most used tools over a window of days."""

    tools: list[ToolUsage]
    days: int
