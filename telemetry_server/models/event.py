"""Telemetry event model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, func, literal_column
from sqlalchemy.orm import Mapped, mapped_column

from telemetry_server.database import Base
from telemetry_server.models.mixins import utcnow

EventId = BigInteger().with_variant(Integer(), "sqlite")


class TelemetryEvent(Base):
    """Append-only event reported by an agent."""

    __tablename__ = "telemetry_events"
    __table_args__ = (
        Index("idx_telemetry_events_timestamp", "timestamp"),
        Index("idx_telemetry_events_event_timestamp", "event", "timestamp"),
        Index("idx_telemetry_events_session_id", "session_id"),
        Index("idx_telemetry_events_user_id", "user_id"),
        Index("idx_telemetry_events_received_at", "received_at"),
    )

    id: Mapped[int] = mapped_column(EventId, primary_key=True, autoincrement=True)
    event: Mapped[str] = mapped_column(String(64))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    server_id: Mapped[str | None] = mapped_column(String(255))
    version: Mapped[str | None] = mapped_column(String(64))
    session_id: Mapped[str | None] = mapped_column(String(255))
    user_id: Mapped[str | None] = mapped_column(String(255))
    event_id: Mapped[str | None] = mapped_column(String(255))
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# Idempotency key: one row per (org, event_id); events without a server_id
# share the empty-string scope.
IDEMPOTENCY_KEY = (
    func.coalesce(TelemetryEvent.server_id, literal_column("''")),
    TelemetryEvent.event_id,
)
IDEMPOTENCY_KEY_WHERE = TelemetryEvent.event_id.is_not(None)

Index(
    "uq_telemetry_events_server_event_id",
    *IDEMPOTENCY_KEY,
    unique=True,
    postgresql_where=IDEMPOTENCY_KEY_WHERE,
    sqlite_where=IDEMPOTENCY_KEY_WHERE,
)
