"""Operator session model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from telemetry_server.database import Base
from telemetry_server.models.mixins import TimestampMixin, utcnow, uuid_column


class UserSession(TimestampMixin, Base):
    """Server-side state for one login."""

    __tablename__ = "user_sessions"

    id: Mapped[uuid.UUID] = uuid_column()
    token_lookup: Mapped[str] = mapped_column(String(64), unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    csrf_token: Mapped[str] = mapped_column(String(128))
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
