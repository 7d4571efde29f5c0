"""Operator account model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from telemetry_server.database import Base
from telemetry_server.models.mixins import TimestampMixin, uuid_column


class Role(str, enum.Enum):
    """Operator authorization level."""

    BASIC = "basic"
    ADVANCED = "advanced"
    ADMINISTRATOR = "administrator"


class User(TimestampMixin, Base):
    """UI operator."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_column()
    username: Mapped[str] = mapped_column(String(255), unique=True)
    password_hash: Mapped[str] = mapped_column(String(512))
    role: Mapped[str] = mapped_column(String(32), default=Role.BASIC.value)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
