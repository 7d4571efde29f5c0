"""Team models."""

import uuid

from sqlalchemy import ForeignKey, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from telemetry_server.database import Base
from telemetry_server.models.mixins import UpdateTimestampMixin, uuid_column


class Team(UpdateTimestampMixin, Base):
    """Named group of orgs used for rankings."""

    __tablename__ = "teams"

    id: Mapped[uuid.UUID] = uuid_column()
    name: Mapped[str] = mapped_column(String(255), unique=True)
    color: Mapped[str] = mapped_column(String(16), default="#6366f1")
    logo_bytes: Mapped[bytes | None] = mapped_column(LargeBinary)
    logo_mime: Mapped[str | None] = mapped_column(String(100))


class TeamOrg(Base):
    """Team membership of an org."""

    __tablename__ = "team_orgs"

    team_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True
    )
    server_id: Mapped[str] = mapped_column(
        ForeignKey("orgs.server_id", ondelete="CASCADE"), primary_key=True
    )
