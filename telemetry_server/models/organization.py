"""Organization model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from telemetry_server.database import Base
from telemetry_server.models.mixins import UpdateTimestampMixin


class Org(UpdateTimestampMixin, Base):
    """Grouping of events keyed by the agent-reported server id."""

    __tablename__ = "orgs"

    server_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    company_name: Mapped[str | None] = mapped_column(String(255))
