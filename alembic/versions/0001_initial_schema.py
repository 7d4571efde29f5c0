"""initial schema"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

EVENT_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Create the event store, operator and team tables.

    Returns
    -------
    None
        Creates all core tables and indexes.
    """
    op.create_table(
        "telemetry_events",
        sa.Column("id", EVENT_ID, autoincrement=True, nullable=False),
        sa.Column("event", sa.String(length=64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("server_id", sa.String(length=255), nullable=True),
        sa.Column("version", sa.String(length=64), nullable=True),
        sa.Column("session_id", sa.String(length=255), nullable=True),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_telemetry_events_timestamp", "telemetry_events", ["timestamp"])
    op.create_index(
        "idx_telemetry_events_event_timestamp",
        "telemetry_events",
        ["event", "timestamp"],
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=512), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )
    op.create_table(
        "orgs",
        sa.Column("server_id", sa.String(length=255), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("server_id"),
    )
    op.create_table(
        "teams",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("color", sa.String(length=16), nullable=False),
        sa.Column("logo_bytes", sa.LargeBinary(), nullable=True),
        sa.Column("logo_mime", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "team_orgs",
        sa.Column("team_id", sa.Uuid(), nullable=False),
        sa.Column("server_id", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["server_id"], ["orgs.server_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("team_id", "server_id"),
    )


def downgrade() -> None:
    """Drop the core tables.

    Returns
    -------
    None
        Drops all core tables and indexes.
    """
    op.drop_table("team_orgs")
    op.drop_table("teams")
    op.drop_table("orgs")
    op.drop_table("users")
    op.drop_index("idx_telemetry_events_event_timestamp", table_name="telemetry_events")
    op.drop_index("idx_telemetry_events_timestamp", table_name="telemetry_events")
    op.drop_table("telemetry_events")
