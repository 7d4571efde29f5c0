"""sessions, audit log and event idempotency"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0002_sessions_audit_idempotency"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add durable sessions, the audit log and event lookup indexes.

    Returns
    -------
    None
        Creates tables, the ``event_id`` column and indexes.
    """
    op.add_column(
        "telemetry_events",
        sa.Column("event_id", sa.String(length=255), nullable=True),
    )
    op.create_index(
        "uq_telemetry_events_server_event_id",
        "telemetry_events",
        [sa.text("coalesce(server_id, '')"), "event_id"],
        unique=True,
        postgresql_where=sa.text("event_id IS NOT NULL"),
        sqlite_where=sa.text("event_id IS NOT NULL"),
    )
    op.create_index("idx_telemetry_events_session_id", "telemetry_events", ["session_id"])
    op.create_index("idx_telemetry_events_user_id", "telemetry_events", ["user_id"])
    op.create_index("idx_telemetry_events_received_at", "telemetry_events", ["received_at"])
    op.create_table(
        "user_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("token_lookup", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("csrf_token", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_lookup"),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])


def downgrade() -> None:
    """Remove sessions, the audit log and event lookup indexes.

    Returns
    -------
    None
        Drops the tables, column and indexes added by this revision.
    """
    op.drop_index("ix_audit_logs_timestamp", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_user_sessions_user_id", table_name="user_sessions")
    op.drop_table("user_sessions")
    op.drop_index("idx_telemetry_events_received_at", table_name="telemetry_events")
    op.drop_index("idx_telemetry_events_user_id", table_name="telemetry_events")
    op.drop_index("idx_telemetry_events_session_id", table_name="telemetry_events")
    op.drop_index("uq_telemetry_events_server_event_id", table_name="telemetry_events")
    op.drop_column("telemetry_events", "event_id")
