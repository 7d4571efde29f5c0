"""Audit trail for operator and administrative actions.

Entries are written inside the caller's transaction, so an action and its
audit row commit or roll back together.
"""

from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.models.audit import AuditLog


async def log_event(
    session: AsyncSession,
    *,
    actor: str | None,
    action: str,
    resource_type: str,
    resource_id: str,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit entry.

    Parameters
    ----------
    session : AsyncSession
        Session holding the action's transaction.
    actor : str | None
        Username performing the action; ``None`` for anonymous callers and
        the command line.
    action : str
        Snake-case verb, e.g. ``user_deleted``.
    resource_type : str
        Kind of resource touched.
    resource_id : str
        Identifier of the touched resource.
    details : dict[str, Any] | None, default=None
        JSON-serializable context.

    Returns
    -------
    AuditLog
        Flushed entry.
    """
    entry = AuditLog(
        actor=actor,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
    )
    session.add(entry)
    await session.flush()
    logger.bind(actor=actor or "-").info("Audit {} {}={}", action, resource_type, resource_id)
    return entry


async def recent_entries(
    session: AsyncSession, *, limit: int, offset: int = 0, action: str | None = None
) -> list[AuditLog]:
    """Return audit entries newest first, optionally for one action."""
    query = select(AuditLog)
    if action is not None:
        query = query.where(AuditLog.action == action)
    result = await session.execute(
        query.order_by(AuditLog.timestamp.desc(), AuditLog.id).limit(limit).offset(offset)
    )
    return list(result.scalars())
