"""Event ingest."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_server.database import dialect_name
from telemetry_server.errors import InternalError, ValidationError
from telemetry_server.models.event import (
    IDEMPOTENCY_KEY,
    IDEMPOTENCY_KEY_WHERE,
    TelemetryEvent,
)
from telemetry_server.models.mixins import utcnow
from telemetry_server.models.organization import Org
from telemetry_server.schemas.events import EventSubmission

EXTRA_FIELDS_KEY = "_extra"


@dataclass(slots=True)
class SubmitResult:
    """Outcome of one submission.

    Attributes
    ----------
    id : int
        Stored event id.
    received_at : datetime
        Server receive time of the stored row.
    duplicate : bool
        Whether an earlier row with the same idempotency key was returned.
    """

    id: int
    received_at: datetime
    duplicate: bool


def _nested(data: dict[str, Any], *path: str) -> Any:
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _text_or_none(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text[:255] or None


def company_name_from(data: dict[str, Any]) -> str | None:
    """Return the company name an agent embedded in event data, if any."""
    return _text_or_none(
        _nested(data, "companyDetails", "Name")
        or _nested(data, "state", "org", "companyDetails", "Name")
    )


def normalize_submission(
    payload: EventSubmission, *, max_data_bytes: int
) -> dict[str, Any]:
    """Turn a validated submission into event column values.

    Parameters
    ----------
    payload : EventSubmission
        Parsed request body.
    max_data_bytes : int
        Ceiling on the serialized ``data`` object.

    Returns
    -------
    dict[str, Any]
        Column values for ``TelemetryEvent``.
    """
    data = dict(payload.data or {})
    if payload.model_extra:
        data[EXTRA_FIELDS_KEY] = dict(payload.model_extra)

    size = len(json.dumps(data, separators=(",", ":"), default=str).encode("utf-8"))
    if size > max_data_bytes:
        raise ValidationError(
            f"Event data is {size} bytes; the limit is {max_data_bytes}",
            field="data",
        )

    session_id = (
        payload.session_id
        or _text_or_none(data.get("session"))
        or _text_or_none(data.get("sessionId"))
    )
    user_id = (
        payload.user_id
        or _text_or_none(data.get("userId"))
        or _text_or_none(_nested(data, "user", "id"))
    )
    return {
        "event": payload.event,
        "timestamp": payload.timestamp,
        "server_id": payload.server_id,
        "version": payload.version,
        "session_id": session_id,
        "user_id": user_id,
        "event_id": payload.event_id,
        "data": data,
    }


async def find_duplicate(
    session: AsyncSession, *, event_id: str, server_id: str | None
) -> TelemetryEvent | None:
    """Return the stored event with the same idempotency key.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    event_id : str
        Caller-supplied idempotency key.
    server_id : str | None
        Org the key is scoped to.

    Returns
    -------
    TelemetryEvent | None
        Earliest matching row if any.
    """
    scope, key = IDEMPOTENCY_KEY
    result = await session.execute(
        select(TelemetryEvent)
        .where(key == event_id, scope == (server_id or ""))
        .order_by(TelemetryEvent.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def ensure_org(
    session: AsyncSession, *, server_id: str, company_name: str | None = None
) -> None:
    """Insert an org row for ``server_id`` unless one exists.

    A known company name is filled in when the stored one is empty.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    server_id : str
        Org key.
    company_name : str | None, default=None
        Display name reported by the agent.

    Returns
    -------
    None
        Upserts the org row.
    """
    now = utcnow()
    values = {
        "server_id": server_id,
        "company_name": company_name,
        "created_at": now,
        "updated_at": now,
    }
    insert = pg_insert if dialect_name(session) == "postgresql" else sqlite_insert
    await session.execute(
        insert(Org).values(**values).on_conflict_do_nothing(index_elements=[Org.server_id])
    )
    if company_name:
        await session.execute(
            update(Org)
            .where(Org.server_id == server_id, Org.company_name.is_(None))
            .values(company_name=company_name, updated_at=now)
        )


async def submit_event(
    session: AsyncSession, payload: EventSubmission, *, max_data_bytes: int
) -> SubmitResult:
    """Validate, normalize and store one event.

    The caller commits.

    Parameters
    ----------
    session : AsyncSession
        Active database session.
    payload : EventSubmission
        Parsed request body.
    max_data_bytes : int
        Ceiling on the serialized ``data`` object.

    Returns
    -------
    SubmitResult
        Stored (or previously stored) event id.
    """
    values = normalize_submission(payload, max_data_bytes=max_data_bytes)

    if values["event_id"] is not None:
        existing = await find_duplicate(
            session, event_id=values["event_id"], server_id=values["server_id"]
        )
        if existing is not None:
            logger.debug("Duplicate event_id {} for {}", values["event_id"], values["server_id"])
            return SubmitResult(
                id=existing.id, received_at=existing.received_at, duplicate=True
            )

    if values["server_id"] is not None:
        await ensure_org(
            session,
            server_id=values["server_id"],
            company_name=company_name_from(values["data"]),
        )

    received_at = utcnow()
    insert = pg_insert if dialect_name(session) == "postgresql" else sqlite_insert
    statement = insert(TelemetryEvent).values(
        **values, received_at=received_at, created_at=received_at
    )
    if values["event_id"] is not None:
        # A concurrent submission of the same key may commit first; the
        # unique index turns the loser into a no-op and its row is re-read.
        statement = statement.on_conflict_do_nothing(
            index_elements=list(IDEMPOTENCY_KEY), index_where=IDEMPOTENCY_KEY_WHERE
        )
    new_id = await session.scalar(statement.returning(TelemetryEvent.id))
    if new_id is None:
        existing = await find_duplicate(
            session, event_id=values["event_id"], server_id=values["server_id"]
        )
        if existing is None:
            raise InternalError("Idempotent insert lost its conflicting row")
        logger.debug(
            "Concurrent duplicate event_id {} for {}", values["event_id"], values["server_id"]
        )
        return SubmitResult(id=existing.id, received_at=existing.received_at, duplicate=True)
    return SubmitResult(id=new_id, received_at=received_at, duplicate=False)
