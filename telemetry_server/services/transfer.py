"""Database export and import.

Exports stream one JSON document without holding the tables in memory.
Imports merge a document into the store in a single serializable
transaction: rows that fail validation are reported and skipped, while a
constraint violation rolls everything back.
"""

from __future__ import annotations

import base64
import binascii
import json
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from telemetry_server.database import dialect_name
from telemetry_server.errors import ImportAbortedError, ValidationError
from telemetry_server.models.event import TelemetryEvent
from telemetry_server.models.mixins import utcnow
from telemetry_server.models.organization import Org
from telemetry_server.models.team import Team, TeamOrg
from telemetry_server.models.user import Role, User
from telemetry_server.schemas.common import isoformat_z
from telemetry_server.schemas.transfer import (
    EXPORT_VERSION,
    ExportedEvent,
    ExportedOrg,
    ExportedTeam,
    ExportedUser,
)
from telemetry_server.services.audit import log_event
from telemetry_server.services.ingest import ensure_org, find_duplicate

BATCH_SIZE = 500
SUPPORTED_MAJOR = EXPORT_VERSION.split(".")[0]
IMPORT_ORDER = ("users", "orgs", "teams", "events")


async def _count(session: AsyncSession, model: type) -> int:
    return int(await session.scalar(select(func.count()).select_from(model)) or 0)


def _batched(rows: list[str], first: bool) -> str:
    chunk = ",".join(rows)
    return chunk if first else "," + chunk


async def export_chunks(
    factory: async_sessionmaker[AsyncSession], *, batch_size: int = BATCH_SIZE
) -> AsyncIterator[str]:
    """Yield an export document piece by piece.

    The document is ``{"version", "exportDate", "statistics", "data"}``
    with ``data`` holding ``users``, ``orgs``, ``teams`` and ``events``
    arrays. All reads share one snapshot.

    Parameters
    ----------
    factory : async_sessionmaker[AsyncSession]
        Session factory; the export owns its session.
    batch_size : int, default=BATCH_SIZE
        Rows fetched and emitted per chunk.

    Yields
    ------
    str
        Consecutive fragments of the JSON document.
    """
    async with factory() as session:
        if dialect_name(session) == "postgresql":
            await session.connection(
                execution_options={"isolation_level": "REPEATABLE READ"}
            )
        statistics = {
            "totalEvents": await _count(session, TelemetryEvent),
            "totalUsers": await _count(session, User),
            "totalOrgs": await _count(session, Org),
            "totalTeams": await _count(session, Team),
        }
        header = {
            "version": EXPORT_VERSION,
            "exportDate": isoformat_z(utcnow()),
            "statistics": statistics,
        }
        yield json.dumps(header)[:-1] + ',"data":{"users":['

        users = await session.execute(select(User).order_by(User.username))
        yield ",".join(
            ExportedUser.model_validate(user).model_dump_json() for user in users.scalars()
        )

        yield '],"orgs":['
        orgs = await session.execute(select(Org).order_by(Org.server_id))
        yield ",".join(ExportedOrg.model_validate(org).model_dump_json() for org in orgs.scalars())

        yield '],"teams":['
        memberships: dict[uuid.UUID, list[str]] = {}
        for team_id, server_id in await session.execute(
            select(TeamOrg.team_id, TeamOrg.server_id).order_by(TeamOrg.server_id)
        ):
            memberships.setdefault(team_id, []).append(server_id)
        teams = await session.execute(select(Team).order_by(Team.name))
        yield ",".join(
            ExportedTeam(
                id=team.id,
                name=team.name,
                color=team.color,
                logo=base64.b64encode(team.logo_bytes).decode("ascii")
                if team.logo_bytes is not None
                else None,
                logo_mime=team.logo_mime,
                orgs=memberships.get(team.id, []),
                created_at=team.created_at,
                updated_at=team.updated_at,
            ).model_dump_json()
            for team in teams.scalars()
        )

        yield '],"events":['
        columns = TelemetryEvent.__table__.c
        stream = await session.stream(
            select(*columns).order_by(columns.id).execution_options(yield_per=batch_size)
        )
        first = True
        async for partition in stream.partitions(batch_size):
            rows = [
                ExportedEvent.model_validate(dict(row._mapping)).model_dump_json()
                for row in partition
            ]
            yield _batched(rows, first)
            first = False
        yield "]}}"


@dataclass(slots=True)
class ImportResult:
    """Outcome of a committed import.

    Attributes
    ----------
    imported : dict[str, int]
        Rows written per table.
    errors : list[dict[str, Any]]
        Rows skipped because they failed validation.
    """

    imported: dict[str, int] = field(default_factory=lambda: dict.fromkeys(IMPORT_ORDER, 0))
    errors: list[dict[str, Any]] = field(default_factory=list)


def _describe(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'row'}: {error['msg']}"
        for error in exc.errors()
    )


def check_document(document: Any) -> dict[str, list[Any]]:
    """Validate the envelope of an import document.

    Parameters
    ----------
    document : Any
        Decoded JSON document.

    Returns
    -------
    dict[str, list[Any]]
        The ``data`` mapping, one list per table.
    """
    if not isinstance(document, dict):
        raise ValidationError("Import document must be a JSON object")
    version = document.get("version")
    if not isinstance(version, str) or not version:
        raise ValidationError("Import document has no version")
    if version.split(".")[0] != SUPPORTED_MAJOR:
        raise ValidationError(f"Unsupported export version {version!r}", version=version)
    data = document.get("data")
    if not isinstance(data, dict):
        raise ValidationError("Import document has no data object")
    tables: dict[str, list[Any]] = {}
    for table in IMPORT_ORDER:
        rows = data.get(table, [])
        if not isinstance(rows, list):
            raise ValidationError(f"data.{table} must be an array", table=table)
        tables[table] = rows
    return tables


class _Importer:
    """Upserts one document's rows inside an open transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.result = ImportResult()
        self._known_orgs: set[str] = set()

    def _reject(self, table: str, raw: Any, key_field: str, exc: PydanticValidationError) -> None:
        key = raw.get(key_field) if isinstance(raw, dict) else None
        self.result.errors.append({"table": table, "key": key, "error": _describe(exc)})

    async def _org(self, server_id: str) -> None:
        if server_id not in self._known_orgs:
            await ensure_org(self.session, server_id=server_id)
            self._known_orgs.add(server_id)

    async def users(self, rows: list[Any]) -> None:
        for raw in rows:
            try:
                row = ExportedUser.model_validate(raw)
            except PydanticValidationError as exc:
                self._reject("users", raw, "username", exc)
                continue
            result = await self.session.execute(select(User).where(User.username == row.username))
            user = result.scalar_one_or_none()
            if user is None:
                user = User(id=row.id or uuid.uuid4(), username=row.username)
                self.session.add(user)
            user.password_hash = row.password_hash
            user.role = row.role.value
            user.last_login = row.last_login
            if row.created_at is not None:
                user.created_at = row.created_at
            await self.session.flush()
            self.result.imported["users"] += 1

    async def orgs(self, rows: list[Any]) -> None:
        for raw in rows:
            try:
                row = ExportedOrg.model_validate(raw)
            except PydanticValidationError as exc:
                self._reject("orgs", raw, "server_id", exc)
                continue
            org = await self.session.get(Org, row.server_id)
            if org is None:
                org = Org(server_id=row.server_id)
                self.session.add(org)
            org.company_name = row.company_name
            if row.created_at is not None:
                org.created_at = row.created_at
            if row.updated_at is not None:
                org.updated_at = row.updated_at
            await self.session.flush()
            self._known_orgs.add(row.server_id)
            self.result.imported["orgs"] += 1

    async def teams(self, rows: list[Any]) -> None:
        for raw in rows:
            try:
                row = ExportedTeam.model_validate(raw)
                logo = base64.b64decode(row.logo, validate=True) if row.logo else None
            except PydanticValidationError as exc:
                self._reject("teams", raw, "name", exc)
                continue
            except (binascii.Error, ValueError):
                self.result.errors.append(
                    {"table": "teams", "key": row.name, "error": "logo: invalid base64"}
                )
                continue
            result = await self.session.execute(select(Team).where(Team.name == row.name))
            team = result.scalar_one_or_none()
            if team is None:
                team = Team(id=row.id or uuid.uuid4(), name=row.name)
                self.session.add(team)
            team.color = row.color
            team.logo_bytes = logo
            team.logo_mime = row.logo_mime if logo is not None else None
            if row.created_at is not None:
                team.created_at = row.created_at
            await self.session.flush()
            await self.session.execute(delete(TeamOrg).where(TeamOrg.team_id == team.id))
            for server_id in dict.fromkeys(row.orgs):
                await self._org(server_id)
                self.session.add(TeamOrg(team_id=team.id, server_id=server_id))
            await self.session.flush()
            self.result.imported["teams"] += 1

    async def _free_event_id(self, wanted: int | None) -> int | None:
        if wanted is None or await self.session.get(TelemetryEvent, wanted) is not None:
            return None
        return wanted

    async def events(self, rows: list[Any]) -> None:
        for raw in rows:
            try:
                row = ExportedEvent.model_validate(raw)
            except PydanticValidationError as exc:
                self._reject("events", raw, "id", exc)
                continue
            event: TelemetryEvent | None = None
            if row.event_id is not None:
                event = await find_duplicate(
                    self.session, event_id=row.event_id, server_id=row.server_id
                )
            elif row.id is not None:
                event = await self.session.get(TelemetryEvent, row.id)
            if event is None:
                event = TelemetryEvent(id=await self._free_event_id(row.id))
                self.session.add(event)
            if row.server_id is not None:
                await self._org(row.server_id)
            event.event = row.event
            event.timestamp = row.timestamp
            event.server_id = row.server_id
            event.version = row.version
            event.session_id = row.session_id
            event.user_id = row.user_id
            event.event_id = row.event_id
            event.data = row.data
            event.received_at = row.received_at
            event.created_at = row.created_at or row.received_at
            self.result.imported["events"] += 1
            if self.result.imported["events"] % BATCH_SIZE == 0:
                await self.session.flush()
                self.session.expunge_all()
        await self.session.flush()

    async def check_administrators(self) -> None:
        admins = await self.session.scalar(
            select(func.count()).select_from(User).where(User.role == Role.ADMINISTRATOR.value)
        )
        if not admins:
            raise ImportAbortedError(
                "Import would leave no administrator",
                errors=[*self.result.errors, {"table": "users", "key": None, "error": "no administrator"}],
            )


async def _resync_event_sequence(session: AsyncSession) -> None:
    if dialect_name(session) != "postgresql":
        return
    await session.execute(
        text(
            "SELECT setval(pg_get_serial_sequence('telemetry_events', 'id'), "
            "COALESCE((SELECT MAX(id) FROM telemetry_events), 0) + 1, false)"
        )
    )


async def import_database(
    factory: async_sessionmaker[AsyncSession],
    document: Any,
    *,
    actor: str | None,
) -> ImportResult:
    """Merge an export document into the store atomically.

    Parameters
    ----------
    factory : async_sessionmaker[AsyncSession]
        Session factory; the import owns its transaction.
    document : Any
        Decoded export document.
    actor : str | None
        Username recorded in the audit log.

    Returns
    -------
    ImportResult
        Per-table counts and skipped-row errors.
    """
    tables = check_document(document)
    async with factory() as session:
        await session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
        importer = _Importer(session)
        try:
            await importer.users(tables["users"])
            await importer.orgs(tables["orgs"])
            await importer.teams(tables["teams"])
            await importer.events(tables["events"])
            await importer.check_administrators()
            await _resync_event_sequence(session)
            await log_event(
                session,
                actor=actor,
                action="database_imported",
                resource_type="database",
                resource_id="*",
                details={**importer.result.imported, "errors": len(importer.result.errors)},
            )
            await session.commit()
        except (IntegrityError, DataError) as exc:
            await session.rollback()
            logger.warning("Import rolled back: {}", exc.orig)
            raise ImportAbortedError(
                errors=[
                    *importer.result.errors,
                    {"table": None, "key": None, "error": str(exc.orig)},
                ]
            ) from exc
        except ImportAbortedError:
            await session.rollback()
            raise
    logger.info(
        "Imported {} with {} skipped rows", importer.result.imported, len(importer.result.errors)
    )
    return importer.result
