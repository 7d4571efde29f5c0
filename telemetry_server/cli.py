"""Command-line entry point.

Exit codes: ``0`` on success, ``1`` on startup or operation failure,
``2`` on misconfiguration.
"""

from __future__ import annotations

import argparse
import getpass
import json
import sys
from pathlib import Path
from typing import Any

import anyio
import uvicorn
from loguru import logger
from pydantic import ValidationError as SettingsValidationError
from sqlalchemy import select

from telemetry_server.config import Settings, get_settings
from telemetry_server.database import build_engine, get_engine, get_sessionmaker, migrate
from telemetry_server.errors import ImportAbortedError, StartupError, TelemetryError
from telemetry_server.log import configure_logging
from telemetry_server.models.user import Role, User
from telemetry_server.services import admin
from telemetry_server.services.transfer import export_chunks, import_database

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_MISCONFIGURED = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the ``telemetry-server`` argument parser."""
    parser = argparse.ArgumentParser(
        prog="telemetry-server",
        description="Telemetry collection and inspection service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP server
  telemetry-server serve --listen :3100

  # Create or reset an administrator
  echo "$PASSWORD" | telemetry-server create-user admin --role administrator --password-stdin

  # Offline backup and restore
  telemetry-server export backup.json
  telemetry-server import backup.json
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--listen", help="host:port to bind (default: LISTEN_ADDR)")

    user_parser = subparsers.add_parser("create-user", help="Create or reset an operator account")
    user_parser.add_argument("username")
    user_parser.add_argument(
        "--role",
        choices=[role.value for role in Role],
        default=Role.BASIC.value,
    )
    user_parser.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from standard input instead of prompting",
    )

    export_parser = subparsers.add_parser("export", help="Write a database export to PATH")
    export_parser.add_argument("path", type=Path)

    import_parser = subparsers.add_parser("import", help="Merge an export document from PATH")
    import_parser.add_argument("path", type=Path)
    return parser


async def _check_database(settings: Settings) -> None:
    engine = build_engine(settings)
    try:
        await migrate(engine)
    finally:
        await engine.dispose()


def serve(settings: Settings, listen: str | None) -> int:
    """Migrate the database and run uvicorn until shutdown.

    Parameters
    ----------
    settings : Settings
        Runtime settings.
    listen : str | None
        ``host:port`` overriding ``LISTEN_ADDR``.

    Returns
    -------
    int
        Process exit code.
    """
    if listen:
        settings = settings.model_copy(update={"listen_addr": listen})
    try:
        host, port = settings.listen_host_port()
    except ValueError as exc:
        logger.error("{}", exc)
        return EXIT_MISCONFIGURED
    anyio.run(_check_database, settings)
    logger.info("Listening on {}:{}", host, port)
    uvicorn.run(
        "telemetry_server.main:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )
    return EXIT_OK


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\r\n")
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        raise TelemetryError("Passwords do not match")
    return password


async def create_user(settings: Settings, username: str, role: Role, password: str) -> None:
    """Create an operator account, or reset its password and role if it exists.

    Parameters
    ----------
    settings : Settings
        Runtime settings.
    username : str
        Account name.
    role : Role
        Role to assign.
    password : str
        Password to set.

    Returns
    -------
    None
        Commits the account change.
    """
    await migrate(get_engine())
    try:
        async with get_sessionmaker()() as session:
            existing = await session.execute(
                select(User.id).where(User.username == username)
            )
            if existing.scalar_one_or_none() is None:
                await admin.create_user(
                    session,
                    actor=None,
                    username=username,
                    password=password,
                    role=role,
                    min_password_length=settings.password_min_length,
                )
                logger.info("Created user {} with role {}", username, role.value)
            else:
                await admin.set_password(
                    session,
                    actor=None,
                    username=username,
                    password=password,
                    min_password_length=settings.password_min_length,
                )
                await admin.set_role(session, actor=None, username=username, role=role)
                logger.info("Reset password and role of user {}", username)
            await session.commit()
    finally:
        await get_engine().dispose()


async def export_to(path: Path) -> None:
    """Stream a database export into ``path``."""
    await migrate(get_engine())
    async with await anyio.open_file(path, "w", encoding="utf-8") as handle:
        async for chunk in export_chunks(get_sessionmaker()):
            await handle.write(chunk)
    await get_engine().dispose()
    logger.info("Exported database to {}", path)


async def import_from(path: Path) -> dict[str, Any]:
    """Merge the export document at ``path`` into the database.

    Parameters
    ----------
    path : Path
        Export file.

    Returns
    -------
    dict[str, Any]
        Imported counts and skipped rows.
    """
    document = json.loads(await anyio.Path(path).read_text(encoding="utf-8"))
    await migrate(get_engine())
    try:
        result = await import_database(get_sessionmaker(), document, actor=None)
    finally:
        await get_engine().dispose()
    for error in result.errors:
        logger.warning("Skipped {} row {}: {}", error["table"], error["key"], error["error"])
    logger.info("Imported {}", result.imported)
    return {"imported": result.imported, "errors": result.errors}


def main(argv: list[str] | None = None) -> int:
    """Run the CLI.

    Parameters
    ----------
    argv : list[str] | None, default=None
        Arguments; ``sys.argv[1:]`` when omitted.

    Returns
    -------
    int
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except SettingsValidationError as exc:
        print(f"Invalid configuration:\n{exc}", file=sys.stderr)
        return EXIT_MISCONFIGURED
    configure_logging(settings)

    try:
        if args.command == "serve":
            return serve(settings, args.listen)
        if args.command == "create-user":
            password = _read_password(args.password_stdin)
            anyio.run(create_user, settings, args.username, Role(args.role), password)
        elif args.command == "export":
            anyio.run(export_to, args.path)
        elif args.command == "import":
            anyio.run(import_from, args.path)
    except StartupError as exc:
        logger.error("Startup failed: {}", exc)
        return EXIT_FAILURE
    except ImportAbortedError as exc:
        logger.error("{}", exc.message)
        for error in exc.errors:
            logger.error("  {}", error)
        return EXIT_FAILURE
    except TelemetryError as exc:
        logger.error("{}", exc.message)
        return EXIT_FAILURE
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("{}", exc)
        return EXIT_FAILURE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
