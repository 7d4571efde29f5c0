"""Logging configuration."""

from __future__ import annotations

import sys
from typing import Any

from loguru import logger

from telemetry_server.config import Settings
from telemetry_server.context import get_correlation_id

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[correlation_id]}</cyan> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def correlation_id_filter(record: dict[str, Any]) -> bool:
    """Attach the request correlation id to a log record.

    Parameters
    ----------
    record : dict[str, Any]
        Loguru record.

    Returns
    -------
    bool
        Always ``True``; the filter only enriches records.
    """
    if not record["extra"].get("correlation_id"):
        record["extra"]["correlation_id"] = get_correlation_id() or "-"
    return True


def configure_logging(settings: Settings) -> None:
    """Install the process-wide loguru sink.

    Parameters
    ----------
    settings : Settings
        Runtime settings.

    Returns
    -------
    None
        Replaces existing sinks.
    """
    logger.remove()
    if settings.log_json:
        logger.add(
            sys.stderr,
            level=settings.log_level.upper(),
            filter=correlation_id_filter,
            serialize=True,
        )
    else:
        logger.add(
            sys.stderr,
            level=settings.log_level.upper(),
            filter=correlation_id_filter,
            format=TEXT_FORMAT,
        )
