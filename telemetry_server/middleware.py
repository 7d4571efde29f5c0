"""Request middleware: correlation ids, access logging and deadlines."""

from __future__ import annotations

import re
import time
import uuid
from collections.abc import Callable

import anyio
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from telemetry_server.config import Settings, get_settings
from telemetry_server.context import (
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)

CORRELATION_ID_HEADERS = ("X-Correlation-ID", "X-Request-ID")
RESPONSE_CORRELATION_ID_HEADER = "X-Correlation-ID"

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def extract_correlation_id(request: Request) -> str | None:
    """Return a well-formed correlation id from the request headers.

    Parameters
    ----------
    request : Request
        Incoming request.

    Returns
    -------
    str | None
        Lower-cased UUID, or ``None`` when absent or malformed.
    """
    for header in CORRELATION_ID_HEADERS:
        value = request.headers.get(header, "").strip()
        if value and _UUID_PATTERN.match(value):
            return value.lower()
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind a correlation id to each request and log its outcome.

    Unhandled exceptions are logged with the id still bound and turned
    into a generic ``500`` response carrying the id.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = extract_correlation_id(request) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Unhandled error on {} {}", request.method, request.url.path)
                response = JSONResponse(
                    status_code=500,
                    content={
                        "status": "error",
                        "error": "InternalError",
                        "message": "Internal server error",
                        "correlationId": correlation_id,
                    },
                )
            elapsed_ms = (time.perf_counter() - started) * 1000
            response.headers[RESPONSE_CORRELATION_ID_HEADER] = correlation_id
            logger.info(
                "{} {} -> {} in {:.1f} ms",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
            return response
        finally:
            clear_correlation_id()


def deadline_for(scope: Scope, settings: Settings) -> float:
    """Return the deadline in seconds for a request.

    Parameters
    ----------
    scope : Scope
        ASGI HTTP scope.
    settings : Settings
        Runtime settings.

    Returns
    -------
    float
        Seconds the request may run.
    """
    method = scope.get("method", "GET")
    path = scope.get("path", "")
    if method == "POST" and path == "/api/events":
        return settings.ingest_timeout_seconds
    if path == "/api/database/export":
        return settings.export_timeout_seconds
    return settings.request_timeout_seconds


class DeadlineMiddleware:
    """Cancel requests that outlive their deadline.

    A request cancelled before its response started receives ``503``;
    one cancelled mid-stream is aborted.

    Parameters
    ----------
    app : ASGIApp
        Wrapped application.
    settings_factory : Callable[[], Settings], default=get_settings
        Settings source, read per request.
    """

    def __init__(
        self, app: ASGIApp, settings_factory: Callable[[], Settings] = get_settings
    ) -> None:
        self.app = app
        self.settings_factory = settings_factory

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        timeout = deadline_for(scope, self.settings_factory())
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            with anyio.fail_after(timeout):
                await self.app(scope, receive, send_wrapper)
        except TimeoutError:
            logger.warning(
                "Deadline of {}s exceeded for {} {}",
                timeout,
                scope.get("method"),
                scope.get("path"),
            )
            if response_started:
                raise
            response = JSONResponse(
                status_code=503,
                content={
                    "status": "error",
                    "error": "DeadlineExceeded",
                    "message": "Request timed out",
                    "correlationId": get_correlation_id(),
                },
            )
            await response(scope, receive, send)
