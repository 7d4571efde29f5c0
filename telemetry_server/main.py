"""FastAPI application factory."""

import math
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

from telemetry_server.config import get_settings
from telemetry_server.database import get_engine, migrate
from telemetry_server.errors import (
    AuthError,
    ConflictError,
    CsrfError,
    DependencyError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    RateLimitError,
    SessionError,
    TelemetryError,
    ValidationError,
)
from telemetry_server.log import configure_logging
from telemetry_server.middleware import CorrelationIdMiddleware, DeadlineMiddleware
from telemetry_server.routers.audit import router as audit_router
from telemetry_server.routers.auth import router as auth_router
from telemetry_server.routers.bootstrap import router as bootstrap_router
from telemetry_server.routers.database import router as database_router
from telemetry_server.routers.events import router as events_router
from telemetry_server.routers.health import router as health_router
from telemetry_server.routers.stats import router as stats_router
from telemetry_server.routers.teams import orgs_router
from telemetry_server.routers.teams import router as teams_router
from telemetry_server.routers.users import router as users_router

ERROR_STATUS: dict[type[TelemetryError], int] = {
    ValidationError: 400,
    AuthError: 401,
    SessionError: 401,
    CsrfError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    RateLimitError: 429,
    InternalError: 500,
    DependencyError: 503,
}


def status_for(exc: TelemetryError) -> int:
    """Return the HTTP status for a domain error.

    Subclasses inherit the status of their nearest mapped ancestor.

    Parameters
    ----------
    exc : TelemetryError
        Raised domain error.

    Returns
    -------
    int
        HTTP status code.
    """
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def error_response(
    status_code: int,
    error: str,
    message: str,
    headers: dict[str, str] | None = None,
    **details: Any,
) -> JSONResponse:
    """Build the JSON error envelope."""
    content = {"status": "error", "error": error, "message": message, **details}
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder(content), headers=headers
    )


async def handle_domain_error(request: Request, exc: TelemetryError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.opt(exception=exc).error("{} on {}", type(exc).__name__, request.url.path)
    else:
        logger.debug("{} on {}: {}", type(exc).__name__, request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}
    return error_response(
        status_code, type(exc).__name__, exc.message, headers=headers, **exc.details
    )


async def handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.debug("Request validation failed on {}", request.url.path)
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return error_response(400, "ValidationError", "Invalid request", errors=errors)


async def handle_http_exception(
    _request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(
        exc.status_code, "HTTPException", message, headers=getattr(exc, "headers", None)
    )


async def handle_database_unavailable(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Database unavailable on {}", request.url.path)
    return error_response(503, "DependencyError", "Database unavailable")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Configure logging and bring the schema up to date on startup.

    Yields
    ------
    None
        Runs the application lifespan.
    """
    configure_logging(get_settings())
    engine = get_engine()
    await migrate(engine)
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    """Build the application with its middleware, handlers and routes.

    Returns
    -------
    FastAPI
        Configured application.
    """
    application = FastAPI(title="Telemetry Server", lifespan=lifespan)
    # Added last runs first: correlation ids wrap the deadline.
    application.add_middleware(DeadlineMiddleware)
    application.add_middleware(CorrelationIdMiddleware)

    application.add_exception_handler(TelemetryError, handle_domain_error)
    application.add_exception_handler(RequestValidationError, handle_request_validation)
    application.add_exception_handler(StarletteHTTPException, handle_http_exception)
    for exc_class in (OperationalError, InterfaceError, PoolTimeoutError, ConnectionError):
        application.add_exception_handler(exc_class, handle_database_unavailable)

    application.include_router(health_router)
    application.include_router(auth_router)
    application.include_router(bootstrap_router)
    application.include_router(events_router)
    application.include_router(stats_router)
    application.include_router(users_router)
    application.include_router(teams_router)
    application.include_router(orgs_router)
    application.include_router(database_router)
    application.include_router(audit_router)
    return application


app = create_app()
