"""Pytest fixtures."""

from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import AsyncExitStack
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import telemetry_server.models  # noqa: F401
from telemetry_server.config import get_settings
from telemetry_server.database import Base, get_engine, get_sessionmaker
from telemetry_server.main import app
from telemetry_server.routers.dependencies import CSRF_HEADER
from telemetry_server.services.cache import get_aggregate_cache
from telemetry_server.services.ratelimit import get_ingest_limiter

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "correct-horse-battery"

ClientFactory = Callable[..., Awaitable[AsyncClient]]


def _clear_caches() -> None:
    get_settings.cache_clear()
    get_ingest_limiter.cache_clear()
    get_aggregate_cache.cache_clear()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()


@pytest.fixture(autouse=True)
def _reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point settings at a per-test database and reset cached singletons.

    Parameters
    ----------
    tmp_path : Path
        Temporary path fixture.
    monkeypatch : pytest.MonkeyPatch
        Environment monkeypatch helper.

    Yields
    ------
    None
        Applies environment overrides for each test.
    """
    _clear_caches()
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("ENVIRONMENT", "test")
    yield
    _clear_caches()


@pytest.fixture()
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Create the schema in the per-test SQLite database.

    Parameters
    ----------
    tmp_path : Path
        Temporary directory for the test database.

    Yields
    ------
    async_sessionmaker[AsyncSession]
        Session factory bound to the test database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield factory
    await engine.dispose()


@pytest.fixture()
async def make_client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[ClientFactory]:
    """Build independent HTTP clients, each with its own cookie jar.

    Parameters
    ----------
    session_factory : async_sessionmaker[AsyncSession]
        Session factory injected into the app.

    Yields
    ------
    ClientFactory
        ``await make_client(peer="10.0.0.1")`` returns a new client.
    """
    app.dependency_overrides[get_sessionmaker] = lambda: session_factory
    async with AsyncExitStack() as stack:

        async def factory(peer: str = "127.0.0.1") -> AsyncClient:
            transport = ASGITransport(app=app, client=(peer, 4321))
            return await stack.enter_async_context(
                AsyncClient(transport=transport, base_url="http://testserver")
            )

        yield factory
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(make_client: ClientFactory) -> AsyncClient:
    """Create an anonymous test HTTP client backed by SQLite.

    Parameters
    ----------
    make_client : ClientFactory
        Client factory.

    Returns
    -------
    AsyncClient
        Configured test client.
    """
    return await make_client()


async def login(client: AsyncClient, username: str, password: str) -> str:
    """Log ``client`` in and send its CSRF token on every later request.

    Parameters
    ----------
    client : AsyncClient
        Client whose cookie jar receives the session.
    username : str
        Operator username.
    password : str
        Operator password.

    Returns
    -------
    str
        Session CSRF token.
    """
    response = await client.post("/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    token = response.json()["csrfToken"]
    client.headers[CSRF_HEADER] = token
    return token


@pytest.fixture()
async def admin_client(make_client: ClientFactory) -> AsyncClient:
    """Bootstrap the first administrator and return a logged-in client.

    Parameters
    ----------
    make_client : ClientFactory
        Client factory.

    Returns
    -------
    AsyncClient
        Client holding an administrator session and CSRF header.
    """
    admin = await make_client()
    response = await admin.post(
        "/api/bootstrap",
        json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD},
    )
    assert response.status_code == 201, response.text
    await login(admin, ADMIN_USERNAME, ADMIN_PASSWORD)
    return admin


@pytest.fixture()
def user_client(
    admin_client: AsyncClient, make_client: ClientFactory
) -> Callable[[str, str], Awaitable[AsyncClient]]:
    """Create an operator through the admin API and log them in.

    Parameters
    ----------
    admin_client : AsyncClient
        Administrator client.
    make_client : ClientFactory
        Client factory.

    Returns
    -------
    Callable[[str, str], Awaitable[AsyncClient]]
        ``await user_client("alice", "basic")`` returns a logged-in client.
    """

    async def create(username: str, role: str, password: str = "operator-pass-1") -> AsyncClient:
        response = await admin_client.post(
            "/api/users",
            json={"username": username, "password": password, "role": role},
        )
        assert response.status_code == 201, response.text
        operator = await make_client()
        await login(operator, username, password)
        return operator

    return create


@pytest.fixture()
def login_as() -> Callable[[AsyncClient, str, str], Awaitable[str]]:
    """Expose :func:`login` to tests."""
    return login
