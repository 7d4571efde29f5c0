"""Runtime configuration."""

import os
import re
from datetime import timedelta
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SHORT_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


class Settings(BaseSettings):
    """Application settings.

    Attributes
    ----------
    app_name : str
        Human-readable application name.
    database_url : str
        Database URL; plain ``postgres://`` and ``sqlite:///`` URLs are
        rewritten to their async drivers.
    database_ssl : bool
        Force TLS on the database connection.
    listen_addr : str
        ``host:port`` for the HTTP listener.
    session_ttl_idle : timedelta
        Idle timeout for operator sessions.
    session_ttl_absolute : timedelta
        Absolute lifetime cap for operator sessions.
    ingest_rate_limit_per_sec : float
        Steady-state token refill rate per source IP.
    ingest_rate_burst : int
        Token bucket capacity per source IP.
    event_data_max_bytes : int
        Ceiling on the serialized ``data`` object of one event.
    password_min_length : int
        Minimum operator password length.
    db_max_size : int | None
        Soft cap in bytes used for database-size percentages.
    top_users_lookback_days : int
        Default lookback for the ranking routes.
    aggregate_cache_ttl_seconds : float
        Lifetime of memoized aggregate results; ``0`` disables the memo.
    request_timeout_seconds : float
        Default per-request deadline.
    ingest_timeout_seconds : float
        Deadline for event submissions.
    export_timeout_seconds : float
        Deadline for database exports.
    db_pool_size : int | None
        Connection pool size; derived from the CPU count when unset.
    environment : str
        Deployment environment name.
    session_cookie_name : str
        Name of the operator session cookie.
    bootstrap_enabled : bool
        Whether the first administrator may be created over HTTP.
    log_level : str
        Minimum loguru level.
    log_json : bool
        Emit serialized JSON log records.
    """

    model_config = SettingsConfigDict(extra="ignore")

    app_name: str = "Telemetry Server"
    database_url: str
    database_ssl: bool = False
    listen_addr: str = ":3100"
    session_ttl_idle: timedelta = timedelta(hours=24)
    session_ttl_absolute: timedelta = timedelta(days=30)
    ingest_rate_limit_per_sec: float = Field(default=100.0, gt=0)
    ingest_rate_burst: int = Field(default=500, ge=1)
    event_data_max_bytes: int = Field(default=64 * 1024, ge=1)
    password_min_length: int = Field(default=8, ge=1)
    db_max_size: int | None = Field(default=None, gt=0)
    top_users_lookback_days: int = Field(default=3, ge=1, le=365)
    aggregate_cache_ttl_seconds: float = Field(default=10.0, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    ingest_timeout_seconds: float = Field(default=5.0, gt=0)
    export_timeout_seconds: float = Field(default=300.0, gt=0)
    db_pool_size: int | None = Field(default=None, ge=1)
    environment: str = "development"
    session_cookie_name: str = "telemetry_session"
    bootstrap_enabled: bool = True
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("database_url")
    @classmethod
    def _normalize_database_url(cls, value: str) -> str:
        return normalize_database_url(value)

    @field_validator("session_ttl_idle", "session_ttl_absolute", mode="before")
    @classmethod
    def _parse_duration(cls, value: object) -> object:
        if isinstance(value, str):
            match = _SHORT_DURATION.match(value)
            if match:
                amount, unit = match.groups()
                return _DURATION_UNITS[unit.lower()] * float(amount)
        return value

    @property
    def session_cookie_secure(self) -> bool:
        """Return whether the session cookie carries the ``Secure`` flag."""
        return self.environment.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        """Return whether the configured database is SQLite."""
        return self.database_url.startswith("sqlite")

    @property
    def pool_size(self) -> int:
        """Return the effective connection pool size."""
        if self.db_pool_size is not None:
            return self.db_pool_size
        return 2 * (os.cpu_count() or 1) + 4

    def listen_host_port(self) -> tuple[str, int]:
        """Split ``listen_addr`` into host and port.

        Returns
        -------
        tuple[str, int]
            Bind host and port; an empty host binds all interfaces.
        """
        host, _, port = self.listen_addr.rpartition(":")
        if not port.isdigit():
            raise ValueError(f"LISTEN_ADDR must be host:port, got {self.listen_addr!r}")
        return host or "0.0.0.0", int(port)


def normalize_database_url(value: str) -> str:
    """Rewrite a database URL to use an async driver.

    Parameters
    ----------
    value : str
        Raw database URL.

    Returns
    -------
    str
        SQLAlchemy async URL.
    """
    value = value.strip()
    for prefix in ("postgres://", "postgresql://"):
        if value.startswith(prefix):
            return "postgresql+asyncpg://" + value[len(prefix) :]
    if value.startswith("sqlite://") and not value.startswith("sqlite+"):
        return "sqlite+aiosqlite://" + value[len("sqlite://") :]
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings.

    Returns
    -------
    Settings
        Cached settings instance.
    """
    return Settings()
