"""Request-scoped context."""

from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Return the correlation id of the current request, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Bind a correlation id to the current context."""
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    """Remove the correlation id from the current context."""
    _correlation_id.set(None)
