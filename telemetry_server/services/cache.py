"""Short-lived memoization of aggregate results."""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from functools import lru_cache
from typing import Any

from telemetry_server.config import get_settings


class TTLMemo:
    """Map of results that expire ``ttl`` seconds after being stored.

    Parameters
    ----------
    ttl : float
        Entry lifetime in seconds; ``0`` disables storage.
    maxsize : int, default=256
        Entry cap; the oldest entry is dropped when full.
    clock : Callable[[], float], default=time.monotonic
        Monotonic time source.
    """

    def __init__(
        self,
        ttl: float,
        *,
        maxsize: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.maxsize = maxsize
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Any | None:
        """Return a live entry or ``None``."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value under ``key``."""
        if self.ttl <= 0:
            return
        if len(self._entries) >= self.maxsize and key not in self._entries:
            self._entries.pop(next(iter(self._entries)))
        self._entries[key] = (self._clock() + self.ttl, value)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()


@lru_cache(maxsize=1)
def get_aggregate_cache() -> TTLMemo:
    """Return the process-wide aggregate memo."""
    return TTLMemo(get_settings().aggregate_cache_ttl_seconds)


def invalidate_aggregates() -> None:
    """Forget memoized aggregates after a write."""
    get_aggregate_cache().clear()
