"""Per-client ingest rate limiting.

Backed by the ``limits`` moving-window strategy over in-process storage.
A source may send ``burst`` events in any window of ``burst / rate``
seconds, so its long-run throughput is capped at ``rate`` per second.
"""

from __future__ import annotations

import math
import time
from functools import lru_cache

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter

from telemetry_server.config import get_settings
from telemetry_server.errors import RateLimitError

NAMESPACE = "ingest"


class IngestLimiter:
    """Moving-window limiter keyed by client identifier.

    Parameters
    ----------
    rate : float
        Sustained events per second.
    burst : int
        Events admitted back to back from an idle source.
    storage : Storage | None, default=None
        ``limits`` storage backend; in-memory when omitted.
    """

    def __init__(self, *, rate: float, burst: int, storage: Storage | None = None) -> None:
        self.rate = rate
        self.burst = burst
        self.item = RateLimitItemPerSecond(burst, max(1, math.ceil(burst / rate)))
        self._strategy = MovingWindowRateLimiter(storage or MemoryStorage())

    def retry_after(self, key: str) -> float:
        """Return seconds until ``key`` may send again."""
        stats = self._strategy.get_window_stats(self.item, NAMESPACE, key)
        if stats.remaining > 0:
            return 0.0
        return max(0.0, stats.reset_time - time.time())

    def acquire(self, key: str) -> None:
        """Record one event for ``key`` or raise ``RateLimitError``.

        Parameters
        ----------
        key : str
            Client identifier, typically the source IP.

        Returns
        -------
        None
            Returns when the event is admitted.
        """
        if not self._strategy.hit(self.item, NAMESPACE, key):
            raise RateLimitError(retry_after=self.retry_after(key))


@lru_cache(maxsize=1)
def get_ingest_limiter() -> IngestLimiter:
    """Return the process-wide ingest limiter.

    Returns
    -------
    IngestLimiter
        Limiter sized from settings.
    """
    settings = get_settings()
    return IngestLimiter(
        rate=settings.ingest_rate_limit_per_sec,
        burst=settings.ingest_rate_burst,
    )
