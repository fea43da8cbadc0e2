"""
In-memory, TTL-bounded cache of aggregated carrier rates.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Optional

from shared.logging import get_logger

from service_shipping.app.domain.models import CachedRateSet, RateOption

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_RATE_TTL = 300


def make_cache_key(origin_zip: str, destination_zip: str, identity: str) -> str:
    """Compose the cache key from origin, destination and cart/session identity."""
    return f"{origin_zip}-{destination_zip}-{identity}"


class RateCache:
    """Process-local rate cache with lazy expiry.

    Entries are evaluated against the TTL when read; ``sweep`` only exists to
    bound memory and is never needed for correctness.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_RATE_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("shipping.rate_cache")
        self.metrics = metrics
        self._clock = clock
        self._entries: Dict[str, CachedRateSet] = {}
        self._lock = threading.Lock()

    def _is_expired(self, entry: CachedRateSet, now: float) -> bool:
        return now - entry.fetched_at > self.ttl_seconds

    def get(self, key: str) -> Optional[CachedRateSet]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_expired(entry, now):
                entry = None

        if entry is None:
            self._count("rate_cache_misses_total")
            return None

        self._count("rate_cache_hits_total")
        self.logger.debug("Rate cache hit", key=key, age_seconds=round(now - entry.fetched_at, 3))
        return entry

    def put(self, key: str, rates: Iterable[RateOption], degraded: bool = False) -> CachedRateSet:
        entry = CachedRateSet(
            key=key,
            rates=tuple(rates),
            fetched_at=self._clock(),
            degraded=degraded,
        )
        with self._lock:
            self._entries[key] = entry
        self.logger.info("Cached rates", key=key, rate_count=len(entry.rates), degraded=degraded)
        return entry

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            self.logger.debug("Swept expired rate cache entries", removed=len(expired))
        return len(expired)

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Sweep forever; meant to run as a background task."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {"entries": len(self), "ttl_seconds": self.ttl_seconds}

    def _count(self, metric_name: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name)
