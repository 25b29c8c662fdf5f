"""In-memory TTL cache with stale-while-revalidate reads.

Usage:
    cache = TTLCache("price_history", ttl_seconds=300)
    history = await cache.get_or_load(key, lambda: provider.fetch(mint))

A fresh entry is returned directly. A stale entry (older than the TTL but
within max_stale) is returned immediately while one background task
refreshes it. A missing or expired entry is loaded inline.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A cached value with its storage time and TTL."""

    value: T
    stored_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl


class TTLCache(Generic[T]):
    """Per-instance TTL cache; one instance per data kind, owned by its service.

    Args:
        name: Cache name used in log lines
        ttl_seconds: Freshness window
        max_stale_seconds: How long past the TTL a stale value may still be
            served while refreshing. Defaults to ttl_seconds.
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_stale_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.name = name
        self.ttl = ttl_seconds
        self.max_stale = ttl_seconds if max_stale_seconds is None else max_stale_seconds
        self._clock = clock
        self._data: Dict[str, CacheEntry[T]] = {}
        self._refreshing: Dict[str, asyncio.Task] = {}
        self.hits = 0
        self.misses = 0
        self.stale_hits = 0

    def get(self, key: str) -> Optional[T]:
        """Return the value only if it is still fresh."""
        entry = self._data.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry.value

    def set(self, key: str, value: T, ttl_seconds: Optional[float] = None) -> None:
        self._data[key] = CacheEntry(
            value=value,
            stored_at=self._clock(),
            ttl=self.ttl if ttl_seconds is None else ttl_seconds,
        )

    def invalidate(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
    ) -> T:
        """Return a cached value, loading or refreshing it as needed.

        Raises:
            Whatever the loader raises, but only when no usable value
            (fresh or stale) is cached.
        """
        now = self._clock()
        entry = self._data.get(key)

        if entry is not None and entry.is_fresh(now):
            self.hits += 1
            return entry.value

        if entry is not None and entry.age(now) < entry.ttl + self.max_stale:
            self.stale_hits += 1
            self._schedule_refresh(key, loader)
            return entry.value

        self.misses += 1
        in_flight = self._refreshing.get(key)
        if in_flight is not None:
            await asyncio.shield(in_flight)
            refreshed = self._data.get(key)
            if refreshed is not None and refreshed.is_fresh(self._clock()):
                return refreshed.value

        value = await loader()
        self.set(key, value)
        return value

    def _schedule_refresh(self, key: str, loader: Callable[[], Awaitable[T]]) -> None:
        if key in self._refreshing:
            return
        task = asyncio.get_running_loop().create_task(self._refresh(key, loader))
        self._refreshing[key] = task
        task.add_done_callback(lambda _: self._refreshing.pop(key, None))

    async def _refresh(self, key: str, loader: Callable[[], Awaitable[T]]) -> None:
        try:
            value = await loader()
        except Exception as e:
            # Keep serving the last-known-good value until max_stale runs out
            logger.warning("Cache '%s' refresh failed for %s: %s", self.name, key, e)
            return
        self.set(key, value)

    async def drain(self) -> None:
        """Wait for all in-flight background refreshes to finish."""
        if self._refreshing:
            await asyncio.gather(*list(self._refreshing.values()), return_exceptions=True)
