"""TTL cache with a background expiry sweeper.

Entries expire a fixed time after insertion regardless of access
frequency. Expired entries are never returned: lookups check the deadline
themselves, and the sweeper thread only reclaims memory.

Thread Safety:
    All public methods take the cache lock; the sweeper runs on a daemon
    thread and is stopped by ``close()``.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.inserted_at + self.ttl


class TTLCache(Generic[K, V]):
    """Dict-like cache with per-entry expiry.

    Args:
        ttl_seconds: Lifetime of each entry
        sweep_interval_seconds: Sweeper period; None disables the thread
        clock: Monotonic time source (injectable for tests)
        name: Label used in log events and the sweeper thread name
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        sweep_interval_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

        self._shutdown_event = threading.Event()
        self._sweeper: threading.Thread | None = None
        if sweep_interval_seconds is not None:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(sweep_interval_seconds,),
                daemon=True,
                name=f"{name}_sweeper",
            )
            self._sweeper.start()

    def _sweep_loop(self, interval: float) -> None:
        while not self._shutdown_event.wait(interval):
            purged = self.purge_expired()
            if purged:
                logger.debug("Expired cache entries purged", cache=self.name, purged=purged)

    def get(self, key: K) -> tuple[bool, V | None]:
        """Look up a key. Returns ``(found, value)``; expired entries count as misses."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() >= entry.expires_at:
                del self._entries[key]
                self.expirations += 1
                entry = None
            if entry is None:
                self.misses += 1
                return False, None
            self.hits += 1
            return True, entry.value

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl=self.ttl_seconds)

    def evict(self, key: K) -> bool:
        with self._lock:
            if self._entries.pop(key, None) is None:
                return False
            self.evictions += 1
            return True

    def evict_where(self, predicate: Callable[[K], bool]) -> int:
        """Evict every key matching ``predicate``; returns the number evicted."""
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
            self.evictions += len(doomed)
            return len(doomed)

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
            self.expirations += len(expired)
            return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def values(self) -> list[V]:
        """Live values, oldest first."""
        with self._lock:
            now = self._clock()
            live = sorted(
                (entry for entry in self._entries.values() if now < entry.expires_at),
                key=lambda entry: entry.inserted_at,
            )
            return [entry.value for entry in live]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def close(self) -> None:
        """Stop the sweeper thread. The cache remains usable without it."""
        self._shutdown_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5.0)
            self._sweeper = None
