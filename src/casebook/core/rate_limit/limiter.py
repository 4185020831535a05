"""Rate limiter wrapper around pyrate-limiter."""

from __future__ import annotations

import re
import sqlite3
import threading
from typing import TYPE_CHECKING

import structlog
from pyrate_limiter import (  # type: ignore[attr-defined]
    BucketFullException,
    Duration,
    InMemoryBucket,
    Limiter,
    Rate,
    SQLiteBucket,
    SQLiteQueries,
)

if TYPE_CHECKING:
    from types import TracebackType

logger = structlog.get_logger(__name__)

# Limiter names end up in SQLite table names
_VALID_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")

_original_excepthook = threading.excepthook

# Leaker threads whose AssertionError on shutdown is expected. Tracked by
# ident so unrelated threads sharing a name are never silenced.
_suppressed_thread_idents: set[int] = set()
_suppressed_lock = threading.Lock()


def _custom_excepthook(args: threading.ExceptHookArgs) -> None:
    """Swallow the benign AssertionError pyrate-limiter's Leaker raises after dispose.

    Only threads registered by ``RateLimiter.close()`` are affected, and only
    once each.
    """
    thread_ident = args.thread.ident if args.thread else None
    with _suppressed_lock:
        if thread_ident is not None and thread_ident in _suppressed_thread_idents and args.exc_type is AssertionError:
            _suppressed_thread_idents.discard(thread_ident)
            logger.debug("Suppressed pyrate-limiter leaker shutdown error", thread_ident=thread_ident)
            return
    _original_excepthook(args)


threading.excepthook = _custom_excepthook


class RateLimiter:
    """Blocking rate limiter for physical workbook calls.

    Per-second and per-minute ceilings are enforced by separate pyrate-limiter
    Limiters, because a single limiter can skip the longer window while the
    shorter one still has room. With ``persistence_path`` the buckets live in
    SQLite so that several processes share one ceiling.

    Example:
        with RateLimiter("workbook_read", requests_per_second=5, requests_per_minute=300) as limiter:
            limiter.acquire()
            backend.get_ranges(...)
    """

    def __init__(
        self,
        name: str,
        requests_per_second: int,
        requests_per_minute: int | None = None,
        persistence_path: str | None = None,
    ) -> None:
        """Initialize rate limiter.

        Args:
            name: Bucket key. Must start with a letter and contain only
                alphanumeric characters and underscores.
            requests_per_second: Maximum calls per second (> 0)
            requests_per_minute: Optional maximum calls per minute (> 0)
            persistence_path: Optional SQLite database path for persistence

        Raises:
            ValueError: If name is invalid or rate limits are not positive.
        """
        if not _VALID_NAME_PATTERN.match(name):
            raise ValueError(
                f"Invalid rate limiter name: {name!r}. "
                "Name must start with a letter and contain only alphanumeric characters and underscores."
            )
        if requests_per_second <= 0:
            raise ValueError(f"requests_per_second must be positive, got {requests_per_second}")
        if requests_per_minute is not None and requests_per_minute <= 0:
            raise ValueError(f"requests_per_minute must be positive, got {requests_per_minute}")

        self.name = name
        self.requests_per_second = requests_per_second
        self.requests_per_minute = requests_per_minute
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._limiters: list[Limiter] = []
        self._buckets: list[InMemoryBucket | SQLiteBucket] = []

        if persistence_path:
            self._conn = sqlite3.connect(persistence_path, check_same_thread=False)

        self._add_window("second", Rate(requests_per_second, Duration.SECOND))
        if requests_per_minute is not None:
            self._add_window("minute", Rate(requests_per_minute, Duration.MINUTE))

    def _add_window(self, suffix: str, rate: Rate) -> None:
        bucket: InMemoryBucket | SQLiteBucket
        if self._conn is not None:
            table_name = f"ratelimit_{self.name}_{suffix}"
            self._conn.execute(SQLiteQueries.CREATE_BUCKET_TABLE.format(table=table_name))
            self._conn.commit()
            bucket = SQLiteBucket(rates=[rate], conn=self._conn, table=table_name)
        else:
            bucket = InMemoryBucket(rates=[rate])
        self._buckets.append(bucket)
        self._limiters.append(Limiter(bucket, max_delay=Duration.MINUTE, raise_when_fail=True))

    def acquire(self, weight: int = 1) -> None:
        """Acquire tokens from every window, blocking until each admits the call."""
        for limiter in self._limiters:
            limiter.try_acquire(self.name, weight=weight)

    def _has_capacity(self, weight: int) -> bool:
        for bucket in self._buckets:
            current = bucket.count()
            if any(current + weight > rate.limit for rate in bucket.rates):
                return False
        return True

    def try_acquire(self, weight: int = 1) -> bool:
        """Acquire tokens without blocking.

        Returns:
            True if acquired, False if any window is full
        """
        with self._lock:
            if not self._has_capacity(weight):
                return False
            for limiter in self._limiters:
                original_max_delay = limiter.max_delay
                limiter.max_delay = None
                try:
                    limiter.try_acquire(self.name, weight=weight)
                except BucketFullException:
                    return False
                finally:
                    limiter.max_delay = original_max_delay
            return True

    def close(self) -> None:
        """Dispose buckets, stop leaker threads and close the SQLite connection."""
        leakers = []
        for limiter in self._limiters:
            leaker = limiter.bucket_factory._leaker
            if leaker is not None and leaker.is_alive() and leaker.ident is not None:
                leakers.append(leaker)
                with _suppressed_lock:
                    _suppressed_thread_idents.add(leaker.ident)

        for limiter, bucket in zip(self._limiters, self._buckets, strict=True):
            limiter.dispose(bucket)

        for leaker in leakers:
            leaker.join(timeout=0.05)

        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> RateLimiter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
