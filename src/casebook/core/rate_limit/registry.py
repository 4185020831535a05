"""Per-operation rate limiter registry."""

from __future__ import annotations

import threading
from types import TracebackType
from typing import TYPE_CHECKING

from casebook.contracts.enums import OperationType
from casebook.core.rate_limit.limiter import RateLimiter

if TYPE_CHECKING:
    from casebook.core.config import RateLimitSettings


class NoOpLimiter:
    """Limiter used when rate limiting is disabled; every call is admitted instantly."""

    def acquire(self, weight: int = 1) -> None:
        """Admit immediately."""

    def try_acquire(self, weight: int = 1) -> bool:
        return True

    def close(self) -> None:
        """Nothing to release."""

    def __enter__(self) -> NoOpLimiter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class RateLimitRegistry:
    """Hands out one limiter per workbook operation type.

    Limiters are created on first use and reused afterwards. Thread-safe.

    Example:
        registry = RateLimitRegistry(settings.rate_limit)
        registry.get_limiter(OperationType.READ).acquire()
        ...
        registry.close()
    """

    def __init__(self, settings: RateLimitSettings) -> None:
        self._settings = settings
        self._limiters: dict[OperationType, RateLimiter] = {}
        self._lock = threading.Lock()
        self._noop_limiter = NoOpLimiter()

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    def get_limiter(self, operation: OperationType | str) -> RateLimiter | NoOpLimiter:
        """Get or create the limiter for an operation type."""
        if not self._settings.enabled:
            return self._noop_limiter

        key = OperationType(operation)
        with self._lock:
            if key not in self._limiters:
                config = self._settings.get_operation_config(key)
                self._limiters[key] = RateLimiter(
                    name=f"workbook_{key}",
                    requests_per_second=config.requests_per_second,
                    requests_per_minute=config.requests_per_minute,
                    persistence_path=self._settings.persistence_path,
                )
            return self._limiters[key]

    def close(self) -> None:
        """Close all limiters. The registry may be reused afterwards."""
        with self._lock:
            for limiter in self._limiters.values():
                limiter.close()
            self._limiters.clear()
