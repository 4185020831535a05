"""Rate limiting for physical workbook calls.

Uses pyrate-limiter with optional SQLite persistence.
"""

from casebook.core.rate_limit.limiter import RateLimiter
from casebook.core.rate_limit.registry import NoOpLimiter, RateLimitRegistry

__all__ = ["NoOpLimiter", "RateLimitRegistry", "RateLimiter"]
