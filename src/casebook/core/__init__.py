# src/casebook/core/__init__.py
"""Core infrastructure: Configuration, Logging, Schema, Backends, Batch I/O, Cache, Locks, Rate limiting."""

from casebook.core.config import (
    BackendSettings,
    BatchSettings,
    CacheSettings,
    CasebookSettings,
    IntegritySettings,
    LockSettings,
    RateLimitSettings,
    RecordSettings,
    load_settings,
)
from casebook.core.logging import configure_logging, get_logger

__all__ = [
    "BackendSettings",
    "BatchSettings",
    "CacheSettings",
    "CasebookSettings",
    "IntegritySettings",
    "LockSettings",
    "RateLimitSettings",
    "RecordSettings",
    "configure_logging",
    "get_logger",
    "load_settings",
]
