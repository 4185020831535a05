"""Pessimistic locking of logical records.

Lock keys name logical scopes (``case_update_<caseId>``,
``case_create_<tableId>``, ``batch_<tableId>_<op>``), never physical
addresses.
"""

from casebook.core.locks.coordinator import (
    LockCoordinator,
    batch_key,
    case_create_key,
    case_update_key,
    default_owner_id,
)
from casebook.core.locks.stores import LockStore, MemoryLockStore, SqlLockStore

__all__ = [
    "LockCoordinator",
    "LockStore",
    "MemoryLockStore",
    "SqlLockStore",
    "batch_key",
    "case_create_key",
    "case_update_key",
    "default_owner_id",
]
