"""Error taxonomy and exception types.

Configuration and validation errors fail fast and are never retried.
Backend failures are caught per chunk by the batch engine and reported as
per-item failures; they only surface as exceptions from Record Model
mutations. Integrity findings are data and never raised.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from casebook.contracts.results import BatchResult, LockTimeout


class ErrorCategory(StrEnum):
    """Category attached to every failure the engine reports."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    RATE_LIMIT = "rate_limit"
    LOCK_TIMEOUT = "lock_timeout"
    INTEGRITY_VIOLATION = "integrity_violation"


class CasebookError(Exception):
    """Base class for errors raised by the engine."""

    category: ClassVar[ErrorCategory]


class ConfigurationError(CasebookError):
    """Engine misconfiguration (unknown table, bad settings)."""

    category = ErrorCategory.CONFIGURATION


class UnknownTableError(ConfigurationError):
    """Raised when a table id has no descriptor."""

    def __init__(self, table_id: str) -> None:
        self.table_id = table_id
        super().__init__(f"Unknown table: {table_id!r}")


class RecordValidationError(CasebookError):
    """Caller supplied a bad value or shape.

    Attributes:
        errors: One message per rejected field
    """

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors if errors is not None else [message]
        super().__init__(message)


class DuplicateCaseIdError(RecordValidationError):
    """Raised when creating a record whose case id already exists in the table."""

    def __init__(self, table_id: str, case_id: str) -> None:
        self.table_id = table_id
        self.case_id = case_id
        super().__init__(f"Case {case_id!r} already exists in {table_id!r}")


class RecordNotFoundError(RecordValidationError):
    """Raised when a mutation targets a case id absent from the table."""

    def __init__(self, table_id: str, case_id: str) -> None:
        self.table_id = table_id
        self.case_id = case_id
        super().__init__(f"Case {case_id!r} not found in {table_id!r}")


class BackendUnavailableError(CasebookError):
    """A physical call against the workbook backend failed.

    Backends raise this for every failure of the underlying store. The batch
    engine converts it to per-item failures; Record Model mutations re-raise
    it with the failed batch attached.
    """

    category = ErrorCategory.BACKEND_UNAVAILABLE

    def __init__(self, message: str, *, batch: BatchResult | None = None) -> None:
        self.batch = batch
        super().__init__(message)


class LockTimeoutError(CasebookError):
    """Raised by ``with_lock``/``hold`` when the lock could not be acquired in time."""

    category = ErrorCategory.LOCK_TIMEOUT

    def __init__(self, timeout: LockTimeout) -> None:
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout.waited_seconds:.2f}s waiting for lock {timeout.lock_key!r}")
