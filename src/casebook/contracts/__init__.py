"""Shared contracts for cross-boundary data types.

All dataclasses and enums that cross subsystem boundaries are defined here.
This package is a LEAF MODULE with no outbound dependencies to core/engine;
settings classes live in casebook.core.config.

Import patterns:
    # Contracts (lightweight, no heavy dependencies)
    from casebook.contracts import FieldName, Record, BatchResult

    # Settings classes (from core, pulls in heavy deps)
    from casebook.core.config import CasebookSettings
"""

from casebook.contracts.enums import (
    ASSIGNED_STATUSES,
    ISSUE_CATEGORIES,
    UNASSIGNED_STATUSES,
    CaseStatus,
    Channel,
    IncomingSegment,
    IntegrityRule,
    OperationType,
    ProductCategory,
    Segment,
    Severity,
)
from casebook.contracts.errors import (
    BackendUnavailableError,
    CasebookError,
    ConfigurationError,
    DuplicateCaseIdError,
    ErrorCategory,
    LockTimeoutError,
    RecordNotFoundError,
    RecordValidationError,
    UnknownTableError,
)
from casebook.contracts.fields import (
    ASSIGNEE_FIELDS,
    DATE_FIELDS,
    DERIVED_FIELDS,
    FLAG_FIELDS,
    TIME_FIELDS,
    FieldName,
    coerce_field,
)
from casebook.contracts.records import ColumnRef, Record, SearchResult, Snapshot, TableDescriptor
from casebook.contracts.requests import (
    BatchRequest,
    CellFormat,
    DeleteRequest,
    ReadRequest,
    UpdateRequest,
    WriteRequest,
)
from casebook.contracts.results import (
    BatchResult,
    CacheStatistics,
    Correction,
    DuplicateStats,
    IntegrityFinding,
    IntegrityReport,
    ItemResult,
    LockInfo,
    LockTicket,
    LockTimeout,
    Recommendation,
    RecordRef,
    ValidationResult,
)

__all__ = [
    "ASSIGNED_STATUSES",
    "ASSIGNEE_FIELDS",
    "DATE_FIELDS",
    "DERIVED_FIELDS",
    "FLAG_FIELDS",
    "ISSUE_CATEGORIES",
    "TIME_FIELDS",
    "UNASSIGNED_STATUSES",
    "BackendUnavailableError",
    "BatchRequest",
    "BatchResult",
    "CacheStatistics",
    "CaseStatus",
    "CasebookError",
    "CellFormat",
    "Channel",
    "ColumnRef",
    "ConfigurationError",
    "Correction",
    "DeleteRequest",
    "DuplicateCaseIdError",
    "DuplicateStats",
    "ErrorCategory",
    "FieldName",
    "IncomingSegment",
    "IntegrityFinding",
    "IntegrityReport",
    "IntegrityRule",
    "ItemResult",
    "LockInfo",
    "LockTicket",
    "LockTimeout",
    "LockTimeoutError",
    "OperationType",
    "ProductCategory",
    "ReadRequest",
    "Recommendation",
    "Record",
    "RecordNotFoundError",
    "RecordRef",
    "RecordValidationError",
    "SearchResult",
    "Segment",
    "Severity",
    "Snapshot",
    "TableDescriptor",
    "UnknownTableError",
    "UpdateRequest",
    "ValidationResult",
    "WriteRequest",
    "coerce_field",
]
