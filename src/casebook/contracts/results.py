"""Operation outcomes.

These types answer: "What did an operation produce?"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from casebook.contracts.enums import IntegrityRule, OperationType, Severity
from casebook.contracts.errors import ErrorCategory
from casebook.contracts.fields import FieldName


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating one field value against a table layout."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> ValidationResult:
        return cls(ok=False, error=error)


@dataclass(frozen=True, slots=True)
class ItemResult:
    """Outcome of one request inside a batch.

    Attributes:
        request: The request as submitted
        ok: Whether the request succeeded
        value: Cell values for reads, None otherwise
        error: Failure reason (None on success)
        category: Failure category (None on success)
        from_cache: True when a read was served without a physical call
    """

    request: Any
    ok: bool
    value: list[list[Any]] | None = None
    error: str | None = None
    category: ErrorCategory | None = None
    from_cache: bool = False

    @classmethod
    def success(cls, request: Any, value: list[list[Any]] | None = None, *, from_cache: bool = False) -> ItemResult:
        return cls(request=request, ok=True, value=value, from_cache=from_cache)

    @classmethod
    def failure(cls, request: Any, error: str, category: ErrorCategory) -> ItemResult:
        return cls(request=request, ok=False, error=error, category=category)


@dataclass
class BatchResult:
    """Aggregated outcome of a batch call.

    Items are reported in submission order regardless of the order in which
    chunks were issued.
    """

    operation: OperationType
    items: list[ItemResult] = field(default_factory=list)
    physical_calls: int = 0

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def successful(self) -> int:
        return sum(1 for item in self.items if item.ok)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def failures(self) -> list[ItemResult]:
        return [item for item in self.items if not item.ok]

    def summary(self) -> str:
        return f"{self.operation} {self.successful}/{self.total} succeeded in {self.physical_calls} call(s)"


@dataclass(frozen=True, slots=True)
class LockTicket:
    """Proof of lock ownership.

    Attributes:
        lock_key: Logical scope being serialized
        ticket_id: Unique id of this acquisition
        owner_id: Caller that holds the lock
        acquired_at: Wall-clock acquisition time (epoch seconds)
        timeout: Acquisition timeout that was requested
        expires_at: Hard ceiling after which the lock is considered free
    """

    lock_key: str
    ticket_id: str
    owner_id: str
    acquired_at: float
    timeout: float
    expires_at: float


@dataclass(frozen=True, slots=True)
class LockTimeout:
    """Returned by ``acquire`` when the lock stayed held past the timeout."""

    lock_key: str
    owner_id: str
    timeout: float
    waited_seconds: float
    holder: str | None = None


@dataclass(frozen=True, slots=True)
class LockInfo:
    """One active lock as reported by ``status()``."""

    lock_key: str
    ticket_id: str
    owner_id: str
    acquired_at: float
    expires_at: float
    age_seconds: float
    timeout: float

    @property
    def remaining_seconds(self) -> float:
        return max(0.0, self.expires_at - self.acquired_at - self.age_seconds)


@dataclass(frozen=True, slots=True)
class CacheStatistics:
    """Snapshot of cache and batch engine counters."""

    hits: int
    misses: int
    size: int
    evictions: int
    expirations: int
    ttl_seconds: float
    physical_calls: dict[str, int] = field(default_factory=dict)

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


@dataclass(frozen=True, slots=True)
class RecordRef:
    """Location of a record implicated by a finding."""

    table_id: str
    row: int
    case_id: str


@dataclass(frozen=True, slots=True)
class IntegrityFinding:
    """Structured report entry describing one detected inconsistency."""

    rule: IntegrityRule
    severity: Severity
    message: str
    record_refs: tuple[RecordRef, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def case_ids(self) -> set[str]:
        return {ref.case_id for ref in self.record_refs}


@dataclass(frozen=True, slots=True)
class Correction:
    """An auto-correction attempted for a finding."""

    rule: IntegrityRule
    table_id: str
    case_id: str
    field: FieldName
    old_value: Any
    new_value: Any
    applied: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class Recommendation:
    """Operator guidance derived from a report's findings."""

    priority: str
    category: str
    title: str
    description: str
    action: str


@dataclass(slots=True)
class DuplicateStats:
    """Work done by the fuzzy-duplicate pass.

    Attributes:
        records: Records considered
        comparisons: Pairs actually scored
        blocked: True when records were partitioned by the block field
        truncated: True when the comparison budget ran out
        potential_total: Potential duplicates found before the report cap
    """

    records: int = 0
    comparisons: int = 0
    blocked: bool = False
    truncated: bool = False
    potential_total: int = 0


@dataclass
class IntegrityReport:
    """Result of one integrity run."""

    operation_id: str
    generated_at: datetime
    total_records: int
    findings_by_pass: dict[IntegrityRule, list[IntegrityFinding]] = field(default_factory=dict)
    corrections_applied: list[Correction] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    duplicate_stats: DuplicateStats = field(default_factory=DuplicateStats)
    duration_ms: float = 0.0

    @property
    def findings(self) -> list[IntegrityFinding]:
        """All findings, in pass order."""
        return [finding for rule in IntegrityRule for finding in self.findings_by_pass.get(rule, [])]

    @property
    def critical(self) -> list[IntegrityFinding]:
        return [f for f in self.findings if f.severity == Severity.CRITICAL]

    @property
    def warnings(self) -> list[IntegrityFinding]:
        return [f for f in self.findings if f.severity == Severity.WARNING]

    @property
    def summary_counts(self) -> dict[str, int]:
        """Finding counts per severity and per pass."""
        counts: dict[str, int] = {str(severity): 0 for severity in Severity}
        for rule in IntegrityRule:
            counts[str(rule)] = len(self.findings_by_pass.get(rule, []))
        for finding in self.findings:
            counts[str(finding.severity)] += 1
        counts["total"] = len(self.findings)
        return counts

    @property
    def has_critical(self) -> bool:
        return any(f.severity == Severity.CRITICAL for f in self.findings)
