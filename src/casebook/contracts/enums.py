"""Status codes, kinds, and domain vocabularies used across subsystem boundaries.

Values are the literal strings stored in workbook cells, so renaming a
member's value is a data migration, not a refactor.
"""

from enum import StrEnum


class Channel(StrEnum):
    """Support channel implied by a table variant.

    Stored in the ``channel`` column of every case row.
    """

    EMAIL = "Email"
    CHAT = "Chat"
    PHONE = "Phone"


class Segment(StrEnum):
    """Team segment a table variant belongs to."""

    OT = "OT"
    THIRD_PARTY = "3PO"


class OperationType(StrEnum):
    """Physical call type against the workbook backend.

    Each type has its own chunk ceiling, inter-chunk delay and rate limiter.
    """

    READ = "read"
    WRITE = "write"
    UPDATE = "update"
    DELETE = "delete"


class Severity(StrEnum):
    """Severity of an integrity finding."""

    CRITICAL = "critical"
    WARNING = "warning"


class IntegrityRule(StrEnum):
    """Integrity check passes, in execution order."""

    SNAPSHOT = "snapshot"
    CASE_ID_UNIQUENESS = "case_id_uniqueness"
    ASSIGNEE_CONSISTENCY = "assignee_consistency"
    TEMPORAL_ORDER = "temporal_order"
    STATUS_ASSIGNMENT = "status_assignment"
    CHANNEL_COHERENCE = "channel_coherence"
    EXCLUSION_FLAGS = "exclusion_flags"
    COMPLETENESS = "completeness"
    ASSIGNEE_REFERENCE = "assignee_reference"
    DUPLICATES = "duplicates"


class CaseStatus(StrEnum):
    """Case lifecycle status.

    ``DELETED`` marks a soft-deleted row; searches hide it by default.
    """

    OPEN = "Open"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    SOLUTION_OFFERED = "Solution Offered"
    RESOLVED = "Resolved"
    FINISHED = "Finished"
    CLOSED = "Closed"
    DELETED = "Deleted"


# Statuses that must not carry an assignee, and statuses that must.
UNASSIGNED_STATUSES: frozenset[CaseStatus] = frozenset({CaseStatus.OPEN})
ASSIGNED_STATUSES: frozenset[CaseStatus] = frozenset(
    {CaseStatus.ASSIGNED, CaseStatus.IN_PROGRESS, CaseStatus.SOLUTION_OFFERED}
)


class IncomingSegment(StrEnum):
    """Customer tier of the incoming case."""

    PLATINUM = "Platinum"
    TITANIUM = "Titanium"
    GOLD = "Gold"
    SILVER = "Silver"
    BRONZE_LOW = "Bronze - Low"
    BRONZE_HIGH = "Bronze - High"


class ProductCategory(StrEnum):
    """Product area of the case."""

    SEARCH = "Search"
    DISPLAY = "Display"
    VIDEO = "Video"
    COMMERCE = "Commerce"
    APPS = "Apps"
    MA = "M&A"
    POLICY = "Policy"
    BILLING = "Billing"
    OTHER = "Other"


# Issue categories accepted on 3PO variants.
ISSUE_CATEGORIES: tuple[str, ...] = (
    "CBT invo-invo",
    "CBT invo-auto",
    "CBT (self to self)",
    "LC creation",
    "PP link",
    "PP update",
    "IDT/ Bmod",
    "LCS billing policy",
    "self serve issue",
    "Unidentified Charge",
    "CBT Flow",
    "GQ",
    "OOS",
    "Bulk CBT",
    "CBT ext request",
    "MMS billing policy",
    "Promotion code",
    "Refund",
    "Review",
    "TM form",
    "Trademarks issue",
    "Under Review",
    "Certificate",
    "Suspend",
    "AIV",
    "Complaint",
)
