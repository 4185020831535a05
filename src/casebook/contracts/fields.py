"""Closed vocabulary of case fields.

Every table variant stores a subset of these fields. Member values are the
header names written in row 1 of each table and the keys used by callers.
"""

from enum import StrEnum


class FieldName(StrEnum):
    """Every field any table variant may carry."""

    # Identity and intake
    DATE = "date"
    CASE_LINK = "caseLink"
    CASE_ID = "caseId"
    CASE_OPEN_DATE = "caseOpenDate"
    CASE_OPEN_TIME = "caseOpenTime"
    INCOMING_SEGMENT = "incomingSegment"
    PRODUCT_CATEGORY = "productCategory"

    # Intake flags
    TRIAGE = "triage"
    PREFER_EITHER = "preferEither"
    AM_INITIATED = "amInitiated"
    IS_30 = "is30"

    # 3PO only
    ISSUE_CATEGORY = "issueCategory"
    DETAILS = "details"

    # Assignment and timers
    FIRST_ASSIGNEE = "firstAssignee"
    TRT_TIMER = "trtTimer"
    AGING_TIMER = "agingTimer"
    POOL_TRANSFER_DESTINATION = "poolTransferDestination"
    POOL_TRANSFER_REASON = "poolTransferReason"
    MCC = "mcc"
    CHANGE_TO_CHILD = "changeToChild"
    FINAL_ASSIGNEE = "finalAssignee"
    FINAL_SEGMENT = "finalSegment"

    # Status and exclusion flags
    CASE_STATUS = "caseStatus"
    AM_TRANSFER = "amTransfer"
    NON_NCC = "nonNCC"
    BUG = "bug"
    NEED_INFO = "needInfo"

    # Close information
    FIRST_CLOSE_DATE = "firstCloseDate"
    FIRST_CLOSE_TIME = "firstCloseTime"
    REOPEN_REASON = "reopenReason"
    REOPEN_CLOSE_DATE = "reopenCloseDate"
    REOPEN_CLOSE_TIME = "reopenCloseTime"

    # Automatically computed block
    PRODUCT_COMMERCE = "productCommerce"
    ASSIGN_WEEK = "assignWeek"
    CHANNEL = "channel"
    TRT_TARGET = "trtTarget"
    TRT_DATE_TIME = "trtDateTime"
    AGING_TARGET = "agingTarget"
    AGING_DATE_TIME = "agingDateTime"
    CLOSE_NCC = "closeNCC"
    CLOSE_DATE = "closeDate"
    CLOSE_TIME = "closeTime"
    CLOSE_WEEK = "closeWeek"
    TRT_FLAG = "trtFlag"
    AGING_FLAG = "agingFlag"
    REOPEN_CLOSE_FLAG = "reopenCloseFlag"
    REASSIGN_FLAG = "reassignFlag"


DATE_FIELDS: frozenset[FieldName] = frozenset(
    {
        FieldName.DATE,
        FieldName.CASE_OPEN_DATE,
        FieldName.FIRST_CLOSE_DATE,
        FieldName.REOPEN_CLOSE_DATE,
        FieldName.CLOSE_DATE,
    }
)

TIME_FIELDS: frozenset[FieldName] = frozenset(
    {
        FieldName.CASE_OPEN_TIME,
        FieldName.FIRST_CLOSE_TIME,
        FieldName.REOPEN_CLOSE_TIME,
        FieldName.CLOSE_TIME,
    }
)

FLAG_FIELDS: frozenset[FieldName] = frozenset(
    {
        FieldName.TRIAGE,
        FieldName.PREFER_EITHER,
        FieldName.AM_INITIATED,
        FieldName.IS_30,
        FieldName.CHANGE_TO_CHILD,
        FieldName.AM_TRANSFER,
        FieldName.NON_NCC,
        FieldName.BUG,
        FieldName.NEED_INFO,
    }
)

ASSIGNEE_FIELDS: tuple[FieldName, ...] = (FieldName.FIRST_ASSIGNEE, FieldName.FINAL_ASSIGNEE)

# Fields served as Record.derived_fields rather than Record.fields. The engine
# stores and returns them but never computes deadline values itself.
DERIVED_FIELDS: frozenset[FieldName] = frozenset(
    {
        FieldName.CASE_LINK,
        FieldName.TRT_TIMER,
        FieldName.AGING_TIMER,
        FieldName.PRODUCT_COMMERCE,
        FieldName.ASSIGN_WEEK,
        FieldName.CHANNEL,
        FieldName.TRT_TARGET,
        FieldName.TRT_DATE_TIME,
        FieldName.AGING_TARGET,
        FieldName.AGING_DATE_TIME,
        FieldName.CLOSE_NCC,
        FieldName.CLOSE_DATE,
        FieldName.CLOSE_TIME,
        FieldName.CLOSE_WEEK,
        FieldName.TRT_FLAG,
        FieldName.AGING_FLAG,
        FieldName.REOPEN_CLOSE_FLAG,
        FieldName.REASSIGN_FLAG,
    }
)


def coerce_field(name: "FieldName | str") -> FieldName:
    """Convert a caller-supplied field key to a FieldName.

    Raises:
        ValueError: If the key is not a known field name
    """
    if isinstance(name, FieldName):
        return name
    return FieldName(name)
