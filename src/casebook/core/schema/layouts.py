"""Column layouts of the six table variants.

Every variant is generated from one field order. 3PO variants insert the
``issueCategory``/``details`` pair after the intake flags; Email variants add
the leading ``date`` column and the ``amInitiated`` flag. One unused column
separates the manual block from the automatically computed block.
"""

from __future__ import annotations

from casebook.contracts.enums import Channel, Segment
from casebook.contracts.fields import FieldName
from casebook.contracts.records import ColumnRef, TableDescriptor
from casebook.core.schema.columns import index_to_column

_EMAIL_ONLY = frozenset({FieldName.DATE, FieldName.AM_INITIATED})
_THIRD_PARTY_ONLY = frozenset({FieldName.ISSUE_CATEGORY, FieldName.DETAILS})

# None marks the gap column
_FIELD_ORDER: tuple[FieldName | None, ...] = (
    FieldName.DATE,
    FieldName.CASE_LINK,
    FieldName.CASE_ID,
    FieldName.CASE_OPEN_DATE,
    FieldName.CASE_OPEN_TIME,
    FieldName.INCOMING_SEGMENT,
    FieldName.PRODUCT_CATEGORY,
    FieldName.TRIAGE,
    FieldName.PREFER_EITHER,
    FieldName.AM_INITIATED,
    FieldName.IS_30,
    FieldName.ISSUE_CATEGORY,
    FieldName.DETAILS,
    FieldName.FIRST_ASSIGNEE,
    FieldName.TRT_TIMER,
    FieldName.AGING_TIMER,
    FieldName.POOL_TRANSFER_DESTINATION,
    FieldName.POOL_TRANSFER_REASON,
    FieldName.MCC,
    FieldName.CHANGE_TO_CHILD,
    FieldName.FINAL_ASSIGNEE,
    FieldName.FINAL_SEGMENT,
    FieldName.CASE_STATUS,
    FieldName.AM_TRANSFER,
    FieldName.NON_NCC,
    FieldName.BUG,
    FieldName.NEED_INFO,
    FieldName.FIRST_CLOSE_DATE,
    FieldName.FIRST_CLOSE_TIME,
    FieldName.REOPEN_REASON,
    FieldName.REOPEN_CLOSE_DATE,
    FieldName.REOPEN_CLOSE_TIME,
    None,
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
)

BASE_REQUIRED_FIELDS: frozenset[FieldName] = frozenset(
    {FieldName.CASE_ID, FieldName.CASE_OPEN_DATE, FieldName.CASE_OPEN_TIME}
)

VARIANTS: tuple[tuple[Segment, Channel], ...] = (
    (Segment.OT, Channel.EMAIL),
    (Segment.THIRD_PARTY, Channel.EMAIL),
    (Segment.OT, Channel.CHAT),
    (Segment.THIRD_PARTY, Channel.CHAT),
    (Segment.OT, Channel.PHONE),
    (Segment.THIRD_PARTY, Channel.PHONE),
)


def table_id_for(segment: Segment, channel: Channel) -> str:
    return f"{segment} {channel}"


def build_descriptor(segment: Segment, channel: Channel) -> TableDescriptor:
    """Generate the layout of one variant."""
    excluded: set[FieldName] = set()
    if channel != Channel.EMAIL:
        excluded |= _EMAIL_ONLY
    if segment != Segment.THIRD_PARTY:
        excluded |= _THIRD_PARTY_ONLY

    mapping: dict[FieldName, ColumnRef] = {}
    index = 0
    for name in _FIELD_ORDER:
        if name in excluded:
            continue
        if name is not None:
            mapping[name] = ColumnRef(letters=index_to_column(index), index=index)
        index += 1

    required = set(BASE_REQUIRED_FIELDS)
    if segment == Segment.THIRD_PARTY:
        required.add(FieldName.ISSUE_CATEGORY)

    return TableDescriptor(
        table_id=table_id_for(segment, channel),
        channel=channel,
        segment=segment,
        field_to_column=mapping,
        required_fields=frozenset(required),
    )


def default_descriptors() -> dict[str, TableDescriptor]:
    """Descriptors of all six variants keyed by table id, in canonical order."""
    descriptors = [build_descriptor(segment, channel) for segment, channel in VARIANTS]
    return {descriptor.table_id: descriptor for descriptor in descriptors}
