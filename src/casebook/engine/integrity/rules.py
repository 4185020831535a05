"""Integrity rules over a cross-table snapshot.

Each rule takes every record of the snapshot and returns its findings.
Rules never raise for bad data; an unparseable value simply does not
trigger the rule that needed it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from casebook.contracts.enums import ASSIGNED_STATUSES, UNASSIGNED_STATUSES, IntegrityRule, Severity
from casebook.contracts.fields import ASSIGNEE_FIELDS, FieldName
from casebook.contracts.results import IntegrityFinding, RecordRef
from casebook.core.schema.mapper import coerce_date, coerce_flag, is_blank, to_text

if TYPE_CHECKING:
    from casebook.contracts.records import Record
    from casebook.core.config import IntegritySettings
    from casebook.core.schema.mapper import SchemaMapper


@dataclass(frozen=True)
class RuleContext:
    mapper: SchemaMapper
    settings: IntegritySettings
    today: date


Rule = Callable[[list["Record"], RuleContext], list[IntegrityFinding]]

_CLOSE_FIELDS = (FieldName.FIRST_CLOSE_DATE, FieldName.CLOSE_DATE)


def _ref(record: Record) -> RecordRef:
    return RecordRef(table_id=record.table_id, row=record.row or 0, case_id=record.case_id)


def _label(record: Record) -> str:
    return record.case_id or f"{record.table_id} row {record.row}"


def _by_case_id(records: list[Record]) -> dict[str, list[Record]]:
    grouped: dict[str, list[Record]] = {}
    for record in records:
        if record.case_id:
            grouped.setdefault(record.case_id, []).append(record)
    return grouped


def check_case_id_uniqueness(records: list[Record], ctx: RuleContext) -> list[IntegrityFinding]:
    """A case id stored in more than one row, in any tables."""
    findings = []
    for case_id, located in _by_case_id(records).items():
        if len(located) < 2:
            continue
        findings.append(
            IntegrityFinding(
                rule=IntegrityRule.CASE_ID_UNIQUENESS,
                severity=Severity.CRITICAL,
                message=f"Case id {case_id!r} appears in {len(located)} locations",
                record_refs=tuple(_ref(r) for r in located),
                details={"locations": [f"{r.table_id}!{r.row}" for r in located]},
            )
        )
    return findings


def check_assignee_consistency(records: list[Record], ctx: RuleContext) -> list[IntegrityFinding]:
    """Rows sharing a case id must agree on assignees."""
    findings = []
    for case_id, located in _by_case_id(records).items():
        if len(located) < 2:
            continue
        for name in ASSIGNEE_FIELDS:
            values = {to_text(r.get(name)).lower() for r in located if not is_blank(r.get(name))}
            if len(values) > 1:
                findings.append(
                    IntegrityFinding(
                        rule=IntegrityRule.ASSIGNEE_CONSISTENCY,
                        severity=Severity.WARNING,
                        message=f"Case {case_id!r} has conflicting {name} values",
                        record_refs=tuple(_ref(r) for r in located),
                        details={"field": str(name), "values": sorted(values)},
                    )
                )
    return findings


def check_temporal_order(records: list[Record], ctx: RuleContext) -> list[IntegrityFinding]:
    """Close dates after the open date; open date not in the future."""
    findings = []
    for record in records:
        opened = coerce_date(record.get(FieldName.CASE_OPEN_DATE))
        if opened is None:
            continue
        for name in _CLOSE_FIELDS:
            closed = coerce_date(record.get(name))
            if closed is not None and closed < opened:
                findings.append(
                    IntegrityFinding(
                        rule=IntegrityRule.TEMPORAL_ORDER,
                        severity=Severity.CRITICAL,
                        message=f"Case {_label(record)}: {name} {closed} is before open date {opened}",
                        record_refs=(_ref(record),),
                        details={"field": str(name), "open_date": opened.isoformat(), "value": closed.isoformat()},
                    )
                )
        if opened > ctx.today:
            findings.append(
                IntegrityFinding(
                    rule=IntegrityRule.TEMPORAL_ORDER,
                    severity=Severity.WARNING,
                    message=f"Case {_label(record)}: open date {opened} is in the future",
                    record_refs=(_ref(record),),
                    details={"field": str(FieldName.CASE_OPEN_DATE), "open_date": opened.isoformat()},
                )
            )
    return findings


def check_status_assignment(records: list[Record], ctx: RuleContext) -> list[IntegrityFinding]:
    """Unassigned statuses carry no assignee; working statuses carry one."""
    findings = []
    for record in records:
        status = to_text(record.get(FieldName.CASE_STATUS))
        assigned = any(not is_blank(record.get(name)) for name in ASSIGNEE_FIELDS)
        if status in UNASSIGNED_STATUSES and assigned:
            findings.append(
                IntegrityFinding(
                    rule=IntegrityRule.STATUS_ASSIGNMENT,
                    severity=Severity.WARNING,
                    message=f"Case {_label(record)} is {status} but has an assignee",
                    record_refs=(_ref(record),),
                    details={"status": status},
                )
            )
        elif status in ASSIGNED_STATUSES and not assigned:
            findings.append(
                IntegrityFinding(
                    rule=IntegrityRule.STATUS_ASSIGNMENT,
                    severity=Severity.CRITICAL,
                    message=f"Case {_label(record)} is {status} but has no assignee",
                    record_refs=(_ref(record),),
                    details={"status": status},
                )
            )
    return findings


def check_channel_coherence(records: list[Record], ctx: RuleContext) -> list[IntegrityFinding]:
    """The stored channel matches the channel of the table holding the row."""
    findings = []
    for record in records:
        expected = str(ctx.mapper.channel_of(record.table_id))
        actual = to_text(record.get(FieldName.CHANNEL))
        if actual != expected:
            findings.append(
                IntegrityFinding(
                    rule=IntegrityRule.CHANNEL_COHERENCE,
                    severity=Severity.CRITICAL,
                    message=f"Case {_label(record)} in {record.table_id!r} has channel {actual!r}, expected {expected!r}",
                    record_refs=(_ref(record),),
                    details={"field": str(FieldName.CHANNEL), "expected": expected, "actual": actual},
                )
            )
    return findings


def check_exclusion_flags(records: list[Record], ctx: RuleContext) -> list[IntegrityFinding]:
    """Conflicting exclusion flag pairs, or too many exclusions on one case."""
    findings = []
    settings = ctx.settings
    for record in records:
        active = [name for name in settings.exclusion_flags if coerce_flag(record.get(name)) is True]
        if not active:
            continue
        for left, right in settings.conflicting_flag_pairs:
            if left in active and right in active:
                findings.append(
                    IntegrityFinding(
                        rule=IntegrityRule.EXCLUSION_FLAGS,
                        severity=Severity.WARNING,
                        message=f"Case {_label(record)} has conflicting exclusions {left} and {right}",
                        record_refs=(_ref(record),),
                        details={"type": "conflicting_exclusions", "flags": [str(left), str(right)]},
                    )
                )
        if len(active) >= settings.excessive_flag_threshold:
            findings.append(
                IntegrityFinding(
                    rule=IntegrityRule.EXCLUSION_FLAGS,
                    severity=Severity.WARNING,
                    message=f"Case {_label(record)} has {len(active)} active exclusions",
                    record_refs=(_ref(record),),
                    details={"type": "excessive_exclusions", "flags": [str(name) for name in active]},
                )
            )
    return findings


def check_completeness(records: list[Record], ctx: RuleContext) -> list[IntegrityFinding]:
    """Every required field of the variant is populated."""
    findings = []
    for record in records:
        required = ctx.mapper.required_fields(record.table_id)
        missing = sorted(str(name) for name in required if is_blank(record.get(name)))
        if missing:
            findings.append(
                IntegrityFinding(
                    rule=IntegrityRule.COMPLETENESS,
                    severity=Severity.CRITICAL,
                    message=f"Case {_label(record)} is missing required fields: {', '.join(missing)}",
                    record_refs=(_ref(record),),
                    details={"missing_fields": missing},
                )
            )
    return findings


def check_assignee_reference(records: list[Record], ctx: RuleContext) -> list[IntegrityFinding]:
    """Assignee email addresses belong to an allowed domain.

    Values without an ``@`` are taken to be plain user names and are not
    checked. Off when no domains are configured.
    """
    allowed = ctx.settings.allowed_assignee_domains
    if not allowed:
        return []
    findings = []
    for record in records:
        for name in ASSIGNEE_FIELDS:
            value = to_text(record.get(name))
            if "@" not in value:
                continue
            domain = value.rsplit("@", 1)[1].lower()
            if domain in allowed:
                continue
            findings.append(
                IntegrityFinding(
                    rule=IntegrityRule.ASSIGNEE_REFERENCE,
                    severity=Severity.WARNING,
                    message=f"Case {_label(record)}: {name} domain '@{domain}' is not one of {', '.join(allowed)}",
                    record_refs=(_ref(record),),
                    details={"type": "invalid_email_domain", "field": str(name), "value": value},
                )
            )
    return findings


# Record-level passes in execution order (duplicates run separately)
RULES: tuple[tuple[IntegrityRule, Rule], ...] = (
    (IntegrityRule.CASE_ID_UNIQUENESS, check_case_id_uniqueness),
    (IntegrityRule.ASSIGNEE_CONSISTENCY, check_assignee_consistency),
    (IntegrityRule.TEMPORAL_ORDER, check_temporal_order),
    (IntegrityRule.STATUS_ASSIGNMENT, check_status_assignment),
    (IntegrityRule.CHANNEL_COHERENCE, check_channel_coherence),
    (IntegrityRule.EXCLUSION_FLAGS, check_exclusion_flags),
    (IntegrityRule.COMPLETENESS, check_completeness),
    (IntegrityRule.ASSIGNEE_REFERENCE, check_assignee_reference),
)
