"""Tests for the record-level integrity rules."""

from __future__ import annotations

from datetime import date

import pytest

from casebook.contracts.enums import Severity
from casebook.contracts.fields import FieldName
from casebook.contracts.records import Record
from casebook.core.config import IntegritySettings
from casebook.core.schema import SchemaMapper
from casebook.engine.integrity.rules import (
    RuleContext,
    check_assignee_reference,
    check_assignee_consistency,
    check_case_id_uniqueness,
    check_channel_coherence,
    check_completeness,
    check_exclusion_flags,
    check_status_assignment,
    check_temporal_order,
)


@pytest.fixture
def ctx() -> RuleContext:
    return RuleContext(mapper=SchemaMapper(), settings=IntegritySettings(), today=date(2025, 3, 14))


def case(case_id: str, table_id: str = "OT Email", row: int = 2, **values) -> Record:
    base = {
        FieldName.CASE_ID: case_id,
        FieldName.CASE_OPEN_DATE: "2025-03-01",
        FieldName.CASE_OPEN_TIME: "08:00",
        FieldName.CHANNEL: str(SchemaMapper().channel_of(table_id)),
    }
    if table_id.startswith("3PO"):
        base[FieldName.ISSUE_CATEGORY] = "Refund"
    base.update({FieldName(k): v for k, v in values.items()})
    return Record.from_values(table_id, base, row=row)


class TestCaseIdUniqueness:
    def test_repeated_case_id_across_tables(self, ctx: RuleContext) -> None:
        records = [case("C-1", "OT Email"), case("C-1", "3PO Chat"), case("C-2", "OT Email", row=3)]

        (finding,) = check_case_id_uniqueness(records, ctx)

        assert finding.severity == Severity.CRITICAL
        assert finding.case_ids == {"C-1"}
        assert finding.details["locations"] == ["OT Email!2", "3PO Chat!2"]

    def test_blank_case_ids_ignored(self, ctx: RuleContext) -> None:
        assert check_case_id_uniqueness([case(""), case("", row=3)], ctx) == []


class TestAssigneeConsistency:
    def test_conflicting_assignees(self, ctx: RuleContext) -> None:
        records = [case("C-1", firstAssignee="alice"), case("C-1", "OT Chat", firstAssignee="bob")]

        (finding,) = check_assignee_consistency(records, ctx)

        assert finding.severity == Severity.WARNING
        assert finding.details == {"field": "firstAssignee", "values": ["alice", "bob"]}

    def test_comparison_ignores_case_and_blanks(self, ctx: RuleContext) -> None:
        records = [
            case("C-1", firstAssignee="Alice"),
            case("C-1", "OT Chat", firstAssignee="alice "),
            case("C-1", "OT Phone", firstAssignee=None),
        ]

        assert check_assignee_consistency(records, ctx) == []


class TestTemporalOrder:
    def test_close_before_open_is_critical(self, ctx: RuleContext) -> None:
        (finding,) = check_temporal_order([case("C-1", firstCloseDate="2025-02-28")], ctx)

        assert finding.severity == Severity.CRITICAL
        assert finding.details["field"] == "firstCloseDate"

    def test_future_open_date_is_warning(self, ctx: RuleContext) -> None:
        (finding,) = check_temporal_order([case("C-1", caseOpenDate="2025-03-15")], ctx)

        assert finding.severity == Severity.WARNING

    def test_unparseable_dates_are_skipped(self, ctx: RuleContext) -> None:
        assert check_temporal_order([case("C-1", caseOpenDate="soon", firstCloseDate="2020-01-01")], ctx) == []


class TestStatusAssignment:
    @pytest.mark.parametrize(
        ("status", "assignee", "expected"),
        [
            ("Open", None, None),
            ("Open", "alice", Severity.WARNING),
            ("Assigned", None, Severity.CRITICAL),
            ("In Progress", "alice", None),
            ("Solution Offered", "", Severity.CRITICAL),
            ("Resolved", None, None),
        ],
    )
    def test_status_and_assignee(self, ctx: RuleContext, status: str, assignee: str | None, expected) -> None:
        findings = check_status_assignment([case("C-1", caseStatus=status, firstAssignee=assignee)], ctx)

        assert [f.severity for f in findings] == ([expected] if expected else [])

    def test_final_assignee_counts(self, ctx: RuleContext) -> None:
        record = case("C-1", caseStatus="Assigned", finalAssignee="carol")

        assert check_status_assignment([record], ctx) == []


class TestChannelCoherence:
    def test_mismatch_is_critical(self, ctx: RuleContext) -> None:
        (finding,) = check_channel_coherence([case("C-1", "OT Chat", channel="Email")], ctx)

        assert finding.severity == Severity.CRITICAL
        assert finding.details == {"field": "channel", "expected": "Chat", "actual": "Email"}

    def test_missing_channel_is_mismatch(self, ctx: RuleContext) -> None:
        assert len(check_channel_coherence([case("C-1", "3PO Phone", channel=None)], ctx)) == 1


class TestExclusionFlags:
    def test_conflicting_pair(self, ctx: RuleContext) -> None:
        (finding,) = check_exclusion_flags([case("C-1", bug=True, needInfo="TRUE")], ctx)

        assert finding.details["type"] == "conflicting_exclusions"

    def test_excessive_flags(self, ctx: RuleContext) -> None:
        findings = check_exclusion_flags([case("C-1", amTransfer=True, nonNCC=1, bug="true")], ctx)

        assert [f.details["type"] for f in findings] == ["excessive_exclusions"]
        assert findings[0].details["flags"] == ["amTransfer", "nonNCC", "bug"]

    def test_false_flags_ignored(self, ctx: RuleContext) -> None:
        assert check_exclusion_flags([case("C-1", bug=False, needInfo="false")], ctx) == []


class TestCompleteness:
    def test_missing_required_fields(self, ctx: RuleContext) -> None:
        (finding,) = check_completeness([case("C-1", caseOpenTime=None)], ctx)

        assert finding.severity == Severity.CRITICAL
        assert finding.details["missing_fields"] == ["caseOpenTime"]

    def test_third_party_requires_issue_category(self, ctx: RuleContext) -> None:
        (finding,) = check_completeness([case("C-1", "3PO Chat", issueCategory="  ")], ctx)

        assert finding.details["missing_fields"] == ["issueCategory"]

    def test_complete_record(self, ctx: RuleContext) -> None:
        assert check_completeness([case("C-1", "3PO Email")], ctx) == []


class TestAssigneeReference:
    @pytest.fixture
    def domains_ctx(self) -> RuleContext:
        settings = IntegritySettings(allowed_assignee_domains=["@Example.com"])
        return RuleContext(mapper=SchemaMapper(), settings=settings, today=date(2025, 3, 14))

    def test_foreign_domain_is_warning(self, domains_ctx: RuleContext) -> None:
        records = [case("C-1", firstAssignee="bob@example.com", finalAssignee="eve@Elsewhere.org")]

        (finding,) = check_assignee_reference(records, domains_ctx)

        assert finding.severity == Severity.WARNING
        assert finding.details == {"type": "invalid_email_domain", "field": "finalAssignee", "value": "eve@Elsewhere.org"}
        assert "'@elsewhere.org'" in finding.message

    def test_plain_user_names_not_checked(self, domains_ctx: RuleContext) -> None:
        assert check_assignee_reference([case("C-1", firstAssignee="alice", finalAssignee=None)], domains_ctx) == []

    def test_off_without_configured_domains(self, ctx: RuleContext) -> None:
        assert check_assignee_reference([case("C-1", firstAssignee="eve@elsewhere.org")], ctx) == []
