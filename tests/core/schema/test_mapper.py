"""Tests for the Schema Mapper and the six table layouts."""

from __future__ import annotations

from datetime import date

import pytest

from casebook.contracts.enums import Channel, Segment
from casebook.contracts.errors import ErrorCategory, UnknownTableError
from casebook.contracts.fields import FieldName
from casebook.core.schema import SchemaMapper

ALL_TABLES = ["OT Email", "3PO Email", "OT Chat", "3PO Chat", "OT Phone", "3PO Phone"]


@pytest.fixture
def mapper() -> SchemaMapper:
    return SchemaMapper()


class TestLayouts:
    """Pinned column positions of each variant."""

    def test_table_ids_in_canonical_order(self, mapper: SchemaMapper) -> None:
        assert mapper.table_ids() == ALL_TABLES

    @pytest.mark.parametrize(
        ("table_id", "final_column"),
        [
            ("OT Email", "AT"),
            ("3PO Email", "AV"),
            ("OT Chat", "AR"),
            ("3PO Chat", "AT"),
            ("OT Phone", "AR"),
            ("3PO Phone", "AT"),
        ],
    )
    def test_final_columns(self, mapper: SchemaMapper, table_id: str, final_column: str) -> None:
        assert mapper.final_column(table_id) == final_column

    def test_ot_email_positions(self, mapper: SchemaMapper) -> None:
        positions = {name: mapper.resolve("OT Email", name) for name in FieldName}

        assert positions[FieldName.DATE].letters == "A"  # type: ignore[union-attr]
        assert positions[FieldName.CASE_ID].letters == "C"  # type: ignore[union-attr]
        assert positions[FieldName.CASE_STATUS].letters == "U"  # type: ignore[union-attr]
        assert positions[FieldName.CHANNEL].letters == "AH"  # type: ignore[union-attr]
        assert positions[FieldName.ISSUE_CATEGORY] is None
        assert positions[FieldName.DETAILS] is None

    def test_third_party_shift(self, mapper: SchemaMapper) -> None:
        """issueCategory/details push the rest of the 3PO row two columns right."""
        ot = mapper.resolve("OT Email", FieldName.FIRST_ASSIGNEE)
        third_party = mapper.resolve("3PO Email", FieldName.FIRST_ASSIGNEE)

        assert ot is not None and third_party is not None
        assert third_party.index == ot.index + 2
        assert mapper.resolve("3PO Email", FieldName.ISSUE_CATEGORY).letters == "L"  # type: ignore[union-attr]

    def test_chat_and_phone_share_layouts(self, mapper: SchemaMapper) -> None:
        for segment in ("OT", "3PO"):
            chat = mapper.descriptor(f"{segment} Chat").field_to_column
            phone = mapper.descriptor(f"{segment} Phone").field_to_column
            assert chat == phone

    def test_email_only_fields(self, mapper: SchemaMapper) -> None:
        assert mapper.resolve("OT Chat", FieldName.DATE) is None
        assert mapper.resolve("OT Chat", FieldName.AM_INITIATED) is None
        assert mapper.resolve("OT Chat", FieldName.CASE_LINK).letters == "A"  # type: ignore[union-attr]

    @pytest.mark.parametrize("table_id", ALL_TABLES)
    def test_resolve_is_total_and_stable(self, mapper: SchemaMapper, table_id: str) -> None:
        """Every descriptor field resolves, repeatedly, to the same distinct column."""
        descriptor = mapper.descriptor(table_id)
        first = {name: mapper.resolve(table_id, name) for name in descriptor.fields}
        second = {name: mapper.resolve(table_id, str(name)) for name in descriptor.fields}

        assert first == second
        assert all(ref is not None for ref in first.values())
        assert len({ref.index for ref in first.values() if ref is not None}) == len(first)

    @pytest.mark.parametrize("table_id", ALL_TABLES)
    def test_header_row_matches_layout(self, mapper: SchemaMapper, table_id: str) -> None:
        header = mapper.header_row(table_id)

        assert len(header) == mapper.descriptor(table_id).width
        assert header.count("") == 1
        for name in mapper.descriptor(table_id).fields:
            ref = mapper.resolve(table_id, name)
            assert ref is not None
            assert header[ref.index] == str(name)

    def test_channel_and_segment(self, mapper: SchemaMapper) -> None:
        assert mapper.channel_of("3PO Phone") == Channel.PHONE
        assert mapper.segment_of("3PO Phone") == Segment.THIRD_PARTY

    def test_required_fields(self, mapper: SchemaMapper) -> None:
        base = {FieldName.CASE_ID, FieldName.CASE_OPEN_DATE, FieldName.CASE_OPEN_TIME}

        assert mapper.required_fields("OT Chat") == base
        assert mapper.required_fields("3PO Chat") == base | {FieldName.ISSUE_CATEGORY}


class TestUnknownInput:
    def test_unknown_table_raises_configuration_error(self, mapper: SchemaMapper) -> None:
        with pytest.raises(UnknownTableError) as exc_info:
            mapper.resolve("Fax", FieldName.CASE_ID)

        assert exc_info.value.category == ErrorCategory.CONFIGURATION
        assert exc_info.value.table_id == "Fax"

    def test_unknown_field_resolves_to_none(self, mapper: SchemaMapper) -> None:
        assert mapper.resolve("OT Email", "favouriteColour") is None


class TestValidate:
    def test_field_absent_from_variant(self, mapper: SchemaMapper) -> None:
        result = mapper.validate("OT Email", FieldName.DETAILS, "text")

        assert not result.ok
        assert "details" in (result.error or "")

    def test_required_field_may_not_be_blank(self, mapper: SchemaMapper) -> None:
        assert not mapper.validate("OT Email", FieldName.CASE_ID, "  ").ok
        assert mapper.validate("OT Email", FieldName.FIRST_ASSIGNEE, "").ok

    @pytest.mark.parametrize("value", ["2025-03-14", "2025-03-14T09:30:00", date(2025, 3, 14)])
    def test_dates_accepted(self, mapper: SchemaMapper, value: object) -> None:
        assert mapper.validate("OT Chat", FieldName.CASE_OPEN_DATE, value).ok

    @pytest.mark.parametrize("value", ["14/03/2025", "yesterday", 20250314])
    def test_bad_dates_rejected(self, mapper: SchemaMapper, value: object) -> None:
        assert not mapper.validate("OT Chat", FieldName.CASE_OPEN_DATE, value).ok

    @pytest.mark.parametrize(("value", "ok"), [("09:30", True), ("09:30:15", True), ("9.30", False), ("noon", False)])
    def test_times(self, mapper: SchemaMapper, value: str, ok: bool) -> None:
        assert mapper.validate("OT Chat", FieldName.CASE_OPEN_TIME, value).ok is ok

    @pytest.mark.parametrize(("value", "ok"), [(True, True), (0, True), ("1", True), ("false", True), ("maybe", False), (7, False)])
    def test_flags(self, mapper: SchemaMapper, value: object, ok: bool) -> None:
        assert mapper.validate("OT Chat", FieldName.BUG, value).ok is ok

    def test_enum_fields(self, mapper: SchemaMapper) -> None:
        assert mapper.validate("OT Chat", FieldName.CASE_STATUS, "In Progress").ok
        assert not mapper.validate("OT Chat", FieldName.CASE_STATUS, "Pending").ok
        assert mapper.validate("OT Chat", FieldName.INCOMING_SEGMENT, "Bronze - Low").ok
        assert not mapper.validate("OT Chat", FieldName.PRODUCT_CATEGORY, "Hardware").ok

    def test_issue_category_on_third_party(self, mapper: SchemaMapper) -> None:
        assert mapper.validate("3PO Chat", FieldName.ISSUE_CATEGORY, "Refund").ok
        assert not mapper.validate("3PO Chat", FieldName.ISSUE_CATEGORY, "Lost parcel").ok

    def test_validate_record_collects_every_problem(self, mapper: SchemaMapper) -> None:
        errors = mapper.validate_record("3PO Chat", {FieldName.CASE_ID: "C-1", FieldName.BUG: "maybe"})

        assert len(errors) == 4  # bug, caseOpenDate, caseOpenTime, issueCategory
        assert not mapper.validate_record("3PO Chat", {FieldName.BUG: "1"}, require_all=False)


class TestRowConversion:
    def test_values_to_row_and_back(self, mapper: SchemaMapper) -> None:
        values = {FieldName.CASE_ID: "C-1", FieldName.CHANNEL: "Chat"}

        row = mapper.values_to_row("OT Chat", values)
        parsed = mapper.row_to_values("OT Chat", row)

        assert len(row) == mapper.descriptor("OT Chat").width
        assert parsed[FieldName.CASE_ID] == "C-1"
        assert parsed[FieldName.CHANNEL] == "Chat"
        assert parsed[FieldName.CASE_STATUS] is None

    def test_short_rows_are_padded(self, mapper: SchemaMapper) -> None:
        parsed = mapper.row_to_values("OT Chat", ["link", "C-1"])

        assert parsed[FieldName.CASE_ID] == "C-1"
        assert parsed[FieldName.REASSIGN_FLAG] is None
