"""Schema Mapper: named-field access to positional table rows.

The mapper owns the table descriptors and is the single place where a
field name becomes a column, and where caller values are checked before
they reach the workbook.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from typing import Any

from casebook.contracts.enums import ISSUE_CATEGORIES, CaseStatus, Channel, IncomingSegment, ProductCategory, Segment
from casebook.contracts.errors import UnknownTableError
from casebook.contracts.fields import DATE_FIELDS, FLAG_FIELDS, TIME_FIELDS, FieldName
from casebook.contracts.records import ColumnRef, TableDescriptor
from casebook.contracts.results import ValidationResult
from casebook.core.schema.columns import CellRange, index_to_column
from casebook.core.schema.layouts import default_descriptors

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")
_TRUE_STRINGS = frozenset({"1", "true"})
_FALSE_STRINGS = frozenset({"0", "false"})

_ENUM_VALUES: dict[FieldName, frozenset[str]] = {
    FieldName.INCOMING_SEGMENT: frozenset(IncomingSegment),
    FieldName.PRODUCT_CATEGORY: frozenset(ProductCategory),
    FieldName.CASE_STATUS: frozenset(CaseStatus),
}


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def to_text(value: Any) -> str:
    """Trimmed string form of a cell; blank cells become the empty string."""
    if value is None:
        return ""
    return str(value).strip()


def coerce_flag(value: Any) -> bool | None:
    """Interpret a stored flag; None when the value is not boolean-like."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def coerce_date(value: Any) -> date | None:
    """Interpret a stored date (``date``, ``datetime`` or ISO string); None when unparseable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None
    return None


def coerce_time(value: Any) -> time | None:
    if isinstance(value, time):
        return value
    if isinstance(value, str) and _TIME_PATTERN.match(value.strip()):
        return time.fromisoformat(value.strip())
    return None


class SchemaMapper:
    """Field-to-column resolution and value validation for every table variant.

    Example:
        mapper = SchemaMapper()
        mapper.resolve("OT Email", FieldName.CASE_ID)   # ColumnRef("C", 2)
        mapper.validate("3PO Chat", FieldName.ISSUE_CATEGORY, "Refund")
    """

    def __init__(self, descriptors: Mapping[str, TableDescriptor] | None = None) -> None:
        self._descriptors: dict[str, TableDescriptor] = dict(
            descriptors if descriptors is not None else default_descriptors()
        )

    def table_ids(self) -> list[str]:
        return list(self._descriptors)

    def descriptor(self, table_id: str) -> TableDescriptor:
        """Descriptor for a table.

        Raises:
            UnknownTableError: If no descriptor exists for ``table_id``
        """
        try:
            return self._descriptors[table_id]
        except KeyError:
            raise UnknownTableError(table_id) from None

    def resolve(self, table_id: str, field: FieldName | str) -> ColumnRef | None:
        """Column of a field, or None when the variant does not carry it."""
        descriptor = self.descriptor(table_id)
        try:
            name = FieldName(field)
        except ValueError:
            return None
        return descriptor.field_to_column.get(name)

    def required_fields(self, table_id: str) -> frozenset[FieldName]:
        return self.descriptor(table_id).required_fields

    def channel_of(self, table_id: str) -> Channel:
        return self.descriptor(table_id).channel

    def segment_of(self, table_id: str) -> Segment:
        return self.descriptor(table_id).segment

    def final_column(self, table_id: str) -> str:
        return index_to_column(self.descriptor(table_id).width - 1)

    def header_row(self, table_id: str) -> list[str]:
        """Header names in column order; gap columns are empty strings."""
        descriptor = self.descriptor(table_id)
        headers = [""] * descriptor.width
        for name, ref in descriptor.field_to_column.items():
            headers[ref.index] = str(name)
        return headers

    def row_range(self, table_id: str, row: int) -> CellRange:
        """Full-width range of one data row."""
        return CellRange.row_span(row, 0, self.descriptor(table_id).width - 1)

    def rows_range(self, table_id: str, first_row: int, last_row: int) -> CellRange:
        return CellRange(first_row, 0, last_row, self.descriptor(table_id).width - 1)

    def row_to_values(self, table_id: str, cells: Sequence[Any]) -> dict[FieldName, Any]:
        """Map a positional row (starting at column A) to named fields.

        Short rows are padded with None.
        """
        descriptor = self.descriptor(table_id)
        return {
            name: cells[ref.index] if ref.index < len(cells) else None
            for name, ref in descriptor.field_to_column.items()
        }

    def values_to_row(self, table_id: str, values: Mapping[FieldName, Any]) -> list[Any]:
        """Positional row for named fields; unknown fields are ignored, missing ones are None."""
        descriptor = self.descriptor(table_id)
        row: list[Any] = [None] * descriptor.width
        for name, value in values.items():
            ref = descriptor.field_to_column.get(name)
            if ref is not None:
                row[ref.index] = value
        return row

    def validate(self, table_id: str, field: FieldName | str, value: Any) -> ValidationResult:
        """Check one value against the variant's rules."""
        descriptor = self.descriptor(table_id)
        try:
            name = FieldName(field)
        except ValueError:
            return ValidationResult.failure(f"Unknown field: {field!r}")
        if name not in descriptor.field_to_column:
            return ValidationResult.failure(f"Field '{name}' is not defined for table {table_id!r}")

        if is_blank(value):
            if name in descriptor.required_fields:
                return ValidationResult.failure(f"Field '{name}' is required")
            return ValidationResult.success()

        if name in DATE_FIELDS and coerce_date(value) is None:
            return ValidationResult.failure(f"Field '{name}' must be a date, got {value!r}")
        if name in TIME_FIELDS and coerce_time(value) is None:
            return ValidationResult.failure(f"Field '{name}' must be a time (HH:MM[:SS]), got {value!r}")
        if name in FLAG_FIELDS and coerce_flag(value) is None:
            return ValidationResult.failure(f"Field '{name}' must be boolean-like, got {value!r}")

        allowed = _ENUM_VALUES.get(name)
        if name == FieldName.ISSUE_CATEGORY and descriptor.segment == Segment.THIRD_PARTY:
            allowed = frozenset(ISSUE_CATEGORIES)
        if allowed is not None and str(value) not in allowed:
            return ValidationResult.failure(f"Field '{name}' has invalid value {value!r}")

        return ValidationResult.success()

    def validate_record(
        self, table_id: str, values: Mapping[FieldName | str, Any], *, require_all: bool = True
    ) -> list[str]:
        """Validate a field map; returns one error message per problem.

        With ``require_all`` every required field of the variant must be present.
        """
        descriptor = self.descriptor(table_id)
        errors: list[str] = []
        supplied: set[FieldName] = set()
        for key, value in values.items():
            result = self.validate(table_id, key, value)
            if not result.ok:
                errors.append(result.error or f"Invalid value for {key!r}")
                continue
            supplied.add(FieldName(key))
        if require_all:
            for name in sorted(descriptor.required_fields):
                if name not in values and name not in supplied:
                    errors.append(f"Field '{name}' is required")
        return errors
