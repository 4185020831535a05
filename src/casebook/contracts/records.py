"""Schema and record types.

These types answer: "What does a table look like, and what is a case?"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from casebook.contracts.enums import Channel, Segment
from casebook.contracts.fields import DERIVED_FIELDS, FieldName


@dataclass(frozen=True, slots=True)
class ColumnRef:
    """Positional address of a column.

    Attributes:
        letters: Letter identifier as shown in the workbook (``"AT"``)
        index: Zero-based column index (``"A"`` is 0)
    """

    letters: str
    index: int

    @property
    def ordinal(self) -> int:
        """One-based column number."""
        return self.index + 1


@dataclass(frozen=True, slots=True)
class TableDescriptor:
    """Immutable layout of one channel variant.

    Attributes:
        table_id: Table (sheet) name, e.g. ``"3PO Chat"``
        channel: Channel every record in the table must carry
        segment: Team segment of the variant
        field_to_column: Field name to column position
        required_fields: Fields that must be populated on every record
    """

    table_id: str
    channel: Channel
    segment: Segment
    field_to_column: dict[FieldName, ColumnRef]
    required_fields: frozenset[FieldName]

    @property
    def width(self) -> int:
        """Number of columns spanned by the layout, gaps included."""
        return max(ref.ordinal for ref in self.field_to_column.values())

    @property
    def fields(self) -> tuple[FieldName, ...]:
        """Fields in column order."""
        return tuple(sorted(self.field_to_column, key=lambda name: self.field_to_column[name].index))


@dataclass(frozen=True)
class Record:
    """A logical case stored as one row of one table.

    ``fields`` holds caller-maintained values; ``derived_fields`` holds the
    automatically computed block. ``row`` is the one-based sheet row the
    record was read from, or None for records not yet persisted.
    """

    case_id: str
    table_id: str
    fields: dict[FieldName, Any] = field(default_factory=dict)
    derived_fields: dict[FieldName, Any] = field(default_factory=dict)
    row: int | None = None

    def get(self, name: FieldName, default: Any = None) -> Any:
        """Value of a field from either block."""
        if name in self.fields:
            return self.fields[name]
        return self.derived_fields.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        """Flatten both blocks into a plain dict keyed by header name."""
        merged: dict[str, Any] = {str(k): v for k, v in self.fields.items()}
        merged.update({str(k): v for k, v in self.derived_fields.items()})
        return merged

    @classmethod
    def from_values(cls, table_id: str, values: dict[FieldName, Any], row: int | None = None) -> Record:
        """Split a flat field map into the two blocks."""
        fields = {k: v for k, v in values.items() if k not in DERIVED_FIELDS}
        derived = {k: v for k, v in values.items() if k in DERIVED_FIELDS}
        case_id = values.get(FieldName.CASE_ID)
        return cls(
            case_id="" if case_id is None else str(case_id),
            table_id=table_id,
            fields=fields,
            derived_fields=derived,
            row=row,
        )


@dataclass(frozen=True)
class Snapshot:
    """Records of several tables read in one batch.

    Tables that could not be read appear in ``failures`` with the reason.
    """

    records: dict[str, list[Record]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def total_records(self) -> int:
        return sum(len(records) for records in self.records.values())

    def all_records(self) -> list[Record]:
        return [record for records in self.records.values() for record in records]


@dataclass(frozen=True, slots=True)
class SearchResult:
    """One page of a record search."""

    records: list[Record]
    total_count: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.records) < self.total_count
