"""Workbook backend protocol.

Each method is exactly one physical call against the store; the batch
engine decides how many ranges go into each call. Implementations raise
``BackendUnavailableError`` for store failures and ``UnknownTableError`` for
tables that do not exist.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from casebook.contracts.requests import CellFormat
    from casebook.core.schema.columns import CellRange


@runtime_checkable
class Workbook(Protocol):
    """A multi-table tabular store addressed by A1 ranges."""

    def create_table(self, table_id: str, header: Sequence[str]) -> bool:
        """Create a table with ``header`` in row 1. Returns False if it already existed."""
        ...

    def table_ids(self) -> list[str]: ...

    def row_count(self, table_id: str) -> int:
        """One-based index of the last row holding any value (0 for an empty table)."""
        ...

    def get_ranges(self, table_id: str, ranges: Sequence[CellRange]) -> list[list[list[Any]]]:
        """Values of each range as a full rectangle; empty cells are None."""
        ...

    def set_ranges(self, table_id: str, blocks: Sequence[tuple[CellRange, list[list[Any]]]]) -> None: ...

    def update_ranges(
        self,
        table_id: str,
        blocks: Sequence[tuple[CellRange, list[list[Any]]]],
        formats: Sequence[tuple[CellRange, CellFormat]],
    ) -> None:
        """Write value blocks and merge presentation attributes in one call.

        Either all of it is applied or none of it is.
        """
        ...

    def clear_ranges(self, table_id: str, ranges: Sequence[CellRange]) -> None: ...

    def close(self) -> None: ...
