"""In-memory workbook for tests and embedding.

Behaves like the SQL workbook but keeps cells in process memory. Every
physical call is appended to ``call_log`` so tests can assert on chunking
and ordering.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from casebook.contracts.errors import UnknownTableError

if TYPE_CHECKING:
    from casebook.contracts.requests import CellFormat
    from casebook.core.schema.columns import CellRange

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PhysicalCall:
    """One recorded backend call."""

    method: str
    table_id: str
    addresses: tuple[str, ...]


class _Sheet:
    __slots__ = ("cells", "formats")

    def __init__(self) -> None:
        self.cells: dict[tuple[int, int], Any] = {}
        self.formats: dict[tuple[int, int], dict[str, str]] = {}


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class InMemoryWorkbook:
    """Workbook held in a dict of sparse sheets."""

    def __init__(self) -> None:
        self._sheets: dict[str, _Sheet] = {}
        self._lock = threading.Lock()
        self.call_log: list[PhysicalCall] = []

    def _record(self, method: str, table_id: str, ranges: Sequence[CellRange]) -> None:
        self.call_log.append(PhysicalCall(method, table_id, tuple(r.a1 for r in ranges)))

    def _sheet(self, table_id: str) -> _Sheet:
        try:
            return self._sheets[table_id]
        except KeyError:
            raise UnknownTableError(table_id) from None

    def create_table(self, table_id: str, header: Sequence[str]) -> bool:
        with self._lock:
            if table_id in self._sheets:
                return False
            sheet = _Sheet()
            for col, name in enumerate(header):
                if name:
                    sheet.cells[(1, col)] = name
            self._sheets[table_id] = sheet
        logger.debug("Table created", table_id=table_id, columns=len(header))
        return True

    def table_ids(self) -> list[str]:
        with self._lock:
            return list(self._sheets)

    def row_count(self, table_id: str) -> int:
        with self._lock:
            self.call_log.append(PhysicalCall("row_count", table_id, ()))
            sheet = self._sheet(table_id)
            return max((row for row, _ in sheet.cells), default=0)

    def get_ranges(self, table_id: str, ranges: Sequence[CellRange]) -> list[list[list[Any]]]:
        with self._lock:
            self._record("get_ranges", table_id, ranges)
            sheet = self._sheet(table_id)
            return [
                [[sheet.cells.get((row, col)) for col in range(r.col1, r.col2 + 1)] for row in range(r.row1, r.row2 + 1)]
                for r in ranges
            ]

    @staticmethod
    def _apply_values(sheet: _Sheet, blocks: Sequence[tuple[CellRange, list[list[Any]]]]) -> None:
        for cell_range, values in blocks:
            for row_offset, row_values in enumerate(values):
                for col_offset, value in enumerate(row_values):
                    key = (cell_range.row1 + row_offset, cell_range.col1 + col_offset)
                    if _is_empty(value):
                        sheet.cells.pop(key, None)
                    else:
                        sheet.cells[key] = value

    def set_ranges(self, table_id: str, blocks: Sequence[tuple[CellRange, list[list[Any]]]]) -> None:
        with self._lock:
            self._record("set_ranges", table_id, [r for r, _ in blocks])
            self._apply_values(self._sheet(table_id), blocks)

    def update_ranges(
        self,
        table_id: str,
        blocks: Sequence[tuple[CellRange, list[list[Any]]]],
        formats: Sequence[tuple[CellRange, CellFormat]],
    ) -> None:
        with self._lock:
            self._record("update_ranges", table_id, [r for r, _ in blocks] + [r for r, _ in formats])
            sheet = self._sheet(table_id)
            self._apply_values(sheet, blocks)
            for cell_range, cell_format in formats:
                attributes = cell_format.as_dict()
                for key in cell_range.cells():
                    sheet.formats.setdefault(key, {}).update(attributes)

    def clear_ranges(self, table_id: str, ranges: Sequence[CellRange]) -> None:
        with self._lock:
            self._record("clear_ranges", table_id, ranges)
            sheet = self._sheet(table_id)
            for cell_range in ranges:
                for key in cell_range.cells():
                    sheet.cells.pop(key, None)

    def format_of(self, table_id: str, row: int, col: int) -> dict[str, str]:
        """Presentation attributes of one cell (not a physical call)."""
        with self._lock:
            return dict(self._sheet(table_id).formats.get((row, col), {}))

    def close(self) -> None:
        """Nothing to release."""
