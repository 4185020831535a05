"""SQL-backed workbook built on SQLAlchemy Core.

Every method runs in its own transaction, so each physical call is atomic
even though a batch as a whole is not. Several processes pointing at the
same database share one workbook.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, time
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from sqlalchemy import Connection, and_, delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from casebook.contracts.errors import BackendUnavailableError, UnknownTableError
from casebook.core.backend.schema import cell_formats_table, cells_table, sheets_table

if TYPE_CHECKING:
    from casebook.contracts.requests import CellFormat
    from casebook.core.backend.database import WorkbookDB
    from casebook.core.schema.columns import CellRange

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _json_default(value: Any) -> str:
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    raise TypeError(f"Cell value of type {type(value).__name__} is not storable")


def _encode(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _in_range(table: Any, sheet_id: str, cell_range: CellRange) -> Any:
    return and_(
        table.c.sheet_id == sheet_id,
        table.c.row_index.between(cell_range.row1, cell_range.row2),
        table.c.col_index.between(cell_range.col1, cell_range.col2),
    )


class SqlWorkbook:
    """Workbook stored in the ``sheets``/``cells``/``cell_formats`` tables.

    Example:
        db = WorkbookDB("sqlite:///./casebook.db")
        workbook = SqlWorkbook(db)
        workbook.create_table("OT Email", header)
    """

    def __init__(self, db: WorkbookDB) -> None:
        self._db = db

    def _run(self, operation: str, table_id: str | None, fn: Callable[[Connection], T]) -> T:
        try:
            with self._db.connection() as conn:
                return fn(conn)
        except SQLAlchemyError as e:
            logger.warning("Workbook call failed", operation=operation, table_id=table_id, error=str(e))
            raise BackendUnavailableError(f"{operation} on {table_id!r} failed: {e}") from e

    @staticmethod
    def _require_sheet(conn: Connection, table_id: str) -> None:
        exists = conn.execute(select(sheets_table.c.sheet_id).where(sheets_table.c.sheet_id == table_id)).first()
        if exists is None:
            raise UnknownTableError(table_id)

    def create_table(self, table_id: str, header: Sequence[str]) -> bool:
        def _create(conn: Connection) -> bool:
            exists = conn.execute(select(sheets_table.c.sheet_id).where(sheets_table.c.sheet_id == table_id)).first()
            if exists is not None:
                return False
            position = conn.execute(select(func.count()).select_from(sheets_table)).scalar_one()
            conn.execute(insert(sheets_table).values(sheet_id=table_id, position=position, created_at=datetime.now(UTC)))
            header_cells = [
                {"sheet_id": table_id, "row_index": 1, "col_index": col, "value_json": _encode(name)}
                for col, name in enumerate(header)
                if name
            ]
            if header_cells:
                conn.execute(insert(cells_table), header_cells)
            return True

        created = self._run("create_table", table_id, _create)
        if created:
            logger.info("Table created", table_id=table_id, columns=len(header))
        return created

    def table_ids(self) -> list[str]:
        def _list(conn: Connection) -> list[str]:
            rows = conn.execute(select(sheets_table.c.sheet_id).order_by(sheets_table.c.position))
            return [row.sheet_id for row in rows]

        return self._run("table_ids", None, _list)

    def row_count(self, table_id: str) -> int:
        def _count(conn: Connection) -> int:
            self._require_sheet(conn, table_id)
            last = conn.execute(
                select(func.max(cells_table.c.row_index)).where(cells_table.c.sheet_id == table_id)
            ).scalar()
            return int(last) if last is not None else 0

        return self._run("row_count", table_id, _count)

    def get_ranges(self, table_id: str, ranges: Sequence[CellRange]) -> list[list[list[Any]]]:
        def _get(conn: Connection) -> list[list[list[Any]]]:
            self._require_sheet(conn, table_id)
            results = []
            for cell_range in ranges:
                block: list[list[Any]] = [[None] * cell_range.width for _ in range(cell_range.height)]
                rows = conn.execute(
                    select(cells_table.c.row_index, cells_table.c.col_index, cells_table.c.value_json).where(
                        _in_range(cells_table, table_id, cell_range)
                    )
                )
                for row in rows:
                    block[row.row_index - cell_range.row1][row.col_index - cell_range.col1] = json.loads(
                        row.value_json
                    )
                results.append(block)
            return results

        return self._run("get_ranges", table_id, _get)

    @staticmethod
    def _write_values(conn: Connection, table_id: str, blocks: Sequence[tuple[CellRange, list[list[Any]]]]) -> None:
        for cell_range, values in blocks:
            conn.execute(delete(cells_table).where(_in_range(cells_table, table_id, cell_range)))
            new_cells = [
                {
                    "sheet_id": table_id,
                    "row_index": cell_range.row1 + row_offset,
                    "col_index": cell_range.col1 + col_offset,
                    "value_json": _encode(value),
                }
                for row_offset, row_values in enumerate(values)
                for col_offset, value in enumerate(row_values)
                if not _is_empty(value)
            ]
            if new_cells:
                conn.execute(insert(cells_table), new_cells)

    @staticmethod
    def _merge_formats(conn: Connection, table_id: str, formats: Sequence[tuple[CellRange, CellFormat]]) -> None:
        for cell_range, cell_format in formats:
            existing = {
                (row.row_index, row.col_index): json.loads(row.format_json)
                for row in conn.execute(
                    select(
                        cell_formats_table.c.row_index,
                        cell_formats_table.c.col_index,
                        cell_formats_table.c.format_json,
                    ).where(_in_range(cell_formats_table, table_id, cell_range))
                )
            }
            conn.execute(delete(cell_formats_table).where(_in_range(cell_formats_table, table_id, cell_range)))
            attributes = cell_format.as_dict()
            conn.execute(
                insert(cell_formats_table),
                [
                    {
                        "sheet_id": table_id,
                        "row_index": row,
                        "col_index": col,
                        "format_json": json.dumps({**existing.get((row, col), {}), **attributes}),
                    }
                    for row, col in cell_range.cells()
                ],
            )

    def set_ranges(self, table_id: str, blocks: Sequence[tuple[CellRange, list[list[Any]]]]) -> None:
        def _set(conn: Connection) -> None:
            self._require_sheet(conn, table_id)
            self._write_values(conn, table_id, blocks)

        self._run("set_ranges", table_id, _set)

    def update_ranges(
        self,
        table_id: str,
        blocks: Sequence[tuple[CellRange, list[list[Any]]]],
        formats: Sequence[tuple[CellRange, CellFormat]],
    ) -> None:
        def _update(conn: Connection) -> None:
            self._require_sheet(conn, table_id)
            self._write_values(conn, table_id, blocks)
            self._merge_formats(conn, table_id, formats)

        self._run("update_ranges", table_id, _update)

    def clear_ranges(self, table_id: str, ranges: Sequence[CellRange]) -> None:
        def _clear(conn: Connection) -> None:
            self._require_sheet(conn, table_id)
            for cell_range in ranges:
                conn.execute(delete(cells_table).where(_in_range(cells_table, table_id, cell_range)))

        self._run("clear_ranges", table_id, _clear)

    def format_of(self, table_id: str, row: int, col: int) -> dict[str, str]:
        """Presentation attributes of one cell."""

        def _read(conn: Connection) -> dict[str, str]:
            stored = conn.execute(
                select(cell_formats_table.c.format_json).where(
                    and_(
                        cell_formats_table.c.sheet_id == table_id,
                        cell_formats_table.c.row_index == row,
                        cell_formats_table.c.col_index == col,
                    )
                )
            ).scalar()
            return json.loads(stored) if stored is not None else {}

        return self._run("format_of", table_id, _read)

    def close(self) -> None:
        """The database is owned by the caller."""
