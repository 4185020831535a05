"""Record Model: case-level operations over one table variant.

Fields are resolved through the Schema Mapper, multi-step mutations run
under the Lock Coordinator, and every physical access goes through the
Batch I/O Engine. Creation is serialized per table so that the append row
and the duplicate check cannot race; updates are serialized per case id.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime, time
from enum import Enum
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

import structlog

from casebook.contracts.enums import CaseStatus
from casebook.contracts.errors import (
    BackendUnavailableError,
    CasebookError,
    DuplicateCaseIdError,
    ErrorCategory,
    RecordNotFoundError,
    RecordValidationError,
)
from casebook.contracts.fields import FieldName, coerce_field
from casebook.contracts.records import Record, SearchResult, Snapshot
from casebook.contracts.requests import ReadRequest, UpdateRequest, WriteRequest
from casebook.contracts.results import BatchResult
from casebook.core.locks import case_create_key, case_update_key
from casebook.core.schema.columns import CellRange
from casebook.core.schema.mapper import coerce_date, is_blank

if TYPE_CHECKING:
    from casebook.core.batch import BatchEngine
    from casebook.core.config import RecordSettings
    from casebook.core.locks import LockCoordinator
    from casebook.core.schema.mapper import SchemaMapper

logger = structlog.get_logger(__name__)

FilterValue = Any
_FIRST_DATA_ROW = 2


def to_cell(value: Any) -> Any:
    """Convert a field value to the scalar stored in the workbook."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    return value


def _wildcard(pattern: str) -> re.Pattern[str]:
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE)


def _matches(actual: Any, expected: FilterValue) -> bool:
    """Filter semantics: lists match by membership, ``*`` is a wildcard, otherwise equality."""
    if isinstance(expected, list | tuple | set | frozenset):
        return any(_matches(actual, option) for option in expected)
    if actual is None:
        return expected is None or expected == ""
    expected_text = str(to_cell(expected))
    if "*" in expected_text:
        return _wildcard(expected_text).match(str(actual)) is not None
    return str(actual) == expected_text


class RecordModel:
    """Create, read, update, search and soft-delete cases.

    Args:
        mapper: Table layouts
        batch: Batch I/O engine
        locks: Lock coordinator
        settings: Creation defaults and search page size
        now: Current time source (injectable for tests)
    """

    def __init__(
        self,
        mapper: SchemaMapper,
        batch: BatchEngine,
        locks: LockCoordinator,
        settings: RecordSettings,
        *,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._mapper = mapper
        self._batch = batch
        self._locks = locks
        self._settings = settings
        self._zone = ZoneInfo(settings.timezone)
        self._now = now or (lambda: datetime.now(self._zone))

    # === Helpers ===

    def _coerce(self, table_id: str, fields: Mapping[FieldName | str, Any]) -> dict[FieldName, Any]:
        """Convert caller keys to FieldName and validate each value."""
        self._mapper.descriptor(table_id)
        values: dict[FieldName, Any] = {}
        errors: list[str] = []
        for key, value in fields.items():
            try:
                name = coerce_field(key)
            except ValueError:
                errors.append(f"Unknown field: {key!r}")
                continue
            values[name] = value
        errors.extend(self._mapper.validate_record(table_id, values, require_all=False))
        if errors:
            raise RecordValidationError(f"Invalid fields for {table_id!r}: {'; '.join(errors)}", errors)
        return values

    @staticmethod
    def _raise_for_failures(result: BatchResult, action: str) -> None:
        if result.all_ok:
            return
        failure = result.failures[0]
        if failure.category == ErrorCategory.VALIDATION:
            raise RecordValidationError(f"{action} rejected: {failure.error}")
        raise BackendUnavailableError(f"{action} failed: {failure.error}", batch=result)

    def _read_one(self, table_id: str, cell_range: CellRange, *, bypass_cache: bool) -> list[list[Any]]:
        result = self._batch.read([ReadRequest(table_id, cell_range.a1)], bypass_cache=bypass_cache)
        self._raise_for_failures(result, f"Read of {table_id}!{cell_range}")
        return result.items[0].value or []

    def _locate(self, table_id: str, case_id: str, *, bypass_cache: bool) -> tuple[int, dict[FieldName, Any]] | None:
        """Row number and values of a case, or None when absent."""
        last_row = self._batch.row_count(table_id)
        if last_row < _FIRST_DATA_ROW:
            return None
        ref = self._mapper.resolve(table_id, FieldName.CASE_ID)
        assert ref is not None
        column = self._read_one(table_id, CellRange(_FIRST_DATA_ROW, ref.index, last_row, ref.index), bypass_cache=bypass_cache)
        for offset, cells in enumerate(column):
            if cells and cells[0] is not None and str(cells[0]) == case_id:
                row = _FIRST_DATA_ROW + offset
                values = self._read_one(table_id, self._mapper.row_range(table_id, row), bypass_cache=bypass_cache)
                return row, self._mapper.row_to_values(table_id, values[0] if values else [])
        return None

    def _generate_case_id(self, table_id: str, row: int, existing: set[str]) -> str:
        prefix = table_id.replace(" ", "")[:3].upper()
        stamp = str(int(self._now().timestamp() * 1000))[-6:]
        case_id = f"{prefix}-{stamp}-{row}"
        if case_id in existing:
            case_id = f"{case_id}-{secrets.token_hex(2).upper()}"
        return case_id

    def _apply_defaults(self, table_id: str, values: dict[FieldName, Any]) -> None:
        now = self._now()
        values[FieldName.CHANNEL] = str(self._mapper.channel_of(table_id))
        if is_blank(values.get(FieldName.CASE_OPEN_DATE)):
            values[FieldName.CASE_OPEN_DATE] = now.date().isoformat()
        if is_blank(values.get(FieldName.CASE_OPEN_TIME)):
            values[FieldName.CASE_OPEN_TIME] = now.strftime("%H:%M:%S")
        if self._mapper.resolve(table_id, FieldName.DATE) is not None and is_blank(values.get(FieldName.DATE)):
            values[FieldName.DATE] = now.date().isoformat()

    # === Operations ===

    def create_record(self, table_id: str, fields: Mapping[FieldName | str, Any]) -> Record:
        """Append a new case to a table.

        Missing ``caseId`` is generated; ``channel``, open date/time and
        ``caseLink`` are filled in.

        Raises:
            UnknownTableError: Unknown table
            RecordValidationError: Bad fields, missing required fields
            DuplicateCaseIdError: The case id already exists in the table
            LockTimeoutError: Another creation held the table lock too long
            BackendUnavailableError: The write failed
        """
        values = self._coerce(table_id, fields)

        def _create() -> Record:
            last_row = self._batch.row_count(table_id)
            next_row = max(last_row, 1) + 1
            existing = self._case_ids(table_id, last_row)

            if is_blank(values.get(FieldName.CASE_ID)):
                values[FieldName.CASE_ID] = self._generate_case_id(table_id, next_row, existing)
            case_id = str(values[FieldName.CASE_ID]).strip()
            values[FieldName.CASE_ID] = case_id
            self._apply_defaults(table_id, values)
            if self._mapper.resolve(table_id, FieldName.CASE_LINK) is not None:
                values[FieldName.CASE_LINK] = self._settings.case_link_template.format(case_id=case_id)

            errors = self._mapper.validate_record(table_id, values)
            if errors:
                raise RecordValidationError(f"Invalid record for {table_id!r}: {'; '.join(errors)}", errors)
            if case_id in existing:
                raise DuplicateCaseIdError(table_id, case_id)

            cells = [to_cell(value) for value in self._mapper.values_to_row(table_id, values)]
            result = self._batch.write(
                [WriteRequest(table_id, self._mapper.row_range(table_id, next_row).a1, [cells])]
            )
            self._raise_for_failures(result, f"Create of {case_id}")
            logger.info("Record created", table_id=table_id, case_id=case_id, row=next_row)
            return Record.from_values(table_id, {k: to_cell(v) for k, v in values.items()}, row=next_row)

        return self._locks.with_lock(case_create_key(table_id), None, _create)

    def _case_ids(self, table_id: str, last_row: int) -> set[str]:
        if last_row < _FIRST_DATA_ROW:
            return set()
        ref = self._mapper.resolve(table_id, FieldName.CASE_ID)
        assert ref is not None
        column = self._read_one(table_id, CellRange(_FIRST_DATA_ROW, ref.index, last_row, ref.index), bypass_cache=True)
        return {str(cells[0]) for cells in column if cells and not is_blank(cells[0])}

    def read_record(self, table_id: str, case_id: str, *, bypass_cache: bool = False) -> Record | None:
        """The case with ``case_id`` in ``table_id``, or None."""
        self._mapper.descriptor(table_id)
        located = self._locate(table_id, case_id, bypass_cache=bypass_cache)
        if located is None:
            return None
        row, values = located
        return Record.from_values(table_id, values, row=row)

    def update_record(self, table_id: str, case_id: str, fields: Mapping[FieldName | str, Any]) -> Record:
        """Change fields of an existing case.

        Raises:
            RecordValidationError: Bad fields or an attempt to change ``caseId``
            RecordNotFoundError: No such case in the table
            LockTimeoutError: The case lock was held too long
            BackendUnavailableError: The update failed
        """
        values = self._coerce(table_id, fields)
        new_id = values.get(FieldName.CASE_ID)
        if new_id is not None and str(new_id) != case_id:
            raise RecordValidationError(f"caseId cannot be changed ({case_id!r} -> {new_id!r})")
        values.pop(FieldName.CASE_ID, None)

        def _update() -> Record:
            located = self._locate(table_id, case_id, bypass_cache=True)
            if located is None:
                raise RecordNotFoundError(table_id, case_id)
            row, current = located
            if not values:
                return Record.from_values(table_id, current, row=row)

            requests = []
            for name, value in values.items():
                ref = self._mapper.resolve(table_id, name)
                assert ref is not None
                requests.append(UpdateRequest(table_id, CellRange.cell(row, ref.index).a1, values=[[to_cell(value)]]))
            result = self._batch.update(requests)
            self._raise_for_failures(result, f"Update of {case_id}")
            current.update({name: to_cell(value) for name, value in values.items()})
            logger.info("Record updated", table_id=table_id, case_id=case_id, fields=sorted(str(k) for k in values))
            return Record.from_values(table_id, current, row=row)

        return self._locks.with_lock(case_update_key(case_id), None, _update)

    def delete_record(self, table_id: str, case_id: str) -> Record:
        """Soft delete: the row stays, its status becomes ``Deleted``."""
        record = self.update_record(table_id, case_id, {FieldName.CASE_STATUS: CaseStatus.DELETED})
        logger.info("Record deleted", table_id=table_id, case_id=case_id)
        return record

    def list_records(self, table_id: str, *, bypass_cache: bool = False) -> list[Record]:
        """Every non-empty data row of a table."""
        snapshot = self.snapshot([table_id], bypass_cache=bypass_cache)
        if table_id in snapshot.failures:
            raise BackendUnavailableError(f"Read of {table_id} failed: {snapshot.failures[table_id]}")
        return snapshot.records.get(table_id, [])

    def search_records(
        self,
        table_id: str,
        filter: Mapping[FieldName | str, FilterValue] | None = None,
        limit: int | None = None,
        offset: int = 0,
        *,
        include_deleted: bool = False,
        sort_by: FieldName = FieldName.CASE_OPEN_DATE,
        descending: bool = True,
    ) -> SearchResult:
        """Filter a table's records.

        Filter values may be a list (membership), a string containing ``*``
        (case-insensitive wildcard) or a plain value (equality). Deleted
        cases are hidden unless ``include_deleted``. Results are sorted by
        ``sort_by`` (newest first by default) with blank values last.
        """
        criteria: dict[FieldName, FilterValue] = {}
        for key, expected in (filter or {}).items():
            try:
                criteria[FieldName(key)] = expected
            except ValueError:
                raise RecordValidationError(f"Unknown filter field: {key!r}") from None
        page_size = self._settings.search_limit if limit is None else limit
        if page_size <= 0 or offset < 0:
            raise RecordValidationError("limit must be positive and offset non-negative")

        matched = [
            record
            for record in self.list_records(table_id)
            if (include_deleted or record.get(FieldName.CASE_STATUS) != CaseStatus.DELETED)
            and all(_matches(record.get(name), expected) for name, expected in criteria.items())
        ]

        def sort_key(record: Record) -> tuple[int, Any]:
            value = record.get(sort_by)
            if is_blank(value):
                return (1, "")
            parsed = coerce_date(value) if sort_by in (FieldName.CASE_OPEN_DATE, FieldName.DATE) else None
            return (0, parsed.isoformat() if parsed is not None else str(value))

        present = [r for r in matched if sort_key(r)[0] == 0]
        blank = [r for r in matched if sort_key(r)[0] == 1]
        present.sort(key=sort_key, reverse=descending)
        ordered = present + blank
        return SearchResult(
            records=ordered[offset : offset + page_size],
            total_count=len(ordered),
            limit=page_size,
            offset=offset,
        )

    def snapshot(self, table_ids: Sequence[str] | None = None, *, bypass_cache: bool = False) -> Snapshot:
        """Records of several tables pulled through one batch read.

        Tables whose size or contents cannot be read are reported in
        ``Snapshot.failures`` instead of raising.
        """
        tables = list(table_ids) if table_ids is not None else self._mapper.table_ids()
        records: dict[str, list[Record]] = {}
        failures: dict[str, str] = {}
        requests: list[ReadRequest] = []
        for table_id in tables:
            self._mapper.descriptor(table_id)
            try:
                last_row = self._batch.row_count(table_id)
            except CasebookError as e:
                # Unreachable backend, or a table missing from an unprovisioned workbook
                failures[table_id] = str(e)
                continue
            records[table_id] = []
            if last_row >= _FIRST_DATA_ROW:
                requests.append(
                    ReadRequest(table_id, self._mapper.rows_range(table_id, _FIRST_DATA_ROW, last_row).a1)
                )

        result = self._batch.read(requests, bypass_cache=bypass_cache) if requests else None
        for item in result.items if result is not None else []:
            table_id = item.request.table
            if not item.ok:
                failures[table_id] = item.error or "read failed"
                records.pop(table_id, None)
                continue
            for offset, cells in enumerate(item.value or []):
                if all(is_blank(cell) for cell in cells):
                    continue
                values = self._mapper.row_to_values(table_id, cells)
                records[table_id].append(Record.from_values(table_id, values, row=_FIRST_DATA_ROW + offset))

        logger.debug(
            "Snapshot taken",
            tables=len(tables),
            records=sum(len(r) for r in records.values()),
            failures=len(failures),
        )
        return Snapshot(records=records, failures=failures)
