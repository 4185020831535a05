"""Batch I/O engine: coalesced, cached and rate-limited workbook access.

Requests are admitted (addresses parsed, payload shapes checked), grouped
by table, sorted by address and cut into chunks no larger than the
operation's ceiling. Each chunk is one physical call. Before every call
after the first the operation's inter-chunk delay is slept, and every call
acquires the operation's rate limiter. A failing chunk only fails its own
requests; results are reported per request in submission order.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from datetime import time as time_of_day
from typing import TYPE_CHECKING, Any

import structlog

from casebook.contracts.enums import OperationType
from casebook.contracts.errors import CasebookError, ErrorCategory
from casebook.contracts.requests import CellFormat, DeleteRequest, ReadRequest, UpdateRequest, WriteRequest
from casebook.contracts.results import BatchResult, CacheStatistics, ItemResult
from casebook.core.cache import TTLCache
from casebook.core.schema.columns import CellRange, parse_range

if TYPE_CHECKING:
    from casebook.core.backend.protocol import Workbook
    from casebook.core.config import BatchSettings, OperationBatchSettings
    from casebook.core.rate_limit import NoOpLimiter, RateLimiter, RateLimitRegistry

logger = structlog.get_logger(__name__)

CacheKey = tuple[str, CellRange]
_SCALAR_TYPES = (str, int, float, bool, date, datetime, time_of_day, type(None))


class _AdmissionError(ValueError):
    """A request rejected before any physical call."""


@dataclass
class _Pending:
    """An admitted request waiting for its physical call."""

    index: int
    table: str
    cell_range: CellRange
    request: Any
    values: list[list[Any]] | None = None
    cell_format: CellFormat | None = None
    error: CasebookError | None = None
    result_value: list[list[Any]] | None = field(default=None, repr=False)


class _Pacer:
    """Delay and rate-limit the physical calls of one batch invocation."""

    def __init__(
        self,
        settings: OperationBatchSettings,
        limiter: RateLimiter | NoOpLimiter,
        sleep: Callable[[float], None],
    ) -> None:
        self._delay_seconds = settings.delay_ms / 1000
        self._limiter = limiter
        self._sleep = sleep
        self.calls = 0

    def before_call(self) -> None:
        if self.calls and self._delay_seconds:
            self._sleep(self._delay_seconds)
        self._limiter.acquire()
        self.calls += 1


def _is_rectangle(values: Any, shape: tuple[int, int]) -> bool:
    height, width = shape
    if not isinstance(values, list) or len(values) != height:
        return False
    return all(isinstance(row, list) and len(row) == width for row in values)


def _check_values(values: Any, cell_range: CellRange) -> list[list[Any]]:
    if not _is_rectangle(values, cell_range.shape):
        raise _AdmissionError(f"Values must be a {cell_range.height}x{cell_range.width} list of rows for {cell_range}")
    for row in values:
        for value in row:
            if not isinstance(value, _SCALAR_TYPES):
                raise _AdmissionError(f"Cell values must be scalars, got {type(value).__name__}")
    return values


def _chunks(pending: list[_Pending], size: int) -> list[tuple[str, list[_Pending]]]:
    """Group by table (first-appearance order), sort by address, cut into chunks."""
    by_table: dict[str, list[_Pending]] = {}
    for item in pending:
        by_table.setdefault(item.table, []).append(item)
    chunks = []
    for table, items in by_table.items():
        ordered = sorted(items, key=lambda item: (item.cell_range, item.index))
        chunks.extend((table, ordered[start : start + size]) for start in range(0, len(ordered), size))
    return chunks


def _merge_adjacent(items: list[_Pending]) -> list[tuple[CellRange, list[list[Any]]]]:
    """Merge horizontally adjacent single-row value blocks of the same row.

    ``items`` must already be address-sorted. Multi-row blocks and
    overlapping blocks are passed through unmerged.
    """
    blocks: list[tuple[CellRange, list[list[Any]]]] = []
    for item in items:
        assert item.values is not None
        cell_range, values = item.cell_range, item.values
        if blocks and cell_range.height == 1:
            last_range, last_values = blocks[-1]
            if last_range.height == 1 and last_range.row1 == cell_range.row1 and last_range.col2 + 1 == cell_range.col1:
                merged = CellRange.row_span(last_range.row1, last_range.col1, cell_range.col2)
                blocks[-1] = (merged, [last_values[0] + values[0]])
                continue
        blocks.append((cell_range, [list(row) for row in values]))
    return blocks


class BatchEngine:
    """Coalescing, caching front of a workbook.

    Args:
        workbook: Physical store
        settings: Chunk ceilings and delays per operation
        cache: Read-through cache keyed by (table, range)
        limiters: Rate limiter per operation type
        sleep: Delay function (injectable for tests)
    """

    def __init__(
        self,
        workbook: Workbook,
        settings: BatchSettings,
        cache: TTLCache[CacheKey, list[list[Any]]],
        limiters: RateLimitRegistry,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._workbook = workbook
        self._settings = settings
        self._cache = cache
        self._limiters = limiters
        self._sleep = sleep
        self._physical_calls: dict[OperationType, int] = {op: 0 for op in OperationType}

    @property
    def workbook(self) -> Workbook:
        return self._workbook

    def _pacer(self, operation: OperationType) -> _Pacer:
        return _Pacer(self._settings.for_operation(operation), self._limiters.get_limiter(operation), self._sleep)

    def _admit(
        self,
        requests: Sequence[Any],
        expected: type,
        check: Callable[[Any, CellRange], _Pending],
    ) -> tuple[list[ItemResult | None], list[_Pending]]:
        items: list[ItemResult | None] = [None] * len(requests)
        admitted: list[_Pending] = []
        for index, request in enumerate(requests):
            try:
                if not isinstance(request, expected):
                    raise _AdmissionError(f"Expected {expected.__name__}, got {type(request).__name__}")
                if not isinstance(request.table, str) or not request.table:
                    raise _AdmissionError(f"Invalid table: {request.table!r}")
                try:
                    cell_range = parse_range(request.address)
                except ValueError as e:
                    raise _AdmissionError(str(e)) from e
                pending = check(request, cell_range)
            except _AdmissionError as e:
                items[index] = ItemResult.failure(request, str(e), ErrorCategory.VALIDATION)
                continue
            pending.index = index
            admitted.append(pending)
        return items, admitted

    def _execute(
        self,
        operation: OperationType,
        admitted: list[_Pending],
        invoke: Callable[[str, list[_Pending], _Pacer], None],
    ) -> int:
        """Run every chunk through ``invoke``; returns the number of physical calls."""
        size = self._settings.for_operation(operation).max_size
        pacer = self._pacer(operation)
        for table, chunk in _chunks(admitted, size):
            invoke(table, chunk, pacer)
        self._physical_calls[operation] += pacer.calls
        return pacer.calls

    def _call(
        self,
        pacer: _Pacer,
        table: str,
        chunk: list[_Pending],
        fn: Callable[[], Any],
        operation: OperationType,
    ) -> Any:
        """One physical call; a failure is attached to every item in ``chunk``."""
        pacer.before_call()
        try:
            return fn()
        except CasebookError as e:
            logger.warning(
                "Batch chunk failed",
                operation=str(operation),
                table=table,
                requests=len(chunk),
                category=str(e.category),
                error=str(e),
            )
            for item in chunk:
                item.error = e
            return None

    def _evict(self, table: str, ranges: Sequence[CellRange]) -> None:
        self._cache.evict_where(lambda key: key[0] == table and any(key[1].overlaps(r) for r in ranges))

    @staticmethod
    def _finish(operation: OperationType, items: list[ItemResult | None], admitted: list[_Pending], calls: int) -> BatchResult:
        for pending in admitted:
            if pending.error is not None:
                items[pending.index] = ItemResult.failure(pending.request, str(pending.error), pending.error.category)
            else:
                items[pending.index] = ItemResult.success(pending.request, pending.result_value)
        result = BatchResult(operation=operation, items=[item for item in items if item is not None], physical_calls=calls)
        logger.debug(
            "Batch executed",
            operation=str(operation),
            total=result.total,
            successful=result.successful,
            physical_calls=calls,
        )
        return result

    # === Reads ===

    def read(self, requests: Sequence[ReadRequest], *, bypass_cache: bool = False) -> BatchResult:
        """Read ranges, serving cache hits without a physical call."""
        items, admitted = self._admit(
            requests, ReadRequest, lambda request, cell_range: _Pending(0, request.table, cell_range, request)
        )

        misses: list[_Pending] = []
        for pending in admitted:
            if not bypass_cache:
                found, cached = self._cache.get((pending.table, pending.cell_range))
                if found and cached is not None:
                    items[pending.index] = ItemResult.success(
                        pending.request, [list(row) for row in cached], from_cache=True
                    )
                    continue
            misses.append(pending)

        def invoke(table: str, chunk: list[_Pending], pacer: _Pacer) -> None:
            blocks = self._call(
                pacer,
                table,
                chunk,
                lambda: self._workbook.get_ranges(table, [item.cell_range for item in chunk]),
                OperationType.READ,
            )
            if blocks is None:
                return
            for item, block in zip(chunk, blocks, strict=True):
                item.result_value = block
                self._cache.put((table, item.cell_range), [list(row) for row in block])

        calls = self._execute(OperationType.READ, misses, invoke)
        return self._finish(OperationType.READ, items, misses, calls)

    def row_count(self, table: str) -> int:
        """Last populated row of a table (physical, uncached).

        Raises:
            CasebookError: Backend or configuration failure
        """
        pacer = self._pacer(OperationType.READ)
        pacer.before_call()
        self._physical_calls[OperationType.READ] += 1
        return self._workbook.row_count(table)

    # === Mutations ===

    def write(self, requests: Sequence[WriteRequest]) -> BatchResult:
        """Overwrite ranges with value blocks."""

        def check(request: WriteRequest, cell_range: CellRange) -> _Pending:
            values = _check_values(request.values, cell_range)
            return _Pending(0, request.table, cell_range, request, values=values)

        items, admitted = self._admit(requests, WriteRequest, check)

        def invoke(table: str, chunk: list[_Pending], pacer: _Pacer) -> None:
            blocks = [(item.cell_range, item.values or []) for item in chunk]
            try:
                self._call(pacer, table, chunk, lambda: self._workbook.set_ranges(table, blocks), OperationType.WRITE)
            finally:
                self._evict(table, [item.cell_range for item in chunk])

        calls = self._execute(OperationType.WRITE, admitted, invoke)
        return self._finish(OperationType.WRITE, items, admitted, calls)

    def update(self, requests: Sequence[UpdateRequest]) -> BatchResult:
        """Update values and/or presentation of ranges.

        Values and formats of a chunk go to the workbook in one call, so a
        failed chunk leaves neither behind. Horizontally adjacent single-row
        value updates in the same row are merged into one block; results are
        still reported per request.
        """

        def check(request: UpdateRequest, cell_range: CellRange) -> _Pending:
            if request.values is None and request.format is None:
                raise _AdmissionError("Update needs values or format")
            if request.format is not None and not isinstance(request.format, CellFormat):
                raise _AdmissionError(f"Invalid format: {request.format!r}")
            values = _check_values(request.values, cell_range) if request.values is not None else None
            return _Pending(0, request.table, cell_range, request, values=values, cell_format=request.format)

        items, admitted = self._admit(requests, UpdateRequest, check)

        def invoke(table: str, chunk: list[_Pending], pacer: _Pacer) -> None:
            with_values = [item for item in chunk if item.values is not None]
            blocks = _merge_adjacent(with_values)
            formats = [(item.cell_range, item.cell_format) for item in chunk if item.cell_format is not None]
            try:
                self._call(
                    pacer,
                    table,
                    chunk,
                    lambda: self._workbook.update_ranges(table, blocks, formats),  # type: ignore[arg-type]
                    OperationType.UPDATE,
                )
            finally:
                if with_values:
                    self._evict(table, [item.cell_range for item in with_values])

        calls = self._execute(OperationType.UPDATE, admitted, invoke)
        return self._finish(OperationType.UPDATE, items, admitted, calls)

    def delete(self, requests: Sequence[DeleteRequest]) -> BatchResult:
        """Clear the values of ranges."""
        items, admitted = self._admit(
            requests, DeleteRequest, lambda request, cell_range: _Pending(0, request.table, cell_range, request)
        )

        def invoke(table: str, chunk: list[_Pending], pacer: _Pacer) -> None:
            ranges = [item.cell_range for item in chunk]
            try:
                self._call(pacer, table, chunk, lambda: self._workbook.clear_ranges(table, ranges), OperationType.DELETE)
            finally:
                self._evict(table, ranges)

        calls = self._execute(OperationType.DELETE, admitted, invoke)
        return self._finish(OperationType.DELETE, items, admitted, calls)

    # === Administration ===

    def statistics(self) -> CacheStatistics:
        return CacheStatistics(
            hits=self._cache.hits,
            misses=self._cache.misses,
            size=len(self._cache),
            evictions=self._cache.evictions,
            expirations=self._cache.expirations,
            ttl_seconds=self._cache.ttl_seconds,
            physical_calls={str(op): count for op, count in self._physical_calls.items()},
        )

    def clear_cache(self) -> int:
        """Drop every cached range; returns the number dropped."""
        cleared = self._cache.clear()
        logger.info("Cache cleared", entries=cleared)
        return cleared
