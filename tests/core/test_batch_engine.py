"""Tests for the Batch I/O Engine."""

from __future__ import annotations

import math
import random
from collections.abc import Sequence
from typing import Any

import pytest
from hypothesis import given
from hypothesis import strategies as st

from casebook.contracts.enums import OperationType
from casebook.contracts.errors import BackendUnavailableError, ErrorCategory
from casebook.contracts.requests import CellFormat, DeleteRequest, ReadRequest, UpdateRequest, WriteRequest
from casebook.core.backend import InMemoryWorkbook
from casebook.core.batch import BatchEngine
from casebook.core.cache import TTLCache
from casebook.core.config import BatchSettings, OperationBatchSettings, RateLimitSettings
from casebook.core.rate_limit import RateLimitRegistry
from casebook.core.schema.columns import CellRange

HEADER = ["a", "b", "c", "d", "e", "f"]


class CountingLimiter:
    def __init__(self) -> None:
        self.acquired = 0

    def acquire(self, weight: int = 1) -> None:
        self.acquired += weight


class CountingRegistry:
    """Stands in for RateLimitRegistry; one counting limiter per operation."""

    def __init__(self) -> None:
        self.limiters = {op: CountingLimiter() for op in OperationType}

    def get_limiter(self, operation: OperationType) -> CountingLimiter:
        return self.limiters[OperationType(operation)]


class FailingWorkbook(InMemoryWorkbook):
    """Fails the n-th value-writing call (1-based), or every call for one table."""

    def __init__(self, *, fail_call: int | None = None, fail_table: str | None = None) -> None:
        super().__init__()
        self.fail_call = fail_call
        self.fail_table = fail_table
        self.set_calls = 0

    def _maybe_fail(self, table_id: str) -> None:
        self.set_calls += 1
        if self.set_calls == self.fail_call or table_id == self.fail_table:
            raise BackendUnavailableError("quota exceeded")

    def set_ranges(self, table_id: str, blocks: Sequence[tuple[CellRange, list[list[Any]]]]) -> None:
        self._maybe_fail(table_id)
        super().set_ranges(table_id, blocks)

    def update_ranges(
        self,
        table_id: str,
        blocks: Sequence[tuple[CellRange, list[list[Any]]]],
        formats: Sequence[tuple[CellRange, CellFormat]],
    ) -> None:
        self._maybe_fail(table_id)
        super().update_ranges(table_id, blocks, formats)


def build(
    workbook: InMemoryWorkbook | None = None,
    *,
    clock: Any = None,
    max_size: int = 100,
    delay_ms: int = 0,
    limiters: Any = None,
    sleeps: list[float] | None = None,
) -> tuple[BatchEngine, InMemoryWorkbook]:
    workbook = workbook if workbook is not None else InMemoryWorkbook()
    for table in ("T1", "T2"):
        workbook.create_table(table, HEADER)
    op = OperationBatchSettings(max_size=max_size, delay_ms=delay_ms)
    settings = BatchSettings(read=op, write=op, update=op, delete=op)
    cache: TTLCache[Any, Any] = TTLCache(300, clock=clock) if clock is not None else TTLCache(300)
    recorded = sleeps if sleeps is not None else []
    engine = BatchEngine(
        workbook,
        settings,
        cache,
        limiters if limiters is not None else RateLimitRegistry(RateLimitSettings(enabled=False)),
        sleep=recorded.append,
    )
    return engine, workbook


def cell_writes(count: int, table: str = "T1") -> list[WriteRequest]:
    return [WriteRequest(table, f"A{row}", [[f"v{row}"]]) for row in range(2, count + 2)]


class TestChunking:
    def test_chunks_are_bounded_and_address_sorted(self) -> None:
        engine, workbook = build(max_size=3)
        requests = cell_writes(7)
        random.Random(7).shuffle(requests)

        result = engine.write(requests)

        calls = [c for c in workbook.call_log if c.method == "set_ranges"]
        assert result.physical_calls == 3
        assert [len(c.addresses) for c in calls] == [3, 3, 1]
        flattened = [a for c in calls for a in c.addresses]
        assert flattened == [f"A{row}" for row in range(2, 9)]

    @given(n=st.integers(min_value=1, max_value=40), m=st.integers(min_value=1, max_value=10))
    def test_call_count_is_ceiling(self, n: int, m: int) -> None:
        """N requests with chunk size M take ceil(N/M) physical calls."""
        engine, workbook = build(max_size=m)

        result = engine.write(cell_writes(n))

        calls = [c for c in workbook.call_log if c.method == "set_ranges"]
        assert result.physical_calls == len(calls) == math.ceil(n / m)
        assert all(len(c.addresses) <= m for c in calls)
        assert result.successful == result.total == n

    def test_tables_chunked_separately(self) -> None:
        engine, workbook = build(max_size=10)

        engine.write([*cell_writes(2, "T2"), *cell_writes(3, "T1")])

        assert [(c.table_id, len(c.addresses)) for c in workbook.call_log] == [("T2", 2), ("T1", 3)]

    def test_results_in_submission_order(self) -> None:
        engine, _ = build(max_size=2)
        requests = list(reversed(cell_writes(5)))

        result = engine.write(requests)

        assert [item.request for item in result.items] == requests


class TestPacing:
    def test_delay_before_every_call_after_first(self) -> None:
        sleeps: list[float] = []
        limiters = CountingRegistry()
        engine, _ = build(max_size=2, delay_ms=150, limiters=limiters, sleeps=sleeps)

        engine.write(cell_writes(5))

        assert sleeps == [0.15, 0.15]
        assert limiters.limiters[OperationType.WRITE].acquired == 3

    def test_single_call_never_sleeps(self) -> None:
        sleeps: list[float] = []
        engine, _ = build(delay_ms=150, sleeps=sleeps)

        engine.write(cell_writes(3))
        engine.write(cell_writes(3))

        assert sleeps == []


class TestReadThroughCache:
    def test_write_then_read_returns_value(self) -> None:
        engine, _ = build()

        assert engine.write([WriteRequest("T1", "B3", [["hello"]])]).all_ok
        result = engine.read([ReadRequest("T1", "B3")])

        assert result.items[0].value == [["hello"]]

    def test_second_read_served_from_cache(self) -> None:
        engine, workbook = build()
        engine.write([WriteRequest("T1", "A2:B2", [["x", "y"]])])

        first = engine.read([ReadRequest("T1", "A2:B2")])
        second = engine.read([ReadRequest("T1", "A2:B2")])

        assert not first.items[0].from_cache
        assert second.items[0].from_cache
        assert second.items[0].value == [["x", "y"]]
        assert second.physical_calls == 0
        assert [c.method for c in workbook.call_log].count("get_ranges") == 1

    def test_entry_not_served_after_ttl(self, fake_clock) -> None:
        engine, workbook = build(clock=fake_clock)
        engine.read([ReadRequest("T1", "A1")])

        fake_clock.advance(299)
        assert engine.read([ReadRequest("T1", "A1")]).items[0].from_cache

        fake_clock.advance(1)
        result = engine.read([ReadRequest("T1", "A1")])

        assert not result.items[0].from_cache
        assert result.physical_calls == 1
        assert [c.method for c in workbook.call_log].count("get_ranges") == 2
        assert engine.statistics().expirations == 1

    def test_write_evicts_overlapping_ranges(self) -> None:
        engine, _ = build()
        engine.write([WriteRequest("T1", "A2:C2", [["a", "b", "c"]])])
        engine.read([ReadRequest("T1", "A2:C2"), ReadRequest("T1", "A5"), ReadRequest("T2", "B2")])

        engine.write([WriteRequest("T1", "B2", [["changed"]])])
        result = engine.read([ReadRequest("T1", "A2:C2"), ReadRequest("T1", "A5"), ReadRequest("T2", "B2")])

        assert [item.from_cache for item in result.items] == [False, True, True]
        assert result.items[0].value == [["a", "changed", "c"]]

    def test_failed_write_still_evicts(self) -> None:
        engine, _ = build(FailingWorkbook(fail_table="T1"))
        engine.read([ReadRequest("T1", "A2")])

        result = engine.write([WriteRequest("T1", "A2", [["x"]])])

        assert not result.all_ok
        assert engine.statistics().size == 0

    def test_bypass_cache_forces_physical_read(self) -> None:
        engine, _ = build()
        engine.read([ReadRequest("T1", "A1")])

        result = engine.read([ReadRequest("T1", "A1")], bypass_cache=True)

        assert result.physical_calls == 1
        assert not result.items[0].from_cache

    def test_statistics_and_clear(self) -> None:
        engine, _ = build()
        engine.read([ReadRequest("T1", "A1"), ReadRequest("T1", "B1")])
        engine.read([ReadRequest("T1", "A1")])
        engine.row_count("T1")

        stats = engine.statistics()

        assert (stats.hits, stats.misses, stats.size) == (1, 2, 2)
        assert stats.hit_rate == pytest.approx(1 / 3)
        assert stats.physical_calls["read"] == 2
        assert engine.clear_cache() == 2
        assert engine.statistics().size == 0


class TestPartialFailure:
    def test_failed_chunk_fails_only_its_requests(self) -> None:
        engine, workbook = build(FailingWorkbook(fail_call=2), max_size=2)

        result = engine.write(cell_writes(5))

        assert [item.ok for item in result.items] == [True, True, False, False, True]
        failed = result.failures
        assert all(item.category == ErrorCategory.BACKEND_UNAVAILABLE for item in failed)
        assert all("quota exceeded" in (item.error or "") for item in failed)
        assert (result.successful, result.total) == (3, 5)
        assert result.summary() == "write 3/5 succeeded in 3 call(s)"

    def test_failing_table_does_not_block_siblings(self) -> None:
        engine, _ = build(FailingWorkbook(fail_table="T1"))

        result = engine.write([*cell_writes(2, "T1"), *cell_writes(2, "T2")])

        assert [item.ok for item in result.items] == [False, False, True, True]
        assert engine.read([ReadRequest("T2", "A2")]).items[0].value == [["v2"]]

    def test_unknown_table_fails_its_chunk(self) -> None:
        engine, _ = build()

        result = engine.read([ReadRequest("Missing", "A1"), ReadRequest("T1", "A1")])

        assert result.items[0].category == ErrorCategory.CONFIGURATION
        assert result.items[1].ok


class TestAdmission:
    def test_malformed_requests_rejected_individually(self) -> None:
        engine, workbook = build()
        requests: list[Any] = [
            WriteRequest("T1", "not-an-address", [["x"]]),
            WriteRequest("T1", "A2:B2", [["only-one"]]),
            WriteRequest("T1", "A3", [[{"nested": True}]]),
            WriteRequest("", "A4", [["x"]]),
            ReadRequest("T1", "A5"),
            WriteRequest("T1", "A6", [["ok"]]),
        ]

        result = engine.write(requests)

        assert [item.ok for item in result.items] == [False, False, False, False, False, True]
        assert all(item.category == ErrorCategory.VALIDATION for item in result.failures)
        assert result.physical_calls == 1
        assert workbook.call_log[-1].addresses == ("A6",)

    def test_all_rejected_makes_no_call(self) -> None:
        engine, workbook = build()

        result = engine.write([WriteRequest("T1", "A1:B2", [["x", "y"]])])

        assert result.failed == 1
        assert result.physical_calls == 0
        assert workbook.call_log == []

    def test_update_needs_values_or_format(self) -> None:
        engine, _ = build()

        result = engine.update([UpdateRequest("T1", "A2")])

        assert result.items[0].category == ErrorCategory.VALIDATION


class TestUpdate:
    def test_adjacent_single_cells_merged(self) -> None:
        engine, workbook = build()
        requests = [UpdateRequest("T1", f"{col}2", values=[[col.lower()]]) for col in ("E", "C", "D")]

        result = engine.update(requests)

        assert result.all_ok and result.total == 3
        assert [(c.method, c.addresses) for c in workbook.call_log] == [("update_ranges", ("C2:E2",))]
        assert engine.read([ReadRequest("T1", "C2:E2")]).items[0].value == [["c", "d", "e"]]

    def test_non_adjacent_cells_not_merged(self) -> None:
        engine, workbook = build()

        engine.update([UpdateRequest("T1", "A2", values=[["x"]]), UpdateRequest("T1", "C2", values=[["y"]])])

        assert workbook.call_log[0].addresses == ("A2", "C2")

    def test_values_and_formats_share_one_call(self) -> None:
        engine, workbook = build()
        bold = CellFormat(font_weight="bold", background_color="#ffcccc")

        result = engine.update(
            [
                UpdateRequest("T1", "A2", values=[["x"]], format=bold),
                UpdateRequest("T1", "B3", values=[["y"]], format=bold),
                UpdateRequest("T1", "C2", format=bold),
            ]
        )

        assert result.all_ok
        assert result.physical_calls == 1
        assert [c.method for c in workbook.call_log] == ["update_ranges"]
        assert workbook.format_of("T1", 2, 2) == {"font_weight": "bold", "background_color": "#ffcccc"}
        assert engine.read([ReadRequest("T1", "A2:B3")]).items[0].value == [["x", None], [None, "y"]]

    @given(
        kinds=st.lists(st.sampled_from(["values", "format", "both"]), min_size=1, max_size=30),
        m=st.integers(min_value=1, max_value=8),
    )
    def test_mixed_updates_take_ceiling_calls(self, kinds: list[str], m: int) -> None:
        """Value, format and combined updates still cost ceil(N/M) physical calls."""
        engine, workbook = build(max_size=m)
        fmt = CellFormat(font_color="blue")
        requests = [
            UpdateRequest(
                "T1",
                f"A{row}",
                values=[["v"]] if kind != "format" else None,
                format=fmt if kind != "values" else None,
            )
            for row, kind in enumerate(kinds, start=2)
        ]

        result = engine.update(requests)

        assert result.physical_calls == len(workbook.call_log) == math.ceil(len(kinds) / m)
        assert result.successful == len(kinds)

    def test_failed_chunk_writes_no_formats(self) -> None:
        engine, workbook = build(FailingWorkbook(fail_table="T1"))
        red = CellFormat(background_color="#ff0000")

        result = engine.update([UpdateRequest("T1", "A2", values=[["x"]], format=red)])

        assert not result.items[0].ok
        assert "quota exceeded" in (result.items[0].error or "")
        assert workbook.format_of("T1", 2, 0) == {}
        assert workbook.get_ranges("T1", [CellRange.cell(2, 0)]) == [[[None]]]

    def test_format_only_update_keeps_cache(self) -> None:
        engine, _ = build()
        engine.read([ReadRequest("T1", "B2")])

        engine.update([UpdateRequest("T1", "B2", format=CellFormat(font_color="red"))])

        assert engine.read([ReadRequest("T1", "B2")]).items[0].from_cache


class TestDelete:
    def test_delete_clears_and_evicts(self) -> None:
        engine, _ = build()
        engine.write([WriteRequest("T1", "A2:B2", [["x", "y"]])])
        engine.read([ReadRequest("T1", "A2:B2")])

        result = engine.delete([DeleteRequest("T1", "A2")])
        after = engine.read([ReadRequest("T1", "A2:B2")])

        assert result.all_ok
        assert not after.items[0].from_cache
        assert after.items[0].value == [[None, "y"]]
