"""Tests for engine construction, provisioning, shared backends and shutdown."""

from __future__ import annotations

from pathlib import Path

import pytest

from casebook.contracts.results import LockTicket
from casebook.core.backend import InMemoryWorkbook, SqlWorkbook
from casebook.core.config import BackendSettings, CacheSettings, CasebookSettings


def sql_settings(settings_factory, tmp_path: Path) -> CasebookSettings:
    return settings_factory(backend=BackendSettings(kind="sql", url=f"sqlite:///{tmp_path / 'cases.db'}"))


class TestConstruction:
    def test_memory_backend_by_default(self, engine) -> None:
        assert isinstance(engine.workbook, InMemoryWorkbook)

    def test_provision_is_idempotent(self, engine) -> None:
        assert engine.provision_tables() == []
        assert engine.workbook.table_ids() == engine.mapper.table_ids()

    def test_provision_writes_headers(self, engine) -> None:
        header = engine.mapper.header_row("3PO Email")

        (block,) = engine.workbook.get_ranges("3PO Email", [engine.mapper.row_range("3PO Email", 1)])

        assert [cell or "" for cell in block[0]] == header

    def test_sql_backend_from_settings(self, engine_factory, settings_factory, tmp_path: Path) -> None:
        engine = engine_factory(sql_settings(settings_factory, tmp_path))

        assert isinstance(engine.workbook, SqlWorkbook)
        assert len(engine.workbook.table_ids()) == 6


class TestSharedDatabase:
    """Two engines on one database stand in for two processes."""

    def test_records_visible_across_engines(self, engine_factory, settings_factory, tmp_path: Path) -> None:
        settings = sql_settings(settings_factory, tmp_path)
        writer = engine_factory(settings, owner_id="writer")
        reader = engine_factory(settings, owner_id="reader")

        writer.create_record("OT Email", {"caseId": "C-1", "firstAssignee": "alice"})

        assert reader.read_record("OT Email", "C-1").get("firstAssignee") == "alice"

    def test_duplicate_rejected_across_engines(self, engine_factory, settings_factory, tmp_path: Path) -> None:
        from casebook.contracts.errors import DuplicateCaseIdError

        settings = sql_settings(settings_factory, tmp_path)
        first = engine_factory(settings)
        second = engine_factory(settings)
        first.create_record("OT Phone", {"caseId": "C-1"})

        with pytest.raises(DuplicateCaseIdError):
            second.create_record("OT Phone", {"caseId": "C-1"})

    def test_locks_visible_across_engines(self, engine_factory, settings_factory, tmp_path: Path) -> None:
        settings = sql_settings(settings_factory, tmp_path)
        holder = engine_factory(settings, owner_id="holder")
        observer = engine_factory(settings, owner_id="observer")

        ticket = holder.locks.acquire("case_update_C-1")

        assert isinstance(ticket, LockTicket)
        assert [(info.lock_key, info.owner_id) for info in observer.get_lock_status()] == [
            ("case_update_C-1", "holder")
        ]
        assert holder.locks.release("case_update_C-1", ticket) is True
        assert observer.get_lock_status() == []


class TestCacheAdministration:
    def test_statistics_and_clear(self, engine) -> None:
        engine.create_record("OT Email", {"caseId": "C-1"})
        engine.snapshot()
        engine.snapshot()

        stats = engine.get_cache_statistics()

        assert stats.hits >= 1
        assert stats.size >= 1
        assert stats.ttl_seconds == 300
        assert stats.physical_calls["read"] > 0
        assert engine.clear_cache() == stats.size
        assert engine.get_cache_statistics().size == 0

    def test_ttl_from_settings(self, engine_factory, settings_factory) -> None:
        engine = engine_factory(settings_factory(cache=CacheSettings(ttl_seconds=42)))

        assert engine.get_cache_statistics().ttl_seconds == 42


class TestShutdown:
    def test_shutdown_stops_background_threads(self, settings_factory) -> None:
        from casebook.engine import CasebookEngine

        engine = CasebookEngine(settings_factory(cache=CacheSettings(sweep_interval_seconds=0.05)))
        engine.provision_tables()
        engine.locks.acquire("k")

        engine.shutdown()
        engine.shutdown()

        assert not engine._cache.running
        assert engine.locks._timers == {}

    def test_context_manager(self, settings_factory) -> None:
        from casebook.engine import CasebookEngine

        with CasebookEngine(settings_factory()) as engine:
            engine.provision_tables()
            engine.create_record("OT Chat", {"caseId": "C-1"})

        assert not engine._cache.running
