"""CasebookEngine: one instance of every component, with an explicit lifecycle.

The engine owns the read cache, the lock ceiling timers and the rate
limiters. Construct it once per process, share it, and call
``shutdown()`` (or use it as a context manager) to stop its background
threads.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Self

import structlog

from casebook.contracts.fields import FieldName
from casebook.core.backend import InMemoryWorkbook, SqlWorkbook, WorkbookDB
from casebook.core.batch import BatchEngine
from casebook.core.cache import TTLCache
from casebook.core.config import CasebookSettings
from casebook.core.locks import LockCoordinator, MemoryLockStore, SqlLockStore
from casebook.core.rate_limit import RateLimitRegistry
from casebook.core.schema import SchemaMapper
from casebook.engine.integrity import IntegrityChecker, IntegrityOptions
from casebook.engine.records import RecordModel

if TYPE_CHECKING:
    from types import TracebackType

    from casebook.contracts.records import Record, SearchResult, Snapshot
    from casebook.contracts.results import CacheStatistics, IntegrityReport, LockInfo
    from casebook.core.backend.protocol import Workbook
    from casebook.core.locks import LockStore

logger = structlog.get_logger(__name__)


class CasebookEngine:
    """Facade over the Record Model, Integrity Checker and administration surfaces.

    Args:
        settings: Engine settings; defaults to an in-memory workbook
        workbook: Explicit workbook (overrides ``settings.backend``)
        lock_store: Explicit lock store (overrides ``settings.backend``)
        owner_id: Identity recorded on lock tickets
        sleep: Delay function for batch pacing and lock polling
        now: Current time source for record defaults and integrity dates

    Example:
        with CasebookEngine(load_settings(Path("casebook.yaml"))) as engine:
            engine.provision_tables()
            engine.create_record("OT Email", {"caseId": "C-1"})
            report = engine.run_integrity_check()
    """

    def __init__(
        self,
        settings: CasebookSettings | None = None,
        *,
        workbook: Workbook | None = None,
        lock_store: LockStore | None = None,
        owner_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or CasebookSettings()
        self._db: WorkbookDB | None = None
        self._closed = False

        if (workbook is None or lock_store is None) and self.settings.backend.kind == "sql":
            self._db = WorkbookDB(self.settings.backend.url, echo=self.settings.backend.echo)
        if workbook is None:
            workbook = SqlWorkbook(self._db) if self._db is not None else InMemoryWorkbook()
        if lock_store is None:
            lock_store = SqlLockStore(self._db) if self._db is not None else MemoryLockStore()

        self.workbook = workbook
        self.mapper = SchemaMapper()
        self._cache: TTLCache[Any, list[list[Any]]] = TTLCache(
            self.settings.cache.ttl_seconds,
            sweep_interval_seconds=self.settings.cache.sweep_interval_seconds,
            name="read_cache",
        )
        self._limiters = RateLimitRegistry(self.settings.rate_limit)
        self.batch = BatchEngine(workbook, self.settings.batch, self._cache, self._limiters, sleep=sleep)
        self.locks = LockCoordinator(lock_store, self.settings.locks, owner_id=owner_id, sleep=sleep)
        self.records = RecordModel(self.mapper, self.batch, self.locks, self.settings.records, now=now)
        self.integrity = IntegrityChecker(self.records, self.mapper, self.settings.integrity, today=now)
        logger.info(
            "Engine started",
            workbook=type(workbook).__name__,
            cache_ttl_seconds=self.settings.cache.ttl_seconds,
            rate_limit_enabled=self.settings.rate_limit.enabled,
        )

    # === Provisioning ===

    def provision_tables(self) -> list[str]:
        """Create every missing table with its header row; returns the ids created."""
        created = [
            table_id
            for table_id in self.mapper.table_ids()
            if self.workbook.create_table(table_id, self.mapper.header_row(table_id))
        ]
        if created:
            logger.info("Tables provisioned", tables=created)
        return created

    # === Record Model ===

    def create_record(self, table_id: str, fields: Mapping[FieldName | str, Any]) -> Record:
        return self.records.create_record(table_id, fields)

    def read_record(self, table_id: str, case_id: str) -> Record | None:
        return self.records.read_record(table_id, case_id)

    def update_record(self, table_id: str, case_id: str, fields: Mapping[FieldName | str, Any]) -> Record:
        return self.records.update_record(table_id, case_id, fields)

    def delete_record(self, table_id: str, case_id: str) -> Record:
        return self.records.delete_record(table_id, case_id)

    def search_records(
        self,
        table_id: str,
        filter: Mapping[FieldName | str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
        **kwargs: Any,
    ) -> SearchResult:
        return self.records.search_records(table_id, filter, limit, offset, **kwargs)

    def snapshot(self, table_ids: Sequence[str] | None = None, *, bypass_cache: bool = False) -> Snapshot:
        return self.records.snapshot(table_ids, bypass_cache=bypass_cache)

    # === Integrity and administration ===

    def run_integrity_check(self, options: IntegrityOptions | None = None) -> IntegrityReport:
        return self.integrity.run(options)

    def get_lock_status(self) -> list[LockInfo]:
        return self.locks.status()

    def get_cache_statistics(self) -> CacheStatistics:
        return self.batch.statistics()

    def clear_cache(self) -> int:
        return self.batch.clear_cache()

    # === Lifecycle ===

    def shutdown(self) -> None:
        """Stop background threads and release backend resources. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._cache.close()
        self.locks.shutdown()
        self._limiters.close()
        self.workbook.close()
        if self._db is not None:
            self._db.close()
        logger.info("Engine stopped")

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown()
