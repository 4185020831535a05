"""Lock Coordinator: named, timeout-bound exclusive locks.

Locks are advisory and pessimistic. Acquisition polls the store until the
key is free or the timeout elapses; a timeout is returned as a value, not
raised. Every granted ticket arms a daemon timer that force-releases it at
the hard ceiling, and the store independently treats tickets past
``expires_at`` as free.
"""

from __future__ import annotations

import os
import socket
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

import structlog

from casebook.contracts.enums import OperationType
from casebook.contracts.errors import CasebookError, LockTimeoutError
from casebook.contracts.results import LockInfo, LockTicket, LockTimeout

if TYPE_CHECKING:
    from casebook.core.config import LockSettings
    from casebook.core.locks.stores import LockStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def case_update_key(case_id: str) -> str:
    return f"case_update_{case_id}"


def case_create_key(table_id: str) -> str:
    return f"case_create_{table_id}"


def batch_key(table_id: str, operation: OperationType | str) -> str:
    return f"batch_{table_id}_{operation}"


def default_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LockCoordinator:
    """Hands out lock tickets from a shared store.

    Args:
        store: Lock namespace (memory or SQL)
        settings: Default timeout, hard ceiling and poll interval
        owner_id: Identity recorded on tickets; defaults to host:pid:random
        clock: Wall-clock time source, shared across processes via the store
        sleep: Wait between polls (injectable for tests)
    """

    def __init__(
        self,
        store: LockStore,
        settings: LockSettings,
        *,
        owner_id: str | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._settings = settings
        self.owner_id = owner_id or default_owner_id()
        self._clock = clock
        self._sleep = sleep
        self._timers: dict[str, threading.Timer] = {}
        self._timers_lock = threading.Lock()

    def acquire(self, lock_key: str, timeout: float | None = None, *, owner_id: str | None = None) -> LockTicket | LockTimeout:
        """Wait up to ``timeout`` seconds for ``lock_key``.

        Returns:
            A LockTicket when granted, a LockTimeout otherwise
        """
        if not lock_key:
            raise ValueError("lock_key must be a non-empty string")
        wait = self._settings.default_timeout_seconds if timeout is None else timeout
        owner = owner_id or self.owner_id
        started = self._clock()
        deadline = started + wait
        holder: LockTicket | None = None

        while True:
            now = self._clock()
            ticket = LockTicket(
                lock_key=lock_key,
                ticket_id=uuid.uuid4().hex,
                owner_id=owner,
                acquired_at=now,
                timeout=wait,
                expires_at=now + self._settings.max_hold_seconds,
            )
            holder = self._store.try_acquire(ticket, now)
            if holder is None:
                self._arm_timer(ticket)
                logger.debug("Lock acquired", lock_key=lock_key, owner_id=owner, waited=round(now - started, 3))
                return ticket
            now = self._clock()
            if now >= deadline:
                break
            self._sleep(min(self._settings.poll_interval_seconds, deadline - now))

        waited = self._clock() - started
        logger.warning("Lock acquisition timed out", lock_key=lock_key, owner_id=owner, holder=holder.owner_id, waited=waited)
        return LockTimeout(lock_key=lock_key, owner_id=owner, timeout=wait, waited_seconds=waited, holder=holder.owner_id)

    def _arm_timer(self, ticket: LockTicket) -> None:
        timer = threading.Timer(self._settings.max_hold_seconds, self._force_release, args=(ticket,))
        timer.daemon = True
        timer.name = f"lock_ceiling_{ticket.ticket_id[:8]}"
        with self._timers_lock:
            self._timers[ticket.ticket_id] = timer
        timer.start()

    def _disarm_timer(self, ticket_id: str) -> None:
        with self._timers_lock:
            timer = self._timers.pop(ticket_id, None)
        if timer is not None:
            timer.cancel()

    def _force_release(self, ticket: LockTicket) -> None:
        with self._timers_lock:
            self._timers.pop(ticket.ticket_id, None)
        try:
            released = self._store.release(ticket.lock_key, ticket.ticket_id)
        except CasebookError as e:
            logger.warning("Forced lock release failed", lock_key=ticket.lock_key, error=str(e))
            return
        if released:
            logger.warning(
                "Lock force-released at hard ceiling",
                lock_key=ticket.lock_key,
                owner_id=ticket.owner_id,
                max_hold_seconds=self._settings.max_hold_seconds,
            )

    def release(self, lock_key: str, ticket: LockTicket) -> bool:
        """Release a lock held by ``ticket``.

        Foreign or stale tickets (already force-released, taken over, or for
        another key) are a logged no-op. A store failure is logged and
        reported as False; the entry then lapses at ``expires_at``.
        """
        if ticket.lock_key != lock_key:
            logger.warning("Release with ticket for another key", lock_key=lock_key, ticket_key=ticket.lock_key)
            return False
        self._disarm_timer(ticket.ticket_id)
        try:
            released = self._store.release(lock_key, ticket.ticket_id)
        except CasebookError as e:
            logger.warning("Lock release failed", lock_key=lock_key, owner_id=ticket.owner_id, error=str(e))
            return False
        if released:
            logger.debug("Lock released", lock_key=lock_key, owner_id=ticket.owner_id)
        else:
            logger.warning("Release of lock not held by ticket", lock_key=lock_key, owner_id=ticket.owner_id)
        return released

    def with_lock(self, lock_key: str, timeout: float | None, fn: Callable[[], T]) -> T:
        """Run ``fn`` while holding ``lock_key``; the lock is released even if ``fn`` raises.

        Raises:
            LockTimeoutError: If the lock could not be acquired in time
        """
        with self.hold(lock_key, timeout):
            return fn()

    @contextmanager
    def hold(self, lock_key: str, timeout: float | None = None) -> Iterator[LockTicket]:
        """Context-manager form of ``with_lock``."""
        outcome = self.acquire(lock_key, timeout)
        if isinstance(outcome, LockTimeout):
            raise LockTimeoutError(outcome)
        try:
            yield outcome
        finally:
            self.release(lock_key, outcome)

    def status(self) -> list[LockInfo]:
        """Active (unexpired) locks in the shared store."""
        now = self._clock()
        return [
            LockInfo(
                lock_key=ticket.lock_key,
                ticket_id=ticket.ticket_id,
                owner_id=ticket.owner_id,
                acquired_at=ticket.acquired_at,
                expires_at=ticket.expires_at,
                age_seconds=max(0.0, now - ticket.acquired_at),
                timeout=ticket.timeout,
            )
            for ticket in self._store.active(now)
        ]

    def cleanup(self) -> int:
        """Purge expired entries from the store."""
        purged = self._store.purge_expired(self._clock())
        if purged:
            logger.info("Expired locks purged", purged=purged)
        return purged

    def shutdown(self) -> None:
        """Cancel ceiling timers. Locks still held stay in the store until they expire."""
        with self._timers_lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
