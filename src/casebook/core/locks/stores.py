"""Lock namespaces shared by lock coordinators.

A store only ever holds one ticket per lock key. A ticket whose
``expires_at`` has passed is treated as free and may be taken over by the
next acquirer, so a crashed holder can never wedge a key past its ceiling.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Protocol

import structlog
from sqlalchemy import and_, delete, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from casebook.contracts.errors import BackendUnavailableError
from casebook.contracts.results import LockTicket
from casebook.core.backend.schema import locks_table

if TYPE_CHECKING:
    from sqlalchemy.engine import Row

    from casebook.core.backend.database import WorkbookDB

logger = structlog.get_logger(__name__)


class LockStore(Protocol):
    def try_acquire(self, ticket: LockTicket, now: float) -> LockTicket | None:
        """Store ``ticket`` if the key is free or expired.

        Returns:
            None on success, otherwise the ticket currently holding the key
        """
        ...

    def release(self, lock_key: str, ticket_id: str) -> bool:
        """Remove the key if ``ticket_id`` holds it."""
        ...

    def active(self, now: float) -> list[LockTicket]: ...

    def purge_expired(self, now: float) -> int: ...


class MemoryLockStore:
    """Process-local lock namespace."""

    def __init__(self) -> None:
        self._tickets: dict[str, LockTicket] = {}
        self._lock = threading.Lock()

    def try_acquire(self, ticket: LockTicket, now: float) -> LockTicket | None:
        with self._lock:
            current = self._tickets.get(ticket.lock_key)
            if current is not None and current.expires_at > now:
                return current
            if current is not None:
                logger.info("Expired lock taken over", lock_key=ticket.lock_key, previous_owner=current.owner_id)
            self._tickets[ticket.lock_key] = ticket
            return None

    def release(self, lock_key: str, ticket_id: str) -> bool:
        with self._lock:
            current = self._tickets.get(lock_key)
            if current is None or current.ticket_id != ticket_id:
                return False
            del self._tickets[lock_key]
            return True

    def active(self, now: float) -> list[LockTicket]:
        with self._lock:
            return [ticket for ticket in self._tickets.values() if ticket.expires_at > now]

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired = [key for key, ticket in self._tickets.items() if ticket.expires_at <= now]
            for key in expired:
                del self._tickets[key]
            return len(expired)


def _ticket_from_row(row: Row) -> LockTicket:
    return LockTicket(
        lock_key=row.lock_key,
        ticket_id=row.ticket_id,
        owner_id=row.owner_id,
        acquired_at=row.acquired_at,
        timeout=row.timeout,
        expires_at=row.expires_at,
    )


class SqlLockStore:
    """Lock namespace in the ``locks`` table, shared by every process using the database."""

    def __init__(self, db: WorkbookDB) -> None:
        self._db = db

    def try_acquire(self, ticket: LockTicket, now: float) -> LockTicket | None:
        try:
            with self._db.connection() as conn:
                row = conn.execute(select(locks_table).where(locks_table.c.lock_key == ticket.lock_key)).first()
                if row is not None:
                    current = _ticket_from_row(row)
                    if current.expires_at > now:
                        return current
                    # Conditional delete: a concurrent taker may have replaced the stale row
                    removed = conn.execute(
                        delete(locks_table).where(
                            and_(
                                locks_table.c.lock_key == ticket.lock_key,
                                locks_table.c.ticket_id == current.ticket_id,
                            )
                        )
                    ).rowcount
                    if removed == 0:
                        return current
                    logger.info("Expired lock taken over", lock_key=ticket.lock_key, previous_owner=current.owner_id)
                conn.execute(
                    insert(locks_table).values(
                        lock_key=ticket.lock_key,
                        ticket_id=ticket.ticket_id,
                        owner_id=ticket.owner_id,
                        acquired_at=ticket.acquired_at,
                        expires_at=ticket.expires_at,
                        timeout=ticket.timeout,
                    )
                )
                return None
        except IntegrityError:
            # Lost an insert race; report whoever won
            return self._holder(ticket.lock_key) or ticket
        except SQLAlchemyError as e:
            raise BackendUnavailableError(f"Lock store unavailable: {e}") from e

    def _holder(self, lock_key: str) -> LockTicket | None:
        with self._db.connection() as conn:
            row = conn.execute(select(locks_table).where(locks_table.c.lock_key == lock_key)).first()
            return _ticket_from_row(row) if row is not None else None

    def release(self, lock_key: str, ticket_id: str) -> bool:
        try:
            with self._db.connection() as conn:
                removed = conn.execute(
                    delete(locks_table).where(
                        and_(locks_table.c.lock_key == lock_key, locks_table.c.ticket_id == ticket_id)
                    )
                ).rowcount
                return bool(removed)
        except SQLAlchemyError as e:
            raise BackendUnavailableError(f"Lock store unavailable: {e}") from e

    def active(self, now: float) -> list[LockTicket]:
        with self._db.connection() as conn:
            rows = conn.execute(
                select(locks_table).where(locks_table.c.expires_at > now).order_by(locks_table.c.acquired_at)
            )
            return [_ticket_from_row(row) for row in rows]

    def purge_expired(self, now: float) -> int:
        with self._db.connection() as conn:
            return int(conn.execute(delete(locks_table).where(locks_table.c.expires_at <= now)).rowcount)
