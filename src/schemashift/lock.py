"""Advisory lock serializing ``migrate`` and ``rollback`` runs.

Two simultaneous runs would otherwise both see the same pending set and
apply the same migration twice.  ``MigrationLock`` is held from before
planning until the last step of the run has committed.

ARCHITECTURE
────────────
::

    MigrationLock(db)
      ├── .acquire()   ─ poll try-lock until lock_timeout, else LockError
      ├── .release()   ─ explicit unlock (idempotent)
      └── context manager: acquire on enter, release in finally

    PostgreSQL  pg_try_advisory_lock(key)   session-level, bigint key
    MySQL       GET_LOCK(name, 0)           session-level, named
    SQLite      <ledger>_lock table         single row with expires_at

The native locks live on a dedicated connection kept open for the whole
run; closing that connection releases them even if the process crashes.
The SQLite row carries an expiry so a crashed run cannot block forever;
an expired row is taken over.  While another connection holds a write
transaction (a run mid-migration) SQLite reports the database as locked;
that counts as contention and the poll continues.

Example::

    with MigrationLock(db):
        run_pending_migrations()
"""

from __future__ import annotations

import hashlib
import os
import socket
import time
from datetime import UTC, datetime, timedelta
from types import TracebackType

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from schemashift.database import Database
from schemashift.dialect import SQLiteDialect
from schemashift.errors import LockError
from schemashift.logging import get_logger

logger = get_logger(__name__)

# SQLite lock rows expire after this long without release
DEFAULT_LOCK_TTL_SECONDS = 3600


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def advisory_key(name: str) -> int:
    """Stable signed 64-bit key for ``pg_advisory_lock`` derived from *name*."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def _is_busy(exc: OperationalError) -> bool:
    """True when SQLite refused a write because another connection holds one."""
    message = str(exc.orig).lower()
    return "locked" in message or "busy" in message


class MigrationLock:
    """Cross-process lock for one migrations ledger."""

    def __init__(
        self,
        db: Database,
        *,
        name: str | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    ) -> None:
        self._db = db
        self.name = name or db.settings.ledger_table
        self.timeout = db.settings.lock_timeout if timeout is None else timeout
        self.poll_interval = (
            db.settings.lock_poll_interval if poll_interval is None else poll_interval
        )
        self.ttl_seconds = ttl_seconds
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{id(self):x}"
        self._conn: Connection | None = None
        self._held = False
        self._table_ready = False
        self._busy_limited = False

    @property
    def held(self) -> bool:
        return self._held

    @property
    def lock_table(self) -> str:
        return f"{self.name}_lock"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def acquire(self) -> None:
        """Block until the lock is held or ``timeout`` elapses.

        Raises:
            LockError: Another run still holds the lock after ``timeout``.
        """
        if self._held:
            return

        deadline = time.monotonic() + self.timeout
        self._conn = self._db.open()
        try:
            if not self._db.dialect.native_lock:
                self._limit_busy_wait()
            while True:
                if self._try_acquire():
                    self._held = True
                    logger.info("lock.acquired", name=self.name, owner=self.owner)
                    return
                if time.monotonic() >= deadline:
                    raise LockError(
                        f"Could not acquire migration lock {self.name!r} within "
                        f"{self.timeout:g}s; another migration run may be in progress"
                    ).with_context(lock=self.name, holder=self._holder())
                logger.debug("lock.waiting", name=self.name)
                time.sleep(self.poll_interval)
        except BaseException:
            self._close()
            raise

    def release(self) -> None:
        """Release the lock if held. Safe to call more than once."""
        if not self._held or self._conn is None:
            self._close()
            return
        try:
            if self._db.dialect.native_lock:
                self._conn.execute(
                    text(self._db.dialect.unlock_sql()), {"key": self._key()}
                )
                self._conn.commit()
            else:
                self._conn.execute(
                    text(f"DELETE FROM {self.lock_table} WHERE id = 1 AND locked_by = :owner"),
                    {"owner": self.owner},
                )
                self._conn.commit()
            logger.info("lock.released", name=self.name, owner=self.owner)
        except SQLAlchemyError as exc:
            # Native locks die with the session closed below; a stale SQLite
            # row expires after ttl_seconds.
            logger.warning("lock.release_failed", name=self.name, error=str(exc))
        finally:
            self._held = False
            self._close()

    def __enter__(self) -> MigrationLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _key(self) -> int | str:
        if self._db.dialect.name == "postgresql":
            return advisory_key(self.name)
        # MySQL lock names are limited to 64 characters
        return f"schemashift:{self.name}"[:64]

    def _try_acquire(self) -> bool:
        assert self._conn is not None
        if self._db.dialect.native_lock:
            got = self._conn.execute(
                text(self._db.dialect.try_lock_sql()), {"key": self._key()}
            ).scalar()
            self._conn.commit()
            return bool(got)
        try:
            if not self._table_ready:
                self._ensure_lock_table()
            return self._try_acquire_row()
        except OperationalError as exc:
            if not _is_busy(exc):
                raise
            self._conn.rollback()
            logger.debug("lock.database_busy", name=self.name)
            return False

    def _limit_busy_wait(self) -> None:
        """Wait at most one poll interval inside SQLite for a busy database."""
        assert self._conn is not None
        millis = max(int(self.poll_interval * 1000), 1)
        self._conn.exec_driver_sql(f"PRAGMA busy_timeout = {millis}")
        self._conn.commit()
        self._busy_limited = True

    def _ensure_lock_table(self) -> None:
        assert self._conn is not None
        dialect = self._db.dialect
        assert isinstance(dialect, SQLiteDialect)
        self._conn.exec_driver_sql(dialect.create_lock_table_sql(self.lock_table))
        self._conn.commit()
        self._table_ready = True

    def _try_acquire_row(self) -> bool:
        assert self._conn is not None
        now = utcnow()
        expires_at = now + timedelta(seconds=self.ttl_seconds)

        # Take over an expired lock left by a crashed run
        self._conn.execute(
            text(f"DELETE FROM {self.lock_table} WHERE id = 1 AND expires_at < :now"),
            {"now": now.isoformat()},
        )
        try:
            self._conn.execute(
                text(
                    f"INSERT INTO {self.lock_table} (id, locked_by, locked_at, expires_at) "
                    "VALUES (1, :owner, :locked_at, :expires_at)"
                ),
                {
                    "owner": self.owner,
                    "locked_at": now.isoformat(),
                    "expires_at": expires_at.isoformat(),
                },
            )
            self._conn.commit()
            return True
        except IntegrityError:
            self._conn.rollback()
            return False

    def _holder(self) -> str | None:
        if self._conn is None or self._db.dialect.native_lock:
            return None
        try:
            row = self._conn.execute(
                text(f"SELECT locked_by FROM {self.lock_table} WHERE id = 1")
            ).first()
            self._conn.rollback()
        except SQLAlchemyError:
            return None
        return row[0] if row else None

    def _close(self) -> None:
        if self._conn is not None:
            if self._busy_limited:
                # Drop the connection rather than pool it with a short busy timeout
                self._conn.invalidate()
                self._busy_limited = False
            self._conn.close()
            self._conn = None


__all__ = ["MigrationLock", "advisory_key", "DEFAULT_LOCK_TTL_SECONDS"]
