"""SQL dialect fragments for the ledger and the advisory lock.

Migration bodies are executed verbatim, so the only engine-specific SQL
schemashift itself emits is the ledger DDL and the locking statements.
Each ``Dialect`` returns those fragments for its engine; every dynamic value
is a named bind parameter (``:version``, ``:key``), never interpolated.

Architecture::

    ┌────────────┐   ┌─────────────────────┐   ┌──────────────────────┐
    │  SQLite    │   │  PostgreSQL         │   │  MySQL               │
    │  TEXT pk   │   │  VARCHAR(255) pk    │   │  VARCHAR(255) pk     │
    │  lock row  │   │  pg_advisory_lock   │   │  GET_LOCK            │
    └────────────┘   └─────────────────────┘   └──────────────────────┘

Examples:
    >>> from schemashift.dialect import get_dialect
    >>> d = get_dialect("postgresql")
    >>> d.try_lock_sql()
    'SELECT pg_try_advisory_lock(:key)'

Tags:
    dialect, sql, portability, schemashift
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from schemashift.settings import DatabaseEngine


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract used by the ledger and the lock."""

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    @property
    def native_lock(self) -> bool:
        """True when the engine has a session-level advisory lock."""
        ...

    def create_ledger_sql(self, table: str) -> str:
        """``CREATE TABLE IF NOT EXISTS`` statement for the ledger."""
        ...

    def try_lock_sql(self) -> str:
        """Non-blocking lock attempt, returns a truthy scalar on success."""
        ...

    def unlock_sql(self) -> str:
        """Release the lock taken by :meth:`try_lock_sql`."""
        ...


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class SQLiteDialect:
    """SQLite dialect — ``TEXT`` key, table-backed lock."""

    @property
    def name(self) -> str:
        return "sqlite"

    @property
    def native_lock(self) -> bool:
        return False

    def create_ledger_sql(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "version TEXT PRIMARY KEY, "
            "applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
        )

    def create_lock_table_sql(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "id INTEGER PRIMARY KEY CHECK (id = 1), "
            "locked_by TEXT NOT NULL, "
            "locked_at TEXT NOT NULL, "
            "expires_at TEXT NOT NULL)"
        )

    def try_lock_sql(self) -> str:
        raise NotImplementedError("SQLite has no advisory lock; use the lock table")

    def unlock_sql(self) -> str:
        raise NotImplementedError("SQLite has no advisory lock; use the lock table")


class PostgreSQLDialect:
    """PostgreSQL dialect — session-level ``pg_advisory_lock`` on a bigint key."""

    @property
    def name(self) -> str:
        return "postgresql"

    @property
    def native_lock(self) -> bool:
        return True

    def create_ledger_sql(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "version VARCHAR(255) PRIMARY KEY, "
            "applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
        )

    def try_lock_sql(self) -> str:
        return "SELECT pg_try_advisory_lock(:key)"

    def unlock_sql(self) -> str:
        return "SELECT pg_advisory_unlock(:key)"


class MySQLDialect:
    """MySQL dialect — named ``GET_LOCK`` / ``RELEASE_LOCK``.

    MySQL commits DDL implicitly, so a failed migration can leave part of
    its schema change behind even though the ledger row is not written.
    """

    @property
    def name(self) -> str:
        return "mysql"

    @property
    def native_lock(self) -> bool:
        return True

    def create_ledger_sql(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ("
            "version VARCHAR(255) PRIMARY KEY, "
            "applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
        )

    def try_lock_sql(self) -> str:
        return "SELECT GET_LOCK(:key, 0)"

    def unlock_sql(self) -> str:
        return "SELECT RELEASE_LOCK(:key)"


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
    "mysql": MySQLDialect(),
}


def get_dialect(db_type: str | DatabaseEngine) -> Dialect:
    """Get a dialect by engine name.

    Raises:
        ValueError: If ``db_type`` is not recognised.
    """
    key = db_type.value if isinstance(db_type, DatabaseEngine) else db_type.lower()
    if key not in _DIALECTS:
        raise ValueError(
            f"Unknown dialect '{db_type}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres'})}"
        )
    return _DIALECTS[key]


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "get_dialect",
]
