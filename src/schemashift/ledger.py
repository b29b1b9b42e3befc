"""Applied-state ledger.

The ledger table (``schema_migrations`` by default) is the single source of
truth for which migration versions have been applied::

    schema_migrations(version PRIMARY KEY, applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)

Reads open their own short-lived connection.  Writes take the caller's
connection so the ledger row commits or rolls back together with the
migration body in the executor's transaction.
"""

from __future__ import annotations

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection

from schemashift.database import Database
from schemashift.logging import get_logger
from schemashift.models import LedgerEntry

logger = get_logger(__name__)


class Ledger:
    """Reads and writes the applied-state table."""

    def __init__(self, db: Database, table: str | None = None) -> None:
        self._db = db
        # Validated as a plain identifier by MigrationSettings
        self.table = table or db.settings.ledger_table

    def init(self) -> None:
        """Create the ledger table if absent. Idempotent."""
        with self._db.transaction() as conn:
            conn.exec_driver_sql(self._db.dialect.create_ledger_sql(self.table))
        logger.debug("ledger.initialized", table=self.table)

    def exists(self, conn: Connection | None = None) -> bool:
        if conn is not None:
            return inspect(conn).has_table(self.table)
        with self._db.connect() as own:
            return inspect(own).has_table(self.table)

    def entries(self) -> list[LedgerEntry]:
        """All ledger rows, ascending by version.

        A missing table reads as an empty ledger, so read-only callers never
        have to create it.
        """
        with self._db.connect() as conn:
            if not self.exists(conn):
                return []
            rows = conn.execute(
                text(f"SELECT version, applied_at FROM {self.table} ORDER BY version")
            ).all()
        return [LedgerEntry(version=row[0], applied_at=row[1]) for row in rows]

    def applied_versions(self) -> list[str]:
        """Applied versions, ascending."""
        return [entry.version for entry in self.entries()]

    def record_applied(self, conn: Connection, version: str) -> None:
        """Insert the ledger row for *version* on the caller's transaction."""
        conn.execute(
            text(f"INSERT INTO {self.table} (version) VALUES (:version)"),
            {"version": version},
        )

    def remove_applied(self, conn: Connection, version: str) -> None:
        """Delete the ledger row for *version* on the caller's transaction."""
        conn.execute(
            text(f"DELETE FROM {self.table} WHERE version = :version"),
            {"version": version},
        )

    def __repr__(self) -> str:
        return f"Ledger(table={self.table!r}, backend={self._db.name!r})"


__all__ = ["Ledger"]
