"""SQLAlchemy engine factory and connection helpers.

``Database`` is the single entry point to the live database for the ledger,
the lock and the executor.  It owns one SQLAlchemy ``Engine`` built from
:class:`~schemashift.settings.MigrationSettings` and maps driver-level
connection failures to :class:`~schemashift.errors.DatabaseConnectionError`.

SQLite note: pysqlite does not emit ``BEGIN`` before DDL, so by default a
``CREATE TABLE`` inside a migration would commit on its own.  The engine
installs the connect/begin event hooks recommended by SQLAlchemy so that each
migration runs in one real transaction on SQLite as well.

Usage::

    db = Database(settings)
    db.check_connection()
    with db.transaction() as conn:
        conn.exec_driver_sql("CREATE TABLE t (id INTEGER)")
    db.dispose()
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from schemashift.dialect import Dialect, get_dialect
from schemashift.errors import ConfigError, DatabaseConnectionError
from schemashift.logging import get_logger
from schemashift.settings import DatabaseEngine, MigrationSettings

logger = get_logger(__name__)


def create_migration_engine(settings: MigrationSettings, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine for *settings*.

    Raises:
        ConfigError: If the driver for the configured engine is not installed.
    """
    url = settings.url()

    if settings.engine_type is DatabaseEngine.SQLITE:
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        try:
            engine = create_engine(url, **kwargs)
        except ImportError as exc:  # pragma: no cover - sqlite3 is stdlib
            raise ConfigError(f"SQLite driver unavailable: {exc}", cause=exc) from exc

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection: Any, _rec: Any) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn: Connection) -> None:
            conn.exec_driver_sql("BEGIN")

        return engine

    kwargs.setdefault("pool_pre_ping", True)
    try:
        return create_engine(url, **kwargs)
    except ImportError as exc:
        raise ConfigError(
            f"Driver for {settings.engine_type.value} is not installed "
            f"(pip install schemashift[{settings.engine_type.value}])",
            cause=exc,
        ) from exc


class Database:
    """Engine holder used by every component that touches the database."""

    def __init__(self, settings: MigrationSettings, *, engine: Engine | None = None) -> None:
        self.settings = settings
        self.dialect: Dialect = get_dialect(settings.engine_type)
        self.engine = engine if engine is not None else create_migration_engine(settings)

    @property
    def name(self) -> str:
        return self.dialect.name

    def open(self) -> Connection:
        """Open a new connection.

        Raises:
            DatabaseConnectionError: If the database cannot be reached.
        """
        try:
            return self.engine.connect()
        except DBAPIError as exc:
            raise DatabaseConnectionError(
                f"Cannot connect to {self.name} database at {self.settings.redacted_url}: {exc.orig}",
                cause=exc,
            ) from exc

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Connection without an explicit transaction (autobegin on use)."""
        with self.open() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Connection inside one transaction; commits on exit, rolls back on error."""
        with self.open() as conn:
            with conn.begin():
                yield conn

    def check_connection(self) -> None:
        """Run ``SELECT 1`` against the database."""
        logger.debug("database.check", url=self.settings.redacted_url)
        try:
            with self.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise DatabaseConnectionError(
                f"Database check failed for {self.settings.redacted_url}: {exc}",
                cause=exc,
            ) from exc
        logger.info("database.connected", backend=self.name)

    def dispose(self) -> None:
        self.engine.dispose()

    def __repr__(self) -> str:
        return f"Database(backend={self.name!r}, url={self.settings.redacted_url!r})"


__all__ = ["Database", "create_migration_engine"]
