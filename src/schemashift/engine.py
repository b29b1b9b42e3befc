"""
MigrationEngine — the public entry point of schemashift.

Wires settings, repository, ledger, planner, executor and status reporter
together and exposes one method per operator command.  Every method returns
a :class:`~schemashift.result.Result`; nothing here exits the process.

Manifesto:
    - **One settings object:** built once, passed to every component
    - **Lazy database:** ``create`` and ``validate`` never open a connection
    - **Typed outcomes:** ``Ok(value)`` or ``Err(MigrationError)``; unexpected
      SQLAlchemy errors are wrapped, never swallowed

Architecture:
    ::

        MigrationEngine(settings)
          ├── repository : MigrationRepository(settings.migrations_dir)
          ├── database   : Database(settings)          (lazy)
          ├── ledger     : Ledger(database)            (lazy)
          ├── executor   : Executor(database, ledger, repository)
          └── reporter   : StatusReporter(repository, ledger)

        init()            → Ok(None)
        create(name)      → Ok(Migration)
        migrate()         → Ok(RunReport)
        rollback(steps)   → Ok(RunReport)
        status()          → Ok(MigrationStatus)
        validate()        → Ok(ScanResult)

Examples:
    >>> engine = MigrationEngine(load_settings(db_type="sqlite", db_name="app"))
    >>> match engine.migrate():
    ...     case Ok(report):
    ...         print(report.applied)
    ...     case Err(error):
    ...         print(error.exit_code)

Tags:
    migrations, engine, facade, schemashift
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

from schemashift.database import Database
from schemashift.errors import ConfigError, ErrorCategory, MigrationError
from schemashift.executor import Executor
from schemashift.ledger import Ledger
from schemashift.logging import get_logger
from schemashift.models import Migration, MigrationStatus, RunReport, ScanResult
from schemashift.repository import MigrationRepository, utcnow
from schemashift.result import Err, Result, try_result
from schemashift.settings import MigrationSettings
from schemashift.status import StatusReporter

logger = get_logger(__name__)

T = TypeVar("T")


class MigrationEngine:
    """Facade over the migration components for one configuration."""

    def __init__(
        self,
        settings: MigrationSettings,
        *,
        clock: Callable[[], datetime] = utcnow,
        database: Database | None = None,
    ) -> None:
        self.settings = settings
        self.repository = MigrationRepository(settings.migrations_dir, clock=clock)
        self._database = database

    # ------------------------------------------------------------------
    # Lazily built database components
    # ------------------------------------------------------------------

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = Database(self.settings)
        return self._database

    @property
    def ledger(self) -> Ledger:
        return Ledger(self.database)

    @property
    def executor(self) -> Executor:
        return Executor(self.database, self.ledger, self.repository)

    @property
    def reporter(self) -> StatusReporter:
        return StatusReporter(self.repository, self.ledger)

    def close(self) -> None:
        if self._database is not None:
            self._database.dispose()
            self._database = None

    def __enter__(self) -> MigrationEngine:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def init(self) -> Result[None]:
        """Check connectivity, create the ledger table and the migrations directory."""

        def _init() -> None:
            self.database.check_connection()
            self.ledger.init()
            self.repository.directory.mkdir(parents=True, exist_ok=True)
            logger.info(
                "engine.initialized",
                backend=self.database.name,
                ledger=self.settings.ledger_table,
                migrations_dir=str(self.repository.directory),
            )

        return self._guard("init", _init)

    def create(self, name: str) -> Result[Migration]:
        """Create an empty migration file. Does not connect."""
        return self._guard("create", lambda: self.repository.create(name))

    def migrate(self, *, dry_run: bool = False) -> Result[RunReport]:
        """Apply all pending migrations in ascending order."""
        return self._guard("migrate", lambda: self.executor.migrate(dry_run=dry_run))

    def rollback(self, steps: int = 1, *, dry_run: bool = False) -> Result[RunReport]:
        """Revert the last *steps* applied migrations, newest first."""
        if steps < 0:
            return Err(ConfigError(f"Rollback steps must be >= 0, got {steps}"))
        return self._guard(
            "rollback", lambda: self.executor.rollback(steps, dry_run=dry_run)
        )

    def status(self) -> Result[MigrationStatus]:
        """Applied, pending, missing and invalid migrations. Read-only."""
        return self._guard("status", lambda: self.reporter.status())

    def validate(self) -> Result[ScanResult]:
        """Parse every migration file without touching the database."""
        return self._guard("validate", self.repository.scan)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _guard(self, operation: str, f: Callable[[], T]) -> Result[T]:
        try:
            result = try_result(f)
        except SQLAlchemyError as exc:
            logger.error(f"{operation}.failed", error_type=type(exc).__name__, error=str(exc))
            return Err(
                MigrationError(
                    f"Unexpected database error during {operation}: {exc}",
                    category=ErrorCategory.DATABASE,
                    cause=exc,
                )
            )
        if isinstance(result, Err):
            error = result.error
            logger.error(
                f"{operation}.failed",
                error_type=type(error).__name__,
                error=error.message,
                **error.context.to_dict(),
            )
        return result


__all__ = ["MigrationEngine"]
