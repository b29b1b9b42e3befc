"""Migration executor — applies and reverts migrations.

Each migration runs in its own transaction: every statement of the section,
then the ledger write, then COMMIT.  A failing statement rolls the whole
migration back (on engines with transactional DDL) and raises
:class:`ExecutionError`.

Manifesto:
    - **One migration, one transaction:** body and ledger row commit together
    - **Fail fast forward:** ``migrate`` stops at the first failure and keeps
      what already committed; there is no batch rollback
    - **Keep going backward:** ``rollback`` skips migrations it cannot revert
      (missing file, parse error, empty Down) with a warning
    - **Serialized:** both runs hold :class:`MigrationLock` throughout

Architecture:
    ::

        migrate(dry_run)                     rollback(steps, dry_run)
          │ lock                               │ lock
          │ ledger.init()                      │ ledger.init()
          │ scan + planner.pending()           │ planner.rollback_set()
          ▼                                    ▼
        apply(m) ── for m ascending         revert(m) ── for v descending
          │ BEGIN                              │ BEGIN
          │   exec up statements               │   exec down statements
          │   INSERT ledger row                │   DELETE ledger row
          │ COMMIT                             │ COMMIT

    Statements go to the driver verbatim (``exec_driver_sql`` with
    ``no_parameters``) so ``%`` and ``:name`` in operator SQL are never
    treated as bind markers.

Tags:
    migrations, executor, transactions, schemashift
"""

from __future__ import annotations

import time

from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from schemashift.database import Database
from schemashift.errors import (
    ConsistencyError,
    ExecutionError,
    NoDownSectionError,
    ParseError,
)
from schemashift.ledger import Ledger
from schemashift.lock import MigrationLock
from schemashift.logging import get_logger
from schemashift.models import Migration, RunReport
from schemashift.planner import Planner
from schemashift.repository import MigrationRepository

logger = get_logger(__name__)

_RAW = {"no_parameters": True}


class Executor:
    """Runs migrations against one database."""

    def __init__(
        self,
        db: Database,
        ledger: Ledger,
        repository: MigrationRepository,
        *,
        lock: MigrationLock | None = None,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._repository = repository
        self._planner = Planner(repository, ledger)
        self._lock = lock

    def _new_lock(self) -> MigrationLock:
        return self._lock if self._lock is not None else MigrationLock(self._db)

    # ------------------------------------------------------------------
    # Single migrations
    # ------------------------------------------------------------------

    def apply(self, migration: Migration) -> None:
        """Run the Up section and record the version.

        Raises:
            ExecutionError: A statement (or the commit) failed; nothing of
                this migration is recorded.
        """
        if not migration.up:
            logger.warning("migration.empty_up", version=migration.version)

        logger.info("migration.applying", version=migration.version)
        started = time.perf_counter()
        self._run(migration, migration.up, direction="up")
        logger.info(
            "migration.applied",
            version=migration.version,
            statements=len(migration.up),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

    def revert(self, migration: Migration) -> None:
        """Run the Down section and remove the version from the ledger.

        Raises:
            NoDownSectionError: The Down section is empty; ledger untouched.
            ExecutionError: A statement (or the commit) failed.
        """
        if not migration.down:
            raise NoDownSectionError(
                f"Migration {migration.version} has no Down section; it cannot be rolled back"
            ).with_context(version=migration.version, path=str(migration.source_path))

        logger.info("migration.reverting", version=migration.version)
        started = time.perf_counter()
        self._run(migration, migration.down, direction="down")
        logger.info(
            "migration.reverted",
            version=migration.version,
            statements=len(migration.down),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

    def _run(self, migration: Migration, statements: tuple[str, ...], *, direction: str) -> None:
        try:
            with self._db.transaction() as conn:
                for index, statement in enumerate(statements, start=1):
                    self._execute(conn, migration, index, statement, direction)
                if direction == "up":
                    self._ledger.record_applied(conn, migration.version)
                else:
                    self._ledger.remove_applied(conn, migration.version)
        except ExecutionError:
            raise
        except SQLAlchemyError as exc:
            logger.error("migration.failed", version=migration.version, direction=direction, error=str(exc))
            raise ExecutionError(
                f"Migration {migration.version} ({direction}) could not be committed: {exc}",
                cause=exc,
            ).with_context(
                version=migration.version,
                path=str(migration.source_path),
                direction=direction,
            ) from exc

    def _execute(
        self,
        conn: Connection,
        migration: Migration,
        index: int,
        statement: str,
        direction: str,
    ) -> None:
        try:
            conn.exec_driver_sql(statement, execution_options=_RAW)
        except DBAPIError as exc:
            logger.error(
                "migration.failed",
                version=migration.version,
                direction=direction,
                statement_index=index,
                error=str(exc.orig),
            )
            raise ExecutionError(
                f"Migration {migration.version} ({direction}) failed at statement {index}: {exc.orig}",
                cause=exc,
            ).with_context(
                version=migration.version,
                path=str(migration.source_path),
                statement_index=index,
                statement=statement,
                direction=direction,
            ) from exc

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def migrate(self, *, dry_run: bool = False) -> RunReport:
        """Apply every pending migration in ascending version order.

        Unparseable files are excluded and reported as warnings.  A dry run
        only reads: it takes no lock and does not create the ledger table.

        Raises:
            LockError: Another run holds the lock.
            ExecutionError: A migration failed.  Versions applied earlier in
                this run stay applied and are listed in ``completed``.
        """
        report = RunReport(command="migrate", dry_run=dry_run)
        if dry_run:
            self._plan_migrate(report)
            logger.info("migrate.dry_run", planned=report.planned)
            return report

        with self._new_lock():
            self._ledger.init()
            pending = self._plan_migrate(report)
            for migration in pending:
                try:
                    self.apply(migration)
                except ExecutionError as exc:
                    exc.with_context(completed=list(report.applied))
                    raise
                report.applied.append(migration.version)

        logger.info("migrate.completed", applied=len(report.applied), warnings=len(report.warnings))
        return report

    def _plan_migrate(self, report: RunReport) -> list[Migration]:
        scan = self._repository.scan()
        for error in scan.errors:
            report.warn(error)
        pending = self._planner.pending(scan.migrations)
        report.planned = [m.version for m in pending]
        return pending

    def rollback(self, steps: int = 1, *, dry_run: bool = False) -> RunReport:
        """Revert the last *steps* applied migrations, newest first.

        Missing files, parse errors and empty Down sections are skipped with
        a warning and the run moves on to the next version.

        Raises:
            ValueError: *steps* is negative.
            LockError: Another run holds the lock.
            ExecutionError: A Down statement failed; the run halts.
        """
        report = RunReport(command="rollback", dry_run=dry_run)
        if dry_run:
            for migration in self._plan_rollback(report, steps):
                if not migration.reversible:
                    report.warn(
                        NoDownSectionError(
                            f"Migration {migration.version} has no Down section"
                        ).with_context(version=migration.version)
                    )
            logger.info("rollback.dry_run", planned=report.planned)
            return report

        with self._new_lock():
            self._ledger.init()
            for migration in self._plan_rollback(report, steps):
                try:
                    self.revert(migration)
                except NoDownSectionError as exc:
                    logger.warning("migration.skipped", version=migration.version, reason=exc.message)
                    report.warn(exc)
                    continue
                except ExecutionError as exc:
                    exc.with_context(completed=list(report.reverted))
                    raise
                report.reverted.append(migration.version)

        logger.info(
            "rollback.completed",
            reverted=len(report.reverted),
            skipped=len(report.skipped),
        )
        return report

    def _plan_rollback(self, report: RunReport, steps: int) -> list[Migration]:
        """Load the rollback set, turning unloadable versions into warnings."""
        versions = self._planner.rollback_set(steps)
        report.planned = versions
        loaded: list[Migration] = []
        for version in versions:
            try:
                loaded.append(self._repository.get(version))
            except (ConsistencyError, ParseError) as exc:
                logger.warning("migration.skipped", version=version, reason=exc.message)
                report.warn(exc.with_context(version=version))
        return loaded


__all__ = ["Executor"]
