"""schemashift -- Versioned SQL schema migrations.

Manifesto:
    Every deployment that owns a relational schema needs the same loop:
    write a timestamped SQL changeset, apply what is pending, record it,
    and undo the last few when a release goes wrong.  ``schemashift`` does
    exactly that against PostgreSQL, MySQL and SQLite, with one ledger
    table as the source of truth and an advisory lock so two deploys never
    race.

    - **Plain SQL files:** ``-- +migrate Up`` / ``-- +migrate Down`` sections
    - **Ledger as truth:** ``schema_migrations(version, applied_at)``
    - **One migration, one transaction:** body and ledger row commit together
    - **Typed outcomes:** every operation returns ``Ok`` / ``Err``

Architecture::

    Layer 1 -- Types & Errors
        errors.py          MigrationError hierarchy with exit codes
        result.py          Result[T] envelope (Ok / Err / try_result)
        models.py          Migration, LedgerEntry, RunReport, MigrationStatus

    Layer 2 -- Configuration & Infrastructure
        settings.py        MigrationSettings (pydantic-settings, env + .env)
        logging.py         structlog configuration
        dialect.py         Ledger DDL and lock SQL per backend
        database.py        SQLAlchemy engine + connection helpers

    Layer 3 -- Migration Components
        parser.py          Marker parsing and statement splitting
        repository.py      Migration files on disk (create / scan)
        ledger.py          Applied-state table
        planner.py         Pending and rollback sets
        lock.py            Advisory lock serializing runs
        executor.py        Apply / revert / migrate / rollback
        status.py          Read-only status report

    Layer 4 -- Entry Points
        engine.py          MigrationEngine facade returning Result
        cli/               Typer application

Quick start::

    from schemashift import MigrationEngine, load_settings

    engine = MigrationEngine(load_settings(db_type="sqlite", db_name="app"))
    engine.create("add users table")
    engine.migrate()
"""

__version__ = "0.1.0"

from schemashift.engine import MigrationEngine
from schemashift.errors import (
    CollisionError,
    ConfigError,
    ConsistencyError,
    DatabaseConnectionError,
    ExecutionError,
    ExitCode,
    InvalidNameError,
    LockError,
    MigrationError,
    NoDownSectionError,
    ParseError,
)
from schemashift.models import LedgerEntry, Migration, MigrationStatus, RunReport, ScanResult
from schemashift.result import Err, Ok, Result
from schemashift.settings import DatabaseEngine, MigrationSettings, load_settings

__all__ = [
    "__version__",
    "MigrationEngine",
    "MigrationSettings",
    "DatabaseEngine",
    "load_settings",
    "Migration",
    "LedgerEntry",
    "MigrationStatus",
    "RunReport",
    "ScanResult",
    "Ok",
    "Err",
    "Result",
    "MigrationError",
    "DatabaseConnectionError",
    "ConfigError",
    "LockError",
    "InvalidNameError",
    "CollisionError",
    "ParseError",
    "ExecutionError",
    "NoDownSectionError",
    "ConsistencyError",
    "ExitCode",
]
