"""End-to-end tests for MigrationEngine on file-backed SQLite."""

from __future__ import annotations

import sqlite3

from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from structlog.testing import capture_logs

from schemashift.engine import MigrationEngine
from schemashift.errors import (
    ConfigError,
    ErrorCategory,
    ExecutionError,
    InvalidNameError,
    LockError,
    MigrationError,
    NoDownSectionError,
)
from schemashift.lock import MigrationLock
from schemashift.parser import DOWN_MARKER, UP_MARKER
from schemashift.result import Err, Ok
from schemashift.settings import MigrationSettings


def _fill(migration, up: str, down: str = "") -> None:
    migration.source_path.write_text(
        f"{UP_MARKER}\n{up}\n\n{DOWN_MARKER}\n{down}\n", encoding="utf-8"
    )


def _tables(engine: MigrationEngine) -> set[str]:
    return set(inspect(engine.database.engine).get_table_names())


# ── Scenarios ─────────────────────────────────────────────────────────


class TestScenarios:
    def test_a_create_writes_empty_sections(self, sqlite_settings, fixed_clock):
        engine = MigrationEngine(sqlite_settings, clock=fixed_clock)
        result = engine.create("add_users_table")

        assert isinstance(result, Ok)
        migration = result.value
        assert migration.source_path.name == "20260115093000_add_users_table.sql"
        text = migration.source_path.read_text(encoding="utf-8")
        assert UP_MARKER in text and DOWN_MARKER in text
        assert migration.up == () and migration.down == ()

    def test_b_status_partitions_versions(self, engine):
        created = [engine.create(n).unwrap() for n in ("one", "two", "three")]
        for m in created:
            _fill(m, "SELECT 1;")
        v1, v2, v3 = (m.version for m in created)

        ledger = engine.ledger
        ledger.init()
        with engine.database.transaction() as conn:
            ledger.record_applied(conn, v1)

        status = engine.status().unwrap()
        assert status.applied_versions == [v1]
        assert status.pending_versions == [v2, v3]

    def test_c_migrate_stops_at_failure(self, engine):
        first = engine.create("create users").unwrap()
        second = engine.create("broken").unwrap()
        _fill(first, "CREATE TABLE users (id INTEGER);", "DROP TABLE users;")
        _fill(second, "CREATE TABLE posts (id INTEGER);\nINSERT INTO missing VALUES (1);")

        result = engine.migrate()

        assert isinstance(result, Err)
        assert isinstance(result.error, ExecutionError)
        assert result.error.version == second.version
        assert result.error.completed == [first.version]
        assert int(result.error.exit_code) == 7
        assert engine.ledger.applied_versions() == [first.version]

    def test_d_rollback_two_of_three(self, engine):
        created = []
        for name in ("users", "posts", "tags"):
            m = engine.create(f"create {name}").unwrap()
            _fill(m, f"CREATE TABLE {name} (id INTEGER);", f"DROP TABLE {name};")
            created.append(m.version)
        engine.migrate().unwrap()

        report = engine.rollback(2).unwrap()

        assert report.reverted == [created[2], created[1]]
        assert engine.ledger.applied_versions() == [created[0]]
        tables = _tables(engine)
        assert "users" in tables
        assert "posts" not in tables and "tags" not in tables


# ── Properties ────────────────────────────────────────────────────────


class TestProperties:
    def test_migrate_is_idempotent(self, engine):
        m = engine.create("users").unwrap()
        _fill(m, "CREATE TABLE users (id INTEGER);", "DROP TABLE users;")

        assert engine.migrate().unwrap().applied == [m.version]
        second = engine.migrate().unwrap()
        assert second.applied == []
        assert engine.ledger.applied_versions() == [m.version]

    def test_rollback_then_migrate_restores(self, engine):
        m = engine.create("users").unwrap()
        _fill(m, "CREATE TABLE users (id INTEGER);", "DROP TABLE users;")
        engine.migrate().unwrap()

        engine.rollback(1).unwrap()
        assert "users" not in _tables(engine)
        engine.migrate().unwrap()
        assert "users" in _tables(engine)

    def test_rollback_without_down_is_a_warning(self, engine):
        m = engine.create("irreversible").unwrap()
        _fill(m, "CREATE TABLE audit (id INTEGER);")
        engine.migrate().unwrap()

        report = engine.rollback(1).unwrap()
        assert report.reverted == []
        assert isinstance(report.warnings[0], NoDownSectionError)
        assert engine.ledger.applied_versions() == [m.version]


# ── Operations ───────────────────────────────────────────────────────


class TestOperations:
    def test_init_creates_ledger_and_directory(self, tmp_path):
        settings = MigrationSettings(
            _env_file=None,
            db_type="sqlite",
            db_name=str(tmp_path / "data" / "app"),
            migrations_dir=tmp_path / "db" / "migrations",
        )
        with MigrationEngine(settings) as engine:
            assert engine.init() == Ok(None)
            assert "schema_migrations" in _tables(engine)
            assert (tmp_path / "db" / "migrations").is_dir()
        assert (tmp_path / "data" / "app.db").is_file()

    def test_create_and_validate_do_not_connect(self, sqlite_settings, ticking_clock):
        engine = MigrationEngine(sqlite_settings, clock=ticking_clock)
        engine.create("one").unwrap()
        scan = engine.validate().unwrap()
        assert len(scan.migrations) == 1
        assert engine._database is None

    def test_create_invalid_name(self, engine):
        result = engine.create("../escape")
        assert isinstance(result, Err)
        assert isinstance(result.error, InvalidNameError)

    def test_create_collision(self, sqlite_settings, fixed_clock):
        engine = MigrationEngine(sqlite_settings, clock=fixed_clock)
        engine.create("same").unwrap()
        result = engine.create("same")
        assert isinstance(result, Err)
        assert int(result.error.exit_code) == 5

    def test_negative_rollback(self, engine):
        result = engine.rollback(-1)
        assert isinstance(result, Err)
        assert isinstance(result.error, ConfigError)

    def test_lock_contention(self, engine, db, sqlite_settings):
        settings = sqlite_settings.model_copy(update={"lock_timeout": 0.1})
        with MigrationEngine(settings) as blocked, MigrationLock(db):
            result = blocked.migrate()
        assert isinstance(result, Err)
        assert isinstance(result.error, LockError)
        assert int(result.error.exit_code) == 10

    def test_busy_database_reports_lock_error(self, engine, db):
        m = engine.create("users").unwrap()
        _fill(m, "CREATE TABLE users (id INTEGER);")
        holder = sqlite3.connect(db.engine.url.database, isolation_level=None)
        holder.execute("BEGIN IMMEDIATE")
        try:
            result = engine.migrate()
        finally:
            holder.execute("ROLLBACK")
            holder.close()
        assert isinstance(result, Err)
        assert isinstance(result.error, LockError)
        assert int(result.error.exit_code) == 10
        assert engine.migrate().unwrap().applied == [m.version]

    def test_dry_run_migrate(self, engine):
        m = engine.create("users").unwrap()
        _fill(m, "CREATE TABLE users (id INTEGER);")
        report = engine.migrate(dry_run=True).unwrap()
        assert report.planned == [m.version]
        assert engine.ledger.applied_versions() == []

    def test_failure_is_logged(self, engine):
        with capture_logs() as logs:
            engine.create("../escape")
        [event] = [e for e in logs if e["event"] == "create.failed"]
        assert event["error_type"] == "InvalidNameError"
        assert event["log_level"] == "error"

    def test_unexpected_database_error_is_wrapped(self, engine, monkeypatch):
        def broken():
            raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        monkeypatch.setattr(engine.repository, "scan", broken)
        result = engine.validate()
        assert isinstance(result, Err)
        assert type(result.error) is MigrationError
        assert result.error.category is ErrorCategory.DATABASE
        assert int(result.error.exit_code) == 1
