"""
Shared pytest fixtures and configuration for schemashift tests.

This module provides:
- Environment isolation (no DB_* variables or .env file leak into settings)
- A temporary migrations directory and a helper to write migration files
- A file-backed SQLite settings object and Database
- A fixed clock for deterministic migration versions

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).

    def test_something(engine, write_migration):
        write_migration("20260101000000_init", "CREATE TABLE t (id INTEGER);")
"""

import sys
import textwrap
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import structlog

# Ensure schemashift package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from schemashift.database import Database
from schemashift.engine import MigrationEngine
from schemashift.logging import clear_context
from schemashift.parser import DOWN_MARKER, UP_MARKER
from schemashift.settings import MigrationSettings


ENV_VARS = (
    "DB_TYPE",
    "DB_HOST",
    "DB_PORT",
    "DB_NAME",
    "DB_USER",
    "DB_PASSWORD",
    "MIGRATIONS_DIR",
    "ENVIRONMENT",
    "DATABASE_URL",
    "LEDGER_TABLE",
    "LOCK_TIMEOUT",
    "LOCK_POLL_INTERVAL",
    "LOG_LEVEL",
    "LOG_JSON",
)

FIXED_NOW = datetime(2026, 1, 15, 9, 30, 0, tzinfo=UTC)


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests that touch a database as integration tests."""
    for item in items:
        fixtures = getattr(item, "fixturenames", ())
        if {"db", "engine", "sqlite_settings"} & set(fixtures):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Strip configuration env vars and run each test from its own directory."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()


# =============================================================================
# Migrations directory
# =============================================================================


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    d = tmp_path / "migrations"
    d.mkdir()
    return d


@pytest.fixture
def write_migration(migrations_dir: Path) -> Callable[..., Path]:
    """Write ``<version>.sql`` with the given Up and Down bodies."""

    def _write(version: str, up: str, down: str = "", *, header: str = "") -> Path:
        path = migrations_dir / f"{version}.sql"
        body = "\n".join(
            [header, UP_MARKER, textwrap.dedent(up), "", DOWN_MARKER, textwrap.dedent(down), ""]
        )
        path.write_text(body, encoding="utf-8")
        return path

    return _write


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Always returns FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def ticking_clock() -> Callable[[], datetime]:
    """Returns FIXED_NOW, then one second later on every call."""
    state = {"now": FIXED_NOW - timedelta(seconds=1)}

    def _tick() -> datetime:
        state["now"] += timedelta(seconds=1)
        return state["now"]

    return _tick


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def sqlite_settings(tmp_path: Path, migrations_dir: Path) -> MigrationSettings:
    """File-backed SQLite settings with a short lock timeout."""
    return MigrationSettings(
        _env_file=None,
        db_type="sqlite",
        db_name=str(tmp_path / "app"),
        migrations_dir=migrations_dir,
        lock_timeout=1.0,
        lock_poll_interval=0.05,
    )


@pytest.fixture
def db(sqlite_settings: MigrationSettings) -> Generator[Database, None, None]:
    database = Database(sqlite_settings)
    yield database
    database.dispose()


@pytest.fixture
def engine(
    sqlite_settings: MigrationSettings,
    db: Database,
    ticking_clock: Callable[[], datetime],
) -> MigrationEngine:
    return MigrationEngine(sqlite_settings, clock=ticking_clock, database=db)
