"""Settings for schemashift.

One validated settings object is built at process start (environment, then
``.env``, then CLI flags) and passed into every component constructor.
Nothing else in the package reads environment variables.

Manifesto:
    Connection parameters read ad hoc from the environment make runs hard
    to reproduce.  ``MigrationSettings`` validates everything once, up
    front, and exposes a ready-to-use SQLAlchemy URL.

    - **Pydantic validation:** Type-checked at startup, not mid-run
    - **Environment-driven:** ``DB_TYPE``, ``DB_HOST`` … and ``.env`` files
    - **URL override:** ``DATABASE_URL`` wins over the individual parts
    - **Safe logging:** ``redacted_url`` never contains the password

Examples:
    >>> from schemashift.settings import MigrationSettings
    >>> s = MigrationSettings(_env_file=None, db_type="sqlite", db_name="app")
    >>> s.url().render_as_string()
    'sqlite:///app.db'

Tags:
    settings, configuration, pydantic, environment, schemashift
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from schemashift.errors import ConfigError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DatabaseEngine(str, Enum):
    """Supported database engines."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


# SQLAlchemy driver per engine
_DRIVERS: dict[DatabaseEngine, str] = {
    DatabaseEngine.POSTGRESQL: "postgresql+psycopg2",
    DatabaseEngine.MYSQL: "mysql+pymysql",
    DatabaseEngine.SQLITE: "sqlite",
}

_DEFAULT_PORTS: dict[DatabaseEngine, int] = {
    DatabaseEngine.POSTGRESQL: 5432,
    DatabaseEngine.MYSQL: 3306,
}


class MigrationSettings(BaseSettings):
    """Connection and behaviour settings for one engine run.

    Fields
    ──────
    db_type            : Database engine (postgresql, mysql, sqlite)
    db_host / db_port  : Server address (port defaults per engine)
    db_name            : Database name; for SQLite the file stem
    db_user            : Login user
    db_password        : Login password (secret)
    database_url       : Full SQLAlchemy URL, overrides the parts above
    migrations_dir     : Directory holding ``<version>.sql`` files
    environment        : development / staging / production (logged only)
    ledger_table       : Name of the applied-state table
    lock_timeout       : Seconds to wait for the advisory lock
    lock_poll_interval : Seconds between lock attempts
    log_level          : Structlog log level
    log_json           : Force JSON logs (None = auto-detect)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Connection ───────────────────────────────────────────────
    db_type: DatabaseEngine = DatabaseEngine.POSTGRESQL
    db_host: str = "localhost"
    db_port: int | None = Field(default=None, ge=1, le=65535)
    db_name: str = "devops_toolkit"
    db_user: str = "postgres"
    db_password: SecretStr = SecretStr("")
    database_url: str | None = None

    # ── Repository / ledger ──────────────────────────────────────
    migrations_dir: Path = Path("./migrations")
    environment: str = "development"
    ledger_table: str = "schema_migrations"

    # ── Locking ──────────────────────────────────────────────────
    lock_timeout: float = Field(default=30.0, ge=0)
    lock_poll_interval: float = Field(default=0.5, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("ledger_table")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        # Table names cannot be bound as parameters, so restrict them
        if not _IDENTIFIER.match(value):
            raise ValueError(f"not a plain SQL identifier: {value!r}")
        return value

    @field_validator("database_url")
    @classmethod
    def _check_url(cls, value: str | None) -> str | None:
        if value in (None, ""):
            return None
        try:
            backend = make_url(value).get_backend_name()
        except ArgumentError as exc:
            raise ValueError(f"invalid database URL: {exc}") from exc
        if backend not in {e.value for e in DatabaseEngine}:
            raise ValueError(f"unsupported database backend: {backend!r}")
        return value

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def engine_type(self) -> DatabaseEngine:
        """Engine actually used: taken from ``database_url`` when set."""
        if self.database_url:
            return DatabaseEngine(make_url(self.database_url).get_backend_name())
        return self.db_type

    def url(self) -> URL:
        """Build the SQLAlchemy URL for this configuration."""
        if self.database_url:
            return make_url(self.database_url)

        if self.db_type is DatabaseEngine.SQLITE:
            name = self.db_name
            if name != ":memory:" and not name.endswith(".db"):
                name = f"{name}.db"
            return URL.create("sqlite", database=name)

        return URL.create(
            _DRIVERS[self.db_type],
            username=self.db_user or None,
            password=self.db_password.get_secret_value() or None,
            host=self.db_host,
            port=self.db_port or _DEFAULT_PORTS[self.db_type],
            database=self.db_name,
        )

    @property
    def redacted_url(self) -> str:
        return self.url().render_as_string(hide_password=True)


def load_settings(**overrides: Any) -> MigrationSettings:
    """Build settings from the environment plus explicit overrides.

    ``None`` overrides are dropped so unset CLI flags fall through to the
    environment.

    Raises:
        ConfigError: If any value fails validation.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return MigrationSettings(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}", cause=exc) from exc


__all__ = ["DatabaseEngine", "MigrationSettings", "load_settings"]
