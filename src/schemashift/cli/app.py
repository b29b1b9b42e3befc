"""
Root Typer application for the schemashift CLI.

Global connection options are collected by the root callback and merged
over environment variables / ``.env`` when a command builds its settings.
Each command maps the engine's ``Result`` to a process exit code.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from schemashift.cli.utils import (
    get_state,
    make_engine,
    print_json,
    print_warnings,
    render_report,
    render_scan,
    render_status,
    unwrap_or_exit,
    warning_exit_code,
)
from schemashift.errors import ExitCode
from schemashift.models import RunReport
from schemashift.settings import DatabaseEngine

app = Typer(
    name="schemashift",
    help="schemashift — versioned SQL schema migrations for PostgreSQL, MySQL and SQLite.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        from schemashift import __version__

        try:
            v = pkg_version("schemashift")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"schemashift {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    db_type: DatabaseEngine | None = typer.Option(
        None, "--db-type", help="Database engine (env: DB_TYPE)."
    ),
    host: str | None = typer.Option(None, "--host", help="Database host (env: DB_HOST)."),
    port: int | None = typer.Option(None, "--port", help="Database port (env: DB_PORT)."),
    database: str | None = typer.Option(
        None, "--database", "-d", help="Database name; SQLite file stem (env: DB_NAME)."
    ),
    user: str | None = typer.Option(None, "--user", "-u", help="Database user (env: DB_USER)."),
    password: str | None = typer.Option(
        None, "--password", help="Database password (env: DB_PASSWORD)."
    ),
    environment: str | None = typer.Option(
        None, "--env", "-e", help="Environment name (env: ENVIRONMENT)."
    ),
    migrations_dir: Path | None = typer.Option(
        None, "--migrations-dir", "-m", help="Migrations directory (env: MIGRATIONS_DIR)."
    ),
    url: str | None = typer.Option(
        None, "--url", help="Full SQLAlchemy URL, overrides the parts (env: DATABASE_URL)."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (env: LOG_LEVEL)."),
    as_json: bool = typer.Option(False, "--json", help="Machine-readable JSON output."),
    strict: bool = typer.Option(
        False, "--strict", help="Exit non-zero on warnings (parse errors, missing files)."
    ),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """schemashift CLI — create, apply and roll back SQL migrations."""
    state = get_state(ctx)
    state.as_json = as_json
    state.strict = strict
    state.overrides = {
        "db_type": db_type,
        "db_host": host,
        "db_port": port,
        "db_name": database,
        "db_user": user,
        "db_password": password,
        "environment": environment,
        "migrations_dir": migrations_dir,
        "database_url": url,
        "log_level": log_level,
    }


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("init")
def init_cmd(ctx: typer.Context) -> None:
    """Check the connection and create the ledger table and migrations directory."""
    engine, state = make_engine(ctx, "init")
    with engine:
        unwrap_or_exit(engine.init(), state)
        if state.as_json:
            print_json(
                {
                    "ok": True,
                    "backend": engine.database.name,
                    "ledger_table": engine.settings.ledger_table,
                    "migrations_dir": str(engine.repository.directory),
                }
            )
        else:
            typer.echo(
                f"Initialized {engine.database.name} ledger "
                f"'{engine.settings.ledger_table}' for {engine.repository.directory}"
            )


@app.command("create")
def create_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Human-readable migration name, e.g. 'add users table'."),
) -> None:
    """Create a new, empty migration file. Does not connect to the database."""
    engine, state = make_engine(ctx, "create")
    migration = unwrap_or_exit(engine.create(name), state)
    if state.as_json:
        print_json({"version": migration.version, "path": str(migration.source_path)})
    else:
        typer.echo(f"Created {migration.source_path}")


@app.command("migrate")
def migrate_cmd(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show pending migrations without applying."),
) -> None:
    """Apply all pending migrations in version order."""
    engine, state = make_engine(ctx, "migrate")
    with engine:
        report = unwrap_or_exit(engine.migrate(dry_run=dry_run), state)
    _finish_run(report, state.as_json, state.strict)


@app.command("rollback")
def rollback_cmd(
    ctx: typer.Context,
    steps: int = typer.Argument(1, min=0, help="Number of migrations to roll back."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be rolled back."),
) -> None:
    """Roll back the most recently applied migrations."""
    engine, state = make_engine(ctx, "rollback")
    with engine:
        report = unwrap_or_exit(engine.rollback(steps, dry_run=dry_run), state)
    _finish_run(report, state.as_json, state.strict)


@app.command("status")
def status_cmd(ctx: typer.Context) -> None:
    """Show applied and pending migrations. Read-only."""
    engine, state = make_engine(ctx, "status")
    with engine:
        status = unwrap_or_exit(engine.status(), state)
    if state.as_json:
        print_json(status.to_dict())
    else:
        render_status(status)
        print_warnings(status.missing)
    code = warning_exit_code(status.warnings, strict=state.strict)
    if code:
        raise typer.Exit(code=code)


@app.command("validate")
def validate_cmd(ctx: typer.Context) -> None:
    """Parse every migration file. Does not connect to the database."""
    engine, state = make_engine(ctx, "validate")
    scan = unwrap_or_exit(engine.validate(), state)
    if state.as_json:
        print_json(
            {
                "valid": scan.versions,
                "invalid": [e.to_dict() for e in scan.errors],
            }
        )
    else:
        render_scan(scan)
    if scan.errors:
        raise typer.Exit(code=int(ExitCode.PARSE))


def _finish_run(report: RunReport, as_json: bool, strict: bool) -> None:
    if as_json:
        print_json(report.to_dict())
    else:
        render_report(report)
        print_warnings(report.warnings)
    code = warning_exit_code(report.warnings, strict=strict)
    if code:
        raise typer.Exit(code=code)


if __name__ == "__main__":  # pragma: no cover
    app()
