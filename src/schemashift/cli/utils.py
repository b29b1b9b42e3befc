"""
CLI utility helpers — engine construction, output formatting, exit codes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from schemashift.engine import MigrationEngine
from schemashift.errors import (
    ExecutionError,
    ExitCode,
    MigrationError,
    NoDownSectionError,
)
from schemashift.logging import bind_context, configure_logging
from schemashift.models import MigrationStatus, RunReport, ScanResult
from schemashift.result import Err, Result
from schemashift.settings import MigrationSettings, load_settings

console = Console()
err_console = Console(stderr=True)


# ── Global state ─────────────────────────────────────────────────────────


@dataclass
class CliState:
    """Global options collected by the root callback."""

    overrides: dict[str, Any] = field(default_factory=dict)
    as_json: bool = False
    strict: bool = False


def get_state(ctx: typer.Context) -> CliState:
    if not isinstance(ctx.obj, CliState):
        ctx.obj = CliState()
    return ctx.obj


def make_settings(state: CliState) -> MigrationSettings:
    """Build settings from env + flags, exiting with the config code on error."""
    try:
        settings = load_settings(**state.overrides)
    except MigrationError as exc:
        fail(exc, as_json=state.as_json)
    configure_logging(settings.log_level, json_format=settings.log_json)
    bind_context(environment=settings.environment)
    return settings


def make_engine(ctx: typer.Context, command: str) -> tuple[MigrationEngine, CliState]:
    """Create the engine for one CLI command."""
    state = get_state(ctx)
    settings = make_settings(state)
    bind_context(command=command)
    return MigrationEngine(settings), state


# ── Exit handling ────────────────────────────────────────────────────────


def fail(error: MigrationError, *, as_json: bool = False) -> NoReturn:
    """Report *error* and exit with its exit code."""
    if as_json:
        console.print_json(json.dumps(Err(error).to_dict(), default=str))
    else:
        err_console.print(
            f"[bold red]Error[/bold red] ({type(error).__name__}): {escape(error.message)}"
        )
        if isinstance(error, ExecutionError):
            if error.context.statement:
                err_console.print(f"  [dim]statement:[/dim] {escape(error.context.statement)}")
            err_console.print(
                f"  [dim]completed before failure:[/dim] {', '.join(error.completed) or 'none'}"
            )
    raise typer.Exit(code=int(error.exit_code))


def unwrap_or_exit(result: Result[Any], state: CliState) -> Any:
    """Return the Ok value or report the error and exit."""
    if isinstance(result, Err):
        fail(result.error, as_json=state.as_json)
    return result.unwrap()


def warning_exit_code(warnings: list[MigrationError], *, strict: bool) -> int:
    """Exit code for a run that completed with *warnings*.

    A migration skipped for lack of a Down section always fails the run;
    other warnings only fail it under ``--strict``.
    """
    for warning in warnings:
        if isinstance(warning, NoDownSectionError):
            return int(ExitCode.NO_DOWN_SECTION)
    if strict and warnings:
        return int(warnings[0].exit_code)
    return int(ExitCode.OK)


def print_warnings(warnings: list[MigrationError]) -> None:
    for warning in warnings:
        where = f" [{warning.version}]" if warning.version else ""
        err_console.print(f"[yellow]Warning[/yellow]{escape(where)}: {escape(warning.message)}")


# ── Renderers ────────────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def render_report(report: RunReport) -> None:
    verb = "applied" if report.command == "migrate" else "reverted"
    done = report.applied if report.command == "migrate" else report.reverted

    if report.dry_run:
        if not report.planned:
            console.print("[dim]Nothing to do.[/dim]")
            return
        console.print(f"[bold]Dry run[/bold]: would {report.command} {len(report.planned)} migration(s)")
        for version in report.planned:
            console.print(f"  [cyan]{version}[/cyan]")
        return

    if not report.planned:
        console.print("[dim]Nothing to do.[/dim]")
        return
    for version in done:
        console.print(f"[green]✓[/green] {verb} {version}")
    console.print(f"[bold]{len(done)}[/bold] migration(s) {verb}")


def render_status(status: MigrationStatus) -> None:
    table = Table(title="Migrations", show_lines=False, pad_edge=False)
    table.add_column("version", overflow="fold")
    table.add_column("state")
    table.add_column("applied_at")

    applied = {e.version: e for e in status.applied}
    missing = {e.version for e in status.missing}
    rows: list[tuple[str, str, str]] = []
    for version, entry in applied.items():
        state = "[red]missing file[/red]" if version in missing else "[green]applied[/green]"
        rows.append((version, state, str(entry.applied_at or "")))
    for migration in status.pending:
        rows.append((migration.version, "[yellow]pending[/yellow]", ""))

    if not rows:
        console.print("[dim]No migrations.[/dim]")
    else:
        for row in sorted(rows):
            table.add_row(*row)
        console.print(table)

    console.print(
        f"Applied: [bold]{len(status.applied)}[/bold]  "
        f"Pending: [bold]{len(status.pending)}[/bold]"
    )
    for error in status.invalid:
        path = error.context.path or error.version or "?"
        err_console.print(f"[yellow]Invalid[/yellow] {escape(path)}: {escape(error.message)}")


def render_scan(scan: ScanResult) -> None:
    for migration in scan.migrations:
        down = "" if migration.reversible else "  [yellow](no Down section)[/yellow]"
        console.print(
            f"[green]✓[/green] {migration.version}  "
            f"[dim]{len(migration.up)} up / {len(migration.down)} down[/dim]{down}"
        )
    for error in scan.errors:
        line = error.context.metadata.get("line")
        where = f"{error.context.path}:{line}" if line else f"{error.context.path}"
        err_console.print(f"[red]✗[/red] {escape(where)}: {escape(error.message)}")
    console.print(
        f"[bold]{len(scan.migrations)}[/bold] valid, [bold]{len(scan.errors)}[/bold] invalid"
    )
