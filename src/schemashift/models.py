"""Data types shared by the repository, ledger, planner and executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from schemashift.errors import ConsistencyError, MigrationError, ParseError


@dataclass(frozen=True)
class Migration:
    """A versioned SQL changeset parsed from ``<version>.sql``.

    ``up`` and ``down`` hold the individual statements in execution order.
    ``down`` may be empty, in which case the migration cannot be reverted.
    """

    version: str
    name: str
    up: tuple[str, ...]
    down: tuple[str, ...]
    source_path: Path

    @property
    def reversible(self) -> bool:
        return bool(self.down)

    def __lt__(self, other: Migration) -> bool:
        return self.version < other.version


@dataclass(frozen=True)
class LedgerEntry:
    """One row of the ledger table."""

    version: str
    applied_at: datetime | str | None = None


@dataclass
class ScanResult:
    """Outcome of scanning the migrations directory."""

    migrations: list[Migration] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)

    @property
    def versions(self) -> list[str]:
        return [m.version for m in self.migrations]

    def by_version(self) -> dict[str, Migration]:
        return {m.version: m for m in self.migrations}


@dataclass
class MigrationStatus:
    """Read-only projection of repository and ledger state.

    ``missing`` lists ledger versions with no migration file (consistency
    faults); ``invalid`` lists files that could not be parsed.
    """

    applied: list[LedgerEntry] = field(default_factory=list)
    pending: list[Migration] = field(default_factory=list)
    missing: list[ConsistencyError] = field(default_factory=list)
    invalid: list[ParseError] = field(default_factory=list)

    @property
    def applied_versions(self) -> list[str]:
        return [e.version for e in self.applied]

    @property
    def pending_versions(self) -> list[str]:
        return [m.version for m in self.pending]

    @property
    def warnings(self) -> list[MigrationError]:
        return [*self.missing, *self.invalid]

    @property
    def consistent(self) -> bool:
        return not self.missing

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": [
                {"version": e.version, "applied_at": str(e.applied_at) if e.applied_at else None}
                for e in self.applied
            ],
            "pending": self.pending_versions,
            "missing": [e.version for e in self.missing],
            "invalid": [e.to_dict() for e in self.invalid],
        }


@dataclass
class RunReport:
    """Outcome of one ``migrate`` or ``rollback`` run.

    ``planned`` is the ordered work list; ``applied`` / ``reverted`` what
    actually completed; ``skipped`` the versions passed over with a warning.
    """

    command: str
    planned: list[str] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    reverted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[MigrationError] = field(default_factory=list)
    dry_run: bool = False

    @property
    def completed(self) -> list[str]:
        return self.applied + self.reverted

    def warn(self, error: MigrationError) -> None:
        self.warnings.append(error)
        if error.version and error.version not in self.skipped:
            self.skipped.append(error.version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "dry_run": self.dry_run,
            "planned": self.planned,
            "applied": self.applied,
            "reverted": self.reverted,
            "skipped": self.skipped,
            "warnings": [w.to_dict() for w in self.warnings],
        }


__all__ = ["Migration", "LedgerEntry", "ScanResult", "MigrationStatus", "RunReport"]
