"""Read-only status of a migrations directory against its ledger."""

from __future__ import annotations

from schemashift.errors import ConsistencyError
from schemashift.ledger import Ledger
from schemashift.logging import get_logger
from schemashift.models import MigrationStatus
from schemashift.planner import Planner
from schemashift.repository import MigrationRepository

logger = get_logger(__name__)


class StatusReporter:
    """Combines the repository scan and the ledger into a MigrationStatus.

    Never writes: no lock is taken and a missing ledger table reads as an
    empty ledger.
    """

    def __init__(self, repository: MigrationRepository, ledger: Ledger) -> None:
        self._repository = repository
        self._ledger = ledger
        self._planner = Planner(repository, ledger)

    def status(self) -> MigrationStatus:
        scan = self._repository.scan()
        entries = self._ledger.entries()
        known = set(scan.versions)
        # Files that failed to parse still exist; don't report them as missing
        invalid = {e.version for e in scan.errors if e.version}

        missing: list[ConsistencyError] = []
        for entry in entries:
            if entry.version in known or entry.version in invalid:
                continue
            error = ConsistencyError(
                f"Applied version {entry.version} has no migration file"
            ).with_context(version=entry.version)
            logger.warning("ledger.orphan", version=entry.version)
            missing.append(error)

        return MigrationStatus(
            applied=entries,
            pending=self._planner.pending(scan.migrations),
            missing=missing,
            invalid=list(scan.errors),
        )


__all__ = ["StatusReporter"]
