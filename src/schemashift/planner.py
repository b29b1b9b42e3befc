"""Work planning for ``migrate`` and ``rollback``.

The planner compares the repository listing with the ledger and returns
ordered work lists.  It reads both sides but never writes either.

    pending      = repository versions − ledger versions, ascending
    rollback(n)  = last n ledger versions, descending

A pending version older than the newest applied one is still planned (teams
merging branches create these routinely) but is logged as out of order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from schemashift.ledger import Ledger
from schemashift.logging import get_logger
from schemashift.models import Migration
from schemashift.repository import MigrationRepository

logger = get_logger(__name__)


def plan_pending(migrations: Sequence[Migration], applied: Iterable[str]) -> list[Migration]:
    """Migrations whose version is not in *applied*, ascending by version."""
    applied_set = set(applied)
    pending = sorted(m for m in migrations if m.version not in applied_set)

    if applied_set and pending:
        newest = max(applied_set)
        late = [m.version for m in pending if m.version < newest]
        if late:
            logger.warning("plan.out_of_order", versions=late, newest_applied=newest)
    return pending


def plan_rollback(applied: Iterable[str], steps: int) -> list[str]:
    """The *steps* most recent versions of *applied*, newest first.

    Raises:
        ValueError: If *steps* is negative.
    """
    if steps < 0:
        raise ValueError(f"steps must be >= 0, got {steps}")
    if steps == 0:
        return []
    return sorted(applied, reverse=True)[:steps]


class Planner:
    """Computes pending and rollback sets for one repository and ledger."""

    def __init__(self, repository: MigrationRepository, ledger: Ledger) -> None:
        self.repository = repository
        self.ledger = ledger

    def pending(self, migrations: Sequence[Migration] | None = None) -> list[Migration]:
        """Valid migrations not yet applied, ascending.

        *migrations* defaults to a fresh repository listing; callers that
        already scanned the directory pass their result.
        """
        if migrations is None:
            migrations = self.repository.list_migrations()
        return plan_pending(migrations, self.ledger.applied_versions())

    def rollback_set(self, steps: int) -> list[str]:
        """Last *steps* applied versions, descending.

        More steps than applied versions returns the whole ledger.
        """
        return plan_rollback(self.ledger.applied_versions(), steps)


__all__ = ["Planner", "plan_pending", "plan_rollback"]
