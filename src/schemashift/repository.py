"""Migration repository — migration files on disk.

Creates new migration files from a template, and scans the migrations
directory into parsed :class:`~schemashift.models.Migration` objects sorted
by version.  Files are never deleted or rewritten by the engine.

Versions are ``YYYYMMDDHHMMSS_<slug>`` (UTC).  The fixed-width timestamp
prefix makes lexicographic order equal creation order.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from schemashift.errors import CollisionError, ConsistencyError, InvalidNameError, ParseError
from schemashift.logging import get_logger
from schemashift.models import Migration, ScanResult
from schemashift.parser import DOWN_MARKER, UP_MARKER, parse_migration_file

logger = get_logger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_\- ]+$")
_SEPARATORS = re.compile(r"[\s\-]+")

VERSION_FORMAT = "%Y%m%d%H%M%S"

TEMPLATE = """\
-- Migration: {name}
-- Created: {created}

{up_marker}
-- Add your migration SQL here


{down_marker}
-- Add your rollback SQL here

"""


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def slugify(name: str) -> str:
    """Turn a human migration name into the slug used in the version.

    Raises:
        InvalidNameError: If the name is empty or has path-unsafe characters.
    """
    stripped = name.strip()
    if not stripped:
        raise InvalidNameError("Migration name is required")
    if not _SAFE_NAME.match(stripped):
        raise InvalidNameError(
            f"Migration name {name!r} may only contain letters, digits, '_', '-' and spaces"
        )
    slug = _SEPARATORS.sub("_", stripped).lower().strip("_")
    if not slug:
        raise InvalidNameError(f"Migration name {name!r} has no usable characters")
    return slug


class MigrationRepository:
    """Manages ``<version>.sql`` files in one directory.

    Parameters
    ----------
    directory
        Migrations directory. Created on first ``create``.
    clock
        Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        directory: Path | str,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.directory = Path(directory)
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create(self, name: str) -> Migration:
        """Write a new, empty migration file and return it.

        Raises:
            InvalidNameError: Empty or unsafe name.
            CollisionError: ``<version>.sql`` already exists (same-second
                creation); retry after a tick.
        """
        slug = slugify(name)
        now = self._clock()
        version = f"{now.strftime(VERSION_FORMAT)}_{slug}"
        path = self.directory / f"{version}.sql"

        self.directory.mkdir(parents=True, exist_ok=True)
        content = TEMPLATE.format(
            name=slug,
            created=now.strftime("%Y-%m-%d %H:%M:%S %Z").strip(),
            up_marker=UP_MARKER,
            down_marker=DOWN_MARKER,
        )
        try:
            # "x" mode fails atomically if the file already exists
            with path.open("x", encoding="utf-8") as fh:
                fh.write(content)
        except FileExistsError as exc:
            raise CollisionError(
                f"Migration {version} already exists; retry in a second"
            ).with_context(version=version, path=str(path)) from exc

        logger.info("migration.created", version=version, path=str(path))
        return Migration(version=version, name=slug, up=(), down=(), source_path=path)

    def scan(self) -> ScanResult:
        """Parse every ``*.sql`` file, collecting parse errors instead of raising."""
        result = ScanResult()
        if not self.directory.is_dir():
            return result

        for path in sorted(self.directory.glob("*.sql")):
            if not path.is_file():
                continue
            try:
                result.migrations.append(parse_migration_file(path))
            except ParseError as exc:
                logger.warning("migration.invalid", path=str(path), error=exc.message)
                result.errors.append(exc)

        result.migrations.sort(key=lambda m: m.version)
        return result

    def list_migrations(self) -> list[Migration]:
        """Valid migrations in ascending version order (parse errors are logged)."""
        return self.scan().migrations

    def get(self, version: str) -> Migration:
        """Load one migration by version.

        Raises:
            ConsistencyError: No file for this version.
            ParseError: The file exists but is malformed.
        """
        path = self.directory / f"{version}.sql"
        if not path.is_file():
            raise ConsistencyError(
                f"Migration file not found for applied version {version}"
            ).with_context(version=version, path=str(path))
        return parse_migration_file(path)

    def __repr__(self) -> str:
        return f"MigrationRepository({str(self.directory)!r})"


__all__ = ["MigrationRepository", "slugify", "utcnow", "TEMPLATE", "VERSION_FORMAT"]
