"""Migration file parser.

A migration file is UTF-8 SQL with two marker lines::

    -- Migration: add_users_table
    -- Created: 2026-10-19 09:30:00 UTC

    -- +migrate Up
    CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL);

    -- +migrate Down
    DROP TABLE users;

The file is scanned line by line.  Both markers must appear exactly once,
``Up`` before ``Down``; anything else is a :class:`ParseError` naming the
file and line.  Each section is then split into statements on ``;`` outside
of string literals, quoted identifiers, comments and PostgreSQL
dollar-quoted bodies.  Fragments that contain only comments are dropped.

Trigger bodies written as ``CREATE TRIGGER … BEGIN … END`` (SQLite, MySQL)
contain bare semicolons; they are kept whole until the ``END`` that closes
the outer ``BEGIN``.  Nested ``CASE … END`` expressions are counted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from schemashift.errors import ParseError
from schemashift.models import Migration

UP_MARKER = "-- +migrate Up"
DOWN_MARKER = "-- +migrate Down"

VERSION_PATTERN = re.compile(r"^(?P<stamp>\d{14})_(?P<name>[A-Za-z0-9_\-]+)$")

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_TRIGGER_START = re.compile(
    r"^\s*(?:--[^\n]*\n\s*)*CREATE\s+(?:TEMP\s+|TEMPORARY\s+)?TRIGGER\b.*\bBEGIN\b",
    re.IGNORECASE | re.DOTALL,
)
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")
_BLOCK_OPEN = frozenset({"BEGIN", "CASE"})
# MySQL compound statements closed by END IF / END LOOP etc. never opened a block
_END_SUFFIX = frozenset({"IF", "LOOP", "WHILE", "REPEAT"})


@dataclass(frozen=True)
class Sections:
    """Statements of the two sections of one migration file."""

    up: tuple[str, ...]
    down: tuple[str, ...]


def _normalise(line: str) -> str:
    return " ".join(line.split())


def parse_sections(text: str) -> Sections:
    """Split migration text into its ``Up`` and ``Down`` statements.

    Raises:
        ParseError: If a marker is missing, duplicated or out of order.
    """
    up_line: int | None = None
    down_line: int | None = None
    up_lines: list[str] = []
    down_lines: list[str] = []
    current: list[str] | None = None

    for lineno, line in enumerate(text.splitlines(), start=1):
        marker = _normalise(line)
        if marker == UP_MARKER:
            if up_line is not None:
                raise ParseError(f"Duplicate Up marker (first on line {up_line})", line=lineno)
            up_line = lineno
            current = up_lines
            continue
        if marker == DOWN_MARKER:
            if down_line is not None:
                raise ParseError(f"Duplicate Down marker (first on line {down_line})", line=lineno)
            if up_line is None:
                raise ParseError("Down marker appears before the Up marker", line=lineno)
            down_line = lineno
            current = down_lines
            continue
        if current is not None:
            current.append(line)

    if up_line is None:
        raise ParseError(f"Missing '{UP_MARKER}' marker")
    if down_line is None:
        raise ParseError(f"Missing '{DOWN_MARKER}' marker")

    return Sections(
        up=tuple(split_statements("\n".join(up_lines))),
        down=tuple(split_statements("\n".join(down_lines))),
    )


def _close_quote(sql: str, start: int, quote: str) -> int:
    """Index just past the quote that closes the literal opened at *start*."""
    i = start + 1
    n = len(sql)
    while i < n:
        if sql[i] == quote:
            # doubled quote is an escaped quote
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def split_statements(sql: str) -> list[str]:
    """Split a SQL script into individual statements.

    >>> split_statements("CREATE TABLE a (x TEXT DEFAULT ';'); -- done\\nDROP TABLE b;")
    ["CREATE TABLE a (x TEXT DEFAULT ';')", '-- done\\nDROP TABLE b']
    """
    statements: list[str] = []
    buf: list[str] = []
    has_code = False
    # open BEGIN / CASE blocks in the current statement
    depth = 0
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if ch == "-" and nxt == "-":
            end = sql.find("\n", i)
            end = n if end == -1 else end
            buf.append(sql[i:end])
            i = end
            continue

        if ch == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            buf.append(sql[i:end])
            i = end
            continue

        if ch in ("'", '"', "`"):
            end = _close_quote(sql, i, ch)
            buf.append(sql[i:end])
            has_code = True
            i = end
            continue

        if ch == "$":
            match = _DOLLAR_TAG.match(sql, i)
            if match:
                tag = match.group(0)
                end = sql.find(tag, match.end())
                end = n if end == -1 else end + len(tag)
                buf.append(sql[i:end])
                has_code = True
                i = end
                continue

        word = _WORD.match(sql, i) if ch.isalpha() or ch == "_" else None
        if word:
            keyword = word.group(0).upper()
            end = word.end()
            if keyword in _BLOCK_OPEN:
                depth += 1
            elif keyword == "END":
                skip = end
                while skip < n and sql[skip].isspace():
                    skip += 1
                suffix = _WORD.match(sql, skip)
                closes = suffix.group(0).upper() if suffix else ""
                if closes in _END_SUFFIX or closes == "CASE":
                    end = suffix.end()
                if closes not in _END_SUFFIX:
                    depth = max(depth - 1, 0)
            buf.append(sql[i:end])
            has_code = True
            i = end
            continue

        if ch == ";":
            text = "".join(buf)
            if depth > 0 and _TRIGGER_START.match(text):
                buf.append(ch)
                i += 1
                continue
            if has_code:
                statements.append(text.strip())
            buf = []
            has_code = False
            depth = 0
            i += 1
            continue

        if not ch.isspace():
            has_code = True
        buf.append(ch)
        i += 1

    if has_code:
        statements.append("".join(buf).strip())

    return statements


def parse_version(stem: str) -> tuple[str, str]:
    """Split a file stem into ``(version, name)``.

    Raises:
        ParseError: If the stem is not ``YYYYMMDDHHMMSS_<name>``.
    """
    match = VERSION_PATTERN.match(stem)
    if not match:
        raise ParseError(
            f"File name {stem!r} is not a migration version (expected YYYYMMDDHHMMSS_<name>)"
        )
    return stem, match.group("name")


def parse_migration_file(path: Path) -> Migration:
    """Load and parse one migration file.

    Raises:
        ParseError: If the name, encoding or markers are invalid.  The error
            carries the file path and, when known, the version.
    """
    try:
        version, name = parse_version(path.stem)
    except ParseError as exc:
        raise exc.with_context(path=str(path))

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(f"File is not valid UTF-8: {exc}", cause=exc).with_context(
            path=str(path), version=version
        ) from exc

    try:
        sections = parse_sections(text)
    except ParseError as exc:
        raise exc.with_context(path=str(path), version=version)

    return Migration(
        version=version,
        name=name,
        up=sections.up,
        down=sections.down,
        source_path=path,
    )


__all__ = [
    "UP_MARKER",
    "DOWN_MARKER",
    "Sections",
    "parse_sections",
    "split_statements",
    "parse_version",
    "parse_migration_file",
]
