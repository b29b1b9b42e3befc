"""
Structured error types for schemashift.

Every failure the engine can report is a ``MigrationError`` subclass that
carries a category, a CLI exit code, structured context and an optional
chained cause. The engine never exits the process itself: operations return
``Err(MigrationError)`` and the CLI layer turns the error into an exit code.

Manifesto:
    - **Typed kinds:** One class per failure mode the operator must react to
    - **Distinct exit codes:** Deployment scripts branch on the exit status
    - **Rich context:** Version, file, statement index travel with the error
    - **Error chaining:** The driver exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      MigrationError                           │
        │        (category, exit_code, context, cause, fatal)           │
        ├──────────────────────────────────────────────────────────────┤
        │  DatabaseConnectionError   ConfigError       LockError        │
        │  (DATABASE, 3)             (CONFIG, 11)      (LOCK, 10)       │
        │                                                               │
        │  InvalidNameError          CollisionError                     │
        │  (REPOSITORY, 4)           (REPOSITORY, 5)                    │
        │                                                               │
        │  ParseError                ConsistencyError                   │
        │  (PARSE, 6, warning)       (CONSISTENCY, 9, warning)          │
        │                                                               │
        │  ExecutionError            NoDownSectionError                 │
        │  (EXECUTION, 7)            (EXECUTION, 8, warning)            │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = ExecutionError("syntax error near 'CRATE'")
    >>> err.with_context(version="20260101120000_add_users", statement_index=2)
    ExecutionError(...)
    >>> err.exit_code
    7

Tags:
    error-handling, exception-hierarchy, exit-codes, schemashift
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing and reporting."""

    DATABASE = "DATABASE"          # Connection, driver, transport
    CONFIG = "CONFIG"              # Missing or invalid settings
    LOCK = "LOCK"                  # Advisory lock contention
    REPOSITORY = "REPOSITORY"      # Migration file management
    PARSE = "PARSE"                # Malformed migration files
    EXECUTION = "EXECUTION"        # SQL failure during apply/revert
    CONSISTENCY = "CONSISTENCY"    # Ledger and repository disagree
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


class ExitCode(int, Enum):
    """Process exit codes, one per error kind."""

    OK = 0
    UNEXPECTED = 1
    CONNECTION = 3
    INVALID_NAME = 4
    COLLISION = 5
    PARSE = 6
    EXECUTION = 7
    NO_DOWN_SECTION = 8
    CONSISTENCY = 9
    LOCK = 10
    CONFIG = 11


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        version: Migration version the error is about
        path: Migration file path
        statement_index: 1-based index of the failing statement
        statement: Text of the failing statement
        metadata: Any other key/value pairs
    """

    version: str | None = None
    path: str | None = None
    statement_index: int | None = None
    statement: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["version", "path", "statement_index", "statement"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MigrationError(Exception):
    """
    Base exception for all schemashift errors.

    Subclasses set ``default_category``, ``exit_code`` and ``fatal``.
    A non-fatal error is reported as a warning and the run continues.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    exit_code: ExitCode = ExitCode.UNEXPECTED
    fatal: bool = True

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> MigrationError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ParseError("Up marker missing").with_context(
                path="migrations/20260101120000_add_users.sql"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    @property
    def version(self) -> str | None:
        return self.context.version

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "exit_code": int(self.exit_code),
            "fatal": self.fatal,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# INFRASTRUCTURE
# =============================================================================


class DatabaseConnectionError(MigrationError):
    """The database cannot be reached."""

    default_category = ErrorCategory.DATABASE
    exit_code = ExitCode.CONNECTION


class ConfigError(MigrationError):
    """Settings are missing or invalid."""

    default_category = ErrorCategory.CONFIG
    exit_code = ExitCode.CONFIG


class LockError(MigrationError):
    """Another migration run holds the advisory lock."""

    default_category = ErrorCategory.LOCK
    exit_code = ExitCode.LOCK


# =============================================================================
# REPOSITORY
# =============================================================================


class InvalidNameError(MigrationError):
    """Migration name is empty or contains path-unsafe characters."""

    default_category = ErrorCategory.REPOSITORY
    exit_code = ExitCode.INVALID_NAME


class CollisionError(MigrationError):
    """A migration file with the same version already exists.

    Happens when two migrations are created within the same second; retry
    after a tick.
    """

    default_category = ErrorCategory.REPOSITORY
    exit_code = ExitCode.COLLISION


class ParseError(MigrationError):
    """Migration file is malformed. The file is excluded from processing."""

    default_category = ErrorCategory.PARSE
    exit_code = ExitCode.PARSE
    fatal = False

    def __init__(self, message: str, *, line: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.line = line
        if line is not None:
            self.context.metadata["line"] = line


# =============================================================================
# EXECUTION / CONSISTENCY
# =============================================================================


class ExecutionError(MigrationError):
    """A statement failed while applying or reverting a migration.

    Halts the remaining work of the run. Migrations completed earlier in the
    same run stay applied; their versions are kept in ``completed``.
    """

    default_category = ErrorCategory.EXECUTION
    exit_code = ExitCode.EXECUTION

    @property
    def completed(self) -> list[str]:
        return list(self.context.metadata.get("completed", []))


class NoDownSectionError(MigrationError):
    """Revert attempted on a migration whose Down section is empty.

    The ledger entry is left in place.
    """

    default_category = ErrorCategory.EXECUTION
    exit_code = ExitCode.NO_DOWN_SECTION
    fatal = False


class ConsistencyError(MigrationError):
    """The ledger references a version that has no migration file."""

    default_category = ErrorCategory.CONSISTENCY
    exit_code = ExitCode.CONSISTENCY
    fatal = False


__all__ = [
    "ErrorCategory",
    "ExitCode",
    "ErrorContext",
    "MigrationError",
    "DatabaseConnectionError",
    "ConfigError",
    "LockError",
    "InvalidNameError",
    "CollisionError",
    "ParseError",
    "ExecutionError",
    "NoDownSectionError",
    "ConsistencyError",
]
