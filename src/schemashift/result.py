"""
Result envelope for engine operations.

Every public operation of :class:`~schemashift.engine.MigrationEngine`
returns ``Ok(value)`` or ``Err(MigrationError)`` instead of raising or
exiting. The CLI is the only place that turns an ``Err`` into an exit code.

Examples:
    >>> from schemashift.result import Ok, Err, Result
    >>> def pending_count(n: int) -> Result[int]:
    ...     if n < 0:
    ...         return Err(ValueError("negative"))
    ...     return Ok(n)
    >>> match pending_count(3):
    ...     case Ok(value):
    ...         print(f"{value} pending")
    ...     case Err(error):
    ...         print(f"failed: {error}")
    3 pending

Guardrails:
    ❌ DON'T: Call unwrap() without checking is_ok() first
    ✅ DO: Use pattern matching or unwrap_or()

Tags:
    result-pattern, error-handling, schemashift
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from schemashift.errors import MigrationError


T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get value or default (always returns value for Ok)."""
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """Chain to another Result-returning function."""
        return f(self.value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing an error."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Get default since this is Err."""
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, MigrationError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Type alias for Result
Result = Ok[T] | Err[T]


def try_result(f: Callable[[], T]) -> Result[T]:
    """
    Execute a function and wrap the outcome in a Result.

    Only ``MigrationError`` is captured; anything else is a bug and
    propagates.

    Examples:
        >>> try_result(lambda: 42)
        Ok(42)
    """
    try:
        return Ok(f())
    except MigrationError as e:
        return Err(e)


__all__ = ["Ok", "Err", "Result", "try_result"]
