"""
Unified Result types and error hierarchy for git-swarm.

This module provides:
1. Result[T, E] type for explicit error handling at the git boundary
2. Domain-specific exception hierarchy used across the swarm

Usage:
    from gitswarm.core.result import Ok, Err, Result, GitError

    async def head() -> Result[str, GitError]:
        if failed:
            return Err(GitError("rev-parse failed", context={"cwd": str(cwd)}))
        return Ok(sha)

    match await head():
        case Ok(sha):
            ...
        case Err(err):
            ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value (ignores default for Ok)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[E], F]) -> Ok[T]:
        """No-op for Ok - returns self unchanged."""
        return self


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> Any:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return the default value."""
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        """Apply a function to the contained error."""
        return Err(fn(self.error))


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class SwarmError(Exception):
    """Base exception for all git-swarm errors.

    Carries a human-readable message plus a context mapping with the
    details (paths, git arguments, captured stderr) needed to diagnose it.
    """

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class ValidationError(SwarmError):
    """Raised for input validation failures.

    Examples:
    - Project path is not a git repository
    - Empty task or agent_count below 1
    - Unknown decomposition strategy
    """


class ConfigurationError(SwarmError):
    """Raised for configuration issues (unreadable or malformed config files)."""


class GitError(SwarmError):
    """Raised (or returned inside Err) when a git command fails.

    The context carries cwd, args, returncode and the captured stderr.
    """


class IsolationError(SwarmError):
    """Raised when an isolated workspace cannot be created.

    Fatal for the agent that needed it, never for its siblings.
    """


class ExecutionError(SwarmError):
    """Raised when an agent executor fails or reports failure."""


class MergeError(SwarmError):
    """Raised when integrating an agent branch fails outright.

    A conflicted merge is not a MergeError; conflicts are recorded as
    ConflictReport entries on the swarm state.
    """


class OrchestratorError(SwarmError):
    """Raised for swarm-level failures and illegal state transitions."""


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "SwarmError",
    "ValidationError",
    "ConfigurationError",
    "GitError",
    "IsolationError",
    "ExecutionError",
    "MergeError",
    "OrchestratorError",
]
