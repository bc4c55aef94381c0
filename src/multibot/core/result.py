"""
Unified Result types and error hierarchy for multibot.

This module provides:
1. Result[T, E] type for explicit error handling
2. Domain-specific exception hierarchy

Usage:
    from multibot.core.result import Ok, Err, Result, NotFoundError

    async def get_ref(...) -> Result[str, MultibotError]:
        if missing:
            return Err(NotFoundError("Ref not found", context={"ref": ref}))
        return Ok(sha)

    match await get_ref(...):
        case Ok(sha):
            ...
        case Err(NotFoundError()):
            ...
        case Err(err):
            ...
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class MultibotError(Exception):
    """Base exception for all multibot errors.

    Carries a free-form ``context`` mapping (repo, file, ref, status...) that
    is rendered after the message, so an error surfaced from a fan-out over
    many repositories still says which repository it came from.
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

    def with_context(self, **context: Any) -> MultibotError:
        """Return a copy of this error with extra context merged in.

        Existing keys win so the innermost (most specific) context survives.
        """
        enriched = copy.copy(self)
        enriched.context = {**context, **self.context}
        return enriched


class NotFoundError(MultibotError):
    """The forge reported that an object does not exist.

    Expected in normal operation: a missing file is a creation candidate and
    a missing destination ref means the branch can be created.
    """


class PolicyViolation(MultibotError):
    """A requested change conflicts with the run's policy.

    Examples:
    - Destination branch or pull request exists and existing is disallowed
    - Destination branch is protected
    - A transform asked to both create and delete the same file
    """


class ConsistencyError(MultibotError):
    """Remote state changed or cannot be trusted as a rewrite base.

    Examples:
    - Truncated recursive tree listing
    - Blob sha at tree-fetch time differs from the sha seen at read time
    """


class FastForwardRejected(ConsistencyError):
    """The forge refused a non-force ref update."""


class RemoteError(MultibotError):
    """The forge answered with a non-2xx status or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.status = status


class RateLimitError(RemoteError):
    """The forge answered 403, which is almost always rate limiting."""


class PullRequestExistsError(RemoteError):
    """A pull request already exists for the requested branch pair."""


class ProgrammingError(MultibotError):
    """Internal invariant failure, e.g. missing correlated data between stages."""


class TransformError(MultibotError):
    """The user-supplied transform failed or returned an unusable value."""


class ConfigurationError(MultibotError):
    """Raised for configuration and command-line input issues."""


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "MultibotError",
    "NotFoundError",
    "PolicyViolation",
    "ConsistencyError",
    "FastForwardRejected",
    "RemoteError",
    "RateLimitError",
    "PullRequestExistsError",
    "ProgrammingError",
    "TransformError",
    "ConfigurationError",
]
