"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, NotRequired, Sequence, TypedDict


class ErrorIssue(TypedDict):
    """A single field-level validation problem."""

    path: list[str | int]
    message: str
    type: str


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    hint: str
    field: str
    issues: list[ErrorIssue]
    buyer_id: str
    expected_updated_at: str
    current_updated_at: str
    max_rows: int
    actual_rows: int
    retry_after: int
    limit: int
    remaining: int
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when a payload or the resulting record breaks a schema rule."""


class AuthenticationAppError(AppError):
    """Raised when the caller has no valid session."""


class NotFoundAppError(AppError):
    """Raised when no record matches the id within the caller's scope."""


class ConflictAppError(AppError):
    """Raised when an optimistic-lock check fails or a row vanished mid-update."""


class RateLimitAppError(AppError):
    """Raised when the caller exhausted the route's token bucket."""


class StoreAppError(AppError):
    """Raised when the relational store fails unexpectedly."""


# Location prefixes FastAPI adds to validation errors; clients only need the field path
_LOCATION_PREFIXES = {"body", "query", "path", "header"}


def to_issues(errors: Sequence[Mapping[str, Any]]) -> list[ErrorIssue]:
    """Convert pydantic error dicts into the public issue shape.

    Args:
        errors: Output of ``ValidationError.errors()`` or ``RequestValidationError.errors()``.

    Returns:
        List of issues with the request-location prefix stripped from each path.
    """
    issues: list[ErrorIssue] = []
    for err in errors:
        loc = list(err.get("loc", ()))
        if loc and loc[0] in _LOCATION_PREFIXES:
            loc = loc[1:]
        issues.append(
            {
                "path": loc,
                "message": str(err.get("msg", "")),
                "type": str(err.get("type", "")),
            }
        )
    return issues
