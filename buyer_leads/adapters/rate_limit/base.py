"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so we can swap storage backends later (e.g., a shared key-value store with
expiry) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit consume operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Bucket capacity.
        remaining: Tokens left after this call (0 when blocked).
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int | None


class AbstractRateLimiter(ABC):
    """Interface for per-key rate limiters."""

    @abstractmethod
    def consume(self, key: str, *, capacity: int, window_ms: int) -> RateLimitResult:
        """Take one unit of budget for ``key``.

        Args:
            key: Unique identifier (see ``rate_limit_key``).
            capacity: Maximum units available per window.
            window_ms: Window length in milliseconds.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    def allow(self, key: str, capacity: int, window_ms: int) -> bool:
        """Boolean shortcut over :meth:`consume`."""
        return self.consume(key, capacity=capacity, window_ms=window_ms).allowed


def rate_limit_key(user_id: str, route: str) -> str:
    """Build the bucket key for a user on a logical route.

    Distinct users or routes never share a bucket.

    >>> rate_limit_key("u1", "buyers.create")
    'u1:buyers.create'
    """
    return f"{user_id}:{route}"
