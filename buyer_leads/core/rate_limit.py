"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: storage backend can be replaced behind an abstract interface.
- Per (user, logical route) buckets so one endpoint cannot starve another.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from buyer_leads.adapters.rate_limit.base import AbstractRateLimiter, rate_limit_key
from buyer_leads.adapters.rate_limit.in_memory import InMemoryTokenBucketRateLimiter
from buyer_leads.core.auth import CurrentUserDep
from buyer_leads.core.config import settings
from buyer_leads.core.errors import RateLimitAppError
from buyer_leads.core.logging import hash_for_log

logger = logging.getLogger(__name__)


_limiter: AbstractRateLimiter | None = None


def get_rate_limiter() -> AbstractRateLimiter:
    """Return the process-wide rate limiter instance.

    The instance is cached in-module to preserve bucket state across requests.
    """

    global _limiter

    if _limiter is None:
        _limiter = InMemoryTokenBucketRateLimiter()
    return _limiter


def reset_rate_limiter() -> None:
    """Forget all buckets (used by tests and admin tooling)."""

    global _limiter
    _limiter = None


def allow(key: str, capacity: int, window_ms: int) -> bool:
    """Take one token from ``key``'s bucket on the shared limiter."""

    return get_rate_limiter().allow(key, capacity, window_ms)


def rate_limited(
    route: str,
    capacity: Callable[[], int],
) -> Callable[..., Awaitable[None]]:
    """Build a dependency enforcing a token bucket for ``route``.

    Args:
        route: Logical route name used in the bucket key (e.g. ``buyers.create``).
        capacity: Callable returning the bucket capacity; read per request so
            settings overrides apply without rebuilding the router.

    Returns:
        Async dependency raising RateLimitAppError (429) when the bucket is empty.
    """

    async def enforce_rate_limit(user: CurrentUserDep) -> None:
        if not settings.app.rate_limit_enabled:
            return

        key = rate_limit_key(user.id, route)
        window_ms = settings.app.rate_limit_window_ms
        result = get_rate_limiter().consume(key, capacity=capacity(), window_ms=window_ms)

        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "route": route,
                    "key_hash": hash_for_log(key),
                    "limit": result.limit,
                    "remaining": result.remaining,
                },
            )
            return

        retry_after = result.retry_after_seconds or 0
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "route": route,
                "key_hash": hash_for_log(key),
                "limit": result.limit,
                "window_ms": window_ms,
                "retry_after_s": retry_after,
            },
        )
        raise RateLimitAppError(
            code="rate_limited",
            message="Too many requests. Please wait a moment and try again.",
            details={
                "retry_after": retry_after,
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )

    return enforce_rate_limit


enforce_create_rate_limit = rate_limited(
    "buyers.create", lambda: settings.app.rate_limit_create_capacity
)
enforce_update_rate_limit = rate_limited(
    "buyers.update", lambda: settings.app.rate_limit_update_capacity
)
