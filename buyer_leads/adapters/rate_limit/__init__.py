"""Rate limiting adapters.

This package provides a small abstraction layer so the service can start with
an in-memory token bucket and later migrate to a shared counter store without
changing the API layer.
"""

from buyer_leads.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitResult,
    rate_limit_key,
)
from buyer_leads.adapters.rate_limit.in_memory import InMemoryTokenBucketRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "InMemoryTokenBucketRateLimiter",
    "RateLimitResult",
    "rate_limit_key",
]
