"""Rate limiting for upstream calls.

Uses pyrate-limiter in-memory buckets.
"""

from sluice.core.rate_limit.limiter import RequestLimiter
from sluice.core.rate_limit.registry import NoOpLimiter, RateLimitRegistry

__all__ = ["NoOpLimiter", "RateLimitRegistry", "RequestLimiter"]
