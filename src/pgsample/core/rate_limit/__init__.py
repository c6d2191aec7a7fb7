"""Per-client rate limiting for the HTTP surface.

Uses pyrate-limiter with one in-memory bucket per (path, client).
"""

from pgsample.core.rate_limit.limiter import ClientRateLimiter, RateLimitDecision, create_rate_limiter
from pgsample.core.rate_limit.registry import ClientBucketRegistry, NoOpLimiter

__all__ = ["ClientBucketRegistry", "ClientRateLimiter", "NoOpLimiter", "RateLimitDecision", "create_rate_limiter"]
