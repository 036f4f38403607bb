"""Rate limiting for the companion API.

Fixed-window counters with an in-memory backend for single-instance
deployments and a Redis backend (fail-open) for production.
"""

from companion.app.middleware.rate_limit.models import (
    FEEDBACK_POST_TIER,
    RATE_LIMIT_CONFIGS,
    RateLimitConfig,
    RateLimitResult,
    RateLimitTier,
    TokenBucket,
)
from companion.app.middleware.rate_limit.backends import (
    InMemoryRateLimiter,
    RateLimitBackend,
    RedisRateLimiter,
    create_rate_limiter,
)
from companion.app.middleware.rate_limit.guard import (
    get_identifier,
    rate_limit_headers,
    resolve_config,
    with_rate_limit,
)

__all__ = [
    # Models
    "RateLimitConfig",
    "RateLimitTier",
    "RateLimitResult",
    "TokenBucket",
    "RATE_LIMIT_CONFIGS",
    "FEEDBACK_POST_TIER",
    # Backends
    "RateLimitBackend",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "create_rate_limiter",
    # Guard
    "get_identifier",
    "rate_limit_headers",
    "resolve_config",
    "with_rate_limit",
]
