"""Rate limit data models and the named tier table."""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class RateLimitConfig:
    """A fixed-window policy: at most ``unique_token_per_interval`` requests
    per ``interval`` seconds."""

    interval: int
    unique_token_per_interval: int

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        if self.unique_token_per_interval <= 0:
            raise ValueError(
                f"unique_token_per_interval must be positive, got {self.unique_token_per_interval}"
            )


@dataclass(frozen=True)
class RateLimitTier:
    """Pair of policies for one endpoint class; anonymous callers get the stricter one."""

    authenticated: RateLimitConfig
    anonymous: RateLimitConfig

    def select(self, is_authenticated: bool) -> RateLimitConfig:
        return self.authenticated if is_authenticated else self.anonymous


@dataclass
class RateLimitResult:
    """Result of a rate limit check.

    ``reset`` is the end of the current window in epoch milliseconds.
    ``retry_after`` (seconds) is only set when the request was denied.
    """

    success: bool
    remaining: int
    reset: int
    retry_after: Optional[int] = None


@dataclass
class TokenBucket:
    """In-memory counter state for one identifier, tier interval and window.

    ``window_end`` is in epoch seconds; ``last_access`` is refreshed on
    every check and drives the idle sweep.
    """

    tokens: int
    window_end: float
    last_access: float = field(default_factory=time.time)

    def is_expired(self, now: float, retention_seconds: float) -> bool:
        # A bucket still inside its window holds a live budget
        return now >= self.window_end and now - self.last_access > retention_seconds


RATE_LIMIT_CONFIGS: Dict[str, RateLimitConfig] = {
    # Feedback submissions: 30 per hour signed in, 10 per hour anonymous
    "feedbackPostAuthenticated": RateLimitConfig(interval=60 * 60, unique_token_per_interval=30),
    "feedbackPostUnauthenticated": RateLimitConfig(interval=60 * 60, unique_token_per_interval=10),
    # Feedback listing: 60 per hour
    "feedbackGetAuthenticated": RateLimitConfig(interval=60 * 60, unique_token_per_interval=60),
    # Profile updates: 3 per day
    "userUpdate": RateLimitConfig(interval=60 * 60 * 24, unique_token_per_interval=3),
    # Auth attempts: 5 per 15 minutes
    "auth": RateLimitConfig(interval=60 * 15, unique_token_per_interval=5),
    # Admin actions: 50 per 5 minutes
    "admin": RateLimitConfig(interval=300, unique_token_per_interval=50),
    # General API: 30 per minute
    "api": RateLimitConfig(interval=60, unique_token_per_interval=30),
}

FEEDBACK_POST_TIER = RateLimitTier(
    authenticated=RATE_LIMIT_CONFIGS["feedbackPostAuthenticated"],
    anonymous=RATE_LIMIT_CONFIGS["feedbackPostUnauthenticated"],
)
