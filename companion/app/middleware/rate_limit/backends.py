"""Rate limit store backends.

Both backends implement the same fixed-window counter:

    window = floor(now / interval)
    reset  = (window + 1) * interval      (epoch ms)

The first request in a window gets the full budget, each request spends
one token, and a request arriving with no tokens left is denied until the
next window starts. Because windows are aligned rather than sliding, a
client can spend a full budget just before a boundary and another just
after it (up to 2N requests in a short span). That is a known limitation
of the algorithm, acceptable for abuse mitigation.
"""

import asyncio
import contextlib
import math
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import redis
import redis.asyncio as aioredis

from companion.app.core.config import Settings
from companion.app.core.logging import get_logger
from companion.app.middleware.rate_limit.models import (
    RateLimitConfig,
    RateLimitResult,
    TokenBucket,
)

logger = get_logger(__name__)

Clock = Callable[[], float]


def _window_bounds(now: float, config: RateLimitConfig) -> tuple[int, int, int]:
    """Return (now_ms, window_index, reset_ms) for ``now`` in epoch seconds."""
    now_ms = int(now * 1000)
    interval_ms = config.interval * 1000
    window = now_ms // interval_ms
    return now_ms, window, (window + 1) * interval_ms


def _retry_after(reset_ms: int, now_ms: int) -> int:
    return math.ceil((reset_ms - now_ms) / 1000)


def _policy_key(key: str, config: RateLimitConfig, window: int) -> str:
    """Counter key for one caller, policy and window.

    Policies differing in interval or budget never share a counter, even
    when their windows start at the same instant.
    """
    return f"{key}:{config.interval}:{config.unique_token_per_interval}:{window}"


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    @abstractmethod
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Spend one request for ``key`` under ``config``.

        Args:
            key: Rate limit identifier (``user:<id>`` or ``ip:<addr>``)
            config: Window length and budget to apply

        Returns:
            RateLimitResult with allow/deny and window metadata
        """

    async def start(self) -> None:
        """Start background work, if any."""

    async def close(self) -> None:
        """Release resources held by the backend."""


class InMemoryRateLimiter(RateLimitBackend):
    """Per-process fixed-window limiter.

    Suitable for single-instance deployments only: each process keeps its
    own counters, so horizontally scaled deployments need the Redis backend.
    Buckets idle for longer than ``retention_seconds`` are swept by a
    background task every ``cleanup_interval`` seconds.
    """

    def __init__(
        self,
        clock: Clock = time.time,
        cleanup_interval: float = 5 * 60,
        retention_seconds: float = 60 * 60,
    ):
        self._clock = clock
        self.cleanup_interval = cleanup_interval
        self.retention_seconds = retention_seconds
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            now_ms, window, reset_ms = _window_bounds(now, config)
            bucket_key = _policy_key(key, config, window)

            bucket = self._buckets.get(bucket_key)
            if bucket is None:
                bucket = TokenBucket(
                    tokens=config.unique_token_per_interval,
                    window_end=reset_ms / 1000,
                    last_access=now,
                )
                self._buckets[bucket_key] = bucket
            bucket.last_access = now

            success = bucket.tokens > 0
            if success:
                bucket.tokens -= 1

            return RateLimitResult(
                success=success,
                remaining=max(0, bucket.tokens),
                reset=reset_ms,
                retry_after=None if success else _retry_after(reset_ms, now_ms),
            )

    async def cleanup(self) -> int:
        """Drop buckets untouched for longer than the retention horizon.

        A bucket is never dropped before its window ends, so long tiers
        (a daily budget, say) survive the hourly sweep.

        Returns:
            Number of buckets removed
        """
        async with self._lock:
            now = self._clock()
            expired = [
                k for k, b in self._buckets.items() if b.is_expired(now, self.retention_seconds)
            ]
            for k in expired:
                del self._buckets[k]
        if expired:
            logger.debug(f"Swept {len(expired)} idle rate limit buckets")
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            await self.cleanup()

    async def start(self) -> None:
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def close(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    def __len__(self) -> int:
        return len(self._buckets)


class RedisRateLimiter(RateLimitBackend):
    """Redis-based distributed limiter.

    Uses INCR on a per-window key, sent in one MULTI/EXEC pipeline with
    ``EXPIRE ... NX`` so the key always carries a TTL of ``interval + 1``
    seconds, even when a previous call was cut off between the two
    commands. INCR is atomic on the server, which keeps counts correct
    across processes. ``EXPIRE NX`` needs Redis 7 or newer.

    If Redis is unreachable, slow or erroring, the check fails open: the
    request is allowed with a full budget reported. Availability of the
    site takes priority over strict enforcement.
    """

    KEY_PREFIX = "rate_limit"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        timeout: float = 0.5,
        clock: Clock = time.time,
    ):
        """Initialize Redis rate limiter.

        Args:
            redis_client: Optional Redis client instance
            redis_url: Redis connection URL, used when no client is given
            timeout: Seconds allowed per Redis call before failing open
            clock: Time source in epoch seconds
        """
        self._redis = redis_client
        self._redis_url = redis_url
        self._owns_client = redis_client is None
        self.timeout = timeout
        self._clock = clock

    async def _get_redis(self) -> Any:
        """Get or create Redis connection."""
        if self._redis is None:
            if not self._redis_url:
                raise RuntimeError("RedisRateLimiter needs a redis_client or redis_url")
            self._redis = aioredis.from_url(
                self._redis_url,
                socket_timeout=self.timeout,
                socket_connect_timeout=self.timeout,
            )
        return self._redis

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now_ms, window, reset_ms = _window_bounds(self._clock(), config)
        redis_key = f"{self.KEY_PREFIX}:{_policy_key(key, config, window)}"

        try:
            client = await self._get_redis()
            pipe = client.pipeline(transaction=True)
            pipe.incr(redis_key)
            pipe.expire(redis_key, config.interval + 1, nx=True)
            current, _ = await asyncio.wait_for(pipe.execute(), self.timeout)
        except (asyncio.TimeoutError, redis.TimeoutError) as e:
            logger.warning(f"Redis rate limit timeout: {e!r}")
            return self._fail_open(config, reset_ms, "timeout")
        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}")
            return self._fail_open(config, reset_ms, "connection_error")
        except redis.RedisError as e:
            logger.error(f"Redis error: {e}")
            return self._fail_open(config, reset_ms, "redis_error")
        except Exception as e:
            logger.exception(f"Unexpected rate limit error: {e}")
            return self._fail_open(config, reset_ms, "unexpected")

        success = current <= config.unique_token_per_interval
        return RateLimitResult(
            success=success,
            remaining=max(0, config.unique_token_per_interval - current),
            reset=reset_ms,
            retry_after=None if success else _retry_after(reset_ms, now_ms),
        )

    def _fail_open(self, config: RateLimitConfig, reset_ms: int, error_type: str) -> RateLimitResult:
        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check."
        )
        return RateLimitResult(
            success=True,
            remaining=config.unique_token_per_interval,
            reset=reset_ms,
        )

    async def close(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None


def create_rate_limiter(settings: Settings) -> RateLimitBackend:
    """Pick the limiter backend for this process.

    Redis is used when a URL is configured and the app runs in production;
    everything else (local development, tests, a production box without
    Redis) gets the in-memory backend. Call once at startup and inject the
    result; do not call per request.
    """
    if settings.redis_url and settings.is_production:
        logger.info("Using Redis rate limiter backend")
        return RedisRateLimiter(
            redis_url=settings.redis_url,
            timeout=settings.rate_limit_redis_timeout,
        )

    logger.info("Using in-memory rate limiter backend")
    return InMemoryRateLimiter(
        cleanup_interval=settings.rate_limit_cleanup_interval_seconds,
        retention_seconds=settings.rate_limit_bucket_retention_seconds,
    )
