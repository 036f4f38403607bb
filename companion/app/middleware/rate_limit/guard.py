"""Per-route rate limit guard.

Routes wrap their body in ``with_rate_limit`` rather than relying on a
global middleware, because each endpoint class has its own tier and the
tier depends on whether the caller is signed in::

    @router.post("")
    async def submit(request: Request, db: SessionDep) -> Response:
        async def handler() -> Response:
            ...
        return await with_rate_limit(request, handler, FEEDBACK_POST_TIER)
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from companion.app.core.logging import get_log_context, get_logger
from companion.app.middleware.auth import Session, get_session
from companion.app.middleware.rate_limit.backends import RateLimitBackend
from companion.app.middleware.rate_limit.models import (
    RATE_LIMIT_CONFIGS,
    RateLimitConfig,
    RateLimitResult,
    RateLimitTier,
)

logger = get_logger(__name__)

ConfigSpec = Union[str, RateLimitConfig, RateLimitTier]
Handler = Callable[[], Awaitable[Any]]

_UNSET: Any = object()


def get_identifier(request: Request, user_id: Optional[str] = None) -> str:
    """Derive the rate limit key for a request.

    Signed-in users are limited per account regardless of network origin;
    anonymous callers per client address as reported by the reverse proxy.
    """
    if user_id:
        return f"user:{user_id}"

    forwarded_for = request.headers.get("x-forwarded-for")
    real_ip = request.headers.get("x-real-ip")

    ip = ""
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
    return f"ip:{ip or real_ip or 'anonymous'}"


def resolve_config(spec: ConfigSpec, is_authenticated: bool) -> RateLimitConfig:
    """Turn a tier name, tier pair or config into the config to apply.

    Raises:
        KeyError: if ``spec`` names no configured tier
    """
    if isinstance(spec, RateLimitTier):
        return spec.select(is_authenticated)
    if isinstance(spec, RateLimitConfig):
        return spec
    return RATE_LIMIT_CONFIGS[spec]


def rate_limit_headers(config: RateLimitConfig, result: RateLimitResult) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(config.unique_token_per_interval),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": datetime.fromtimestamp(result.reset / 1000, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
    }
    if not result.success:
        headers["Retry-After"] = str(result.retry_after)
    return headers


async def with_rate_limit(
    request: Request,
    handler: Handler,
    config: ConfigSpec,
    *,
    limiter: Optional[RateLimitBackend] = None,
    session: Optional[Session] = _UNSET,
) -> Response:
    """Charge one request against the caller's budget, then run ``handler``.

    Denied requests get a 429 and the handler is never called. Allowed
    requests get the handler's response with rate limit headers merged in.
    Exceptions from the handler propagate unchanged; the request has
    already been counted.

    Args:
        request: Incoming request
        handler: Zero-argument coroutine function producing the response
        config: Tier name, ``RateLimitTier`` or ``RateLimitConfig``
        limiter: Backend to use; defaults to ``request.app.state.rate_limiter``
        session: Pre-resolved session; looked up from the request if omitted
    """
    if limiter is None:
        limiter = request.app.state.rate_limiter
    if session is _UNSET:
        session = get_session(request)

    user_id = session.user_id if session else None
    identifier = get_identifier(request, user_id)
    final_config = resolve_config(config, is_authenticated=user_id is not None)

    result = await limiter.check(identifier, final_config)
    headers = rate_limit_headers(final_config, result)

    if not result.success:
        logger.info(
            "Rate limit exceeded",
            extra=get_log_context(
                user_id=user_id,
                identifier=identifier,
                path=request.url.path,
                method=request.method,
            ),
        )
        return JSONResponse(
            status_code=429,
            content={
                "error": "Too many requests",
                "message": f"Rate limit exceeded. Please try again in {result.retry_after} seconds.",
                "retryAfter": result.retry_after,
            },
            headers=headers,
        )

    response = await handler()
    if not isinstance(response, Response):
        response = JSONResponse(content=response)

    for name, value in headers.items():
        response.headers[name] = value
    return response
