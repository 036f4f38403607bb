"""Report the caller's remaining budget for every configured tier."""

from fastapi import APIRouter, Request

from companion.app.middleware.auth import get_session
from companion.app.middleware.rate_limit import (
    RATE_LIMIT_CONFIGS,
    get_identifier,
    rate_limit_headers,
)

router = APIRouter(prefix="/api/rate-limit", tags=["rate-limit"])


@router.get("/status")
async def rate_limit_status(request: Request) -> dict:
    """Check each tier under a dedicated ``<identifier>:check`` key.

    These keys are separate from the ones routes spend, so checking the
    status never eats into a real budget.
    """
    limiter = request.app.state.rate_limiter
    session = get_session(request)
    identifier = get_identifier(request, session.user_id if session else None)

    limits = []
    for endpoint, config in RATE_LIMIT_CONFIGS.items():
        result = await limiter.check(f"{identifier}:check", config)
        headers = rate_limit_headers(config, result)
        limits.append(
            {
                "endpoint": endpoint,
                "limit": config.unique_token_per_interval,
                "interval": config.interval,
                "remaining": result.remaining,
                "reset": headers["X-RateLimit-Reset"],
            }
        )

    return {"identifier": "user" if session else "ip", "limits": limits}
