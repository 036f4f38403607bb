"""Middleware and request guards."""

from companion.app.middleware.auth import (
    require_admin,
    require_admin_or_moderator,
    require_auth,
)
from companion.app.middleware.rate_limit import with_rate_limit
from companion.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "require_auth",
    "require_admin",
    "require_admin_or_moderator",
    "with_rate_limit",
    "RequestIdMiddleware",
    "get_request_id",
]
