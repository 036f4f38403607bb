"""HTTP API routers."""

from companion.app.api.admin import corrections_router as admin_corrections_router
from companion.app.api.admin import feedback_router as admin_feedback_router
from companion.app.api.admin import users_router as admin_users_router
from companion.app.api.corrections import router as corrections_router
from companion.app.api.feedback import router as feedback_router
from companion.app.api.rate_limit_status import router as rate_limit_status_router
from companion.app.api.user import router as user_router

__all__ = [
    "admin_corrections_router",
    "admin_feedback_router",
    "admin_users_router",
    "corrections_router",
    "feedback_router",
    "rate_limit_status_router",
    "user_router",
]
