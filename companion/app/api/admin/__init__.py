"""Admin API routers."""

from companion.app.api.admin.corrections import router as corrections_router
from companion.app.api.admin.feedback import router as feedback_router
from companion.app.api.admin.users import router as users_router

__all__ = ["corrections_router", "feedback_router", "users_router"]
