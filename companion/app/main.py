from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from companion.app.api import (
    admin_corrections_router,
    admin_feedback_router,
    admin_users_router,
    corrections_router,
    feedback_router,
    rate_limit_status_router,
    user_router,
)
from companion.app.core.config import Settings, settings as default_settings
from companion.app.core.error_handler import register_exception_handlers
from companion.app.core.logging import get_logger, setup_logging
from companion.app.db.async_session import close_async_engine, init_db
from companion.app.middleware.rate_limit import RateLimitBackend, create_rate_limiter
from companion.app.middleware.request_id import RequestIdMiddleware


def create_app(
    settings: Optional[Settings] = None,
    rate_limiter: Optional[RateLimitBackend] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use; defaults to the environment-loaded settings
        rate_limiter: Limiter to use; built from settings when omitted

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or default_settings

    setup_logging()
    logger = get_logger(__name__)

    limiter = rate_limiter or create_rate_limiter(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await init_db()
        await limiter.start()
        logger.info(
            "Application startup complete",
            extra={
                "environment": settings.environment,
                "rate_limiter": type(limiter).__name__,
            },
        )

        yield

        await limiter.close()
        await close_async_engine()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Companion API",
        description="Community feedback and user administration for the companion site",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.rate_limiter = limiter

    # Order matters: last added = first executed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret_key,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age,
        same_site="lax",
        https_only=settings.is_production,
    )
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    app.include_router(feedback_router)
    app.include_router(admin_feedback_router)
    app.include_router(admin_users_router)
    app.include_router(corrections_router)
    app.include_router(admin_corrections_router)
    app.include_router(user_router)
    app.include_router(rate_limit_status_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
