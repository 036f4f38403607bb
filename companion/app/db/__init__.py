"""Database package: models, async session management and CRUD."""

from companion.app.db.base import Base
from companion.app.db.models import Feedback, User
from companion.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    get_async_session,
    get_db,
    init_db,
)
from companion.app.db.dependencies import SessionDep

__all__ = [
    "Base",
    "Feedback",
    "User",
    "close_async_engine",
    "get_async_engine",
    "get_async_session",
    "get_db",
    "init_db",
    "SessionDep",
]
