"""Session lookup and role guards.

Sign-in happens elsewhere (the OAuth flow of the site); by the time a request
reaches this API the user id sits in the signed session cookie managed by
Starlette's ``SessionMiddleware``. Guards only trust that id: ban state and
roles are re-read from the user store on every check so a ban or role change
applies immediately instead of at the next session refresh.

Guards can be called directly from inside a rate-limited handler::

    ctx = await require_admin(request, db)

or used as FastAPI dependencies through ``AuthDep`` / ``AdminDep`` /
``ModeratorDep``.
"""

from dataclasses import dataclass
from typing import Annotated, Iterable, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from companion.app.core.logging import get_logger
from companion.app.db.crud.user import get_user_by_id
from companion.app.db.dependencies import SessionDep
from companion.app.db.models import User
from companion.app.exceptions import (
    AuthenticationError,
    BannedUserError,
    InsufficientPermissionsError,
)

logger = get_logger(__name__)

SESSION_USER_KEY = "user_id"


@dataclass(frozen=True)
class Session:
    """The signed-in identity carried by the session cookie."""

    user_id: str


@dataclass
class AuthContext:
    session: Session
    user: User


def get_session(request: Request) -> Optional[Session]:
    """Return the current session, or None for anonymous requests."""
    # request.session asserts when SessionMiddleware is not installed
    if "session" not in request.scope:
        return None
    user_id = request.session.get(SESSION_USER_KEY)
    if not user_id:
        return None
    return Session(user_id=str(user_id))


async def _load_user(request: Request, db: AsyncSession) -> AuthContext:
    session = get_session(request)
    if session is None:
        raise AuthenticationError()

    user = await get_user_by_id(db, session.user_id)
    if user is None:
        # Cookie outlived the account
        logger.warning(
            "Session refers to unknown user", extra={"user_id": session.user_id}
        )
        raise AuthenticationError()

    if user.is_banned:
        raise BannedUserError()

    return AuthContext(session=session, user=user)


def _require_any_role(ctx: AuthContext, roles: Iterable[str], label: str) -> AuthContext:
    if not any(role in (ctx.user.roles or []) for role in roles):
        raise InsufficientPermissionsError(label)
    return ctx


async def require_auth(request: Request, db: SessionDep) -> AuthContext:
    """Require a signed-in, non-banned user.

    Raises:
        AuthenticationError: 401 if there is no valid session
        BannedUserError: 403 if the user is banned
    """
    return await _load_user(request, db)


async def require_admin(request: Request, db: SessionDep) -> AuthContext:
    """Require the ``admin`` role.

    Raises:
        InsufficientPermissionsError: 403 naming "Admin"
    """
    ctx = await _load_user(request, db)
    return _require_any_role(ctx, ("admin",), "Admin")


async def require_admin_or_moderator(request: Request, db: SessionDep) -> AuthContext:
    """Require the ``admin`` or ``moderator`` role."""
    ctx = await _load_user(request, db)
    return _require_any_role(ctx, ("admin", "moderator"), "Moderator")


AuthDep = Annotated[AuthContext, Depends(require_auth)]
AdminDep = Annotated[AuthContext, Depends(require_admin)]
ModeratorDep = Annotated[AuthContext, Depends(require_admin_or_moderator)]
