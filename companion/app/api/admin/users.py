"""Admin user directory plus role and ban management."""

import math
from typing import Literal, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from companion.app.api.utils import read_json, read_query, run_guarded, serialize_user
from companion.app.core.logging import get_logger
from companion.app.db.crud import change_role, get_user_by_id, list_users, set_ban
from companion.app.db.dependencies import SessionDep
from companion.app.exceptions import AuthorizationError, NotFoundError
from companion.app.middleware.auth import require_admin, require_admin_or_moderator
from companion.app.middleware.rate_limit import with_rate_limit

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin/users", tags=["admin"])

Role = Literal["user", "contributor", "moderator", "partner", "admin"]

ROLE_ACTION_PAST = {"add": "added", "remove": "removed"}


class RoleUpdate(BaseModel):
    action: Literal["add", "remove"]
    role: Role
    reason: Optional[str] = Field(default=None, max_length=500)


class UserListQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    search: Optional[str] = Field(default=None, max_length=100)
    role: Optional[Literal["all", "user", "contributor", "moderator", "partner", "admin"]] = None
    sort_by: Literal["createdAt", "username", "contributionPoints"] = Field(
        default="createdAt", alias="sortBy"
    )
    sort_order: Literal["asc", "desc"] = Field(default="desc", alias="sortOrder")


class BanUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_banned: bool = Field(alias="isBanned")
    ban_reason: Optional[str] = Field(default=None, alias="banReason", max_length=500)


@router.get("")
async def list_all_users(request: Request, db: SessionDep) -> Response:
    """Paginated user directory with search and role filtering."""

    async def body() -> Response:
        await require_admin_or_moderator(request, db)
        query = read_query(request, UserListQuery)

        users, total = await list_users(
            db,
            search=query.search or None,
            role=None if query.role == "all" else query.role,
            page=query.page,
            limit=query.limit,
            sort_by=query.sort_by,
            descending=query.sort_order == "desc",
        )
        pages = math.ceil(total / query.limit)
        return JSONResponse(
            {
                "users": [{**serialize_user(user), "email": user.email} for user in users],
                "pagination": {
                    "page": query.page,
                    "limit": query.limit,
                    "total": total,
                    "pages": pages,
                    "hasNextPage": query.page < pages,
                    "hasPrevPage": query.page > 1,
                },
            }
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")


@router.get("/{user_id}/roles")
async def get_user_roles(user_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        await require_admin_or_moderator(request, db)
        user = await get_user_by_id(db, user_id)
        if user is None:
            raise NotFoundError("User")
        return JSONResponse({"user": serialize_user(user)})

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "api")


@router.patch("/{user_id}/roles")
async def update_user_roles(user_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        ctx = await require_admin(request, db)
        update = await read_json(request, RoleUpdate)

        target = await get_user_by_id(db, user_id)
        if target is None:
            raise NotFoundError("User")
        if target.id == ctx.user.id:
            raise AuthorizationError("Cannot modify your own roles")
        if target.has_role("admin"):
            raise AuthorizationError("Cannot modify another admin's roles")

        await change_role(db, target, update.action, update.role)
        await db.commit()

        logger.info(
            "User role updated",
            extra={
                "user_id": ctx.user.id,
                "target_user_id": target.id,
                "action": update.action,
                "role": update.role,
                "reason": update.reason,
            },
        )
        return JSONResponse(
            {
                "success": True,
                "message": f"Role {ROLE_ACTION_PAST[update.action]} successfully",
                "user": serialize_user(target),
            }
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")


@router.patch("/{user_id}/ban")
async def update_user_ban(user_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        ctx = await require_admin(request, db)
        update = await read_json(request, BanUpdate)

        target = await get_user_by_id(db, user_id)
        if target is None:
            raise NotFoundError("User")
        if target.id == ctx.user.id:
            raise AuthorizationError("Cannot ban yourself")
        if target.has_role("admin"):
            raise AuthorizationError("Cannot ban another admin")

        await set_ban(db, target, update.is_banned, update.ban_reason)
        await db.commit()

        logger.info(
            "User ban state changed",
            extra={"user_id": ctx.user.id, "target_user_id": target.id, "is_banned": update.is_banned},
        )
        return JSONResponse(
            {"success": True, "user": serialize_user(target, include_private=True)}
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")
