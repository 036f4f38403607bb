"""User profiles: self-service updates, deletion and public lookup."""

from typing import Literal, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from companion.app.api.utils import read_json, read_query, run_guarded, serialize_user
from companion.app.core.logging import get_logger
from companion.app.db.crud import delete_user_account, get_user_by_username, update_profile
from companion.app.db.dependencies import SessionDep
from companion.app.exceptions import ConflictError, NotFoundError
from companion.app.middleware.auth import require_auth
from companion.app.middleware.rate_limit import RateLimitConfig, with_rate_limit

logger = get_logger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])

USERNAME_PATTERN = r"^[a-zA-Z0-9_-]{3,20}$"

CHECK_USERNAME_RATE_LIMIT = RateLimitConfig(interval=60, unique_token_per_interval=20)
# One deletion per day guards against double submits
USER_DELETE_RATE_LIMIT = RateLimitConfig(interval=60 * 60 * 24, unique_token_per_interval=1)


class PreferencesUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    email_notifications: Optional[bool] = Field(default=None, alias="emailNotifications")
    show_contributions: Optional[bool] = Field(default=None, alias="showContributions")
    public_profile: Optional[bool] = Field(default=None, alias="publicProfile")


class UserUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, pattern=USERNAME_PATTERN)
    bio: Optional[str] = Field(default=None, max_length=500)
    location: Optional[Literal["eu", "na"]] = None
    vr_headset: Optional[Literal["quest2", "quest3", "index", "vive", "pico", "other"]] = Field(
        default=None, alias="vrHeadset"
    )
    preferences: Optional[PreferencesUpdate] = None

    @field_validator("username")
    @classmethod
    def lowercase_username(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value


class UsernameCheck(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(pattern=USERNAME_PATTERN)

    @field_validator("username")
    @classmethod
    def lowercase_username(cls, value: str) -> str:
        return value.lower()


@router.patch("/update")
async def update_user(request: Request, db: SessionDep) -> Response:
    """Update the caller's profile. Only fields present in the body change."""

    async def body() -> Response:
        ctx = await require_auth(request, db)
        update = await read_json(request, UserUpdate)

        changes = update.model_dump(exclude_unset=True, exclude={"preferences"})
        if update.preferences is not None:
            changes["preferences"] = update.preferences.model_dump(
                by_alias=True, exclude_unset=True
            )

        new_username = changes.get("username")
        if new_username and new_username != ctx.user.username:
            existing = await get_user_by_username(db, new_username)
            if existing is not None:
                raise ConflictError("Username already taken")

        await update_profile(db, ctx.user, changes)
        await db.commit()

        logger.info(
            "User profile updated",
            extra={"user_id": ctx.user.id, "fields": sorted(changes)},
        )
        return JSONResponse(
            {
                "success": True,
                "message": "Profile updated successfully",
                "user": serialize_user(ctx.user, include_private=True),
            }
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "userUpdate")


@router.get("/check-username")
async def check_username(request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        query = read_query(request, UsernameCheck)
        available = await get_user_by_username(db, query.username) is None
        return JSONResponse(
            {
                "available": available,
                "message": "Username available" if available else "Username already taken",
            }
        )

    return await with_rate_limit(
        request, lambda: run_guarded(request, db, body), CHECK_USERNAME_RATE_LIMIT
    )


@router.delete("/delete")
async def delete_account(request: Request, db: SessionDep) -> Response:
    """Delete the caller's account and sign them out.

    Feedback and corrections they submitted stay, detached from the account.
    """

    async def body() -> Response:
        ctx = await require_auth(request, db)
        user_id, username = ctx.user.id, ctx.user.username

        await delete_user_account(db, ctx.user)
        await db.commit()
        request.session.clear()

        logger.info("User account deleted", extra={"user_id": user_id, "username": username})
        return JSONResponse({"success": True, "message": "User account deleted successfully"})

    return await with_rate_limit(
        request, lambda: run_guarded(request, db, body), USER_DELETE_RATE_LIMIT
    )


@router.get("/{username}")
async def get_public_profile(username: str, request: Request, db: SessionDep) -> Response:
    """Public profile by username. Banned users are hidden."""

    async def body() -> Response:
        user = await get_user_by_username(db, username.strip().lower())
        if user is None or user.is_banned:
            raise NotFoundError("User profile")

        preferences = user.preferences or {}
        profile = serialize_user(user)
        profile.update(
            {
                "bio": user.bio,
                "location": user.location,
                "vrHeadset": user.vr_headset,
                "preferences": {
                    "publicProfile": preferences.get("publicProfile", True),
                    "showContributions": preferences.get("showContributions", True),
                },
            }
        )
        if not preferences.get("publicProfile", True):
            profile["bio"] = ""
            profile["stats"] = {name: 0 for name in profile["stats"]}
            profile["preferences"] = {"publicProfile": False, "showContributions": False}

        return JSONResponse({"user": profile})

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "api")
