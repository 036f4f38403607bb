"""Community feedback submission and listing."""

import math
import secrets
import time
from typing import Literal, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from companion.app.core.logging import get_logger
from companion.app.db.crud import create_feedback, list_feedback, record_feedback_submitted
from companion.app.db.dependencies import SessionDep
from companion.app.middleware.auth import get_session, require_admin, require_auth
from companion.app.middleware.rate_limit import FEEDBACK_POST_TIER, with_rate_limit
from companion.app.api.utils import read_json, read_query, run_guarded, serialize_feedback

logger = get_logger(__name__)

router = APIRouter(prefix="/api/feedback", tags=["feedback"])

SESSION_COOKIE = "sessionId"
SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 365

FeedbackType = Literal["bug", "feature", "general", "data_correction"]
FeedbackPriority = Literal["low", "medium", "high", "critical"]
FeedbackStatus = Literal["new", "in_review", "accepted", "rejected", "implemented", "duplicate"]

_HIGH_PRIORITY_WORDS = ("crash", "broken", "cannot")

# Checked in order; first match wins
_URL_CATEGORIES = (
    ("/items", "items"),
    ("/tasks", "tasks"),
    ("/hideout", "hideout"),
    ("/combat-sim", "combat-sim"),
    ("/guides", "guides"),
)


class FeedbackCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    type: FeedbackType
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=5000)
    priority: Optional[FeedbackPriority] = None
    category: Optional[str] = Field(default=None, max_length=20)
    page_url: Optional[str] = Field(default=None, alias="pageUrl", max_length=2048)
    user_agent: Optional[str] = Field(default=None, alias="userAgent", max_length=512)


class FeedbackQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    status: Optional[FeedbackStatus] = None
    type: Optional[FeedbackType] = None
    priority: Optional[FeedbackPriority] = None


def calculate_priority(payload: FeedbackCreate) -> str:
    """Explicit priority wins; otherwise derive it from keywords and type."""
    if payload.priority:
        return payload.priority

    title = payload.title.lower()
    description = payload.description.lower()
    if any(word in description for word in _HIGH_PRIORITY_WORDS) or any(
        word in title for word in ("crash", "broken")
    ):
        return "high"

    if payload.type in ("bug", "data_correction"):
        return "medium"
    return "low"


def category_from_url(url: Optional[str]) -> str:
    for fragment, category in _URL_CATEGORIES:
        if url and fragment in url:
            return category
    return "other"


def _new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@router.post("")
async def submit_feedback(request: Request, db: SessionDep) -> Response:
    """Submit feedback, signed in or anonymously."""
    session = get_session(request)

    async def body() -> Response:
        ctx = await require_auth(request, db) if session else None
        payload = await read_json(request, FeedbackCreate)

        session_id = request.cookies.get(SESSION_COOKIE) or _new_session_id()
        user_id = ctx.user.id if ctx else None

        feedback = await create_feedback(
            db,
            type=payload.type,
            title=payload.title,
            description=payload.description,
            priority=calculate_priority(payload),
            category=payload.category or category_from_url(payload.page_url),
            user_id=user_id,
            is_anonymous=user_id is None,
            session_id=session_id,
            page_url=payload.page_url,
            user_agent=payload.user_agent or request.headers.get("user-agent"),
            status="new",
        )
        if user_id:
            await record_feedback_submitted(db, user_id, payload.type)
        await db.commit()

        logger.info(
            "Feedback submitted",
            extra={"user_id": user_id, "feedback_id": feedback.id, "feedback_type": feedback.type},
        )

        response = JSONResponse(
            {
                "success": True,
                "feedbackId": feedback.id,
                "message": "Thank you for your feedback! We appreciate your contribution to improving the site.",
            }
        )
        if user_id is None:
            response.set_cookie(
                SESSION_COOKIE,
                session_id,
                max_age=SESSION_COOKIE_MAX_AGE,
                path="/",
                httponly=True,
                samesite="lax",
            )
        return response

    return await with_rate_limit(
        request, lambda: run_guarded(request, db, body), FEEDBACK_POST_TIER, session=session
    )


@router.get("")
async def list_all_feedback(request: Request, db: SessionDep) -> Response:
    """Paginated feedback listing for admins."""

    async def body() -> Response:
        await require_admin(request, db)
        query = read_query(request, FeedbackQuery)

        filters = {
            name: value
            for name, value in (
                ("status", query.status),
                ("type", query.type),
                ("priority", query.priority),
            )
            if value
        }
        items, total = await list_feedback(db, filters, page=query.page, limit=query.limit)

        return JSONResponse(
            {
                "feedback": [serialize_feedback(item) for item in items],
                "pagination": {
                    "page": query.page,
                    "limit": query.limit,
                    "totalCount": total,
                    "totalPages": math.ceil(total / query.limit),
                    "hasNextPage": query.page * query.limit < total,
                    "hasPrevPage": query.page > 1,
                },
            }
        )

    return await with_rate_limit(
        request, lambda: run_guarded(request, db, body), "feedbackGetAuthenticated"
    )
