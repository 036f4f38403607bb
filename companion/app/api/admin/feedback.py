"""Admin review of feedback items."""

from typing import Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from companion.app.api.feedback import FeedbackPriority, FeedbackStatus
from companion.app.api.utils import read_json, run_guarded, serialize_feedback
from companion.app.core.logging import get_logger
from companion.app.db.crud import (
    credit_accepted_feedback,
    delete_feedback,
    get_feedback,
    review_feedback,
)
from companion.app.db.dependencies import SessionDep
from companion.app.exceptions import NotFoundError
from companion.app.middleware.auth import require_admin
from companion.app.middleware.rate_limit import with_rate_limit

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin/feedback", tags=["admin"])

# Contribution points awarded when a submission is accepted
ACCEPTANCE_POINTS = {"accepted": 5, "implemented": 10}


class FeedbackReview(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[FeedbackStatus] = None
    priority: Optional[FeedbackPriority] = None
    admin_notes: Optional[str] = Field(default=None, alias="adminNotes", max_length=5000)


@router.get("/{feedback_id}")
async def get_feedback_item(feedback_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        await require_admin(request, db)
        feedback = await get_feedback(db, feedback_id)
        if feedback is None:
            raise NotFoundError("Feedback")
        return JSONResponse({"feedback": serialize_feedback(feedback)})

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")


@router.patch("/{feedback_id}")
async def update_feedback_item(feedback_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        ctx = await require_admin(request, db)
        review = await read_json(request, FeedbackReview)

        feedback = await get_feedback(db, feedback_id)
        if feedback is None:
            raise NotFoundError("Feedback")

        await review_feedback(
            db,
            feedback,
            reviewer_id=ctx.user.id,
            status=review.status,
            priority=review.priority,
            admin_notes=review.admin_notes,
            set_notes="admin_notes" in review.model_fields_set,
        )
        if feedback.user_id and review.status in ACCEPTANCE_POINTS:
            await credit_accepted_feedback(db, feedback.user_id, ACCEPTANCE_POINTS[review.status])
        await db.commit()

        logger.info(
            "Feedback reviewed",
            extra={"user_id": ctx.user.id, "feedback_id": feedback.id, "status": feedback.status},
        )
        return JSONResponse(
            {
                "success": True,
                "feedback": serialize_feedback(feedback),
                "message": "Feedback updated successfully",
            }
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")


@router.delete("/{feedback_id}")
async def delete_feedback_item(feedback_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        ctx = await require_admin(request, db)
        feedback = await get_feedback(db, feedback_id)
        if feedback is None:
            raise NotFoundError("Feedback")

        await delete_feedback(db, feedback)
        await db.commit()

        logger.info("Feedback deleted", extra={"user_id": ctx.user.id, "feedback_id": feedback_id})
        return JSONResponse({"success": True, "message": "Feedback deleted successfully"})

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")
