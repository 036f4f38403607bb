"""Moderator review of data-correction proposals."""

from typing import Literal, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from companion.app.api.corrections import CorrectionQuery, pagination
from companion.app.api.utils import read_json, read_query, run_guarded, serialize_correction
from companion.app.core.logging import get_logger
from companion.app.db.crud import (
    count_corrections_by_status,
    delete_correction,
    get_correction,
    list_corrections,
    list_related_corrections,
    record_correction_reviewed,
    review_correction,
)
from companion.app.db.dependencies import SessionDep
from companion.app.exceptions import ConflictError, NotFoundError
from companion.app.middleware.auth import require_admin_or_moderator
from companion.app.middleware.rate_limit import with_rate_limit

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin/corrections", tags=["admin"])

# Contribution points for an approved correction
APPROVAL_POINTS = 10


class AdminCorrectionQuery(CorrectionQuery):
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Literal["createdAt", "updatedAt"] = Field(default="createdAt", alias="sortBy")
    order: Literal["asc", "desc"] = "desc"


class CorrectionReview(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    status: Literal["approved", "rejected"]
    review_notes: Optional[str] = Field(default=None, alias="reviewNotes", max_length=500)


@router.get("")
async def list_all_corrections(request: Request, db: SessionDep) -> Response:
    """Review queue with per-status counts for the same filters."""

    async def body() -> Response:
        await require_admin_or_moderator(request, db)
        query = read_query(request, AdminCorrectionQuery)
        filters = query.filters()

        items, total = await list_corrections(
            db,
            filters,
            page=query.page,
            limit=query.limit,
            sort_by=query.sort_by,
            descending=query.order == "desc",
        )
        by_status = await count_corrections_by_status(db, filters)

        return JSONResponse(
            {
                "corrections": [serialize_correction(item) for item in items],
                "pagination": pagination(query.page, query.limit, total),
                "stats": {"total": total, "byStatus": by_status},
            }
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")


@router.get("/{correction_id}")
async def get_correction_details(correction_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        await require_admin_or_moderator(request, db)
        correction = await get_correction(db, correction_id)
        if correction is None:
            raise NotFoundError("Correction")

        related = await list_related_corrections(db, correction)
        return JSONResponse(
            {
                "correction": serialize_correction(correction),
                "relatedCorrections": [
                    {
                        "id": item.id,
                        "status": item.status,
                        "userId": item.user_id,
                        "createdAt": item.created_at.isoformat(),
                    }
                    for item in related
                ],
            }
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")


@router.patch("/{correction_id}")
async def review_correction_item(correction_id: str, request: Request, db: SessionDep) -> Response:
    """Approve or reject a pending correction and credit its author."""

    async def body() -> Response:
        ctx = await require_admin_or_moderator(request, db)
        review = await read_json(request, CorrectionReview)

        correction = await get_correction(db, correction_id)
        if correction is None:
            raise NotFoundError("Correction")

        reviewed = await review_correction(
            db,
            correction,
            reviewer_id=ctx.user.id,
            status=review.status,
            review_notes=review.review_notes,
        )
        if not reviewed:
            raise ConflictError("Only pending corrections can be reviewed")

        if correction.user_id:
            await record_correction_reviewed(
                db,
                correction.user_id,
                approved=review.status == "approved",
                points=APPROVAL_POINTS,
            )
        await db.commit()

        logger.info(
            "Correction reviewed",
            extra={
                "user_id": ctx.user.id,
                "correction_id": correction.id,
                "status": correction.status,
            },
        )
        return JSONResponse(
            {
                "success": True,
                "correction": {
                    "id": correction.id,
                    "status": correction.status,
                    "reviewedAt": correction.reviewed_at.isoformat(),
                },
            }
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")


@router.delete("/{correction_id}")
async def delete_correction_item(correction_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        ctx = await require_admin_or_moderator(request, db)
        correction = await get_correction(db, correction_id)
        if correction is None:
            raise NotFoundError("Correction")

        await delete_correction(db, correction)
        await db.commit()

        logger.info(
            "Correction deleted", extra={"user_id": ctx.user.id, "correction_id": correction_id}
        )
        return JSONResponse({"success": True, "message": "Correction deleted successfully"})

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")
