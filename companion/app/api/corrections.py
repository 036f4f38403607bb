"""Community data-correction proposals.

Signed-in users propose fixes to game data by sending the values they saw
(``currentData``) next to the values they propose (``proposedData``). Only
the fields that actually differ are stored in ``changes`` as flattened
``a.b`` paths; moderators review them through the admin API.
"""

import math
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from companion.app.api.utils import read_json, read_query, run_guarded, serialize_correction
from companion.app.core.logging import get_logger
from companion.app.db.crud import (
    create_correction,
    delete_correction,
    edit_correction,
    get_correction,
    list_corrections,
)
from companion.app.db.dependencies import SessionDep
from companion.app.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from companion.app.middleware.auth import require_auth
from companion.app.middleware.rate_limit import with_rate_limit

logger = get_logger(__name__)

router = APIRouter(prefix="/api/corrections", tags=["corrections"])

EntityType = Literal["item", "task", "npc", "location", "quest"]
CorrectionStatus = Literal["pending", "approved", "rejected", "implemented"]


def _require_some_value(value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if value is not None and not any(v is not None for v in value.values()):
        raise ValueError("At least one field must be provided for correction")
    return value


class CorrectionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    entity_type: EntityType = Field(alias="entityType")
    entity_id: str = Field(alias="entityId", min_length=1, max_length=64)
    current_data: Dict[str, Any] = Field(default_factory=dict, alias="currentData")
    proposed_data: Dict[str, Any] = Field(alias="proposedData")
    reason: Optional[str] = Field(default=None, min_length=10, max_length=1000)

    check_proposed = field_validator("proposed_data")(_require_some_value)


class CorrectionEdit(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="forbid")

    current_data: Dict[str, Any] = Field(default_factory=dict, alias="currentData")
    proposed_data: Optional[Dict[str, Any]] = Field(default=None, alias="proposedData")
    reason: Optional[str] = Field(default=None, min_length=10, max_length=1000)

    check_proposed = field_validator("proposed_data")(_require_some_value)


class CorrectionQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    status: Optional[CorrectionStatus] = None
    entity_type: Optional[EntityType] = Field(default=None, alias="entityType")
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    user_id: Optional[str] = Field(default=None, alias="userId")

    def filters(self) -> Dict[str, str]:
        return {
            name: value
            for name, value in (
                ("status", self.status),
                ("entity_type", self.entity_type),
                ("entity_id", self.entity_id),
                ("user_id", self.user_id),
            )
            if value
        }


def diff_changes(current: Any, proposed: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten the proposed values that differ from the current ones.

    Nested objects are walked; lists and scalars are compared as a whole.
    ``None`` in ``proposed`` means "leave unchanged".
    """
    changes: Dict[str, Any] = {}
    for key, new in proposed.items():
        path = f"{prefix}.{key}" if prefix else key
        old = current.get(key) if isinstance(current, dict) else None
        if new is None or new == old:
            continue
        if isinstance(new, dict):
            changes.update(diff_changes(old or {}, new, path))
        else:
            changes[path] = {"from": old, "to": new}
    return changes


def _changes_or_raise(current: Dict[str, Any], proposed: Dict[str, Any]) -> Dict[str, Any]:
    changes = diff_changes(current, proposed)
    if not changes:
        raise ValidationError("No changes detected in the proposed data")
    return changes


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}


@router.get("")
async def list_public_corrections(request: Request, db: SessionDep) -> Response:
    """Browse corrections; review notes stay internal."""

    async def body() -> Response:
        query = read_query(request, CorrectionQuery)
        items, total = await list_corrections(
            db, query.filters(), page=query.page, limit=query.limit
        )
        return JSONResponse(
            {
                "corrections": [
                    serialize_correction(item, include_review_notes=False) for item in items
                ],
                "pagination": pagination(query.page, query.limit, total),
            }
        )

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "api")


@router.post("")
async def submit_correction(request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        ctx = await require_auth(request, db)
        payload = await read_json(request, CorrectionCreate)
        changes = _changes_or_raise(payload.current_data, payload.proposed_data)

        correction = await create_correction(
            db,
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            user_id=ctx.user.id,
            proposed_data=payload.proposed_data,
            changes=changes,
            reason=payload.reason,
            status="pending",
        )
        await db.commit()

        logger.info(
            "Data correction submitted",
            extra={
                "user_id": ctx.user.id,
                "correction_id": correction.id,
                "entity": f"{correction.entity_type}:{correction.entity_id}",
                "changes_count": len(changes),
            },
        )
        return JSONResponse(
            {"success": True, "correction": {"id": correction.id, "status": correction.status}}
        )

    return await with_rate_limit(
        request, lambda: run_guarded(request, db, body), "feedbackPostAuthenticated"
    )


@router.get("/{correction_id}")
async def get_own_correction(correction_id: str, request: Request, db: SessionDep) -> Response:
    async def body() -> Response:
        ctx = await require_auth(request, db)
        correction = await get_correction(db, correction_id)
        if correction is None:
            raise NotFoundError("Correction")
        if correction.user_id != ctx.user.id:
            raise AuthorizationError("You can only view your own corrections")
        return JSONResponse(
            {"correction": serialize_correction(correction, include_review_notes=False)}
        )

    return await with_rate_limit(
        request, lambda: run_guarded(request, db, body), "feedbackGetAuthenticated"
    )


@router.patch("/{correction_id}")
async def edit_own_correction(correction_id: str, request: Request, db: SessionDep) -> Response:
    """Let the submitter revise a correction until a moderator reviews it."""

    async def body() -> Response:
        ctx = await require_auth(request, db)
        edit = await read_json(request, CorrectionEdit)

        correction = await get_correction(db, correction_id)
        if correction is None:
            raise NotFoundError("Correction")
        if correction.user_id != ctx.user.id:
            raise AuthorizationError("You can only edit your own corrections")

        changes = None
        if edit.proposed_data is not None:
            changes = _changes_or_raise(edit.current_data, edit.proposed_data)

        applied = await edit_correction(
            db,
            correction,
            proposed_data=edit.proposed_data,
            changes=changes,
            reason=edit.reason,
            set_reason="reason" in edit.model_fields_set,
        )
        if not applied:
            raise ConflictError("Only pending corrections can be edited")
        await db.commit()

        logger.info(
            "Data correction edited",
            extra={"user_id": ctx.user.id, "correction_id": correction.id},
        )
        return JSONResponse(
            {
                "success": True,
                "correction": serialize_correction(correction, include_review_notes=False),
            }
        )

    return await with_rate_limit(
        request, lambda: run_guarded(request, db, body), "feedbackPostAuthenticated"
    )


@router.delete("/{correction_id}")
async def withdraw_correction(correction_id: str, request: Request, db: SessionDep) -> Response:
    """Submitters withdraw their pending corrections; admins delete any."""

    async def body() -> Response:
        ctx = await require_auth(request, db)
        correction = await get_correction(db, correction_id)
        if correction is None:
            raise NotFoundError("Correction")

        if not ctx.user.has_role("admin"):
            if correction.user_id != ctx.user.id:
                raise AuthorizationError("You can only delete your own corrections")
            if correction.status != "pending":
                raise ConflictError("Only pending corrections can be withdrawn")

        await delete_correction(db, correction)
        await db.commit()

        logger.info(
            "Correction deleted", extra={"user_id": ctx.user.id, "correction_id": correction_id}
        )
        return JSONResponse({"success": True, "message": "Correction deleted successfully"})

    return await with_rate_limit(request, lambda: run_guarded(request, db, body), "admin")
