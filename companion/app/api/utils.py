"""Helpers shared by the API routers."""

import json
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

from fastapi import Request, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from companion.app.core.error_handler import app_settings, handle_error
from companion.app.db.models import Correction, Feedback, User
from companion.app.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def read_json(request: Request, model: Type[ModelT]) -> ModelT:
    """Parse and validate the request body.

    Parsing happens inside the rate-limited handler, so malformed requests
    still count against the caller's budget.

    Raises:
        ValidationError: if the body is not JSON
        pydantic.ValidationError: if the body does not match ``model``
    """
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body") from None
    return model.model_validate(data)


def read_query(request: Request, model: Type[ModelT]) -> ModelT:
    return model.model_validate(dict(request.query_params))


async def run_guarded(
    request: Request,
    db: AsyncSession,
    body: Callable[[], Awaitable[Response]],
) -> Response:
    """Run a route body, turning any error into the JSON error envelope.

    Pending database changes are rolled back before the error response is
    produced. What the envelope exposes follows the serving app's settings.
    """
    try:
        return await body()
    except Exception as exc:
        await db.rollback()
        return handle_error(exc, app_settings(request))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_user(user: User, include_private: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": user.id,
        "username": user.username,
        "roles": list(user.roles or []),
        "rank": user.rank,
        "stats": {
            "contributionPoints": user.contribution_points,
            "feedbackSubmitted": user.feedback_submitted,
            "bugsReported": user.bugs_reported,
            "featuresProposed": user.features_proposed,
            "dataCorrections": user.data_corrections,
            "correctionsAccepted": user.corrections_accepted,
        },
        "createdAt": _iso(user.created_at),
    }
    if include_private:
        data.update(
            {
                "email": user.email,
                "bio": user.bio,
                "location": user.location,
                "vrHeadset": user.vr_headset,
                "preferences": user.preferences,
                "isBanned": user.is_banned,
                "banReason": user.ban_reason,
                "lastActivity": _iso(user.last_activity),
            }
        )
    return data


def serialize_feedback(feedback: Feedback) -> Dict[str, Any]:
    return {
        "id": feedback.id,
        "type": feedback.type,
        "title": feedback.title,
        "description": feedback.description,
        "priority": feedback.priority,
        "category": feedback.category,
        "status": feedback.status,
        "userId": feedback.user_id,
        "isAnonymous": feedback.is_anonymous,
        "pageUrl": feedback.page_url,
        "userAgent": feedback.user_agent,
        "adminNotes": feedback.admin_notes,
        "reviewedBy": feedback.reviewed_by,
        "reviewedAt": _iso(feedback.reviewed_at),
        "createdAt": _iso(feedback.created_at),
        "updatedAt": _iso(feedback.updated_at),
    }


def serialize_correction(correction: Correction, include_review_notes: bool = True) -> Dict[str, Any]:
    data = {
        "id": correction.id,
        "entityType": correction.entity_type,
        "entityId": correction.entity_id,
        "status": correction.status,
        "userId": correction.user_id,
        "proposedData": correction.proposed_data,
        "changes": correction.changes,
        "reason": correction.reason,
        "reviewedBy": correction.reviewed_by,
        "reviewedAt": _iso(correction.reviewed_at),
        "createdAt": _iso(correction.created_at),
        "updatedAt": _iso(correction.updated_at),
    }
    if include_review_notes:
        data["reviewNotes"] = correction.review_notes
    return data
