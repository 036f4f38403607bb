"""Feedback CRUD operations."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from companion.app.db.models import Feedback


async def create_feedback(session: AsyncSession, **fields: Any) -> Feedback:
    feedback = Feedback(**fields)
    session.add(feedback)
    await session.flush()
    return feedback


async def get_feedback(session: AsyncSession, feedback_id: str) -> Optional[Feedback]:
    return await session.get(Feedback, feedback_id)


async def list_feedback(
    session: AsyncSession,
    filters: Dict[str, str],
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Feedback], int]:
    """List feedback newest first.

    Args:
        session: Database session
        filters: Column name -> exact value (status, type, priority)
        page: 1-based page number
        limit: Page size

    Returns:
        (page of feedback, total matching count)
    """
    conditions = [getattr(Feedback, name) == value for name, value in filters.items()]

    total = await session.scalar(
        select(func.count()).select_from(Feedback).where(*conditions)
    )
    result = await session.execute(
        select(Feedback)
        .where(*conditions)
        .order_by(Feedback.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def review_feedback(
    session: AsyncSession,
    feedback: Feedback,
    reviewer_id: str,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    admin_notes: Optional[str] = None,
    set_notes: bool = False,
) -> Feedback:
    """Apply an admin review. Moving off ``new`` stamps the reviewer."""
    if status:
        feedback.status = status
        if status != "new":
            feedback.reviewed_by = reviewer_id
            feedback.reviewed_at = datetime.now(timezone.utc)
    if priority:
        feedback.priority = priority
    if set_notes:
        feedback.admin_notes = admin_notes
    feedback.updated_at = datetime.now(timezone.utc)
    await session.flush()
    return feedback


async def delete_feedback(session: AsyncSession, feedback: Feedback) -> None:
    await session.delete(feedback)
    await session.flush()
