"""Data correction CRUD operations."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from companion.app.db.models import Correction

# Query-string sort keys -> columns
SORT_COLUMNS = {
    "createdAt": Correction.created_at,
    "updatedAt": Correction.updated_at,
}


async def create_correction(session: AsyncSession, **fields: Any) -> Correction:
    correction = Correction(**fields)
    session.add(correction)
    await session.flush()
    return correction


async def get_correction(session: AsyncSession, correction_id: str) -> Optional[Correction]:
    return await session.get(Correction, correction_id)


def _conditions(filters: Dict[str, str]) -> list:
    return [getattr(Correction, name) == value for name, value in filters.items()]


async def list_corrections(
    session: AsyncSession,
    filters: Dict[str, str],
    page: int = 1,
    limit: int = 20,
    sort_by: str = "createdAt",
    descending: bool = True,
) -> Tuple[List[Correction], int]:
    """List corrections matching ``filters``.

    Args:
        session: Database session
        filters: Column name -> exact value (entity_type, entity_id, status, user_id)
        page: 1-based page number
        limit: Page size
        sort_by: Key of ``SORT_COLUMNS``
        descending: Newest first when True

    Returns:
        (page of corrections, total matching count)
    """
    conditions = _conditions(filters)
    column = SORT_COLUMNS[sort_by]

    total = await session.scalar(
        select(func.count()).select_from(Correction).where(*conditions)
    )
    result = await session.execute(
        select(Correction)
        .where(*conditions)
        .order_by(column.desc() if descending else column.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def count_corrections_by_status(
    session: AsyncSession, filters: Dict[str, str]
) -> Dict[str, int]:
    result = await session.execute(
        select(Correction.status, func.count())
        .where(*_conditions(filters))
        .group_by(Correction.status)
    )
    return {status: count for status, count in result.all()}


async def list_related_corrections(
    session: AsyncSession, correction: Correction, limit: int = 5
) -> List[Correction]:
    """Other corrections for the same entity, newest first."""
    result = await session.execute(
        select(Correction)
        .where(
            Correction.entity_type == correction.entity_type,
            Correction.entity_id == correction.entity_id,
            Correction.id != correction.id,
        )
        .order_by(Correction.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def edit_correction(
    session: AsyncSession,
    correction: Correction,
    proposed_data: Optional[Dict[str, Any]] = None,
    changes: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
    set_reason: bool = False,
) -> bool:
    """Apply the submitter's edit while the correction is still pending.

    Returns:
        False if the correction left ``pending`` before the edit landed
    """
    values: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
    if proposed_data is not None:
        values["proposed_data"] = proposed_data
        values["changes"] = changes or {}
    if set_reason:
        values["reason"] = reason
    return await _update_if_pending(session, correction, values)


async def review_correction(
    session: AsyncSession,
    correction: Correction,
    reviewer_id: str,
    status: str,
    review_notes: Optional[str] = None,
) -> bool:
    """Record a moderator decision on a pending correction.

    The status check and the write are one statement, so two moderators
    reviewing at once cannot both succeed.

    Returns:
        False if the correction was no longer pending
    """
    now = datetime.now(timezone.utc)
    values: Dict[str, Any] = {
        "status": status,
        "reviewed_by": reviewer_id,
        "reviewed_at": now,
        "updated_at": now,
    }
    if review_notes:
        values["review_notes"] = review_notes
    return await _update_if_pending(session, correction, values)


async def _update_if_pending(
    session: AsyncSession, correction: Correction, values: Dict[str, Any]
) -> bool:
    result = await session.execute(
        update(Correction)
        .where(Correction.id == correction.id, Correction.status == "pending")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False
    await session.refresh(correction)
    return True


async def delete_correction(session: AsyncSession, correction: Correction) -> None:
    await session.delete(correction)
    await session.flush()
