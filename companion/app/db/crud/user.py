"""User CRUD operations."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import String, cast, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from companion.app.db.models import Correction, Feedback, User

# Feedback type -> per-type stats column
_FEEDBACK_TYPE_COUNTERS = {
    "bug": User.bugs_reported,
    "feature": User.features_proposed,
    "data_correction": User.data_corrections,
}


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[User]:
    """Get a user by ID.

    Always hits the database (``populate_existing``) so ban and role changes
    made by another request are seen immediately.
    """
    result = await session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    username: str,
    email: str,
    roles: Optional[List[str]] = None,
    **fields: Any,
) -> User:
    """Create a user and flush so the ID is available."""
    user = User(username=username, email=email, roles=list(roles or ["user"]), **fields)
    session.add(user)
    await session.flush()
    return user


async def record_feedback_submitted(
    session: AsyncSession, user_id: str, feedback_type: str
) -> None:
    """Atomically bump the submitter's feedback counters."""
    values: Dict[Any, Any] = {
        User.feedback_submitted: User.feedback_submitted + 1,
        User.last_activity: datetime.now(timezone.utc),
    }
    counter = _FEEDBACK_TYPE_COUNTERS.get(feedback_type)
    if counter is not None:
        values[counter] = counter + 1
    await session.execute(update(User).where(User.id == user_id).values(values))


async def credit_accepted_feedback(session: AsyncSession, user_id: str, points: int) -> None:
    """Atomically credit a contributor whose feedback was accepted."""
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            corrections_accepted=User.corrections_accepted + 1,
            contribution_points=User.contribution_points + points,
        )
    )


async def record_correction_reviewed(
    session: AsyncSession, user_id: str, approved: bool, points: int = 10
) -> None:
    """Atomically count a reviewed correction; approved ones also earn points."""
    values: Dict[Any, Any] = {User.data_corrections: User.data_corrections + 1}
    if approved:
        values[User.corrections_accepted] = User.corrections_accepted + 1
        values[User.contribution_points] = User.contribution_points + points
    await session.execute(update(User).where(User.id == user_id).values(values))


async def change_role(session: AsyncSession, user: User, action: str, role: str) -> User:
    """Add or remove one role. A user always keeps at least ``user``."""
    roles = list(user.roles or [])
    if action == "add":
        if role not in roles:
            roles.append(role)
    else:
        roles = [r for r in roles if r != role] or ["user"]
    # JSON columns only track reassignment, not in-place mutation
    user.roles = roles
    await session.flush()
    return user


async def set_ban(
    session: AsyncSession, user: User, is_banned: bool, reason: Optional[str] = None
) -> User:
    user.is_banned = is_banned
    user.ban_reason = reason if is_banned else None
    await session.flush()
    return user


async def update_profile(session: AsyncSession, user: User, changes: Dict[str, Any]) -> User:
    """Apply validated profile changes; preferences are merged, not replaced."""
    for name, value in changes.items():
        if name == "preferences":
            value = {**(user.preferences or {}), **value}
        setattr(user, name, value)
    await session.flush()
    return user


# Query-string sort keys -> columns
USER_SORT_COLUMNS = {
    "createdAt": User.created_at,
    "username": User.username,
    "contributionPoints": User.contribution_points,
}


async def list_users(
    session: AsyncSession,
    search: Optional[str] = None,
    role: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "createdAt",
    descending: bool = True,
) -> Tuple[List[User], int]:
    """List users for the admin panel.

    ``search`` matches a substring of username or email, case-insensitively.
    ``role`` keeps users holding that role.
    """
    conditions = []
    if search:
        conditions.append(
            or_(
                User.username.icontains(search, autoescape=True),
                User.email.icontains(search, autoescape=True),
            )
        )
    if role:
        # roles is a JSON list; match the quoted element in its text form
        conditions.append(cast(User.roles, String).contains(f'"{role}"', autoescape=True))

    column = USER_SORT_COLUMNS[sort_by]
    total = await session.scalar(select(func.count()).select_from(User).where(*conditions))
    result = await session.execute(
        select(User)
        .where(*conditions)
        .order_by(column.desc() if descending else column.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def delete_user_account(session: AsyncSession, user: User) -> None:
    """Delete a user; their feedback and corrections are kept, anonymized."""
    await session.execute(
        update(Feedback)
        .where(Feedback.user_id == user.id)
        .values(user_id=None, is_anonymous=True)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(Correction)
        .where(Correction.user_id == user.id)
        .values(user_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.execute(delete(User).where(User.id == user.id))
