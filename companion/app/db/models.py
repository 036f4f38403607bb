import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from companion.app.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _default_preferences() -> dict:
    return {"emailNotifications": False, "showContributions": True, "publicProfile": True}


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("idx_users_created", "created_at"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(20), unique=True)
    email: Mapped[str] = mapped_column(String(320), unique=True)

    # Profile
    bio: Mapped[str | None] = mapped_column(String(500), nullable=True)
    location: Mapped[str] = mapped_column(String(8), default="na")
    vr_headset: Mapped[str | None] = mapped_column(String(16), nullable=True)
    preferences: Mapped[dict] = mapped_column(JSON, default=_default_preferences)

    # Permissions
    roles: Mapped[list[str]] = mapped_column(JSON, default=lambda: ["user"])
    rank: Mapped[str] = mapped_column(String(16), default="recruit")
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False)
    ban_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Contribution stats
    contribution_points: Mapped[int] = mapped_column(Integer, default=0)
    feedback_submitted: Mapped[int] = mapped_column(Integer, default=0)
    bugs_reported: Mapped[int] = mapped_column(Integer, default=0)
    features_proposed: Mapped[int] = mapped_column(Integer, default=0)
    data_corrections: Mapped[int] = mapped_column(Integer, default=0)
    corrections_accepted: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def has_role(self, *roles: str) -> bool:
        return any(role in (self.roles or []) for role in roles)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, roles={self.roles})>"


class Feedback(Base):
    __tablename__ = "feedback"
    __table_args__ = (
        Index("idx_feedback_status_created", "status", "created_at"),
        Index("idx_feedback_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    type: Mapped[str] = mapped_column(String(20))
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(10), default="low")
    category: Mapped[str] = mapped_column(String(20), default="other")
    status: Mapped[str] = mapped_column(String(20), default="new")

    user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=True)
    session_id: Mapped[str] = mapped_column(String(64))
    page_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class Correction(Base):
    """A proposed fix to game data (item, task, ...) awaiting moderator review."""

    __tablename__ = "corrections"
    __table_args__ = (
        Index("idx_corrections_entity", "entity_type", "entity_id", "status", "created_at"),
        Index("idx_corrections_user", "user_id", "status", "created_at"),
        Index("idx_corrections_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    entity_type: Mapped[str] = mapped_column(String(16))
    entity_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default="pending")

    user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    proposed_data: Mapped[dict] = mapped_column(JSON)
    # Flattened "a.b" path -> {"from": ..., "to": ...}
    changes: Mapped[dict] = mapped_column(JSON, default=dict)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    reviewed_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<Correction(id={self.id}, entity={self.entity_type}:{self.entity_id}, "
            f"status={self.status})>"
        )
