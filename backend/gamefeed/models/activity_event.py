import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gamefeed.db.base import Base


class ActivityType(str, enum.Enum):
    WANT_TO_PLAY = "want_to_play"
    STARTED_PLAYING = "started_playing"
    GAME_COMPLETED = "game_completed"
    GAME_STATUS_UPDATED = "game_status_updated"
    PROGRESS = "progress"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    REVIEW_ADDED = "review_added"
    FRIEND_ADDED = "friend_added"
    COLLECTION_CREATED = "collection_created"


class ActivityEvent(Base):
    __tablename__ = "activity_events"
    __table_args__ = (
        # Feed ordering: newest first, insertion id as the tie-break.
        Index("ix_activity_events_actor_created", "actor_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    actor_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)

    # No FK: a game removed from the catalog leaves the event with a null subject.
    subject_game_id: Mapped[str | None] = mapped_column(String(64), index=True)
    subject_friend_id: Mapped[int | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL")
    )

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    reactions = relationship(
        "Reaction", back_populates="event", cascade="all, delete-orphan"
    )
    comments = relationship(
        "Comment", back_populates="event", cascade="all, delete-orphan"
    )
