from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from gamefeed.db.base import Base


class ProgressHistoryPoint(Base):
    """Append-only playtime/completion samples; never updated or deleted."""

    __tablename__ = "progress_history"
    __table_args__ = (
        Index("ix_progress_history_user_game", "user_id", "game_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    # Kept after the library entry is removed, so no FK to library_entries.
    game_id: Mapped[str] = mapped_column(String(64), nullable=False)

    play_time: Mapped[float | None] = mapped_column(Float)
    completion_percentage: Mapped[float | None] = mapped_column(Float)
    achievements_completed: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
