import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from gamefeed.db.base import Base


class EdgeStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


def edge_pair_key(a_id: int, b_id: int) -> str:
    lo, hi = sorted((a_id, b_id))
    return f"{lo}:{hi}"


class FriendEdge(Base):
    __tablename__ = "friend_edges"
    __table_args__ = (
        # At most one edge per unordered pair, whoever asked first.
        UniqueConstraint("pair_key", name="uq_friend_edge_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    requester_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EdgeStatus.PENDING.value)
    pair_key: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def counterpart_of(self, profile_id: int) -> int:
        return self.recipient_id if self.requester_id == profile_id else self.requester_id

    def involves(self, profile_id: int) -> bool:
        return profile_id in (self.requester_id, self.recipient_id)
