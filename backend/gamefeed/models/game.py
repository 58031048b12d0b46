from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from gamefeed.db.base import Base


class Game(Base):
    """Display data for a catalog game. The catalog itself lives elsewhere."""

    __tablename__ = "games"

    # Catalog ids are opaque strings (e.g. IGDB ids).
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    cover_url: Mapped[str | None] = mapped_column(String(512))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
