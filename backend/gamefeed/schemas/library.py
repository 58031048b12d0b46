from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field

from gamefeed.core.settings import settings
from gamefeed.models.library_entry import LibraryStatus
from gamefeed.schemas.activity import ActivityEventOut


class GameDataIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    cover_url: str | None = None


class LibraryStatusIn(BaseModel):
    status: LibraryStatus
    game: GameDataIn | None = None
    is_public: bool = Field(default=True, validation_alias=AliasChoices("is_public", "isPublic"))


class ProgressIn(BaseModel):
    play_time: float | None = Field(default=None, ge=0)
    completion_percentage: float | None = Field(default=None, ge=0, le=100)
    achievements_completed: int | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=settings.COMMENT_MAX_LENGTH)
    is_public: bool = Field(default=True, validation_alias=AliasChoices("is_public", "isPublic"))


class LibraryEntryOut(BaseModel):
    user_id: int
    game_id: str
    status: LibraryStatus
    play_time: float | None
    completion_percentage: float | None
    achievements_completed: int | None
    last_played_at: datetime | None
    notes: str | None
    updated_at: datetime

    class Config:
        from_attributes = True


class ProgressPointOut(BaseModel):
    id: int
    user_id: int
    game_id: str
    play_time: float | None
    completion_percentage: float | None
    achievements_completed: int | None
    created_at: datetime

    class Config:
        from_attributes = True


class LibraryDetailOut(BaseModel):
    entry: LibraryEntryOut | None
    history: list[ProgressPointOut]


class PipelineResultOut(BaseModel):
    entry: LibraryEntryOut
    history_point: ProgressPointOut | None = None
    event: ActivityEventOut | None = None
    completed_steps: list[str]
    incomplete_steps: list[str] = Field(default_factory=list)
    suppressed_steps: list[str] = Field(default_factory=list)
