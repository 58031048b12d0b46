from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from gamefeed.models.activity_event import ActivityType
from gamefeed.schemas.profiles import ProfileBrief


class ActivityIn(BaseModel):
    type: ActivityType
    subject_game_id: str | None = Field(
        default=None, validation_alias=AliasChoices("subject_game_id", "subjectGameId", "game_id")
    )
    subject_friend_id: int | None = Field(
        default=None, validation_alias=AliasChoices("subject_friend_id", "subjectFriendId")
    )
    payload: dict[str, Any] = Field(default_factory=dict)
    is_public: bool = Field(default=True, validation_alias=AliasChoices("is_public", "isPublic"))


class ActivityEventOut(BaseModel):
    id: int
    actor_id: int
    type: ActivityType
    subject_game_id: str | None
    subject_friend_id: int | None
    payload: dict[str, Any]
    is_public: bool
    created_at: datetime

    class Config:
        from_attributes = True


class GameBrief(BaseModel):
    id: str
    name: str
    cover_url: str | None

    class Config:
        from_attributes = True


class FeedEventOut(BaseModel):
    id: int
    type: ActivityType
    actor: ProfileBrief
    subject_game_id: str | None
    subject_game: GameBrief | None
    subject_friend: ProfileBrief | None = None
    payload: dict[str, Any]
    is_public: bool
    created_at: datetime

    reactions_count: int = 0
    comments_count: int = 0
    reaction_counts: dict[str, int] = Field(default_factory=dict)
    viewer_reactions: list[str] = Field(default_factory=list)


class FeedPageOut(BaseModel):
    events: list[FeedEventOut]
    has_more: bool = Field(
        default=False,
        validation_alias=AliasChoices("has_more", "hasMore"),
        serialization_alias="hasMore",
    )
    # Highest event id visible when the first page was composed; pass it back
    # with later offsets to keep pages stable while new events arrive.
    snapshot_id: int | None = None


class ActivityStatsOut(BaseModel):
    total_activities: int
    activities_by_type: dict[str, int]
