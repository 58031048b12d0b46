from datetime import datetime

from pydantic import BaseModel

from gamefeed.schemas.profiles import ProfileBrief


class ReactionIn(BaseModel):
    kind: str


class ReactionOut(BaseModel):
    id: int
    event_id: int
    user_id: int
    kind: str
    created_at: datetime

    class Config:
        from_attributes = True


class CommentIn(BaseModel):
    content: str


class CommentOut(BaseModel):
    id: int
    event_id: int
    user_id: int
    content: str
    created_at: datetime
    author: ProfileBrief | None = None

    class Config:
        from_attributes = True
