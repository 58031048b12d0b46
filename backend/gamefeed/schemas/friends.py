from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field

from gamefeed.models.friend_edge import EdgeStatus
from gamefeed.schemas.profiles import ProfileBrief


class FriendRequestIn(BaseModel):
    # Profile id, external id or username.
    recipient_id: int | str = Field(validation_alias=AliasChoices("recipient_id", "recipientId", "ref"))


class EdgeUpdateIn(BaseModel):
    status: Literal["accepted", "declined"]


class EdgeOut(BaseModel):
    id: int
    requester_id: int
    recipient_id: int
    status: EdgeStatus
    created_at: datetime

    class Config:
        from_attributes = True


class FriendOut(BaseModel):
    edge_id: int
    status: EdgeStatus
    # "outgoing" when the viewer sent the request.
    direction: Literal["incoming", "outgoing"]
    since: datetime
    profile: ProfileBrief
