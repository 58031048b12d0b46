from pydantic import BaseModel


class ProfileBrief(BaseModel):
    id: int
    username: str | None
    avatar_url: str | None

    class Config:
        from_attributes = True


class ProfileOut(ProfileBrief):
    external_id: str


class ProfileUpdateIn(BaseModel):
    username: str | None = None
    avatar_url: str | None = None
