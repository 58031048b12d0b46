from typing import Any, Literal

from pydantic import BaseModel, Field


class SubscribeIn(BaseModel):
    action: Literal["subscribe", "unsubscribe"]
    table: str
    filter: dict[str, int | str] = Field(default_factory=dict)


class ChangeOut(BaseModel):
    type: Literal["change"] = "change"
    table: str
    op: Literal["insert", "update", "delete"]
    key: dict[str, Any]
    fields: dict[str, Any] = Field(default_factory=dict)
