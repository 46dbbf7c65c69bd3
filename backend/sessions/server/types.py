from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sessions.manager import DrawAction


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    language: str = Field(default="en", min_length=2, max_length=10)


class MoveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    move: str = Field(min_length=1, max_length=10_000)
    draw_offer: bool = False


class DrawRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: DrawAction


class CommentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    comment: str = Field(min_length=1)
    move_number: int = Field(default=0, ge=0)


class SettingsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    settings: dict[str, Any]
