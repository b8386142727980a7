from __future__ import annotations

from datetime import datetime

from pydantic import field_validator

from app.schemas.base import CamelModel, ensure_utc


class UserPublic(CamelModel):
    id: str
    email: str
    name: str
    role: str
    user_type: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def attach_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class UserSearchResult(CamelModel):
    users: list[UserPublic]


class OnlineUser(CamelModel):
    user_id: str
    email: str
