from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator

from app.schemas.base import CamelModel, ensure_utc


class ConversationCreateRequest(CamelModel):
    participant_email: str = Field(min_length=3, max_length=254)

    @field_validator("participant_email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ParticipantRead(CamelModel):
    user_id: str
    email: str
    name: str
    role: str | None = None


class ConversationRead(CamelModel):
    id: str
    participants: list[ParticipantRead]
    last_message: str
    last_message_time: datetime
    unread_count: int
    archived: bool
    created_at: datetime
    updated_at: datetime

    @field_validator("last_message_time", "created_at", "updated_at")
    @classmethod
    def attach_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
