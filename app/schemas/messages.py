from __future__ import annotations

from datetime import datetime

from pydantic import field_validator

from app.schemas.base import CamelModel, ensure_utc


class MessageRead(CamelModel):
    id: str
    conversation_id: str
    sender: str
    receiver: str
    seq: int
    content: str
    timestamp: datetime
    read: bool

    @field_validator("timestamp")
    @classmethod
    def attach_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class MessageListResponse(CamelModel):
    messages: list[MessageRead]
