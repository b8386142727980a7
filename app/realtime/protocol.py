from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import ConfigDict, Field, ValidationError, field_validator

from app.core.errors import error_body
from app.core.security import Identity
from app.schemas.base import CamelModel

PROTOCOL_VERSION = 1


@dataclass(slots=True)
class ProtocolError(Exception):
    code: str
    message: str


def unauthorized() -> ProtocolError:
    return ProtocolError(code="unauthorized", message="Unauthorized")


def _lower_email(value: object) -> object:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class EventPayload(CamelModel):
    model_config = ConfigDict(extra="ignore")


class ConversationEvent(EventPayload):
    conversation_id: str = Field(min_length=1, max_length=64)


class JoinConversation(ConversationEvent):
    pass


class LeaveConversation(ConversationEvent):
    pass


class SendMessage(ConversationEvent):
    sender: str = Field(min_length=1, max_length=254)
    receiver: str = Field(min_length=1, max_length=254)
    content: str = Field(min_length=1)
    timestamp: datetime | None = None

    @field_validator("sender", "receiver", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        return _lower_email(value)


class Typing(ConversationEvent):
    user_email: str = Field(min_length=1, max_length=254)

    @field_validator("user_email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        return _lower_email(value)


class StopTyping(ConversationEvent):
    user_email: str | None = Field(default=None, max_length=254)

    @field_validator("user_email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        return _lower_email(value)


class MarkAsRead(ConversationEvent):
    user_email: str = Field(min_length=1, max_length=254)

    @field_validator("user_email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        return _lower_email(value)


class Ping(EventPayload):
    ts: int | None = None


EVENT_MODELS: dict[str, type[EventPayload]] = {
    "join_conversation": JoinConversation,
    "leave_conversation": LeaveConversation,
    "send_message": SendMessage,
    "typing": Typing,
    "stop_typing": StopTyping,
    "mark_as_read": MarkAsRead,
    "ping": Ping,
}


@dataclass(frozen=True, slots=True)
class InboundEvent:
    name: str
    payload: EventPayload


def parse_event(raw_text: str, *, max_bytes: int) -> InboundEvent:
    payload_size = len(raw_text.encode("utf-8"))
    if payload_size > max_bytes:
        raise ProtocolError(code="invalid_event", message="Frame is too large")

    try:
        decoded = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(code="invalid_event", message="Invalid JSON payload") from exc

    if not isinstance(decoded, dict):
        raise ProtocolError(code="invalid_event", message="Frame must be an object")

    name = decoded.get("event")
    model = EVENT_MODELS.get(name) if isinstance(name, str) else None
    if model is None:
        raise ProtocolError(code="invalid_event", message="Unsupported event")

    data = decoded.get("data", {})
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProtocolError(code="invalid_event", message="Event data must be an object")

    try:
        return InboundEvent(name=name, payload=model.model_validate(data))
    except ValidationError as exc:
        raise ProtocolError(code="invalid_event", message=str(exc.errors()[0]["msg"])) from exc


def event_frame(event: str, data: dict[str, object] | None = None) -> dict[str, object]:
    return {"event": event, "data": data or {}}


def welcome_frame(*, connection_id: str, identity: Identity | None, heartbeat_sec: int) -> dict[str, object]:
    return event_frame(
        "connected",
        {
            "connectionId": connection_id,
            "userId": identity.user_id if identity is not None else None,
            "email": identity.email if identity is not None else None,
            "serverTime": datetime.now(UTC).isoformat(),
            "heartbeatSec": heartbeat_sec,
            "protocolVersion": PROTOCOL_VERSION,
        },
    )


def error_frame(*, code: str, message: str) -> dict[str, object]:
    return event_frame("error", error_body(code=code, message=message))


def connect_error_frame(*, code: str, message: str) -> dict[str, object]:
    return event_frame("connect_error", error_body(code=code, message=message))


def pong_frame(*, ts: int | None = None) -> dict[str, object]:
    payload: dict[str, object] = {}
    if ts is not None:
        payload["ts"] = ts
    return event_frame("pong", payload)


def typing_frame(event: str, *, conversation_id: str, user_email: str) -> dict[str, object]:
    return event_frame(event, {"conversationId": conversation_id, "userEmail": user_email})
