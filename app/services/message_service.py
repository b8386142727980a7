from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.errors import APIError
from app.core.settings import get_settings
from app.models import Conversation, ConversationCounter, Message
from app.schemas.base import ensure_utc
from app.schemas.messages import MessageRead
from app.services.conversation_service import require_participant, summarize_content

logger = logging.getLogger(__name__)


def counts_as_unread(sender: str, receiver: str) -> bool:
    """A message bumps the conversation's unread counter once, unless it is addressed to its own sender."""
    return sender != receiver


def resolve_timestamp(
    *,
    client_timestamp: datetime | None,
    received_at: datetime,
    last_message_time: datetime | None,
    max_skew: timedelta,
) -> datetime:
    """Pick the ordering timestamp for a new message.

    The client's clock is trusted only within ``max_skew`` of the receipt time.
    The result never precedes the conversation's current ``last_message_time``.
    """
    resolved = received_at
    if client_timestamp is not None:
        candidate = ensure_utc(client_timestamp)
        if abs(candidate - received_at) <= max_skew:
            resolved = candidate
        else:
            logger.debug(
                "Client timestamp rejected as skewed client=%s received_at=%s",
                candidate.isoformat(),
                received_at.isoformat(),
            )

    if last_message_time is not None:
        floor = ensure_utc(last_message_time)
        if resolved < floor:
            resolved = floor
    return resolved


def serialize_message(message: Message) -> dict[str, object]:
    return MessageRead.model_validate(message).to_wire()


def list_messages(
    db: Session,
    *,
    conversation_id: str,
    after_seq: int = 0,
    limit: int = 50,
) -> list[Message]:
    logger.debug(
        "Listing messages conversation_id=%s after_seq=%s limit=%s",
        conversation_id,
        after_seq,
        limit,
    )
    return list(
        db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .where(Message.seq > after_seq)
            .order_by(Message.seq.asc())
            .limit(limit)
        ).all()
    )


def create_message(
    db: Session,
    *,
    conversation_id: str,
    sender: str,
    receiver: str,
    content: str,
    client_timestamp: datetime | None = None,
    received_at: datetime | None = None,
) -> dict[str, object]:
    settings = get_settings()
    logger.info(
        "Send message attempt conversation_id=%s sender=%s receiver=%s",
        conversation_id,
        sender,
        receiver,
    )
    conversation = require_participant(db, conversation_id=conversation_id, email=sender)
    if not conversation.has_participant(receiver):
        logger.warning("Receiver is not a participant conversation_id=%s receiver=%s", conversation_id, receiver)
        raise APIError(
            status_code=403,
            code="forbidden_conversation",
            message="Receiver is not a participant of this conversation",
        )

    counter = db.get(ConversationCounter, conversation_id)
    if counter is None:
        counter = ConversationCounter(conversation_id=conversation_id, next_seq=1)
        db.add(counter)
        db.flush()
        logger.debug("Conversation counter initialized conversation_id=%s", conversation_id)

    seq = counter.next_seq
    counter.next_seq += 1
    logger.debug("Allocated message sequence conversation_id=%s seq=%s", conversation_id, seq)

    now = ensure_utc(received_at) if received_at is not None else datetime.now(UTC)
    timestamp = resolve_timestamp(
        client_timestamp=client_timestamp,
        received_at=now,
        last_message_time=conversation.last_message_time,
        max_skew=timedelta(seconds=settings.message_clock_skew_seconds),
    )

    message = Message(
        conversation_id=conversation_id,
        sender=sender,
        receiver=receiver,
        seq=seq,
        content=content,
        timestamp=timestamp,
        client_timestamp=client_timestamp,
        read=False,
    )
    db.add(message)

    summary: dict[str, object] = {
        "last_message": summarize_content(content, settings.message_preview_length),
        "last_message_time": timestamp,
        "updated_at": now,
    }
    if counts_as_unread(sender, receiver):
        summary["unread_count"] = Conversation.unread_count + 1
    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(**summary)
        .execution_options(synchronize_session=False)
    )

    db.commit()
    db.refresh(message)
    logger.info("Message persisted message_id=%s conversation_id=%s seq=%s", message.id, conversation_id, seq)
    return serialize_message(message)


def mark_conversation_read(db: Session, *, conversation_id: str, reader: str) -> int:
    require_participant(db, conversation_id=conversation_id, email=reader)

    result = db.execute(
        update(Message)
        .where(Message.conversation_id == conversation_id)
        .where(Message.receiver == reader)
        .where(Message.read.is_(False))
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    updated = result.rowcount or 0
    # Only a reader who had unread messages clears the counter.
    if updated:
        db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(unread_count=0)
            .execution_options(synchronize_session=False)
        )
    db.commit()

    logger.info("Conversation marked read conversation_id=%s reader=%s updated=%s", conversation_id, reader, updated)
    return updated
