from __future__ import annotations

from datetime import UTC, datetime
import logging

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from app.core.errors import APIError
from app.models import Conversation, ConversationCounter, ConversationParticipant, User
from app.schemas.conversations import ConversationRead

logger = logging.getLogger(__name__)

SUMMARY_ELLIPSIS = "..."


def summarize_content(content: str, limit: int) -> str:
    """Conversation list preview: the first ``limit`` characters plus an ellipsis when longer."""
    if len(content) <= limit:
        return content
    return content[:limit] + SUMMARY_ELLIPSIS


def serialize_conversation(conversation: Conversation) -> dict[str, object]:
    return ConversationRead.model_validate(conversation).to_wire()


def get_conversation(db: Session, conversation_id: str) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        logger.warning("Conversation not found conversation_id=%s", conversation_id)
        raise APIError(status_code=404, code="conversation_not_found", message="Conversation not found")
    return conversation


def require_participant(db: Session, *, conversation_id: str, email: str) -> Conversation:
    logger.debug("Checking participant email=%s conversation_id=%s", email, conversation_id)
    conversation = get_conversation(db, conversation_id)
    if not conversation.has_participant(email):
        logger.warning("Participant check failed email=%s conversation_id=%s", email, conversation_id)
        raise APIError(
            status_code=403,
            code="forbidden_conversation",
            message="Not a participant of this conversation",
        )
    return conversation


def list_user_conversations(db: Session, email: str) -> list[Conversation]:
    logger.debug("Listing conversations for email=%s", email)
    rows = db.scalars(
        select(Conversation)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .where(ConversationParticipant.email == email)
        .order_by(Conversation.last_message_time.desc())
    ).all()
    logger.debug("Found %s conversations for email=%s", len(rows), email)
    return list(rows)


def _find_two_party_conversation(db: Session, *, user_id: str, other_user_id: str) -> Conversation | None:
    shared_ids = (
        select(ConversationParticipant.conversation_id)
        .where(ConversationParticipant.user_id.in_([user_id, other_user_id]))
        .group_by(ConversationParticipant.conversation_id)
        .having(func.count(distinct(ConversationParticipant.user_id)) == 2)
    )
    two_party_ids = (
        select(ConversationParticipant.conversation_id)
        .group_by(ConversationParticipant.conversation_id)
        .having(func.count() == 2)
    )
    return db.scalar(
        select(Conversation).where(Conversation.id.in_(shared_ids)).where(Conversation.id.in_(two_party_ids))
    )


def create_conversation(db: Session, *, creator: User, participant_email: str) -> tuple[Conversation, bool]:
    logger.info("Create conversation creator_id=%s", creator.id)
    if participant_email == creator.email:
        raise APIError(
            status_code=400,
            code="invalid_participant",
            message="Cannot start a conversation with yourself",
        )

    participant = db.scalar(select(User).where(User.email == participant_email))
    if participant is None:
        logger.warning("Conversation participant not found")
        raise APIError(status_code=404, code="participant_not_found", message="Participant not found")

    existing = _find_two_party_conversation(db, user_id=creator.id, other_user_id=participant.id)
    if existing is not None:
        logger.debug("Returning existing conversation conversation_id=%s", existing.id)
        return existing, False

    now = datetime.now(UTC)
    conversation = Conversation(created_at=now, updated_at=now, last_message_time=now)
    db.add(conversation)
    db.flush()

    db.add_all(
        [
            ConversationParticipant(
                conversation_id=conversation.id,
                user_id=creator.id,
                email=creator.email,
                name=creator.name,
                role=creator.role,
                position=0,
            ),
            ConversationParticipant(
                conversation_id=conversation.id,
                user_id=participant.id,
                email=participant.email,
                name=participant.name,
                role=participant.role,
                position=1,
            ),
            ConversationCounter(conversation_id=conversation.id, next_seq=1),
        ]
    )
    db.commit()
    db.refresh(conversation)
    logger.info("Conversation created conversation_id=%s users=%s,%s", conversation.id, creator.id, participant.id)
    return conversation, True


def toggle_archive(db: Session, *, conversation_id: str, email: str) -> Conversation:
    conversation = require_participant(db, conversation_id=conversation_id, email=email)
    conversation.archived = not conversation.archived
    conversation.updated_at = datetime.now(UTC)
    db.commit()
    db.refresh(conversation)
    logger.info("Conversation archive toggled conversation_id=%s archived=%s", conversation.id, conversation.archived)
    return conversation
