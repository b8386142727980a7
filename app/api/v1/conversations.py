from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.errors import success_response
from app.db.session import get_db
from app.models import User
from app.schemas.conversations import ConversationCreateRequest
from app.services import conversation_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("")
def list_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    logger.info("List conversations endpoint hit user_id=%s", current_user.id)
    conversations = conversation_service.list_user_conversations(db, current_user.email)
    payload = [conversation_service.serialize_conversation(item) for item in conversations]
    return success_response(payload)


@router.post("")
def create_conversation(
    payload: ConversationCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    logger.info("Create conversation endpoint hit user_id=%s", current_user.id)
    conversation, created = conversation_service.create_conversation(
        db,
        creator=current_user,
        participant_email=payload.participant_email,
    )
    status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return success_response(conversation_service.serialize_conversation(conversation), status_code=status_code)


@router.put("/{conversation_id}/archive")
def toggle_archive(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    logger.info("Toggle archive endpoint hit user_id=%s conversation_id=%s", current_user.id, conversation_id)
    conversation = conversation_service.toggle_archive(db, conversation_id=conversation_id, email=current_user.email)
    return success_response(conversation_service.serialize_conversation(conversation))
