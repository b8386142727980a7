from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.errors import success_response
from app.db.session import get_db
from app.models import User
from app.schemas.messages import MessageListResponse, MessageRead
from app.services import conversation_service, message_service

router = APIRouter(prefix="/conversations/{conversation_id}/messages", tags=["messages"])


@router.get("")
def list_messages(
    conversation_id: str,
    after_seq: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation_service.require_participant(db, conversation_id=conversation_id, email=current_user.email)
    messages = message_service.list_messages(
        db,
        conversation_id=conversation_id,
        after_seq=after_seq,
        limit=limit,
    )
    body = MessageListResponse(messages=[MessageRead.model_validate(message) for message in messages])
    return success_response(body.to_wire())
