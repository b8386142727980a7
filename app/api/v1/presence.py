from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user, get_presence
from app.core.errors import success_response
from app.models import User
from app.realtime import PresenceTracker
from app.schemas.users import OnlineUser

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("")
async def list_online_users(
    presence: PresenceTracker = Depends(get_presence),
    _: User = Depends(get_current_user),
):
    entries = await presence.online()
    users = [OnlineUser(user_id=entry.user_id, email=entry.email).to_wire() for entry in entries]
    return success_response({"users": users})


@router.get("/{email}")
async def user_presence(
    email: str,
    presence: PresenceTracker = Depends(get_presence),
    _: User = Depends(get_current_user),
):
    normalized = email.strip().lower()
    online = await presence.is_online(normalized)
    return success_response({"email": normalized, "online": online})
