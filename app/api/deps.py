from __future__ import annotations

import logging

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.errors import AuthError
from app.core.security import identity_from_token
from app.db.session import get_db
from app.models import User
from app.realtime import PresenceTracker

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    logger.debug("Resolving current user from access token")
    identity = identity_from_token(token)

    user = db.get(User, identity.user_id)
    if user is None:
        logger.warning("Token user_id=%s not found", identity.user_id)
        raise AuthError(AuthError.TOKEN_INVALID, "Token user was not found")

    logger.debug("Resolved current user user_id=%s", user.id)
    return user


def get_presence(request: Request) -> PresenceTracker:
    presence: PresenceTracker | None = getattr(request.app.state, "presence", None)
    if presence is None:
        raise RuntimeError("Presence tracker is not configured")
    return presence
