from __future__ import annotations

import logging
from typing import Callable

from fastapi import WebSocket
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.errors import AuthError
from app.core.security import Identity, identity_from_token
from app.core.settings import Settings
from app.services import auth_service

logger = logging.getLogger(__name__)


def extract_handshake_token(websocket: WebSocket) -> str | None:
    auth_header = websocket.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return websocket.query_params.get("token") or websocket.query_params.get("access_token")


def bypass_requested(websocket: WebSocket) -> bool:
    return websocket.query_params.get("skipAuth", "").lower() == "true"


def _user_exists(session_factory: Callable[[], Session], user_id: str) -> bool:
    with session_factory() as db:
        return auth_service.user_exists(db, user_id)


async def authenticate(
    websocket: WebSocket,
    *,
    settings: Settings,
    session_factory: Callable[[], Session],
) -> Identity | None:
    """Resolve the handshake to an identity.

    Returns ``None`` only for a diagnostic connection admitted through the
    ``skipAuth`` switch. Raises :class:`AuthError` otherwise.
    """
    if bypass_requested(websocket):
        if settings.auth_bypass_enabled:
            logger.warning("WebSocket auth bypassed via skipAuth environment=%s", settings.environment)
            return None
        logger.warning("WebSocket skipAuth ignored, bypass is disabled")

    token = extract_handshake_token(websocket)
    if not token:
        logger.warning("WebSocket connection attempt without token")
        raise AuthError(AuthError.NO_TOKEN, "Authentication error: No token provided")

    identity = identity_from_token(token)
    if not await run_in_threadpool(_user_exists, session_factory, identity.user_id):
        logger.warning("WebSocket token user not found user_id=%s", identity.user_id)
        raise AuthError(AuthError.TOKEN_INVALID, "Authentication error: Token user was not found")

    logger.info("WebSocket authenticated email=%s", identity.email)
    return identity
