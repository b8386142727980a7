from __future__ import annotations

import asyncio
from collections import deque
import logging
from time import monotonic

from fastapi import APIRouter, WebSocket
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import AuthError
from app.core.rate_limit import allow_event
from app.core.settings import get_settings
from app.db.session import open_session
from app.realtime.gateway import authenticate
from app.realtime.protocol import ProtocolError, connect_error_frame, error_frame, parse_event
from app.realtime.session_manager import ConversationSessionManager

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ws"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    settings = get_settings()
    sessions: ConversationSessionManager | None = getattr(websocket.app.state, "session_manager", None)
    if sessions is None:
        await websocket.close(code=1011)
        return

    await websocket.accept()
    try:
        identity = await authenticate(websocket, settings=settings, session_factory=open_session)
    except AuthError as exc:
        logger.warning("WebSocket handshake rejected code=%s", exc.code)
        await websocket.send_json(connect_error_frame(code=exc.code, message=exc.message))
        await websocket.close(code=1008)
        return
    except SQLAlchemyError:
        logger.exception("WebSocket handshake store failure")
        await websocket.send_json(connect_error_frame(code="store_failure", message="Authentication could not be checked"))
        await websocket.close(code=1008)
        return

    context = await sessions.connect(websocket, identity=identity)

    rate_events: deque[float] = deque()
    try:
        while True:
            try:
                message = await asyncio.wait_for(websocket.receive(), timeout=settings.ws_idle_timeout_sec)
            except asyncio.TimeoutError:
                logger.info("WebSocket idle timeout connection_id=%s", context.connection_id)
                break
            if message["type"] == "websocket.disconnect":
                break

            if not allow_event(
                rate_events,
                now=monotonic(),
                window_seconds=settings.ws_rate_limit_window_sec,
                max_events=settings.ws_rate_limit_max_commands,
            ):
                await sessions.connections.send(
                    context.connection_id,
                    error_frame(code="rate_limited", message="Event rate limit exceeded"),
                )
                continue

            raw_text = message.get("text")
            if raw_text is None:
                await sessions.connections.send(
                    context.connection_id,
                    error_frame(code="invalid_event", message="Binary frames are not supported"),
                )
                continue

            try:
                event = parse_event(raw_text, max_bytes=settings.ws_max_command_bytes)
            except ProtocolError as exc:
                await sessions.connections.send(context.connection_id, error_frame(code=exc.code, message=exc.message))
                continue

            logger.debug("WebSocket event received connection_id=%s event=%s", context.connection_id, event.name)
            await sessions.dispatch(context, event)
    finally:
        await sessions.disconnect(context)
        logger.info("WebSocket session closed connection_id=%s", context.connection_id)
