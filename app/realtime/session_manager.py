from __future__ import annotations

import asyncio
from collections.abc import Awaitable
import logging
from typing import Callable, TypeVar
import weakref

from fastapi import WebSocket
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.errors import APIError
from app.core.security import Identity
from app.core.settings import get_settings
from app.realtime.connection_manager import (
    ConnectionContext,
    ConnectionManager,
    conversation_room,
    personal_room,
)
from app.realtime.presence import OFFLINE, ONLINE, PresenceTracker, status_payload
from app.realtime.protocol import (
    EventPayload,
    InboundEvent,
    JoinConversation,
    LeaveConversation,
    MarkAsRead,
    Ping,
    ProtocolError,
    SendMessage,
    StopTyping,
    Typing,
    error_frame,
    event_frame,
    pong_frame,
    typing_frame,
    unauthorized,
    welcome_frame,
)
from app.services import conversation_service, message_service

logger = logging.getLogger(__name__)

T = TypeVar("T")
Handler = Callable[[ConnectionContext, Identity, EventPayload], Awaitable[None]]


class ConversationSessionManager:
    """Applies the messaging protocol to authenticated connections.

    Events from one connection are handled one at a time by the websocket
    receive loop. Mutations of a single conversation are serialized across
    connections with a per-conversation lock. Store work runs in the
    threadpool with one session per call.
    """

    def __init__(
        self,
        *,
        connection_manager: ConnectionManager,
        presence: PresenceTracker,
        session_factory: Callable[[], Session],
    ) -> None:
        self._connections = connection_manager
        self._presence = presence
        self._session_factory = session_factory
        self._conversation_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._handlers: dict[type[EventPayload], Handler] = {
            JoinConversation: self._join_conversation,
            LeaveConversation: self._leave_conversation,
            SendMessage: self._send_message,
            Typing: self._typing,
            StopTyping: self._stop_typing,
            MarkAsRead: self._mark_as_read,
        }

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    @property
    def presence(self) -> PresenceTracker:
        return self._presence

    async def connect(self, websocket: WebSocket, *, identity: Identity | None) -> ConnectionContext:
        settings = get_settings()
        context = await self._connections.register(websocket, identity=identity)
        await self._connections.send(
            context.connection_id,
            welcome_frame(
                connection_id=context.connection_id,
                identity=identity,
                heartbeat_sec=settings.ws_heartbeat_sec,
            ),
        )
        if identity is None:
            logger.warning("Diagnostic connection admitted connection_id=%s", context.connection_id)
            return context

        await self._connections.join(context.connection_id, [personal_room(identity.email)])
        await self._presence.mark_online(identity, context.connection_id)
        await self._connections.broadcast(event_frame("user_status", status_payload(identity, ONLINE)))
        return context

    async def disconnect(self, context: ConnectionContext) -> None:
        identity = context.identity
        if identity is not None:
            for conversation_id in sorted(context.typing_in):
                await self._connections.emit_to_room(
                    conversation_room(conversation_id),
                    typing_frame("stop_typing", conversation_id=conversation_id, user_email=identity.email),
                    exclude=context.connection_id,
                )

        await self._connections.unregister(context.connection_id, close_socket=True)

        if identity is not None and await self._presence.mark_offline(identity, context.connection_id):
            await self._connections.broadcast(event_frame("user_status", status_payload(identity, OFFLINE)))

    async def dispatch(self, context: ConnectionContext, event: InboundEvent) -> None:
        payload = event.payload
        if isinstance(payload, Ping):
            await self._reply(context, pong_frame(ts=payload.ts))
            return

        identity = context.identity
        if not context.is_authenticated or identity is None:
            logger.warning("Event refused on unauthenticated connection connection_id=%s event=%s", context.connection_id, event.name)
            await self._reply_error(context, unauthorized())
            return

        handler = self._handlers[type(payload)]
        try:
            await handler(context, identity, payload)
        except ProtocolError as exc:
            await self._reply_error(context, exc)
        except APIError as exc:
            await self._reply_error(context, ProtocolError(code=exc.code, message=exc.message))
        except SQLAlchemyError:
            logger.exception(
                "Store failure handling event=%s connection_id=%s email=%s",
                event.name,
                context.connection_id,
                identity.email,
            )
            await self._reply_error(context, ProtocolError(code="store_failure", message="Action could not be saved"))

    async def _join_conversation(self, context: ConnectionContext, identity: Identity, payload: JoinConversation) -> None:
        await self._run_store(
            conversation_service.require_participant,
            conversation_id=payload.conversation_id,
            email=identity.email,
        )
        try:
            await self._connections.join(context.connection_id, [conversation_room(payload.conversation_id)])
        except ValueError as exc:
            raise ProtocolError(code="subscription_limit", message="Subscription limit exceeded") from exc

        logger.info("Conversation joined conversation_id=%s email=%s", payload.conversation_id, identity.email)
        await self._reply(context, event_frame("conversation_joined", {"conversationId": payload.conversation_id}))

    async def _leave_conversation(self, context: ConnectionContext, identity: Identity, payload: LeaveConversation) -> None:
        room = conversation_room(payload.conversation_id)
        if payload.conversation_id in context.typing_in:
            context.typing_in.discard(payload.conversation_id)
            await self._connections.emit_to_room(
                room,
                typing_frame("stop_typing", conversation_id=payload.conversation_id, user_email=identity.email),
                exclude=context.connection_id,
            )
        await self._connections.leave(context.connection_id, [room])
        await self._reply(context, event_frame("conversation_left", {"conversationId": payload.conversation_id}))

    async def _send_message(self, context: ConnectionContext, identity: Identity, payload: SendMessage) -> None:
        if payload.sender != identity.email:
            logger.warning(
                "Send refused, sender mismatch connection_email=%s claimed_sender=%s",
                identity.email,
                payload.sender,
            )
            raise unauthorized()

        settings = get_settings()
        if len(payload.content) > settings.message_max_length:
            raise ProtocolError(code="invalid_event", message="Message content is too long")

        async with self._conversation_lock(payload.conversation_id):
            message = await self._run_store(
                message_service.create_message,
                conversation_id=payload.conversation_id,
                sender=payload.sender,
                receiver=payload.receiver,
                content=payload.content,
                client_timestamp=payload.timestamp,
            )

        frame = event_frame("receive_message", message)
        rooms = [
            personal_room(payload.receiver),
            personal_room(payload.sender),
            conversation_room(payload.conversation_id),
        ]
        for room in dict.fromkeys(rooms):
            await self._connections.emit_to_room(room, frame)

        if payload.conversation_id in context.typing_in:
            context.typing_in.discard(payload.conversation_id)
            await self._connections.emit_to_room(
                conversation_room(payload.conversation_id),
                typing_frame("stop_typing", conversation_id=payload.conversation_id, user_email=identity.email),
                exclude=context.connection_id,
            )

    async def _typing(self, context: ConnectionContext, identity: Identity, payload: Typing) -> None:
        self._check_claim(identity, payload.user_email)
        await self._require_joined(context, payload.conversation_id)
        context.typing_in.add(payload.conversation_id)
        await self._connections.emit_to_room(
            conversation_room(payload.conversation_id),
            typing_frame("typing", conversation_id=payload.conversation_id, user_email=identity.email),
            exclude=context.connection_id,
        )

    async def _stop_typing(self, context: ConnectionContext, identity: Identity, payload: StopTyping) -> None:
        if payload.user_email is not None:
            self._check_claim(identity, payload.user_email)
        await self._require_joined(context, payload.conversation_id)
        context.typing_in.discard(payload.conversation_id)
        await self._connections.emit_to_room(
            conversation_room(payload.conversation_id),
            typing_frame("stop_typing", conversation_id=payload.conversation_id, user_email=identity.email),
            exclude=context.connection_id,
        )

    async def _mark_as_read(self, context: ConnectionContext, identity: Identity, payload: MarkAsRead) -> None:
        self._check_claim(identity, payload.user_email)

        async with self._conversation_lock(payload.conversation_id):
            updated = await self._run_store(
                message_service.mark_conversation_read,
                conversation_id=payload.conversation_id,
                reader=identity.email,
            )

        await self._connections.emit_to_room(
            conversation_room(payload.conversation_id),
            event_frame(
                "messages_read",
                {"conversationId": payload.conversation_id, "userEmail": identity.email, "count": updated},
            ),
        )

    def _check_claim(self, identity: Identity, claimed_email: str) -> None:
        if claimed_email != identity.email:
            logger.warning("Event refused, identity mismatch connection_email=%s claimed=%s", identity.email, claimed_email)
            raise unauthorized()

    async def _require_joined(self, context: ConnectionContext, conversation_id: str) -> None:
        if not await self._connections.in_room(context.connection_id, conversation_room(conversation_id)):
            raise ProtocolError(code="not_joined", message="Join the conversation first")

    def _conversation_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._conversation_locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._conversation_locks[conversation_id] = lock
        return lock

    async def _run_store(self, operation: Callable[..., T], /, **kwargs: object) -> T:
        def call() -> T:
            with self._session_factory() as db:
                return operation(db, **kwargs)

        return await run_in_threadpool(call)

    async def _reply(self, context: ConnectionContext, frame: dict[str, object]) -> None:
        await self._connections.send(context.connection_id, frame)

    async def _reply_error(self, context: ConnectionContext, error: ProtocolError) -> None:
        await self._reply(context, error_frame(code=error.code, message=error.message))
