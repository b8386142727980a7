from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
import uuid

from fastapi import WebSocket

from app.core.security import Identity

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    DIAGNOSTIC = "diagnostic"
    DISCONNECTED = "disconnected"


def personal_room(email: str) -> str:
    return email


def conversation_room(conversation_id: str) -> str:
    return conversation_id


@dataclass
class ConnectionContext:
    connection_id: str
    websocket: WebSocket
    outgoing_queue: asyncio.Queue[dict[str, object]]
    writer_task: asyncio.Task[None] | None
    identity: Identity | None = None
    state: ConnectionState = ConnectionState.CONNECTING
    rooms: set[str] = field(default_factory=set)
    typing_in: set[str] = field(default_factory=set)

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED and self.identity is not None


class ConnectionManager:
    def __init__(self, *, max_subscriptions_per_connection: int, outgoing_queue_size: int = 200) -> None:
        self._max_subscriptions_per_connection = max_subscriptions_per_connection
        self._outgoing_queue_size = outgoing_queue_size
        self._connections: dict[str, ConnectionContext] = {}
        self._connections_by_room: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    async def register(self, websocket: WebSocket, *, identity: Identity | None) -> ConnectionContext:
        connection_id = str(uuid.uuid4())
        queue: asyncio.Queue[dict[str, object]] = asyncio.Queue(maxsize=self._outgoing_queue_size)
        context = ConnectionContext(
            connection_id=connection_id,
            websocket=websocket,
            outgoing_queue=queue,
            writer_task=None,
            identity=identity,
            state=ConnectionState.AUTHENTICATED if identity is not None else ConnectionState.DIAGNOSTIC,
        )

        async with self._lock:
            self._connections[connection_id] = context
            context.writer_task = asyncio.create_task(self._writer_loop(connection_id))
        logger.info(
            "WebSocket connection registered connection_id=%s email=%s state=%s",
            connection_id,
            identity.email if identity is not None else None,
            context.state.value,
        )
        return context

    async def unregister(self, connection_id: str, *, close_socket: bool = True, close_code: int = 1000) -> None:
        async with self._lock:
            context = self._connections.pop(connection_id, None)
            if context is None:
                return

            for room in list(context.rooms):
                room_connections = self._connections_by_room.get(room)
                if room_connections is not None:
                    room_connections.discard(connection_id)
                    if not room_connections:
                        self._connections_by_room.pop(room, None)
            context.rooms.clear()
            context.typing_in.clear()
            context.state = ConnectionState.DISCONNECTED

        current_task = asyncio.current_task()
        if context.writer_task is not None and context.writer_task is not current_task:
            context.writer_task.cancel()
            try:
                await context.writer_task
            except asyncio.CancelledError:
                pass

        if close_socket:
            try:
                await context.websocket.close(code=close_code)
            except Exception:
                logger.debug("WebSocket already closed connection_id=%s", connection_id)
        logger.info("WebSocket connection unregistered connection_id=%s", connection_id)

    async def _writer_loop(self, connection_id: str) -> None:
        while True:
            async with self._lock:
                context = self._connections.get(connection_id)
            if context is None:
                return

            try:
                payload = await context.outgoing_queue.get()
                await context.websocket.send_json(payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "WebSocket writer failed connection_id=%s error=%s",
                    connection_id,
                    exc,
                )
                await self.unregister(connection_id, close_socket=False)
                return

    async def send(self, connection_id: str, payload: dict[str, object]) -> bool:
        async with self._lock:
            context = self._connections.get(connection_id)

        if context is None:
            return False

        try:
            context.outgoing_queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("Slow WebSocket client disconnected connection_id=%s", connection_id)
            await self.unregister(connection_id, close_socket=True, close_code=1013)
            return False

    async def emit_to_room(self, room: str, payload: dict[str, object], *, exclude: str | None = None) -> int:
        async with self._lock:
            connection_ids = [
                connection_id
                for connection_id in self._connections_by_room.get(room, set())
                if connection_id != exclude
            ]

        delivered = 0
        for connection_id in connection_ids:
            if await self.send(connection_id, payload):
                delivered += 1
        logger.debug("Room emit room=%s event=%s delivered=%s", room, payload.get("event"), delivered)
        return delivered

    async def broadcast(self, payload: dict[str, object], *, exclude: str | None = None) -> int:
        async with self._lock:
            connection_ids = [connection_id for connection_id in self._connections if connection_id != exclude]

        delivered = 0
        for connection_id in connection_ids:
            if await self.send(connection_id, payload):
                delivered += 1
        return delivered

    async def join(self, connection_id: str, rooms: list[str]) -> None:
        normalized = list(dict.fromkeys(rooms))
        if not normalized:
            return

        async with self._lock:
            context = self._connections.get(connection_id)
            if context is None:
                return

            projected_total = len(context.rooms.union(normalized))
            if projected_total > self._max_subscriptions_per_connection:
                raise ValueError("Subscription limit exceeded")

            for room in normalized:
                context.rooms.add(room)
                self._connections_by_room.setdefault(room, set()).add(connection_id)

    async def leave(self, connection_id: str, rooms: list[str]) -> None:
        normalized = list(dict.fromkeys(rooms))
        if not normalized:
            return

        async with self._lock:
            context = self._connections.get(connection_id)
            if context is None:
                return

            for room in normalized:
                context.rooms.discard(room)
                room_connections = self._connections_by_room.get(room)
                if room_connections is not None:
                    room_connections.discard(connection_id)
                    if not room_connections:
                        self._connections_by_room.pop(room, None)

    async def in_room(self, connection_id: str, room: str) -> bool:
        async with self._lock:
            return connection_id in self._connections_by_room.get(room, set())

    async def connection_count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def close_all(self, *, close_code: int = 1001) -> int:
        async with self._lock:
            connection_ids = list(self._connections)
        for connection_id in connection_ids:
            await self.unregister(connection_id, close_socket=True, close_code=close_code)
        return len(connection_ids)
