from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

from app.core.security import Identity

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


@dataclass(frozen=True, slots=True)
class PresenceEntry:
    user_id: str
    email: str
    connection_id: str


class PresenceTracker:
    """Which identities are connected, keyed by email. The most recent connection owns the entry."""

    def __init__(self) -> None:
        self._entries: dict[str, PresenceEntry] = {}
        self._lock = asyncio.Lock()

    async def mark_online(self, identity: Identity, connection_id: str) -> PresenceEntry:
        entry = PresenceEntry(user_id=identity.user_id, email=identity.email, connection_id=connection_id)
        async with self._lock:
            previous = self._entries.get(identity.email)
            self._entries[identity.email] = entry
        if previous is not None and previous.connection_id != connection_id:
            logger.debug(
                "Presence superseded email=%s previous_connection_id=%s connection_id=%s",
                identity.email,
                previous.connection_id,
                connection_id,
            )
        logger.info("User online email=%s connection_id=%s", identity.email, connection_id)
        return entry

    async def mark_offline(self, identity: Identity, connection_id: str) -> bool:
        async with self._lock:
            current = self._entries.get(identity.email)
            if current is None or current.connection_id != connection_id:
                return False
            del self._entries[identity.email]
        logger.info("User offline email=%s connection_id=%s", identity.email, connection_id)
        return True

    async def is_online(self, email: str) -> bool:
        async with self._lock:
            return email in self._entries

    async def online(self) -> list[PresenceEntry]:
        async with self._lock:
            return sorted(self._entries.values(), key=lambda entry: entry.email)


def status_payload(identity: Identity, status: str) -> dict[str, object]:
    return {"userId": identity.user_id, "email": identity.email, "status": status}
