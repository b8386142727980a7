from app.realtime.connection_manager import ConnectionManager
from app.realtime.presence import PresenceTracker
from app.realtime.session_manager import ConversationSessionManager

__all__ = [
    "ConnectionManager",
    "ConversationSessionManager",
    "PresenceTracker",
]
