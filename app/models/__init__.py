from app.models.conversation import Conversation, ConversationCounter, ConversationParticipant
from app.models.message import Message
from app.models.user import User

__all__ = [
    "Conversation",
    "ConversationCounter",
    "ConversationParticipant",
    "Message",
    "User",
]
