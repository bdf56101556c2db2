"""In-memory chat sessions."""
from ragchat.memory.manager import ChatSession, ConversationManager

__all__ = ["ChatSession", "ConversationManager"]
