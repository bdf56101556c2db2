"""Conversation memory for ragchat.

Holds chat sessions in memory for the caller (CLI or web layer). The
pipeline itself never stores history; callers pass the recent turns of a
session into each retrieval call.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import structlog

from ragchat.models import Answer, ConversationTurn

logger = structlog.get_logger()


def make_title(first_message: str, max_length: int = 50) -> str:
    """Create a concise title from the first user message."""
    title = first_message[:max_length]
    if len(first_message) > max_length and " " in title:
        title = title.rsplit(" ", 1)[0] + "..."
    return title


class ChatSession:
    """Ordered chat history of one conversation."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        title: Optional[str] = None,
        context_window_size: int = 6,
    ):
        """Initialize the session.

        Args:
            session_id: Session identifier (random UUID if not provided)
            title: Optional title (derived from the first query otherwise)
            context_window_size: Number of recent turns handed to the retriever
        """
        self.session_id = session_id or str(uuid.uuid4())
        self.title = title
        self.context_window_size = context_window_size
        self.created_at = datetime.now(timezone.utc)
        self.turns: List[ConversationTurn] = []
        self.sources: List[List[Dict[str, Any]]] = []

    def __len__(self) -> int:
        return len(self.turns)

    @property
    def history(self) -> List[ConversationTurn]:
        return list(self.turns)

    def add_turn(self, query: str, answer: str, sources: Optional[List[Dict[str, Any]]] = None) -> ConversationTurn:
        """Append a finished exchange to the history."""
        turn = ConversationTurn(query=query, answer=answer)
        self.turns.append(turn)
        self.sources.append(sources or [])

        if self.title is None:
            self.title = make_title(query)

        return turn

    def record(self, answer: Answer) -> ConversationTurn:
        """Append the exchange behind an Answer, with its sources."""
        return self.add_turn(
            answer.query,
            answer.answer_text,
            [s.to_dict() for s in answer.source_chunks],
        )

    def recent_turns(self, limit: Optional[int] = None) -> List[ConversationTurn]:
        """Get the most recent turns in chronological order.

        Args:
            limit: Maximum number of turns (defaults to context_window_size)
        """
        limit = self.context_window_size if limit is None else limit
        if limit <= 0:
            return []
        return self.turns[-limit:]

    def clear(self) -> None:
        self.turns.clear()
        self.sources.clear()

    def messages(self) -> List[Dict[str, Any]]:
        """Flatten the history into role/content messages."""
        messages = []
        for turn, sources in zip(self.turns, self.sources):
            messages.append({"role": "user", "content": turn.query})
            messages.append({"role": "assistant", "content": turn.answer, "sources": sources})
        return messages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.session_id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "turn_count": len(self.turns),
        }


class ConversationManager:
    """Manages in-memory chat sessions."""

    def __init__(self, context_window_size: int = 6):
        """Initialize the conversation manager.

        Args:
            context_window_size: Number of recent turns to include in context
        """
        self.context_window_size = context_window_size
        self._sessions: Dict[str, ChatSession] = {}

    def create_session(self, title: Optional[str] = None) -> ChatSession:
        session = ChatSession(title=title, context_window_size=self.context_window_size)
        self._sessions[session.session_id] = session
        logger.info("conversation_session_created", session_id=session.session_id)
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: Optional[str]) -> ChatSession:
        """Return the named session, creating a fresh one if it is unknown."""
        if session_id:
            session = self._sessions.get(session_id)
            if session is not None:
                return session
        return self.create_session()

    def list_sessions(self, limit: int = 50) -> List[Dict[str, Any]]:
        """List sessions, most recent first."""
        sessions = sorted(self._sessions.values(), key=lambda s: s.created_at, reverse=True)
        return [s.to_dict() for s in sessions[:limit]]

    def delete_session(self, session_id: str) -> bool:
        """Delete a session.

        Returns:
            True if deleted, False if not found
        """
        deleted = self._sessions.pop(session_id, None) is not None
        if deleted:
            logger.info("conversation_session_deleted", session_id=session_id)
        return deleted
