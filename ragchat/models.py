"""Data types shared by the ingest, index and retrieval stages."""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

# Marker shown when the generation backend produced no answer
NO_ANSWER = "No answer available."

EmbedFn = Callable[[str], Awaitable[List[float]]]
GenerateFn = Callable[..., Awaitable[str]]


@dataclass(frozen=True)
class Document:
    """Raw text fetched from a source, with string metadata."""

    source_id: str
    raw_text: str
    metadata: Mapping[str, str] = field(default_factory=dict, hash=False, compare=False)

    @property
    def title(self) -> str:
        return self.metadata.get("title") or self.source_id


@dataclass(frozen=True)
class Chunk:
    """A contiguous, offset-tracked slice of a document."""

    document_ref: Document = field(repr=False)
    text: str
    start_offset: int
    end_offset: int
    sequence_index: int

    @property
    def source_id(self) -> str:
        return self.document_ref.source_id

    @property
    def key(self) -> Tuple[str, int]:
        """Stable identity of the chunk within an index."""
        return (self.document_ref.source_id, self.sequence_index)


@dataclass(frozen=True)
class ConversationTurn:
    """One query/answer exchange of a chat history."""

    query: str
    answer: str


@dataclass(frozen=True)
class ScoredChunk:
    """A retrieved chunk with its similarity score (higher is better)."""

    chunk: Chunk
    score: float
    distance: float

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        title = self.chunk.document_ref.metadata.get("title")
        if title and title != self.chunk.source_id:
            return f"{title} ({self.chunk.source_id})"
        return self.chunk.source_id

    def to_dict(self, preview_chars: int = 200) -> Dict[str, Any]:
        text = self.chunk.text
        return {
            "source": self.source,
            "source_id": self.chunk.source_id,
            "sequence_index": self.chunk.sequence_index,
            "start_offset": self.chunk.start_offset,
            "end_offset": self.chunk.end_offset,
            "content_preview": text[:preview_chars] + "..." if len(text) > preview_chars else text,
            "score": round(self.score, 4),
        }


@dataclass
class Answer:
    """Result of a conversational retrieval call."""

    query: str
    standalone_query: str
    answer: Optional[str]
    source_chunks: List[ScoredChunk] = field(default_factory=list)

    @property
    def has_answer(self) -> bool:
        return self.answer is not None

    @property
    def answer_text(self) -> str:
        return self.answer if self.answer is not None else NO_ANSWER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "standalone_query": self.standalone_query,
            "response": self.answer_text,
            "answered": self.has_answer,
            "sources": [s.to_dict() for s in self.source_chunks],
        }
