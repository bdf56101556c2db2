"""Exception types raised by the RAG pipeline."""
from typing import Optional


class RAGError(Exception):
    """Base class for all pipeline errors."""


class InvalidConfiguration(RAGError, ValueError):
    """Chunking or retrieval parameters are out of range."""


class FetchError(RAGError):
    """A document source could not be fetched."""

    def __init__(self, source_id: str, reason: str):
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"Failed to fetch {source_id}: {reason}")


class EmptyIndex(RAGError):
    """The index was queried before any chunk was inserted."""


class DimensionMismatch(RAGError, ValueError):
    """A vector's length disagrees with the index dimensionality."""

    def __init__(self, expected: Optional[int], actual: int, context: str = "vector"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{context.capitalize()} dimension mismatch: expected {expected}, got {actual}"
        )


class EmbeddingError(RAGError):
    """The embedding backend failed or returned an unusable vector."""


class RetrievalUnavailable(RAGError):
    """Retrieval could not run (index not ready or query embedding failed)."""


class GenerationUnavailable(RAGError):
    """The generation backend failed or timed out."""
