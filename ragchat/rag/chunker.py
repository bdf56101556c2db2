"""Text chunking with overlap for RAG pipeline.

Implements character-based recursive chunking to avoid tokenizer dependencies.
Text is cut at the largest unit that fits (paragraph, then sentence, then
word, then raw characters) and the pieces are packed into windows that share
a verbatim overlap with their predecessor.
"""
import re
from collections import deque
from typing import Deque, Iterable, List, Optional, Pattern, Tuple
import structlog

from ragchat import config
from ragchat.errors import InvalidConfiguration
from ragchat.models import Chunk, Document

logger = structlog.get_logger()

# Largest unit first. Cuts are made at the end of each separator match, so
# separators stay with the preceding piece and pieces tile the text exactly.
SPLIT_LEVELS: Tuple[Tuple[str, Optional[Pattern]], ...] = (
    ("paragraph", re.compile(r"\n[ \t]*\n\s*")),
    ("sentence", re.compile(r"[.!?]+[\"')\]]*\s+")),
    ("word", re.compile(r"\s+")),
    ("character", None),
)

# (start, end, level) into the source text
Piece = Tuple[int, int, int]


def validate_chunk_params(chunk_size: int, chunk_overlap: int) -> None:
    """Check chunk size and overlap.

    Raises:
        InvalidConfiguration: Unless chunk_size > 0 and 0 <= overlap < chunk_size
    """
    if not isinstance(chunk_size, int) or chunk_size <= 0:
        raise InvalidConfiguration(f"Chunk size must be a positive integer, got {chunk_size!r}")

    if not isinstance(chunk_overlap, int) or chunk_overlap < 0:
        raise InvalidConfiguration(f"Overlap must be a non-negative integer, got {chunk_overlap!r}")

    if chunk_overlap >= chunk_size:
        raise InvalidConfiguration(
            f"Overlap ({chunk_overlap}) must be less than "
            f"chunk size ({chunk_size})"
        )


def _split_span(text: str, start: int, end: int, level: int) -> List[Piece]:
    """Cut text[start:end] at every separator of the given level."""
    _, pattern = SPLIT_LEVELS[level]

    if pattern is None:
        return [(i, i + 1, level) for i in range(start, end)]

    pieces = []
    cursor = start
    for match in pattern.finditer(text, start, end):
        if match.end() >= end:
            break
        pieces.append((cursor, match.end(), level))
        cursor = match.end()
    pieces.append((cursor, end, level))
    return pieces


class TextChunker:
    """Recursive character chunker with verbatim overlap."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Maximum size of each chunk in characters (default from config)
            chunk_overlap: Overlap between consecutive chunks in characters (default from config)

        Raises:
            InvalidConfiguration: If the parameters are out of range
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        validate_chunk_params(self.chunk_size, self.chunk_overlap)

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def window_offsets(self, text: str) -> List[Tuple[int, int]]:
        """Compute (start, end) offsets of every chunk window in text.

        Each window after the first starts exactly chunk_overlap characters
        before the previous window's end. A piece that does not fit into what
        is left of a window is split by the next-smaller unit, so window ends
        always fall on the largest unit boundary that fits.
        """
        if not text:
            return []

        if len(text) <= self.chunk_size:
            return [(0, len(text))]

        queue: Deque[Piece] = deque(_split_span(text, 0, len(text), 0))
        windows = []
        window_start = 0
        cursor = 0

        while queue:
            start, end, level = queue[0]

            if end - window_start <= self.chunk_size:
                queue.popleft()
                cursor = end
                continue

            # Window holds no more than the overlap: refine the piece instead
            # of closing, so the next window still overlaps inside this one.
            if cursor - window_start <= self.chunk_overlap:
                queue.popleft()
                queue.extendleft(reversed(_split_span(text, start, end, level + 1)))
                continue

            windows.append((window_start, cursor))
            window_start = cursor - self.chunk_overlap

        windows.append((window_start, cursor))
        return windows

    def split(self, document: Document) -> List[Chunk]:
        """Split a document into overlapping chunks.

        Args:
            document: Document to chunk

        Returns:
            List of Chunk objects in document order
        """
        text = document.raw_text
        chunks = [
            Chunk(
                document_ref=document,
                text=text[start:end],
                start_offset=start,
                end_offset=end,
                sequence_index=index,
            )
            for index, (start, end) in enumerate(self.window_offsets(text))
        ]

        if chunks:
            logger.info(
                "text_chunked",
                source_id=document.source_id,
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.text) for c in chunks) // len(chunks),
            )
        else:
            logger.warning("no_chunks_created", source_id=document.source_id)

        return chunks

    def split_documents(self, documents: Iterable[Document]) -> List[Chunk]:
        """Split several documents, concatenating their chunks in order."""
        chunks = []
        for document in documents:
            chunks.extend(self.split(document))
        return chunks

    def get_chunk_stats(self, chunks: List[Chunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of Chunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.text) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


# Convenience function
def split(document: Document, chunk_size: int, overlap: int) -> List[Chunk]:
    """Split a document with explicit size and overlap (convenience function).

    Raises:
        InvalidConfiguration: If the parameters are out of range
    """
    return TextChunker(chunk_size=chunk_size, chunk_overlap=overlap).split(document)
