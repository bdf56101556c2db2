"""FAISS vector index for semantic search.

Handles:
- Concurrent chunk embedding at build time
- Cosine (inner product over normalized vectors) or L2 search
- Deterministic top-k ordering with tie-breaks
- Index and metadata persistence
"""
import asyncio
import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import numpy as np
import faiss
import structlog

from ragchat import config
from ragchat.errors import DimensionMismatch, EmbeddingError, EmptyIndex, InvalidConfiguration
from ragchat.models import Chunk, Document, EmbedFn, ScoredChunk

logger = structlog.get_logger()

METRICS = ("cosine", "l2")
INDEX_FILE = "vectors.index"
METADATA_FILE = "metadata.json"


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return np.ascontiguousarray(vectors / norms, dtype=np.float32)


class VectorIndex:
    """Read-only nearest-neighbour index over (chunk, vector) entries."""

    def __init__(self, metric: str = None):
        """Create an empty index.

        Args:
            metric: "cosine" or "l2" (default from config)

        Raises:
            InvalidConfiguration: On an unknown metric
        """
        self.metric = metric or config.DISTANCE_METRIC
        if self.metric not in METRICS:
            raise InvalidConfiguration(f"Unknown distance metric {self.metric!r}, expected one of {METRICS}")

        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = None
        self.chunks: List[Chunk] = []
        self.metadata: Dict[str, Any] = {}

    @property
    def size(self) -> int:
        return 0 if self.index is None else self.index.ntotal

    def __len__(self) -> int:
        return self.size

    def _populate(self, chunks: Sequence[Chunk], embeddings: Sequence[Sequence[float]]) -> None:
        """Insert all entries at once. Only called while building or loading."""
        if len(chunks) != len(embeddings):
            raise ValueError(f"Got {len(embeddings)} embeddings for {len(chunks)} chunks")

        if not chunks:
            return

        dimension = len(embeddings[0])
        if dimension == 0:
            raise EmbeddingError("Empty embedding returned")

        for embedding in embeddings:
            if len(embedding) != dimension:
                raise DimensionMismatch(dimension, len(embedding), "embedding")

        vectors = np.array(embeddings, dtype=np.float32)

        if self.metric == "cosine":
            self.index = faiss.IndexFlatIP(dimension)
            vectors = _normalize(vectors)
        else:
            self.index = faiss.IndexFlatL2(dimension)

        self.index.add(vectors)
        self.dimension = dimension
        self.chunks = list(chunks)
        self.metadata.update(
            {
                "metric": self.metric,
                "embedding_dimension": dimension,
                "index_type": type(self.index).__name__,
                "vector_count": self.index.ntotal,
            }
        )

        logger.info(
            "faiss_index_populated",
            dimension=dimension,
            metric=self.metric,
            vector_count=self.index.ntotal,
        )

    def _to_scored(self, position: int, raw: float) -> ScoredChunk:
        if self.metric == "cosine":
            return ScoredChunk(chunk=self.chunks[position], score=raw, distance=1.0 - raw)
        distance = math.sqrt(max(raw, 0.0))
        return ScoredChunk(chunk=self.chunks[position], score=1.0 / (1.0 + distance), distance=distance)

    def query(self, vector: Sequence[float], k: int = None) -> List[ScoredChunk]:
        """Return the k nearest entries to a query vector.

        Results are sorted by descending score; ties go to the lower
        sequence_index, then the lower source_id.

        Args:
            vector: Query embedding
            k: Number of results (default from config)

        Returns:
            List of min(k, size) ScoredChunk objects

        Raises:
            EmptyIndex: If the index holds no entries
            DimensionMismatch: If the vector length differs from the index dimension
            InvalidConfiguration: If k is negative
        """
        if self.size == 0:
            raise EmptyIndex("Index is empty. Build it before querying.")

        if k is None:
            k = config.RETRIEVAL_TOP_K
        if k < 0:
            raise InvalidConfiguration(f"k must be non-negative, got {k}")

        query_vector = np.array([vector], dtype=np.float32)
        if query_vector.ndim != 2 or query_vector.shape[1] != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector), "query")

        k = min(k, self.size)
        if k == 0:
            return []

        if self.metric == "cosine":
            query_vector = _normalize(query_vector)

        # Widen the search until the k-th score is strictly better than the
        # last fetched one, so every candidate tied with it is considered.
        fetch = min(k + 1, self.size)
        while True:
            raw_scores, positions = self.index.search(query_vector, fetch)
            raw_scores, positions = raw_scores[0].tolist(), positions[0].tolist()
            if fetch == self.size or raw_scores[-1] != raw_scores[k - 1]:
                break
            fetch = min(fetch * 2, self.size)

        candidates = [
            self._to_scored(position, raw)
            for position, raw in zip(positions, raw_scores)
            if position >= 0
        ]
        candidates.sort(key=lambda r: (-r.score, r.chunk.sequence_index, r.chunk.source_id))
        results = candidates[:k]

        logger.debug(
            "vector_search_completed",
            top_k=k,
            candidates=len(candidates),
            top_score=results[0].score if results else None,
        )

        return results

    def save(self, index_dir: Path = None) -> Path:
        """Save FAISS index and metadata to disk.

        Args:
            index_dir: Target directory (default from config)

        Returns:
            Directory the index was written to

        Raises:
            EmptyIndex: If there is nothing to save
        """
        if self.index is None:
            raise EmptyIndex("No index to save. Build or load an index first.")

        index_dir = Path(index_dir or config.INDEX_DIR)
        index_dir.mkdir(parents=True, exist_ok=True)

        documents: Dict[str, Document] = {}
        for chunk in self.chunks:
            documents.setdefault(chunk.source_id, chunk.document_ref)

        payload = dict(self.metadata)
        payload["documents"] = [
            {"source_id": d.source_id, "raw_text": d.raw_text, "metadata": dict(d.metadata)}
            for d in documents.values()
        ]
        payload["chunks"] = [
            {
                "source_id": c.source_id,
                "start_offset": c.start_offset,
                "end_offset": c.end_offset,
                "sequence_index": c.sequence_index,
            }
            for c in self.chunks
        ]

        faiss.write_index(self.index, str(index_dir / INDEX_FILE))
        with open(index_dir / METADATA_FILE, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

        logger.info(
            "faiss_index_saved",
            index_dir=str(index_dir),
            vector_count=self.index.ntotal,
        )

        return index_dir

    @classmethod
    def load(cls, index_dir: Path = None, expected_dimension: Optional[int] = None) -> "VectorIndex":
        """Load an index saved with save().

        Args:
            index_dir: Directory holding the index files (default from config)
            expected_dimension: Dimension of the current embedding model, if known

        Raises:
            FileNotFoundError: If index files don't exist
            DimensionMismatch: If the stored dimension differs from expected_dimension
        """
        index_dir = Path(index_dir or config.INDEX_DIR)
        index_path = index_dir / INDEX_FILE
        metadata_path = index_dir / METADATA_FILE

        if not index_path.exists():
            raise FileNotFoundError(f"Index not found: {index_path}")
        if not metadata_path.exists():
            raise FileNotFoundError(f"Metadata not found: {metadata_path}")

        with open(metadata_path, "r", encoding="utf-8") as f:
            payload = json.load(f)

        stored_dim = payload["embedding_dimension"]
        if expected_dimension is not None and expected_dimension != stored_dim:
            raise DimensionMismatch(stored_dim, expected_dimension, "embedding model")

        documents = {
            d["source_id"]: Document(
                source_id=d["source_id"], raw_text=d["raw_text"], metadata=d["metadata"]
            )
            for d in payload.pop("documents")
        }
        chunks = []
        for c in payload.pop("chunks"):
            document = documents[c["source_id"]]
            chunks.append(
                Chunk(
                    document_ref=document,
                    text=document.raw_text[c["start_offset"] : c["end_offset"]],
                    start_offset=c["start_offset"],
                    end_offset=c["end_offset"],
                    sequence_index=c["sequence_index"],
                )
            )

        store = cls(metric=payload["metric"])
        store.index = faiss.read_index(str(index_path))
        store.dimension = stored_dim
        store.chunks = chunks
        store.metadata = payload

        if store.index.ntotal != len(chunks):
            raise ValueError(
                f"Index holds {store.index.ntotal} vectors but metadata lists {len(chunks)} chunks"
            )

        logger.info(
            "faiss_index_loaded",
            dimension=stored_dim,
            vector_count=store.index.ntotal,
            model=payload.get("embedding_model"),
        )

        return store

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the index."""
        return {
            "initialized": self.index is not None,
            "vector_count": self.size,
            "dimension": self.dimension,
            "metric": self.metric,
            "documents": len({c.source_id for c in self.chunks}),
            "embedding_model": self.metadata.get("embedding_model"),
        }


class Indexer:
    """Builds a VectorIndex by embedding chunks."""

    def __init__(self, metric: str = None, concurrency: int = None):
        """Initialize the indexer.

        Args:
            metric: Distance metric for the built index (default from config)
            concurrency: Maximum embedding requests in flight (default from config)
        """
        self.metric = metric or config.DISTANCE_METRIC
        if self.metric not in METRICS:
            raise InvalidConfiguration(f"Unknown distance metric {self.metric!r}, expected one of {METRICS}")
        self.concurrency = concurrency or config.EMBED_CONCURRENCY

    async def embed_chunks(self, chunks: Sequence[Chunk], embed: EmbedFn) -> List[List[float]]:
        """Embed chunks concurrently, returning vectors in chunk order.

        Raises:
            EmbeddingError: If any embedding fails
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _embed_one(chunk: Chunk) -> List[float]:
            async with semaphore:
                return list(await embed(chunk.text))

        tasks = [asyncio.ensure_future(_embed_one(c)) for c in chunks]
        try:
            return list(await asyncio.gather(*tasks))
        except EmbeddingError as e:
            logger.error("embedding_generation_failed", error=str(e), chunk_count=len(chunks))
            raise
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def build(
        self,
        chunks: Sequence[Chunk],
        embed: EmbedFn,
        embedding_model: Optional[str] = None,
    ) -> VectorIndex:
        """Embed every chunk and load the results into a new index.

        Args:
            chunks: Chunks to index
            embed: Async function mapping text to an embedding vector
            embedding_model: Model name recorded in the index metadata

        Returns:
            Populated VectorIndex (empty if chunks is empty)

        Raises:
            EmbeddingError: If embedding fails
            DimensionMismatch: If embeddings disagree in length
        """
        index = VectorIndex(metric=self.metric)
        if embedding_model:
            index.metadata["embedding_model"] = embedding_model

        if not chunks:
            logger.warning("no_chunks_to_index")
            return index

        logger.info("index_build_started", chunk_count=len(chunks), concurrency=self.concurrency)

        embeddings = await self.embed_chunks(chunks, embed)
        index._populate(chunks, embeddings)

        return index


# Convenience function
async def build_index(chunks: Sequence[Chunk], embed: EmbedFn, metric: str = None) -> VectorIndex:
    """Build an index with default settings (convenience function)."""
    return await Indexer(metric=metric).build(chunks, embed)
