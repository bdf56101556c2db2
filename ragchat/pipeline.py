"""End-to-end RAG pipeline.

Composes the four stages explicitly:
- Ingestor: sources -> documents
- TextChunker: documents -> chunks
- Indexer: chunks -> vector index
- ConversationalRetriever: query + history -> answer with sources
"""
from pathlib import Path
from typing import Any, Dict, Optional, Sequence
import structlog

from ragchat.config import Settings
from ragchat.errors import RetrievalUnavailable
from ragchat.llm_client import OllamaClient
from ragchat.models import Answer, ConversationTurn, EmbedFn, GenerateFn
from ragchat.rag.chunker import TextChunker
from ragchat.rag.ingest import Ingestor, ProgressCallback, SourceFetcher, WebFetcher
from ragchat.rag.retriever import ConversationalRetriever
from ragchat.rag.store_faiss import Indexer, VectorIndex

logger = structlog.get_logger()


class RAGPipeline:
    """Build-time and query-time wiring of the RAG stages."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[OllamaClient] = None,
        embed: Optional[EmbedFn] = None,
        generate: Optional[GenerateFn] = None,
        fetcher=None,
    ):
        """Initialize the pipeline.

        Args:
            settings: Pipeline settings (default: Settings.from_env())
            client: Ollama client used when embed/generate are not given
            embed: Embedding function override
            generate: Generation backend override
            fetcher: Document fetcher override (default: SourceFetcher)
        """
        self.settings = settings or Settings.from_env()
        self.client = client or OllamaClient.from_settings(self.settings)
        self.embed = embed or self.client.embed
        self.generate = generate or self.client.generate

        self.ingestor = Ingestor(
            fetcher or SourceFetcher(web=WebFetcher(timeout=self.settings.fetch_timeout))
        )
        self.chunker = TextChunker(
            chunk_size=self.settings.chunk_size,
            chunk_overlap=self.settings.chunk_overlap,
        )
        self.indexer = Indexer(
            metric=self.settings.distance_metric,
            concurrency=self.settings.embed_concurrency,
        )

        self.index: Optional[VectorIndex] = None
        self._retriever: Optional[ConversationalRetriever] = None

        logger.info(
            "pipeline_initialized",
            chat_model=self.settings.chat_model,
            embedding_model=self.settings.embedding_model,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            metric=self.indexer.metric,
        )

    @property
    def is_ready(self) -> bool:
        return self.index is not None and self.index.size > 0

    def _set_index(self, index: VectorIndex) -> None:
        self.index = index
        self._retriever = None

    @property
    def retriever(self) -> ConversationalRetriever:
        if self._retriever is None:
            self._retriever = ConversationalRetriever(
                self.index,
                embed=self.embed,
                generate=self.generate,
                top_k=self.settings.top_k,
                history_window=self.settings.history_window,
                temperature=self.settings.temperature,
                generation_timeout=self.settings.generation_timeout,
                retrieval_only_fallback=self.settings.retrieval_only_fallback,
                max_context_chars=self.settings.max_context_chars,
            )
        return self._retriever

    async def build(
        self,
        sources: Optional[Sequence[str]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        skip_failed: bool = False,
    ) -> Dict[str, Any]:
        """Fetch, chunk and index sources, replacing any current index.

        Args:
            sources: Source identifiers (default: settings.sources)
            progress_callback: Optional callback function(current, total, source_id)
            skip_failed: Skip sources that cannot be fetched

        Returns:
            Build statistics

        Raises:
            FetchError: If a source fails and skip_failed is False
            EmbeddingError: If chunk embedding fails
        """
        sources = list(sources if sources is not None else self.settings.sources)
        logger.info("pipeline_build_started", source_count=len(sources))

        documents = await self.ingestor.ingest(
            sources, progress_callback=progress_callback, skip_failed=skip_failed
        )
        chunks = self.chunker.split_documents(documents)
        index = await self.indexer.build(
            chunks, self.embed, embedding_model=self.settings.embedding_model
        )
        index.metadata.update(
            {
                "chunk_size": self.chunker.chunk_size,
                "chunk_overlap": self.chunker.chunk_overlap,
            }
        )
        self._set_index(index)

        stats = {
            **self.ingestor.stats,
            **self.chunker.get_chunk_stats(chunks),
            "vector_count": index.size,
            "embedding_dimension": index.dimension,
        }
        logger.info("pipeline_build_completed", stats=stats)
        return stats

    def save(self, index_dir: Optional[Path] = None) -> Path:
        if self.index is None:
            raise RetrievalUnavailable("Nothing to save. Build the index first.")
        return self.index.save(index_dir or self.settings.index_dir)

    def load(self, index_dir: Optional[Path] = None, expected_dimension: Optional[int] = None) -> VectorIndex:
        """Load a saved index and use it for retrieval.

        Raises:
            FileNotFoundError: If index files don't exist
            DimensionMismatch: If the stored dimension differs from expected_dimension
        """
        index = VectorIndex.load(index_dir or self.settings.index_dir, expected_dimension)
        self._set_index(index)
        return index

    async def ask(
        self,
        query: str,
        history: Sequence[ConversationTurn] = (),
        retrieval_only: Optional[bool] = None,
    ) -> Answer:
        """Answer a query against the current index.

        Raises:
            RetrievalUnavailable: If no index is loaded or retrieval fails
            GenerationUnavailable: If generation fails and degraded mode is off
        """
        return await self.retriever.ask(
            query, history=history, retrieval_only_fallback=retrieval_only
        )
