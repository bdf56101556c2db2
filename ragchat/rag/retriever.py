"""Conversational retriever for the RAG pipeline.

Handles:
- Follow-up query reformulation against recent chat history
- Query embedding and vector search
- Context formatting and grounded answer generation
- Retrieval-only degraded mode when generation fails
"""
import asyncio
from typing import List, Optional, Sequence
import structlog

from ragchat import config
from ragchat.errors import (
    EmbeddingError,
    EmptyIndex,
    GenerationUnavailable,
    RetrievalUnavailable,
)
from ragchat.models import Answer, ConversationTurn, EmbedFn, GenerateFn, ScoredChunk
from ragchat.rag.store_faiss import VectorIndex

logger = structlog.get_logger()

CONTEXTUALIZE_PROMPT = """Given a chat history and the latest user question which might reference context in the chat history, formulate a standalone question which can be understood without the chat history. Do NOT answer the question, just reformulate it if needed and otherwise return it as is.

CHAT HISTORY:
{history}

Follow-up question: {question}
Standalone question:"""

ANSWER_PROMPT = """You are an assistant for question-answering tasks. Use the following pieces of retrieved context to answer the question. If you don't know the answer, say that you don't know. Use three sentences maximum and keep the answer concise.

CONTEXT:
{context}

Question: {question}
Answer:"""


def format_history(history: Sequence[ConversationTurn]) -> str:
    """Render chat turns as a plain transcript."""
    lines = []
    for turn in history:
        lines.append(f"Human: {turn.query}")
        lines.append(f"Assistant: {turn.answer}")
    return "\n".join(lines)


def _clean_reformulation(text: str) -> str:
    text = text.strip()
    # Models sometimes echo the label from the prompt
    if text.lower().startswith("standalone question:"):
        text = text[len("standalone question:") :].strip()
    return text.strip("\"'").strip()


class ConversationalRetriever:
    """History-aware retriever that grounds generated answers in the index."""

    def __init__(
        self,
        index: Optional[VectorIndex],
        embed: EmbedFn,
        generate: GenerateFn,
        top_k: int = None,
        history_window: int = None,
        temperature: Optional[float] = None,
        generation_timeout: Optional[float] = None,
        retrieval_only_fallback: bool = False,
        max_context_chars: int = None,
    ):
        """Initialize the retriever.

        Args:
            index: Built vector index (None means not ready)
            embed: Async function mapping text to an embedding vector
            generate: Async function ``generate(prompt, temperature=None) -> str``
            top_k: Number of chunks to retrieve (default from config)
            history_window: Number of latest turns used for reformulation (default from config)
            temperature: Sampling temperature passed to the generation backend
            generation_timeout: Seconds before a generation call counts as unavailable
            retrieval_only_fallback: Return sources without an answer when generation fails
            max_context_chars: Maximum characters of retrieved context in the prompt
        """
        self.index = index
        self.embed = embed
        self.generate = generate
        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        self.history_window = config.HISTORY_WINDOW if history_window is None else history_window
        self.temperature = temperature
        self.generation_timeout = generation_timeout
        self.retrieval_only_fallback = retrieval_only_fallback
        self.max_context_chars = max_context_chars or config.MAX_CONTEXT_CHARS

        logger.info(
            "retriever_initialized",
            top_k=self.top_k,
            history_window=self.history_window,
            retrieval_only_fallback=self.retrieval_only_fallback,
        )

    async def _generate(self, prompt: str, purpose: str) -> str:
        """Call the generation backend with the configured timeout.

        Raises:
            GenerationUnavailable: On backend failure or timeout expiry
        """
        try:
            return await asyncio.wait_for(
                self.generate(prompt, temperature=self.temperature),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("generation_timeout", purpose=purpose, timeout=self.generation_timeout)
            raise GenerationUnavailable(
                f"Generation timed out after {self.generation_timeout}s"
            ) from e

    async def reformulate(self, query: str, history: Sequence[ConversationTurn]) -> str:
        """Rewrite a follow-up query into a standalone question.

        With an empty history the query is returned unchanged and the
        generation backend is not called.

        Raises:
            GenerationUnavailable: If the backend fails
        """
        recent = list(history)[-self.history_window :] if self.history_window else []
        if not recent:
            return query

        prompt = CONTEXTUALIZE_PROMPT.format(history=format_history(recent), question=query)
        standalone = _clean_reformulation(await self._generate(prompt, "reformulation"))

        if not standalone:
            logger.warning("empty_reformulation", query_preview=query[:100])
            return query

        logger.info(
            "query_reformulated",
            turns_used=len(recent),
            query_preview=query[:100],
            standalone_preview=standalone[:100],
        )
        return standalone

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[ScoredChunk]:
        """Embed a standalone query and search the index.

        Args:
            query: Query text (already reformulated)
            top_k: Number of results to return (overrides default)

        Returns:
            List of ScoredChunk objects, best first

        Raises:
            RetrievalUnavailable: If the index is not ready or embedding fails
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        if self.index is None:
            raise RetrievalUnavailable("Index not built. Build or load an index first.")

        top_k = self.top_k if top_k is None else top_k

        try:
            query_embedding = await self.embed(query)
        except EmbeddingError as e:
            logger.error("query_embedding_failed", error=str(e), query_preview=query[:100])
            raise RetrievalUnavailable(f"Query embedding failed: {e}") from e

        try:
            results = self.index.query(query_embedding, top_k)
        except EmptyIndex as e:
            logger.error("retrieval_on_empty_index")
            raise RetrievalUnavailable("Index is empty") from e

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )

        return results

    def format_context(self, results: Sequence[ScoredChunk], max_chars: int = None) -> str:
        """Format retrieved chunks for the answer prompt.

        Args:
            results: Retrieved chunks, best first
            max_chars: Maximum total characters of context to return

        Returns:
            Formatted context string
        """
        max_chars = max_chars or self.max_context_chars
        context_parts = []
        total_chars = 0

        for i, result in enumerate(results, 1):
            chunk_text = f"[Source {i}: {result.source}]\n{result.chunk.text.strip()}\n"

            if total_chars + len(chunk_text) > max_chars:
                remaining = max_chars - total_chars
                if remaining > 200:  # Only add if we have meaningful space
                    context_parts.append(chunk_text[:remaining] + "...\n")
                break

            context_parts.append(chunk_text)
            total_chars += len(chunk_text)

        return "\n".join(context_parts)

    async def ask(
        self,
        query: str,
        history: Sequence[ConversationTurn] = (),
        top_k: Optional[int] = None,
        retrieval_only_fallback: Optional[bool] = None,
    ) -> Answer:
        """Answer a query grounded in retrieved chunks.

        The caller owns the chat history and is expected to append
        ``ConversationTurn(query, answer.answer_text)`` afterwards.

        Args:
            query: User query
            history: Prior turns, oldest first
            top_k: Number of chunks to retrieve (overrides default)
            retrieval_only_fallback: Overrides the configured degraded mode

        Returns:
            Answer with the generated text (None if degraded) and its sources

        Raises:
            ValueError: If the query is empty
            RetrievalUnavailable: If retrieval cannot run
            GenerationUnavailable: If generation fails and degraded mode is off
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        degrade = self.retrieval_only_fallback if retrieval_only_fallback is None else retrieval_only_fallback
        query = query.strip()

        try:
            standalone = await self.reformulate(query, history)
        except GenerationUnavailable as e:
            if not degrade:
                raise
            logger.warning("reformulation_unavailable_using_raw_query", error=str(e))
            standalone = query

        results = await self.retrieve(standalone, top_k=top_k)

        prompt = ANSWER_PROMPT.format(context=self.format_context(results), question=query)

        try:
            answer = (await self._generate(prompt, "answer")).strip()
        except GenerationUnavailable as e:
            if not degrade:
                raise
            logger.warning(
                "generation_unavailable_returning_sources",
                error=str(e),
                sources=len(results),
            )
            answer = None

        logger.info(
            "answer_completed",
            answered=answer is not None,
            sources=len(results),
            used_history=bool(history),
        )

        return Answer(
            query=query,
            standalone_query=standalone,
            answer=answer,
            source_chunks=results,
        )
