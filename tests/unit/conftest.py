"""Shared pytest fixtures: deterministic embedding and generation backends."""
import re

import pytest

from ragchat.config import Settings
from ragchat.errors import FetchError, GenerationUnavailable
from ragchat.models import Document
from ragchat.rag.chunker import TextChunker
from ragchat.rag.store_faiss import Indexer

STOPWORDS = {"the", "a", "an", "is", "in", "to", "of", "and", "how", "for", "with", "it", "on", "at", "by", "be"}
TOKEN_PATTERN = re.compile(r"[a-z0-9]+(?:\.[0-9]+)*")

LLAMA_PARAGRAPHS = [
    "Llama 3.1 405B is the flagship model. Meta expanded the context length to 128K tokens for Llama 3.1 405B.",
    "The Llama 3.1 8B model is small and fast. The 8B model also supports a context length of 128K tokens.",
    "What about pricing? What about licensing? Questions about what is allowed are answered in the FAQ.",
    "Training used sixteen thousand GPUs over several months.",
]
LLAMA_URL = "https://ai.meta.com/blog/meta-llama-3-1/"

FIRST_QUESTION = "how long is the context length in Llama 3.1 405B?"
FOLLOW_UP = "what about the 8b model?"
FOLLOW_UP_REWRITE = "How long is the context length in the Llama 3.1 8B model?"


class KeywordEmbedder:
    """Bag-of-words embedder with a growing, fixed-size vocabulary."""

    def __init__(self, dimension: int = 256):
        self.dimension = dimension
        self.vocabulary = {}
        self.calls = []

    def vector(self, text: str) -> list:
        vector = [0.0] * self.dimension
        for token in TOKEN_PATTERN.findall(text.lower()):
            if token in STOPWORDS:
                continue
            if token not in self.vocabulary:
                if len(self.vocabulary) >= self.dimension:
                    raise ValueError("vocabulary full")
                self.vocabulary[token] = len(self.vocabulary)
            vector[self.vocabulary[token]] += 1.0
        return vector

    async def __call__(self, text: str) -> list:
        self.calls.append(text)
        return self.vector(text)


class ScriptedGenerator:
    """Generation backend that rewrites known follow-ups and echoes source counts."""

    def __init__(self, rewrites=None, fail_reformulation=False, fail_answers=False):
        self.rewrites = dict(rewrites or {})
        self.fail_reformulation = fail_reformulation
        self.fail_answers = fail_answers
        self.prompts = []
        self.temperatures = []

    @property
    def reformulation_prompts(self):
        return [p for p in self.prompts if "Standalone question:" in p]

    @property
    def answer_prompts(self):
        return [p for p in self.prompts if "Standalone question:" not in p]

    async def __call__(self, prompt: str, temperature=None) -> str:
        self.prompts.append(prompt)
        self.temperatures.append(temperature)

        if "Standalone question:" in prompt:
            if self.fail_reformulation:
                raise GenerationUnavailable("backend down")
            question = prompt.rsplit("Follow-up question:", 1)[1].split("\n", 1)[0].strip()
            return self.rewrites.get(question, question)

        if self.fail_answers:
            raise GenerationUnavailable("backend down")
        return f"Answer drawn from {prompt.count('[Source ')} sources."


class DictFetcher:
    """Fetcher serving documents from memory."""

    def __init__(self, documents):
        self.documents = {d.source_id: d for d in documents}
        self.fetched = []

    async def fetch(self, source_id: str) -> Document:
        self.fetched.append(source_id)
        if source_id not in self.documents:
            raise FetchError(source_id, "404 Not Found")
        return self.documents[source_id]


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def generator():
    return ScriptedGenerator(rewrites={FOLLOW_UP: FOLLOW_UP_REWRITE})


@pytest.fixture
def llama_document():
    return Document(
        source_id=LLAMA_URL,
        raw_text="\n\n".join(LLAMA_PARAGRAPHS),
        metadata={"title": "Introducing Llama 3.1", "language": "en"},
    )


@pytest.fixture
def llama_chunks(llama_document):
    # Each paragraph fits in 140 characters but no two together do
    return TextChunker(chunk_size=140, chunk_overlap=0).split(llama_document)


@pytest.fixture
async def llama_index(llama_chunks, embedder):
    return await Indexer(metric="cosine", concurrency=2).build(llama_chunks, embedder)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        chunk_size=140,
        chunk_overlap=0,
        top_k=2,
        history_window=3,
        index_dir=tmp_path / "index",
    )


@pytest.fixture
def fetcher(llama_document):
    return DictFetcher([llama_document])
