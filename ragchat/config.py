"""Application configuration with sensible defaults."""
import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
INDEX_DIR = DATA_DIR / "index"

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_API_KEY = os.getenv("OLLAMA_API_KEY") or None
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3.1:8b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60.0"))

# RAG parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "4"))
DISTANCE_METRIC = os.getenv("DISTANCE_METRIC", "cosine")  # cosine | l2
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "4"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "6000"))

# Conversation
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "3"))  # turns used for reformulation
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.0"))
GENERATION_TIMEOUT = float(os.getenv("GENERATION_TIMEOUT", "0")) or None  # 0 = no timeout
RETRIEVAL_ONLY_FALLBACK = os.getenv("RETRIEVAL_ONLY_FALLBACK", "false").lower() in ("1", "true", "yes")

# Sources indexed by the web app and scripts (comma separated)
RAG_SOURCES = [
    s.strip()
    for s in os.getenv("RAG_SOURCES", "https://ai.meta.com/blog/meta-llama-3-1/").split(",")
    if s.strip()
]
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "20.0"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class Settings(BaseModel):
    """Explicit configuration handed to each pipeline component."""

    ollama_base_url: str = OLLAMA_BASE_URL
    api_key: Optional[str] = None
    chat_model: str = CHAT_MODEL
    embedding_model: str = EMBEDDING_MODEL
    request_timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)

    chunk_size: int = Field(default=CHUNK_SIZE, gt=0)
    chunk_overlap: int = Field(default=CHUNK_OVERLAP, ge=0)
    top_k: int = Field(default=RETRIEVAL_TOP_K, ge=1)
    distance_metric: Literal["cosine", "l2"] = "cosine"
    embed_concurrency: int = Field(default=EMBED_CONCURRENCY, ge=1)
    max_context_chars: int = Field(default=MAX_CONTEXT_CHARS, gt=0)

    history_window: int = Field(default=HISTORY_WINDOW, ge=0)
    temperature: float = Field(default=TEMPERATURE, ge=0.0, le=2.0)
    generation_timeout: Optional[float] = None
    retrieval_only_fallback: bool = False

    sources: List[str] = Field(default_factory=list)
    fetch_timeout: float = Field(default=FETCH_TIMEOUT, gt=0)
    index_dir: Path = INDEX_DIR

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from the environment-derived module defaults.

        Args:
            **overrides: Field values that take precedence over the environment

        Returns:
            Settings instance
        """
        values = {
            "ollama_base_url": OLLAMA_BASE_URL,
            "api_key": OLLAMA_API_KEY,
            "chat_model": CHAT_MODEL,
            "embedding_model": EMBEDDING_MODEL,
            "request_timeout": REQUEST_TIMEOUT,
            "chunk_size": CHUNK_SIZE,
            "chunk_overlap": CHUNK_OVERLAP,
            "top_k": RETRIEVAL_TOP_K,
            "distance_metric": DISTANCE_METRIC,
            "embed_concurrency": EMBED_CONCURRENCY,
            "max_context_chars": MAX_CONTEXT_CHARS,
            "history_window": HISTORY_WINDOW,
            "temperature": TEMPERATURE,
            "generation_timeout": GENERATION_TIMEOUT,
            "retrieval_only_fallback": RETRIEVAL_ONLY_FALLBACK,
            "sources": list(RAG_SOURCES),
            "fetch_timeout": FETCH_TIMEOUT,
            "index_dir": INDEX_DIR,
        }
        values.update(overrides)
        return cls(**values)
