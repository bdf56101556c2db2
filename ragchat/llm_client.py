"""Ollama LLM client wrapper with error handling.

Provides the two external collaborators of the pipeline: an embedding
function (``embed``) and a generation backend (``generate``).
"""
import httpx
from typing import List, Dict, Optional
import structlog

from ragchat import config
from ragchat.errors import EmbeddingError, GenerationUnavailable

logger = structlog.get_logger()


class OllamaClient:
    """Async client for interacting with Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        api_key: Optional[str] = None,
        chat_model: str = None,
        embedding_model: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds
            api_key: Optional bearer token for hosted/proxied endpoints
            chat_model: Default chat model (defaults to config.CHAT_MODEL)
            embedding_model: Default embedding model (defaults to config.EMBEDDING_MODEL)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.api_key = api_key
        self.chat_model = chat_model or config.CHAT_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self._transport = transport

    @classmethod
    def from_settings(cls, settings, transport=None) -> "OllamaClient":
        return cls(
            base_url=settings.ollama_base_url,
            timeout=settings.request_timeout,
            api_key=settings.api_key,
            chat_model=settings.chat_model,
            embedding_model=settings.embedding_model,
            transport=transport,
        )

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            headers=headers,
            transport=self._transport,
        )

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> Dict:
        """Send chat completion request to Ollama.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to the client's chat model)
            temperature: Sampling temperature (0.0-2.0)

        Returns:
            Response dict with 'message' containing 'content'

        Raises:
            GenerationUnavailable: On connection errors, timeouts, HTTP errors or non-JSON replies
        """
        model = model or self.chat_model

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }

        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=model,
                    message_count=len(messages),
                )

                response = await client.post(
                    f"{self.base_url}/api/chat",
                    json=payload,
                )
                response.raise_for_status()

                data = response.json()
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")

                logger.info("ollama_chat_response", model=model)

                return data

        except httpx.TimeoutException as e:
            logger.error("ollama_chat_timeout", error=str(e), timeout=self.timeout)
            raise GenerationUnavailable(f"Chat request timed out after {self.timeout}s") from e
        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise GenerationUnavailable(f"Cannot reach {self.base_url}: {e}") from e
        except httpx.HTTPError as e:
            response = getattr(e, "response", None)
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=getattr(response, "status_code", None),
            )
            raise GenerationUnavailable(f"Chat request failed: {e}") from e
        except ValueError as e:
            logger.error("ollama_chat_invalid_json", error=str(e), base_url=self.base_url)
            raise GenerationUnavailable(f"Chat response is not valid JSON: {e}") from e

    async def generate(self, prompt: str, temperature: Optional[float] = None) -> str:
        """Generate text for a single prompt.

        Args:
            prompt: Prompt text, sent as one user message
            temperature: Sampling temperature

        Returns:
            Generated text

        Raises:
            GenerationUnavailable: If the request fails or the reply is empty
        """
        data = await self.chat(
            [{"role": "user", "content": prompt}],
            temperature=temperature,
        )
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None

        if not isinstance(content, str) or not content.strip():
            logger.error("empty_ollama_response", model=self.chat_model)
            raise GenerationUnavailable("Empty response from LLM")

        return content

    async def embeddings(
        self,
        prompt: str,
        model: str = None,
    ) -> Dict:
        """Generate embeddings for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to the client's embedding model)

        Returns:
            Response dict with 'embedding' list

        Raises:
            EmbeddingError: On API errors or non-JSON replies
        """
        model = model or self.embedding_model

        payload = {
            "model": model,
            "prompt": prompt,
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    prompt_length=len(prompt),
                )

                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json=payload,
                )
                response.raise_for_status()

                data = response.json()
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")

                logger.debug("ollama_embedding_response", model=model)

                return data

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e), model=model)
            raise EmbeddingError(f"Embedding request failed: {e}") from e
        except ValueError as e:
            logger.error("ollama_embedding_invalid_json", error=str(e), model=model)
            raise EmbeddingError(f"Embedding response is not valid JSON: {e}") from e

    async def embed(self, text: str) -> List[float]:
        """Embed text with the client's embedding model.

        Raises:
            EmbeddingError: If the request fails or returns an empty vector
        """
        response = await self.embeddings(text)
        embedding = response.get("embedding")

        if not embedding:
            raise EmbeddingError("Empty embedding returned from Ollama")

        return embedding

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
