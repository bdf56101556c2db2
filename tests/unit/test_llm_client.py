"""Tests for the Ollama client using httpx mock transports."""
import json

import httpx
import pytest

from ragchat.config import Settings
from ragchat.errors import EmbeddingError, GenerationUnavailable, RetrievalUnavailable
from ragchat.llm_client import OllamaClient
from ragchat.rag.retriever import ConversationalRetriever

from conftest import FIRST_QUESTION


def _client(handler, **kwargs):
    kwargs.setdefault("base_url", "http://ollama.test")
    return OllamaClient(transport=httpx.MockTransport(handler), **kwargs)


async def test_generate_posts_single_user_message():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["payload"] = json.loads(request.content)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "128K tokens"}})

    client = _client(handler, chat_model="llama3.1:8b", api_key="secret")

    text = await client.generate("How long is the context?", temperature=0.2)

    assert text == "128K tokens"
    assert seen["path"] == "/api/chat"
    assert seen["payload"]["model"] == "llama3.1:8b"
    assert seen["payload"]["messages"] == [{"role": "user", "content": "How long is the context?"}]
    assert seen["payload"]["options"] == {"temperature": 0.2}
    assert seen["payload"]["stream"] is False
    assert seen["auth"] == "Bearer secret"


async def test_no_auth_header_without_api_key():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"message": {"content": "ok"}})

    await _client(handler).generate("hi")

    assert seen["auth"] is None


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(500, json={"error": "model crashed"}),
        lambda request: httpx.Response(200, json={"message": {"content": "   "}}),
    ],
)
async def test_generate_failures_are_generation_unavailable(handler):
    with pytest.raises(GenerationUnavailable):
        await _client(handler).generate("hi")


@pytest.mark.parametrize("exc", [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")])
async def test_transport_errors_are_generation_unavailable(exc):
    def handler(request):
        raise exc

    with pytest.raises(GenerationUnavailable):
        await _client(handler).chat([{"role": "user", "content": "hi"}])


async def test_embed_returns_vector():
    def handler(request):
        payload = json.loads(request.content)
        assert request.url.path == "/api/embeddings"
        assert payload == {"model": "mxbai-embed-large:latest", "prompt": "some text"}
        return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

    client = _client(handler, embedding_model="mxbai-embed-large:latest")

    assert await client.embed("some text") == [0.1, 0.2, 0.3]


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(404, json={"error": "model not found"}),
        lambda request: httpx.Response(200, json={"embedding": []}),
    ],
)
async def test_embed_failures_are_embedding_errors(handler):
    with pytest.raises(EmbeddingError):
        await _client(handler).embed("text")


async def test_list_models():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}, {"name": "mxbai-embed-large:latest"}]})

    assert await _client(handler).list_models() == ["llama3.1:8b", "mxbai-embed-large:latest"]


def test_from_settings():
    settings = Settings(
        ollama_base_url="http://gpu-box:11434/",
        api_key="k",
        chat_model="llama3.1:70b",
        embedding_model="nomic-embed-text",
        request_timeout=5.0,
    )

    client = OllamaClient.from_settings(settings)

    assert client.base_url == "http://gpu-box:11434"
    assert client.api_key == "k"
    assert client.chat_model == "llama3.1:70b"
    assert client.embedding_model == "nomic-embed-text"
    assert client.timeout == 5.0


def _proxy_login(request):
    return httpx.Response(200, text="<html>proxy login</html>", headers={"content-type": "text/html"})


@pytest.mark.parametrize(
    "handler",
    [
        _proxy_login,
        lambda request: httpx.Response(200, json=["not", "an", "object"]),
        lambda request: httpx.Response(200, json={"done": True}),
        lambda request: httpx.Response(200, json={"message": "plain string"}),
    ],
)
async def test_malformed_chat_replies_are_generation_unavailable(handler):
    with pytest.raises(GenerationUnavailable):
        await _client(handler).generate("hi")


async def test_non_json_embedding_reply_is_embedding_error():
    with pytest.raises(EmbeddingError):
        await _client(_proxy_login).embed("text")


async def test_non_json_generation_reply_degrades_to_sources(llama_index, embedder):
    client = _client(_proxy_login)
    retriever = ConversationalRetriever(
        llama_index, embed=embedder, generate=client.generate, top_k=2, retrieval_only_fallback=True
    )

    answer = await retriever.ask(FIRST_QUESTION)

    assert answer.answer is None
    assert len(answer.source_chunks) == 2


async def test_non_json_embedding_reply_makes_retrieval_unavailable(llama_index, generator):
    client = _client(_proxy_login)
    retriever = ConversationalRetriever(llama_index, embed=client.embed, generate=generator, top_k=2)

    with pytest.raises(RetrievalUnavailable):
        await retriever.ask(FIRST_QUESTION)
