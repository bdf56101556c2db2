"""Tests for the Quart HTTP API."""
import httpx
import pytest

from ragchat.errors import EmbeddingError
from ragchat.llm_client import OllamaClient
from ragchat.main import create_app
from ragchat.memory import ConversationManager
from ragchat.pipeline import RAGPipeline

from conftest import FIRST_QUESTION, FOLLOW_UP, FOLLOW_UP_REWRITE, LLAMA_URL, ScriptedGenerator


def _ollama(models):
    def handler(request):
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in models]})
        return httpx.Response(404)

    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


@pytest.fixture
async def built_pipeline(settings, embedder, generator, fetcher):
    pipeline = RAGPipeline(
        settings=settings,
        client=_ollama([settings.chat_model]),
        embed=embedder,
        generate=generator,
        fetcher=fetcher,
    )
    await pipeline.build([LLAMA_URL])
    return pipeline


@pytest.fixture
def client(built_pipeline):
    return create_app(built_pipeline, ConversationManager()).test_client()


async def test_chat_returns_answer_and_sources(client):
    response = await client.post("/api/chat", json={"message": FIRST_QUESTION})

    assert response.status_code == 200
    data = await response.get_json()
    assert data["answered"] is True
    assert data["response"] == "Answer drawn from 2 sources."
    assert data["session_id"]
    assert len(data["sources"]) == 2
    assert data["sources"][0]["source_id"] == LLAMA_URL
    assert "128K" in data["sources"][0]["content_preview"]


async def test_follow_up_in_same_session_uses_history(client):
    first = await (await client.post("/api/chat", json={"message": FIRST_QUESTION})).get_json()

    response = await client.post(
        "/api/chat", json={"message": FOLLOW_UP, "session_id": first["session_id"]}
    )
    data = await response.get_json()

    assert data["session_id"] == first["session_id"]
    assert data["standalone_query"] == FOLLOW_UP_REWRITE

    messages = await (await client.get(f"/api/sessions/{first['session_id']}/messages")).get_json()
    assert [m["role"] for m in messages["messages"]] == ["user", "assistant", "user", "assistant"]


async def test_use_history_false_skips_reformulation(client):
    first = await (await client.post("/api/chat", json={"message": FIRST_QUESTION})).get_json()

    response = await client.post(
        "/api/chat",
        json={"message": FOLLOW_UP, "session_id": first["session_id"], "use_history": False},
    )

    assert (await response.get_json())["standalone_query"] == FOLLOW_UP


@pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": "x" * 2001}, {"message": "   "}])
async def test_chat_rejects_invalid_bodies(client, body):
    response = await client.post("/api/chat", json=body)

    assert response.status_code == 400


async def test_generation_failure_is_502_unless_retrieval_only(settings, embedder, fetcher):
    pipeline = RAGPipeline(
        settings=settings,
        client=_ollama([]),
        embed=embedder,
        generate=ScriptedGenerator(fail_answers=True),
        fetcher=fetcher,
    )
    await pipeline.build([LLAMA_URL])
    client = create_app(pipeline).test_client()

    failed = await client.post("/api/chat", json={"message": FIRST_QUESTION})
    assert failed.status_code == 502

    degraded = await client.post("/api/chat", json={"message": FIRST_QUESTION, "retrieval_only": True})
    data = await degraded.get_json()
    assert degraded.status_code == 200
    assert data["answered"] is False
    assert data["response"] == "No answer available."
    assert data["sources"]


async def test_chat_without_index_is_503(settings, embedder, generator, fetcher):
    pipeline = RAGPipeline(settings=settings, embed=embedder, generate=generator, fetcher=fetcher)
    client = create_app(pipeline).test_client()

    response = await client.post("/api/chat", json={"message": FIRST_QUESTION})

    assert response.status_code == 503


async def test_session_endpoints(client):
    created = await client.post("/api/sessions", json={"title": "Llama"})
    assert created.status_code == 201
    session_id = (await created.get_json())["id"]

    listed = await (await client.get("/api/sessions")).get_json()
    assert [s["title"] for s in listed["sessions"]] == ["Llama"]

    assert (await client.delete(f"/api/sessions/{session_id}")).status_code == 204
    assert (await client.delete(f"/api/sessions/{session_id}")).status_code == 404
    assert (await client.get(f"/api/sessions/{session_id}/messages")).status_code == 404


async def test_health_endpoints(client):
    live = await client.get("/health/live")
    assert (await live.get_json()) == {"status": "alive"}

    ready = await client.get("/health/ready")
    data = await ready.get_json()
    assert ready.status_code == 200
    assert data == {"status": "healthy", "index": True, "ollama": True, "models": True}


async def test_health_ready_reports_missing_model(settings, embedder, generator, fetcher):
    pipeline = RAGPipeline(
        settings=settings, client=_ollama(["other:latest"]), embed=embedder, generate=generator, fetcher=fetcher
    )
    client = create_app(pipeline).test_client()

    response = await client.get("/health/ready")
    data = await response.get_json()

    assert response.status_code == 503
    assert data["status"] == "unhealthy"
    assert data["index"] is False
    assert data["models"] is False


async def test_unknown_route_is_json_404(client):
    response = await client.get("/nope")

    assert response.status_code == 404
    assert (await response.get_json()) == {"error": "Not found"}


async def test_startup_builds_and_saves_index(settings, embedder, generator, fetcher):
    settings.sources = [LLAMA_URL]
    pipeline = RAGPipeline(settings=settings, embed=embedder, generate=generator, fetcher=fetcher)
    app = create_app(pipeline)

    async with app.test_app() as test_app:
        response = await test_app.test_client().post("/api/chat", json={"message": FIRST_QUESTION})

    assert response.status_code == 200
    assert (settings.index_dir / "metadata.json").exists()


async def test_startup_survives_unreachable_embedding_backend(settings, generator, fetcher):
    async def unreachable(text):
        raise EmbeddingError("connection refused")

    settings.sources = [LLAMA_URL]
    pipeline = RAGPipeline(
        settings=settings, client=_ollama([]), embed=unreachable, generate=generator, fetcher=fetcher
    )
    app = create_app(pipeline)

    async with app.test_app() as test_app:
        client = test_app.test_client()
        chat = await client.post("/api/chat", json={"message": FIRST_QUESTION})
        ready = await client.get("/health/ready")

    assert not pipeline.is_ready
    assert chat.status_code == 503
    assert ready.status_code == 503
    assert (await ready.get_json())["index"] is False
