"""Quart application exposing the conversational RAG pipeline."""
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from quart import Quart, jsonify, request
import structlog

from ragchat.errors import GenerationUnavailable, RAGError, RetrievalUnavailable
from ragchat.log_config import configure_logging
from ragchat.memory import ConversationManager
from ragchat.pipeline import RAGPipeline

logger = structlog.get_logger()


class ChatRequest(BaseModel):
    """Body of POST /api/chat."""

    message: str = Field(..., min_length=1, max_length=2000)
    session_id: Optional[str] = None
    retrieval_only: Optional[bool] = None
    use_history: bool = True


class SessionRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)


def create_app(
    pipeline: Optional[RAGPipeline] = None,
    conversation_manager: Optional[ConversationManager] = None,
) -> Quart:
    """Create the Quart app.

    Args:
        pipeline: Pipeline to serve (default: built from environment settings)
        conversation_manager: Session store (default: new in-memory manager)

    Returns:
        Configured Quart application
    """
    app = Quart(__name__)
    pipeline = pipeline or RAGPipeline()
    conversation_manager = conversation_manager or ConversationManager(context_window_size=6)
    app.config["PIPELINE"] = pipeline
    app.config["CONVERSATIONS"] = conversation_manager

    @app.before_serving
    async def prepare_index():
        """Load the saved index, or build it from the configured sources."""
        if pipeline.is_ready:
            return
        try:
            pipeline.load()
        except FileNotFoundError:
            logger.info("no_saved_index_building", sources=pipeline.settings.sources)
            try:
                stats = await pipeline.build(skip_failed=True)
                if stats["vector_count"]:
                    pipeline.save()
            except RAGError as e:
                # Serve unready; /health/ready and /api/chat report 503
                logger.error("index_build_failed", error=str(e), error_type=type(e).__name__)

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer a message within a session.

        Expects JSON body:
        {
            "message": "user message text",
            "session_id": "optional-session-id",  // creates new if not provided
            "retrieval_only": false,              // optional degraded-mode override
            "use_history": true                   // optional
        }

        Returns JSON:
        {
            "response": "assistant response text",
            "answered": true,
            "session_id": "session-id",
            "standalone_query": "...",
            "sources": [...]
        }
        """
        data = await request.get_json(silent=True)
        try:
            body = ChatRequest.model_validate(data or {})
        except ValidationError as e:
            logger.warning("invalid_chat_request", errors=e.error_count())
            return jsonify({"error": "Invalid request", "details": e.errors(include_url=False)}), 400

        message = body.message.strip()
        if not message:
            return jsonify({"error": "Message cannot be empty"}), 400

        session = conversation_manager.get_or_create(body.session_id)
        history = session.recent_turns() if body.use_history else []

        logger.info(
            "chat_request_received",
            session_id=session.session_id,
            message_length=len(message),
            history_turns=len(history),
        )

        try:
            answer = await pipeline.ask(message, history=history, retrieval_only=body.retrieval_only)
        except RetrievalUnavailable as e:
            logger.error("chat_retrieval_unavailable", error=str(e))
            return jsonify({"error": "Retrieval unavailable", "detail": str(e)}), 503
        except GenerationUnavailable as e:
            logger.error("chat_generation_unavailable", error=str(e))
            return jsonify({"error": "Generation unavailable", "detail": str(e)}), 502

        session.record(answer)

        response_data = answer.to_dict()
        response_data["session_id"] = session.session_id
        response_data["model"] = pipeline.settings.chat_model

        logger.info(
            "chat_response_sent",
            session_id=session.session_id,
            answered=answer.has_answer,
            sources=len(answer.source_chunks),
        )

        return jsonify(response_data)

    @app.route("/api/sessions", methods=["POST"])
    async def create_session():
        data = await request.get_json(silent=True)
        try:
            body = SessionRequest.model_validate(data or {})
        except ValidationError as e:
            return jsonify({"error": "Invalid request", "details": e.errors(include_url=False)}), 400

        session = conversation_manager.create_session(body.title)
        return jsonify(session.to_dict()), 201

    @app.route("/api/sessions", methods=["GET"])
    async def list_sessions():
        return jsonify({"sessions": conversation_manager.list_sessions()})

    @app.route("/api/sessions/<session_id>", methods=["DELETE"])
    async def delete_session(session_id: str):
        """Delete a session.

        Returns:
            204 No Content if successful
            404 Not Found if session doesn't exist
        """
        if conversation_manager.delete_session(session_id):
            return "", 204
        return jsonify({"error": "Session not found"}), 404

    @app.route("/api/sessions/<session_id>/messages", methods=["GET"])
    async def get_session_messages(session_id: str):
        session = conversation_manager.get_session(session_id)
        if session is None:
            return jsonify({"error": "Session not found"}), 404
        return jsonify({"messages": session.messages()})

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check if app can serve requests.

        Checks:
        - The index is loaded and non-empty
        - Ollama is reachable and the chat model is available
        """
        checks = {
            "status": "healthy",
            "index": pipeline.is_ready,
            "ollama": False,
            "models": False,
        }

        try:
            models = await pipeline.client.list_models()
            checks["ollama"] = True
            checks["models"] = pipeline.settings.chat_model in models
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["error"] = str(e)

        if not (checks["index"] and checks["ollama"] and checks["models"]):
            checks["status"] = "unhealthy"

        return jsonify(checks), 200 if checks["status"] == "healthy" else 503

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


if __name__ == "__main__":
    # For development - serve with hypercorn in production
    configure_logging()
    create_app().run(host="0.0.0.0", port=5000, debug=True)
