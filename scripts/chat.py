#!/usr/bin/env python
"""Interactive terminal chat over a saved RAG index.

Usage:
    python scripts/chat.py                   # Chat with history-aware retrieval
    python scripts/chat.py --no-history      # Treat every question independently
    python scripts/chat.py --retrieval-only  # Show sources when generation fails

Commands inside the chat: /reset clears the history, /quit exits.
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ragchat.config import Settings
from ragchat.errors import GenerationUnavailable, RetrievalUnavailable
from ragchat.log_config import configure_logging
from ragchat.memory import ChatSession
from ragchat.pipeline import RAGPipeline


def print_answer(answer, show_sources: bool):
    print(f"\nAssistant: {answer.answer_text}\n")

    if answer.standalone_query != answer.query:
        print(f"  (searched for: {answer.standalone_query})")

    if show_sources:
        for i, source in enumerate(answer.source_chunks, 1):
            preview = " ".join(source.chunk.text.split())[:100]
            print(f"  [{i}] {source.score:.3f} {source.source}: {preview}")
    print()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with the indexed documents")
    parser.add_argument("--index-dir", type=Path, default=None, help="Saved index directory")
    parser.add_argument("--no-history", action="store_true", help="Do not pass chat history")
    parser.add_argument("--retrieval-only", action="store_true", help="Degrade to sources when generation fails")
    parser.add_argument("--hide-sources", action="store_true", help="Do not list retrieved sources")
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Apply command-line flags on top of the environment settings.

    Flags that are not given leave the environment value in place.
    """
    overrides = {}
    if args.retrieval_only:
        overrides["retrieval_only_fallback"] = True
    if args.index_dir:
        overrides["index_dir"] = args.index_dir
    return Settings.from_env(**overrides)


async def main():
    args = parse_args()

    configure_logging("WARNING")

    settings = settings_from_args(args)

    pipeline = RAGPipeline(settings)
    try:
        index = pipeline.load()
    except FileNotFoundError as e:
        print(f"\nError: {e}\nRun scripts/reindex.py first.\n")
        sys.exit(1)

    print(f"\nLoaded {index.size} chunks. Model: {settings.chat_model}. Type /quit to exit.\n")

    session = ChatSession(context_window_size=settings.history_window)

    while True:
        try:
            query = input("You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not query:
            continue
        if query in ("/quit", "/exit"):
            break
        if query == "/reset":
            session.clear()
            print("History cleared.\n")
            continue

        history = [] if args.no_history else session.recent_turns()

        try:
            answer = await pipeline.ask(query, history=history)
        except (RetrievalUnavailable, GenerationUnavailable) as e:
            print(f"\nError: {e}\n")
            continue

        print_answer(answer, show_sources=not args.hide_sources)
        session.record(answer)


if __name__ == "__main__":
    asyncio.run(main())
