#!/usr/bin/env python
"""Build the RAG index from document sources and save it.

Usage:
    python scripts/reindex.py                               # Sources from RAG_SOURCES
    python scripts/reindex.py https://example.com notes/a.md
    python scripts/reindex.py --skip-failed --verbose
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ragchat.config import Settings
from ragchat.errors import RAGError
from ragchat.log_config import configure_logging
from ragchat.pipeline import RAGPipeline
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, source_id: str):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {source_id[-30:]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict, index_dir: Path):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Sources fetched:   {stats['sources_fetched']}")
        print(f"  Sources failed:    {stats['sources_failed']}")
        print(f"  Chunks created:    {stats['chunk_count']}")
        print(f"  Avg chunk size:    {stats['avg_chunk_size']} chars")
        print(f"  Vector dimension:  {stats['embedding_dimension']}")
        print(f"  Time elapsed:      {elapsed_seconds:.1f}s")

        if stats["chunk_count"] > 0 and elapsed_seconds > 0:
            print(f"  Indexing rate:     {stats['chunk_count'] / elapsed_seconds:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if stats["sources_failed"] > 0:
            print(f"Warning: {stats['sources_failed']} source(s) failed to fetch. Check logs for details.\n")

        if stats["vector_count"] > 0:
            print(f"Index ready at: {index_dir}\n")


async def main():
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Build and save the RAG index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("sources", nargs="*", help="URLs or file paths (default: RAG_SOURCES)")
    parser.add_argument("--index-dir", type=Path, default=None, help="Where to save the index")
    parser.add_argument("--chunk-size", type=int, default=None, help="Chunk size in characters")
    parser.add_argument("--chunk-overlap", type=int, default=None, help="Chunk overlap in characters")
    parser.add_argument("--skip-failed", action="store_true", help="Skip sources that fail to fetch")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show verbose progress output")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")

    overrides = {
        key: value
        for key, value in {
            "sources": args.sources or None,
            "index_dir": args.index_dir,
            "chunk_size": args.chunk_size,
            "chunk_overlap": args.chunk_overlap,
        }.items()
        if value is not None
    }
    progress = ProgressReporter(verbose=args.verbose)

    try:
        settings = Settings.from_env(**overrides)
        pipeline = RAGPipeline(settings)

        print("\nConfiguration:")
        print(f"   Sources:          {len(settings.sources)}")
        print(f"   Embedding model:  {settings.embedding_model}")
        print(f"   Chunk size:       {pipeline.chunker.chunk_size} chars")
        print(f"   Chunk overlap:    {pipeline.chunker.chunk_overlap} chars")
        print(f"   Distance metric:  {settings.distance_metric}")

        progress.start("Indexing Sources")

        stats = await pipeline.build(
            progress_callback=progress.update,
            skip_failed=args.skip_failed,
        )

        index_dir = settings.index_dir
        if stats["vector_count"] > 0:
            index_dir = pipeline.save()

        progress.finish(stats, index_dir)

        if stats["sources_failed"] > 0 or stats["vector_count"] == 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIndexing cancelled by user.\n")
        sys.exit(1)

    except RAGError as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
