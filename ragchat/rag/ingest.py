"""Ingest stage: fetch raw documents from named sources.

Sources are URLs (fetched over HTTP and stripped to text) or local files
(markdown is parsed for frontmatter, anything else is read as plain text).
"""
import html
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence
import httpx
import structlog

from ragchat import config
from ragchat.errors import FetchError
from ragchat.models import Document
from ragchat.rag.md_parser import MarkdownParser

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int, str], None]

_DROP_BLOCKS = re.compile(
    r"<(script|style|noscript|svg|template)\b[^>]*>.*?</\1\s*>", re.DOTALL | re.IGNORECASE
)
_COMMENTS = re.compile(r"<!--.*?-->", re.DOTALL)
_BLOCK_ENDS = re.compile(
    r"</(p|div|section|article|h[1-6]|li|ul|ol|tr|table|blockquote|pre|header|footer)\s*>",
    re.IGNORECASE,
)
_LINE_BREAKS = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]+>")
_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.DOTALL | re.IGNORECASE)
_LANG = re.compile(r"<html[^>]*\blang=[\"']?([\w-]+)", re.IGNORECASE)


def html_to_text(markup: str) -> str:
    """Strip HTML to plain text, keeping block elements as paragraphs.

    Args:
        markup: HTML document

    Returns:
        Clean text with paragraphs separated by blank lines
    """
    text = _COMMENTS.sub("", markup)
    text = _DROP_BLOCKS.sub("", text)
    text = _LINE_BREAKS.sub("\n", text)
    text = _BLOCK_ENDS.sub("\n\n", text)
    text = _TAGS.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")

    # Clean whitespace line by line, then collapse runs of blank lines
    lines = [" ".join(line.split()) for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)

    return text.strip()


def _clean_inline(text: str) -> str:
    return " ".join(html.unescape(_TAGS.sub("", text)).split())


class WebFetcher:
    """Fetch documents over HTTP(S)."""

    def __init__(
        self,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or config.FETCH_TIMEOUT
        self._transport = transport

    async def fetch(self, url: str) -> Document:
        """Fetch a URL and convert it to a Document.

        Raises:
            FetchError: On connection errors, timeouts, HTTP errors or empty pages
        """
        logger.info("web_fetch_started", url=url)

        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": "Mozilla/5.0 (compatible; ragchat/0.1)"},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("web_fetch_failed", url=url, error=str(e))
            raise FetchError(url, str(e) or type(e).__name__) from e

        content_type = response.headers.get("content-type", "")
        metadata: Dict[str, str] = {"source": url, "content_type": content_type.split(";")[0]}

        if "html" in content_type or response.text.lstrip()[:15].lower().startswith(("<!doctype", "<html")):
            markup = response.text
            title = _TITLE.search(markup)
            if title and _clean_inline(title.group(1)):
                metadata["title"] = _clean_inline(title.group(1))
            lang = _LANG.search(markup)
            if lang:
                metadata["language"] = lang.group(1)
            text = html_to_text(markup)
        else:
            text = response.text.strip()

        if not text:
            raise FetchError(url, "no text content")

        logger.info("web_fetch_completed", url=url, text_length=len(text))

        return Document(source_id=url, raw_text=text, metadata=metadata)


class FileFetcher:
    """Read documents from the local filesystem."""

    MARKDOWN_SUFFIXES = {".md", ".markdown"}

    def __init__(self, parser: Optional[MarkdownParser] = None):
        self.parser = parser or MarkdownParser()

    async def fetch(self, source_id: str) -> Document:
        """Read a local file and convert it to a Document.

        Raises:
            FetchError: If the file is missing, unreadable or not UTF-8
        """
        path = Path(source_id)

        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("file_fetch_failed", path=source_id, error=str(e))
            raise FetchError(source_id, str(e)) from e

        if path.suffix.lower() in self.MARKDOWN_SUFFIXES:
            doc = self.parser.parse_text(content, path)
            text = doc.text_without_frontmatter
            metadata = doc.metadata()
        else:
            text = content
            metadata = {"source": source_id, "file_name": path.name, "title": path.stem}

        logger.info("file_fetch_completed", path=source_id, text_length=len(text))

        return Document(source_id=source_id, raw_text=text, metadata=metadata)


class SourceFetcher:
    """Dispatch a source to the web or file fetcher by its scheme."""

    def __init__(
        self,
        web: Optional[WebFetcher] = None,
        files: Optional[FileFetcher] = None,
    ):
        self.web = web or WebFetcher()
        self.files = files or FileFetcher()

    async def fetch(self, source_id: str) -> Document:
        if re.match(r"https?://", source_id, re.IGNORECASE):
            return await self.web.fetch(source_id)
        return await self.files.fetch(source_id)


class Ingestor:
    """Fetch documents for a list of named sources."""

    def __init__(self, fetcher=None):
        """Initialize the ingestor.

        Args:
            fetcher: Object with an async ``fetch(source_id) -> Document``
                (default: SourceFetcher)
        """
        self.fetcher = fetcher or SourceFetcher()
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {"sources_fetched": 0, "sources_failed": 0, "characters_fetched": 0}

    async def ingest(
        self,
        sources: Sequence[str],
        progress_callback: Optional[ProgressCallback] = None,
        skip_failed: bool = False,
    ) -> List[Document]:
        """Fetch every source in order.

        Args:
            sources: Source identifiers (URLs or file paths)
            progress_callback: Optional callback function(current, total, source_id)
            skip_failed: Log and skip sources that fail instead of raising

        Returns:
            List of fetched Documents in source order

        Raises:
            FetchError: If a source fails and skip_failed is False
        """
        self.stats = self._empty_stats()
        documents = []

        for idx, source_id in enumerate(sources, 1):
            if progress_callback:
                progress_callback(idx, len(sources), source_id)

            try:
                document = await self.fetcher.fetch(source_id)
            except FetchError as e:
                self.stats["sources_failed"] += 1
                if not skip_failed:
                    raise
                logger.warning("source_skipped", source_id=source_id, error=e.reason)
                continue

            documents.append(document)
            self.stats["sources_fetched"] += 1
            self.stats["characters_fetched"] += len(document.raw_text)

        logger.info("ingest_completed", stats=self.stats)

        return documents
