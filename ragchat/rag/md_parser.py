"""Markdown parser for extracting content and metadata from .md files.

Handles:
- YAML frontmatter parsing
- Heading extraction (the first heading doubles as the document title)
"""
import re
from pathlib import Path
from typing import Dict, List, Any, Tuple
from dataclasses import dataclass
import yaml
import structlog

logger = structlog.get_logger()

# Frontmatter fields copied into document metadata
METADATA_FIELDS = ("title", "tags", "created", "updated", "author", "language")


@dataclass
class Heading:
    """Represents a markdown heading."""

    level: int  # 1-6 for h1-h6
    text: str
    char_position: int


@dataclass
class MarkdownDocument:
    """Parsed markdown document with content and metadata."""

    path: Path
    frontmatter: Dict[str, Any]
    headings: List[Heading]
    text_without_frontmatter: str

    @property
    def title(self) -> str:
        title = self.frontmatter.get("title")
        if title:
            return str(title)
        if self.headings:
            return self.headings[0].text
        return self.path.stem

    def metadata(self) -> Dict[str, str]:
        """Flatten frontmatter into string metadata for a Document."""
        metadata = {
            "source": str(self.path),
            "file_name": self.path.name,
            "title": self.title,
        }

        for field in METADATA_FIELDS:
            if field == "title" or field not in self.frontmatter:
                continue
            value = self.frontmatter[field]
            # Convert date/datetime objects to ISO format strings
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            elif isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            metadata[field] = str(value)

        return metadata


class MarkdownParser:
    """Parser for markdown documents with frontmatter support."""

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    # Regex for markdown headings
    HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)$", re.MULTILINE)

    def parse_text(self, content: str, path: Path) -> MarkdownDocument:
        """Parse markdown content that was read from path."""
        frontmatter, text_without_frontmatter = self._parse_frontmatter(content)
        headings = self._extract_headings(text_without_frontmatter)

        logger.debug(
            "markdown_parsed",
            path=str(path),
            has_frontmatter=bool(frontmatter),
            heading_count=len(headings),
            content_length=len(text_without_frontmatter),
        )

        return MarkdownDocument(
            path=path,
            frontmatter=frontmatter,
            headings=headings,
            text_without_frontmatter=text_without_frontmatter,
        )

    def _parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Extract YAML frontmatter from markdown content.

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = None

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end() :]

    def _extract_headings(self, content: str) -> List[Heading]:
        return [
            Heading(
                level=len(match.group(1)),
                text=match.group(2).strip(),
                char_position=match.start(),
            )
            for match in self.HEADING_PATTERN.finditer(content)
        ]
