"""Parser for knowledge corpus documents (plain text and markdown)."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..retrieval.tokenize import normalize_text
from .chunking import strip_ext


@dataclass
class Section:
    """A titled span of document text."""

    title: str
    text: str


@dataclass
class ParsedDocument:
    """Parsed representation of a corpus document."""

    path: Path
    title: str
    sections: list[Section] = field(default_factory=list)
    frontmatter: dict[str, Any] = field(default_factory=dict)

    @property
    def relative_path(self) -> str:
        """Get path relative to the corpus root, with forward slashes."""
        return self.path.as_posix()


# Regex patterns
FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)
HEADING_PATTERN = re.compile(r"^\s*#{1,6}\s+(.+?)\s*$")
CHAPTER_PATTERN = re.compile(r"^\s*第.{1,20}[篇章节卷]\s*$")


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Extract YAML frontmatter from document content.

    Returns:
        Tuple of (frontmatter dict, remaining content)
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}, content

    try:
        frontmatter = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        frontmatter = {}
    if not isinstance(frontmatter, dict):
        frontmatter = {}

    remaining = content[match.end() :]
    return frontmatter, remaining


def parse_sections(content: str, fallback_title: str) -> list[Section]:
    """Split text into sections at markdown headings and chapter lines.

    Heading lines become section titles and are not part of any section
    text. Text before the first heading belongs to fallback_title.
    Sections whose text normalizes to nothing are dropped; if nothing
    survives, the whole text is one section.
    """
    sections: list[Section] = []
    current_title = fallback_title
    buffer: list[str] = []

    def flush():
        joined = normalize_text("\n".join(buffer))
        if joined:
            sections.append(Section(title=current_title, text=joined))
        buffer.clear()

    for line in content.splitlines():
        heading = HEADING_PATTERN.match(line)
        chapter = CHAPTER_PATTERN.match(line)
        if heading or chapter:
            flush()
            raw_title = heading.group(1) if heading else chapter.group(0)
            current_title = normalize_text(raw_title) or fallback_title
            continue
        buffer.append(line)

    flush()
    if not sections:
        return [Section(title=fallback_title, text=normalize_text(content))]
    return sections


def extract_title(path: Path, frontmatter: dict[str, Any]) -> str:
    """Document title from frontmatter, else the file name without extension."""
    title = frontmatter.get("title")
    if title is not None and str(title).strip():
        return str(title).strip()
    return strip_ext(path.name)


def parse_document(path: Path, corpus_root: Path | None = None) -> ParsedDocument | None:
    """Parse a corpus document.

    Args:
        path: Path to the .txt/.md file
        corpus_root: Optional corpus root for relative paths

    Returns:
        ParsedDocument, or None when the file has no text
    """
    raw = path.read_text(encoding="utf-8")
    frontmatter, body = parse_frontmatter(raw.replace("\r\n", "\n").lstrip() + "\n")
    body = normalize_text(body)
    if not body:
        return None

    rel_path = path.relative_to(corpus_root) if corpus_root else path
    title = extract_title(path, frontmatter)

    return ParsedDocument(
        path=rel_path,
        title=title,
        sections=parse_sections(body, title),
        frontmatter=frontmatter,
    )
