"""Fixed-size overlapping chunking and source identifiers."""

import hashlib
import re

from ..retrieval.tokenize import normalize_text

_SEPARATORS_RE = re.compile(r"[\\/]+")
_SOURCE_ID_DISALLOWED_RE = re.compile(r"[^a-zA-Z0-9/_-]")
_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_NON_ASCII_RE = re.compile(r"[^\x00-\x7f]")


def split_into_chunks(text: str, chunk_size: int, overlap: int) -> list[str]:
    """Split normalized text into windows of chunk_size sharing overlap chars.

    The window advances by max(chunk_size - overlap, 1) and stops once it
    reaches the end of the text, so coverage has no gaps.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")

    normalized = normalize_text(text)
    if not normalized:
        return []
    if len(normalized) <= chunk_size:
        return [normalized]

    step = max(chunk_size - overlap, 1)
    chunks: list[str] = []
    start = 0
    while start < len(normalized):
        end = min(start + chunk_size, len(normalized))
        chunk = normalized[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end == len(normalized):
            break
        start += step
    return chunks


def create_source_id_from_path(file_path: str) -> str:
    """Derive a stable lowercase source id from a relative file path."""
    cleaned = _SEPARATORS_RE.sub("/", file_path)
    if cleaned.startswith("./"):
        cleaned = cleaned[2:]
    source_id = _SOURCE_ID_DISALLOWED_RE.sub("", cleaned).lower()
    if _NON_ASCII_RE.search(cleaned):
        # Han file names strip to nothing; keep them distinct.
        digest = hashlib.sha1(cleaned.encode("utf-8")).hexdigest()[:10]
        source_id = f"{source_id}-{digest}" if source_id else digest
    return source_id


def strip_ext(file_name: str) -> str:
    return _EXTENSION_RE.sub("", file_name)
