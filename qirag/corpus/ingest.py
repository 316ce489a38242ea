"""Corpus ingestion: documents -> sections -> chunks -> embedded passages."""

from dataclasses import replace
import logging
from pathlib import Path
from typing import Any, Iterable, Protocol

from ..parser.chunking import create_source_id_from_path, split_into_chunks
from ..parser.corpus import iter_corpus_files
from ..parser.markdown import ParsedDocument, parse_document
from ..retrieval.config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from ..retrieval.tokenize import tokenize_for_search
from ..retrieval.types import Passage

log = logging.getLogger(__name__)


class PassageWriter(Protocol):
    def upsert_passages(self, passages: Iterable[Passage]) -> int: ...

    def delete_stale(self, source_id: str, keep_count: int) -> int: ...


class TextEmbedder(Protocol):
    def embed(self, texts: list[str]) -> list[list[float]]: ...


class CorpusIngester:
    """Writes a directory of documents into the passage store.

    Re-ingesting a file overwrites its passages by (source_id, chunk_index)
    and removes chunks beyond the new chunk count.
    """

    def __init__(
        self,
        store: PassageWriter,
        embedder: TextEmbedder,
        config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
    ):
        self.store = store
        self.embedder = embedder
        self.config = config

    def ingest_directory(self, corpus_dir: str | Path | None = None) -> dict[str, Any]:
        """Ingest every supported file under corpus_dir.

        Returns:
            Dict with files, chunks, errors and per-file details
        """
        root = Path(corpus_dir or self.config.ingest_dir).resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Corpus directory not found: {root}")

        files = iter_corpus_files(root)
        log.info(f"Ingesting {len(files)} files from {root}")

        details: list[dict[str, Any]] = []
        errors: list[dict[str, str]] = []
        for path in files:
            try:
                result = self.ingest_file(path, corpus_root=root)
            except Exception as e:
                log.warning(f"Failed to ingest {path}: {e}")
                errors.append({"path": str(path), "error": str(e)})
                continue
            if result:
                details.append(result)
                log.info(f"{result['source_path']} -> {result['chunk_count']} chunks")

        summary = {
            "files": len(details),
            "chunks": sum(item["chunk_count"] for item in details),
            "errors": len(errors),
            "details": details,
            "failed": errors,
        }
        log.info(
            f"Ingestion done: {summary['files']} files, {summary['chunks']} chunks, "
            f"{summary['errors']} errors"
        )
        return summary

    def ingest_file(
        self, path: str | Path, corpus_root: str | Path | None = None
    ) -> dict[str, Any] | None:
        """Ingest one document.

        Returns:
            File result dict, or None when the document has no text
        """
        path = Path(path)
        root = Path(corpus_root) if corpus_root else path.parent
        doc = parse_document(path, corpus_root=root)
        if doc is None:
            log.debug(f"Skipping empty document {path}")
            return None

        drafts = self.build_passages(doc)
        if not drafts:
            return None

        embedded = self._embed(drafts)
        self.store.upsert_passages(embedded)
        removed = self.store.delete_stale(drafts[0].source_id, len(drafts))
        if removed:
            log.debug(f"Removed {removed} stale chunks of {drafts[0].source_id}")

        return {
            "source_id": drafts[0].source_id,
            "source_title": doc.title,
            "source_path": doc.relative_path,
            "chunk_count": len(drafts),
        }

    def build_passages(self, doc: ParsedDocument) -> list[Passage]:
        """Chunk each section; chunk indexes run across the whole document."""
        source_id = create_source_id_from_path(doc.relative_path)
        passages: list[Passage] = []

        for section in doc.sections:
            chunks = split_into_chunks(
                section.text, self.config.chunk_size, self.config.chunk_overlap
            )
            for text in chunks:
                passages.append(
                    Passage(
                        passage_id="",
                        source_id=source_id,
                        source_title=doc.title,
                        source_path=doc.relative_path,
                        section_title=section.title,
                        chunk_index=len(passages),
                        text=text,
                        char_count=len(text),
                        keywords=tuple(
                            tokenize_for_search(text)[: self.config.keyword_limit]
                        ),
                    )
                )
        return passages

    def _embed(self, drafts: list[Passage]) -> list[Passage]:
        batch_size = max(self.config.embedding_batch_size, 1)
        embedded: list[Passage] = []

        for i in range(0, len(drafts), batch_size):
            batch = drafts[i : i + batch_size]
            vectors = self.embedder.embed([draft.text for draft in batch])
            for j, draft in enumerate(batch):
                vector = vectors[j] if j < len(vectors) else []
                embedded.append(
                    replace(draft, embedding=tuple(float(v) for v in vector))
                )
        return embedded
