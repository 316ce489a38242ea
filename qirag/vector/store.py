"""SQLite-vec passage storage for the knowledge corpus."""

from datetime import datetime, timezone
import json
from pathlib import Path
import sqlite3
import struct
from typing import Iterable

import sqlite_vec

from ..retrieval.types import Passage

_PASSAGE_COLUMNS = (
    "id, source_id, source_title, source_path, section_title, "
    "chunk_index, text, char_count, keywords"
)


def serialize_vector(vec: list[float] | tuple[float, ...]) -> bytes:
    """Serialize a vector to bytes for sqlite-vec."""
    return struct.pack(f"{len(vec)}f", *vec)


def deserialize_vector(blob: bytes) -> tuple[float, ...]:
    """Inverse of serialize_vector for float32 blobs."""
    return struct.unpack(f"{len(blob) // 4}f", blob)


def _like_pattern(token: str) -> str:
    escaped = token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _now_utc() -> str:
    return datetime.now(timezone.utc).isoformat()


class PassageStore:
    """Passage metadata in a plain table, embeddings in a vec0 table.

    Rows share their rowid between `passages` and `passage_vectors`.
    """

    def __init__(self, db_path: Path | str, dimensions: int = 384):
        self.db_path = Path(db_path)
        self.dimensions = dimensions
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize the database schema."""
        conn = self._get_conn()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS passages (
                    id INTEGER PRIMARY KEY,
                    source_id TEXT NOT NULL,
                    source_title TEXT NOT NULL,
                    source_path TEXT,
                    section_title TEXT,
                    chunk_index INTEGER NOT NULL CHECK (chunk_index >= 0),
                    text TEXT NOT NULL,
                    char_count INTEGER NOT NULL,
                    keywords TEXT NOT NULL DEFAULT '[]',
                    updated_at TEXT NOT NULL,
                    UNIQUE (source_id, chunk_index)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_passages_updated_at
                ON passages(updated_at)
            """)
            conn.execute(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS passage_vectors USING vec0(
                    embedding float[{self.dimensions}]
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _get_conn(self) -> sqlite3.Connection:
        """Get a connection with sqlite-vec loaded."""
        conn = sqlite3.connect(self.db_path)
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        return conn

    def _embedding_for(self, conn: sqlite3.Connection, row_id: int) -> tuple[float, ...]:
        row = conn.execute(
            "SELECT embedding FROM passage_vectors WHERE rowid = ?", (row_id,)
        ).fetchone()
        if not row or row[0] is None:
            return ()
        return deserialize_vector(row[0])

    def _to_passages(self, conn: sqlite3.Connection, rows: list[tuple]) -> list[Passage]:
        passages = []
        for row in rows:
            passages.append(
                Passage(
                    passage_id=str(row[0]),
                    source_id=row[1],
                    source_title=row[2],
                    source_path=row[3] or None,
                    section_title=row[4] or None,
                    chunk_index=row[5],
                    text=row[6],
                    char_count=row[7],
                    keywords=tuple(json.loads(row[8] or "[]")),
                    embedding=self._embedding_for(conn, row[0]),
                )
            )
        return passages

    # =========================================================================
    # WRITES (corpus ingestion)
    # =========================================================================

    def upsert_passages(self, passages: Iterable[Passage]) -> int:
        """Insert or overwrite passages keyed by (source_id, chunk_index).

        The passage_id of the inputs is ignored. Passages with an empty
        embedding are stored without a vector.

        Returns:
            Number of passages written
        """
        conn = self._get_conn()
        written = 0
        try:
            cursor = conn.cursor()
            for passage in passages:
                if passage.embedding and len(passage.embedding) != self.dimensions:
                    raise ValueError(
                        f"Embedding has {len(passage.embedding)} dimensions, "
                        f"store expects {self.dimensions}"
                    )

                cursor.execute(
                    """
                    INSERT INTO passages (
                        source_id, source_title, source_path, section_title,
                        chunk_index, text, char_count, keywords, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source_id, chunk_index) DO UPDATE SET
                        source_title = excluded.source_title,
                        source_path = excluded.source_path,
                        section_title = excluded.section_title,
                        text = excluded.text,
                        char_count = excluded.char_count,
                        keywords = excluded.keywords,
                        updated_at = excluded.updated_at
                    """,
                    (
                        passage.source_id,
                        passage.source_title,
                        passage.source_path or "",
                        passage.section_title or "",
                        passage.chunk_index,
                        passage.text,
                        passage.char_count,
                        json.dumps(list(passage.keywords), ensure_ascii=False),
                        _now_utc(),
                    ),
                )
                row_id = cursor.execute(
                    "SELECT id FROM passages WHERE source_id = ? AND chunk_index = ?",
                    (passage.source_id, passage.chunk_index),
                ).fetchone()[0]

                # Replace vector (rowid must match)
                cursor.execute("DELETE FROM passage_vectors WHERE rowid = ?", (row_id,))
                if passage.embedding:
                    cursor.execute(
                        "INSERT INTO passage_vectors (rowid, embedding) VALUES (?, ?)",
                        (row_id, serialize_vector(passage.embedding)),
                    )
                written += 1

            conn.commit()
        finally:
            conn.close()
        return written

    def delete_stale(self, source_id: str, keep_count: int) -> int:
        """Delete chunks of a source with chunk_index >= keep_count."""
        conn = self._get_conn()
        try:
            ids = [
                row[0]
                for row in conn.execute(
                    "SELECT id FROM passages WHERE source_id = ? AND chunk_index >= ?",
                    (source_id, keep_count),
                ).fetchall()
            ]
            for row_id in ids:
                conn.execute("DELETE FROM passages WHERE id = ?", (row_id,))
                conn.execute("DELETE FROM passage_vectors WHERE rowid = ?", (row_id,))
            conn.commit()
        finally:
            conn.close()
        return len(ids)

    def clear(self):
        """Clear all passage data."""
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM passages")
            conn.execute("DELETE FROM passage_vectors")
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # READS (candidate retrieval)
    # =========================================================================

    def find_by_substring(self, tokens: list[str], limit: int) -> list[Passage]:
        """Passages whose text, source title or section title contains a token.

        Matching is case-insensitive for ASCII. Results come in insertion
        order.
        """
        if not tokens or limit <= 0:
            return []

        clauses = []
        params: list = []
        for token in tokens:
            pattern = _like_pattern(token)
            clauses.append(
                "(text LIKE ? ESCAPE '\\' OR source_title LIKE ? ESCAPE '\\' "
                "OR section_title LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        params.append(limit)

        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT {_PASSAGE_COLUMNS} FROM passages "
                f"WHERE {' OR '.join(clauses)} ORDER BY id LIMIT ?",
                params,
            ).fetchall()
            return self._to_passages(conn, rows)
        finally:
            conn.close()

    def find_recent(self, exclude_ids: set[str], limit: int) -> list[Passage]:
        """Most recently updated passages not in exclude_ids."""
        if limit <= 0:
            return []

        excluded = {int(passage_id) for passage_id in exclude_ids if passage_id.isdigit()}
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT {_PASSAGE_COLUMNS} FROM passages "
                "ORDER BY updated_at DESC, id DESC LIMIT ?",
                (limit + len(excluded),),
            ).fetchall()
            rows = [row for row in rows if row[0] not in excluded][:limit]
            return self._to_passages(conn, rows)
        finally:
            conn.close()

    def get_passage(self, source_id: str, chunk_index: int) -> Passage | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                f"SELECT {_PASSAGE_COLUMNS} FROM passages "
                "WHERE source_id = ? AND chunk_index = ?",
                (source_id, chunk_index),
            ).fetchone()
            if not row:
                return None
            return self._to_passages(conn, [row])[0]
        finally:
            conn.close()

    def count(self) -> int:
        """Get the number of stored passages."""
        conn = self._get_conn()
        try:
            return conn.execute("SELECT COUNT(*) FROM passages").fetchone()[0]
        finally:
            conn.close()
