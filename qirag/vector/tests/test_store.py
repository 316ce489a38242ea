"""Tests for SQLite passage storage."""

import pytest

from qirag.retrieval.types import Passage
from qirag.vector.store import PassageStore, deserialize_vector, serialize_vector


def _passage(
    source_id: str,
    chunk_index: int,
    text: str,
    embedding: tuple[float, ...] = (1.0, 0.0, 0.0, 0.0),
    **overrides,
) -> Passage:
    fields = {
        "passage_id": "",
        "source_id": source_id,
        "source_title": "四季养生",
        "chunk_index": chunk_index,
        "text": text,
        "char_count": len(text),
        "embedding": embedding,
        "keywords": ("养生",),
        "source_path": f"{source_id}.md",
        "section_title": "春季",
    }
    fields.update(overrides)
    return Passage(**fields)


class TestPassageStore:
    """Tests for passage writes and candidate reads."""

    @pytest.fixture
    def store(self, tmp_path):
        """Create a temporary passage store with 4-dim vectors."""
        return PassageStore(tmp_path / "passages.db", dimensions=4)

    def test_vector_serialization_round_trip(self):
        blob = serialize_vector([0.5, -1.0, 2.0])
        assert deserialize_vector(blob) == (0.5, -1.0, 2.0)

    def test_upsert_and_get_passage(self, store):
        """Stored passages come back with metadata and vector."""
        written = store.upsert_passages([_passage("spring", 0, "春季养肝")])

        passage = store.get_passage("spring", 0)
        assert written == 1
        assert passage is not None
        assert passage.passage_id
        assert passage.text == "春季养肝"
        assert passage.keywords == ("养生",)
        assert passage.section_title == "春季"
        assert passage.embedding == pytest.approx((1.0, 0.0, 0.0, 0.0))
        assert store.get_passage("spring", 1) is None

    def test_upsert_overwrites_same_source_and_chunk(self, store):
        store.upsert_passages([_passage("spring", 0, "旧文本")])
        first_id = store.get_passage("spring", 0).passage_id

        store.upsert_passages(
            [_passage("spring", 0, "新文本", embedding=(0.0, 1.0, 0.0, 0.0))]
        )

        passage = store.get_passage("spring", 0)
        assert store.count() == 1
        assert passage.passage_id == first_id
        assert passage.text == "新文本"
        assert passage.embedding == pytest.approx((0.0, 1.0, 0.0, 0.0))

    def test_passage_without_embedding_has_no_vector(self, store):
        store.upsert_passages([_passage("spring", 0, "无向量", embedding=())])
        assert store.get_passage("spring", 0).embedding == ()

    def test_wrong_dimensions_rejected(self, store):
        with pytest.raises(ValueError, match="dimensions"):
            store.upsert_passages([_passage("spring", 0, "x", embedding=(1.0, 0.0))])

    def test_delete_stale_removes_higher_chunks(self, store):
        store.upsert_passages(
            [_passage("spring", i, f"第{i}段") for i in range(4)]
            + [_passage("summer", 3, "夏季")]
        )

        removed = store.delete_stale("spring", 2)

        assert removed == 2
        assert store.count() == 3
        assert store.get_passage("spring", 3) is None
        assert store.get_passage("summer", 3) is not None

    def test_find_by_substring_matches_text_and_titles(self, store):
        store.upsert_passages(
            [
                _passage("a", 0, "春季宜养肝"),
                _passage("b", 0, "夏季宜养心", section_title="Heat Stroke"),
                _passage("c", 0, "秋季宜养肺", source_title="润燥"),
                _passage("d", 0, "冬季宜养肾"),
            ]
        )

        by_text = store.find_by_substring(["养肝", "养肺"], 10)
        by_section = store.find_by_substring(["heat"], 10)
        by_title = store.find_by_substring(["润燥"], 10)

        assert [p.source_id for p in by_text] == ["a", "c"]
        assert [p.source_id for p in by_section] == ["b"]
        assert [p.source_id for p in by_title] == ["c"]
        assert store.find_by_substring(["养"], 2)[-1].source_id == "b"
        assert store.find_by_substring([], 10) == []

    def test_find_by_substring_escapes_wildcards(self, store):
        store.upsert_passages(
            [_passage("a", 0, "plain text"), _passage("b", 0, "100% sure")]
        )
        assert [p.source_id for p in store.find_by_substring(["0%"], 10)] == ["b"]
        assert store.find_by_substring(["_"], 10) == []

    def test_find_recent_orders_by_update_and_excludes(self, store):
        store.upsert_passages([_passage("old", 0, "旧")])
        store.upsert_passages([_passage("mid", 0, "中")])
        store.upsert_passages([_passage("new", 0, "新")])
        mid_id = store.get_passage("mid", 0).passage_id

        recent = store.find_recent({mid_id}, 5)

        assert [p.source_id for p in recent] == ["new", "old"]
        assert [p.source_id for p in store.find_recent(set(), 1)] == ["new"]

    def test_clear(self, store):
        store.upsert_passages([_passage("spring", 0, "春")])
        store.clear()
        assert store.count() == 0
        assert store.find_recent(set(), 5) == []
