import pytest

from qirag.retrieval.candidates import load_candidates, query_search_tokens
from qirag.retrieval.types import Passage


def _passage(passage_id: str, text: str) -> Passage:
    return Passage(
        passage_id=passage_id,
        source_id="diet",
        source_title="食疗",
        chunk_index=int(passage_id),
        text=text,
        char_count=len(text),
    )


class _Storage:
    def __init__(self, matches: list[Passage], recent: list[Passage]):
        self.matches = matches
        self.recent = recent
        self.substring_calls: list[tuple[list[str], int]] = []
        self.recent_calls: list[tuple[set[str], int]] = []

    def find_by_substring(self, tokens: list[str], limit: int) -> list[Passage]:
        self.substring_calls.append((tokens, limit))
        return self.matches[:limit]

    def find_recent(self, exclude_ids: set[str], limit: int) -> list[Passage]:
        self.recent_calls.append((set(exclude_ids), limit))
        return [p for p in self.recent if p.passage_id not in exclude_ids][:limit]


def test_query_search_tokens_keeps_leading_tokens():
    tokens = query_search_tokens("山药薏米粥适合脾虚湿盛的人吗", limit=8)
    assert len(tokens) == 8
    assert tokens[:2] == ["山药", "药薏"]


def test_primary_matches_fill_limit_without_fallback():
    storage = _Storage([_passage("0", "山药"), _passage("1", "山药粥")], [])

    candidates, hits = load_candidates(storage, "山药", 2)

    assert [p.passage_id for p in candidates] == ["0", "1"]
    assert hits == 2
    assert storage.recent_calls == []


def test_fallback_fills_remaining_slots_excluding_seen():
    storage = _Storage(
        [_passage("0", "山药")],
        [_passage("2", "薏米"), _passage("0", "山药"), _passage("1", "红枣")],
    )

    candidates, hits = load_candidates(storage, "山药", 3)

    assert [p.passage_id for p in candidates] == ["0", "2", "1"]
    assert hits == 1
    assert storage.recent_calls == [({"0"}, 2)]


def test_query_without_tokens_uses_only_recent_passages():
    storage = _Storage([_passage("0", "山药")], [_passage("5", "红枣")])

    candidates, hits = load_candidates(storage, "?", 4)

    assert [p.passage_id for p in candidates] == ["5"]
    assert hits == 0
    assert storage.substring_calls == []


def test_non_positive_limit_loads_nothing():
    storage = _Storage([_passage("0", "山药")], [])
    assert load_candidates(storage, "山药", 0) == ([], 0)


def test_storage_errors_propagate():
    class _Broken(_Storage):
        def find_by_substring(self, tokens, limit):
            raise OSError("disk I/O error")

    with pytest.raises(OSError):
        load_candidates(_Broken([], []), "山药", 5)
