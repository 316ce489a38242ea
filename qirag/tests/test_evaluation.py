from dataclasses import replace
import json

import pytest

from qirag.evaluation import (
    EvalCase,
    coverage_rate,
    read_eval_set,
    run_evaluation,
    source_hint_hit,
    summarize,
    write_report,
)
from qirag.graph.loader import GraphRepository
from qirag.retrieval.config import DEFAULT_RETRIEVAL_CONFIG
from qirag.retrieval.types import Citation, Passage


def _citation(**overrides) -> Citation:
    fields = {
        "label": "C1",
        "passage_id": "1",
        "source_id": "tcm/sleep",
        "source_title": "睡眠调养",
        "source_path": "tcm/sleep.md",
        "section_title": "失眠",
        "chunk_index": 0,
        "excerpt": "失眠多梦",
        "score": 0.5,
    }
    fields.update(overrides)
    return Citation(**fields)


class _Storage:
    def __init__(self, passages: list[Passage]):
        self.passages = passages

    def find_by_substring(self, tokens: list[str], limit: int) -> list[Passage]:
        return [p for p in self.passages if any(t in p.text for t in tokens)][:limit]

    def find_recent(self, exclude_ids: set[str], limit: int) -> list[Passage]:
        return []


class _Embedder:
    def embed(self, texts: list[str]) -> list[list[float]]:
        return [[1.0, 0.0] for _ in texts]


def test_coverage_rate_ignores_case_and_whitespace():
    assert coverage_rate("Sleep  Hygiene 与 泡 脚", ["sleephygiene", "泡脚", "艾灸"]) == pytest.approx(2 / 3)
    assert coverage_rate("任何文本", []) == 1.0
    assert coverage_rate("text", ["  "]) == 0.0


def test_source_hint_hit_checks_title_path_and_section():
    citations = [_citation()]
    assert source_hint_hit(["睡眠"], citations)
    assert source_hint_hit(["TCM/Sleep"], citations)
    assert source_hint_hit(["失 眠"], citations)
    assert not source_hint_hit(["饮食"], citations)
    assert not source_hint_hit(["睡眠"], [])
    assert not source_hint_hit([], citations)


def test_read_eval_set(tmp_path):
    path = tmp_path / "eval.jsonl"
    path.write_text(
        json.dumps(
            {
                "id": "q1",
                "category": "sleep",
                "question": "失眠怎么办",
                "expectedKeywords": ["泡脚"],
                "expectedSourceHints": ["睡眠"],
                "difficulty": "easy",
            },
            ensure_ascii=False,
        )
        + "\n\n",
        encoding="utf-8",
    )

    cases = read_eval_set(path)

    assert cases == [
        EvalCase(
            id="q1",
            category="sleep",
            question="失眠怎么办",
            expected_keywords=("泡脚",),
            expected_source_hints=("睡眠",),
            difficulty="easy",
        )
    ]


def test_read_eval_set_reports_bad_line(tmp_path):
    path = tmp_path / "eval.jsonl"
    path.write_text('{"id": "q1", "question": "x"}\n{oops\n', encoding="utf-8")

    with pytest.raises(ValueError, match=":2:"):
        read_eval_set(path)


def test_summarize_rates():
    summary = summarize(
        [
            {"citation_presence": True, "source_hint_hit": True, "evidence_keyword_coverage": 1.0},
            {"citation_presence": False, "source_hint_hit": False, "evidence_keyword_coverage": 0.5},
        ]
    )
    assert summary == {
        "citation_presence_rate": 0.5,
        "source_hint_hit_rate": 0.5,
        "avg_evidence_keyword_coverage": 0.75,
    }


def test_run_evaluation_and_write_report(tmp_path):
    passage = Passage(
        passage_id="1",
        source_id="tcm/sleep",
        source_title="睡眠调养",
        chunk_index=0,
        text="失眠多梦者宜睡前泡脚。",
        char_count=11,
        embedding=(1.0, 0.0),
        source_path="tcm/sleep.md",
    )
    cases = [
        EvalCase(
            id="q1",
            category="sleep",
            question="失眠怎么办",
            expected_keywords=("泡脚", "艾灸"),
            expected_source_hints=("睡眠",),
        ),
        EvalCase(id="q2", category="diet", question="饮食禁忌", expected_source_hints=("饮食",)),
    ]
    config = replace(
        DEFAULT_RETRIEVAL_CONFIG,
        graph_path=str(tmp_path / "missing.json"),
        embed_timeout_sec=0.0,
    )

    report = run_evaluation(
        cases,
        config=config,
        eval_set_path="eval.jsonl",
        storage=_Storage([passage]),
        embedder=_Embedder(),
        graph_repository=GraphRepository(),
    )

    first, second = report["cases"]
    assert first["citation_count"] == 1
    assert first["source_hint_hit"] is True
    assert first["evidence_keyword_coverage"] == 0.5
    assert second["citation_presence"] is False
    assert second["evidence_keyword_coverage"] == 1.0
    assert report["total_cases"] == 2
    assert report["summary"]["source_hint_hit_rate"] == 0.5
    assert "avg_keyword_coverage" not in report["summary"]

    output = write_report(report, tmp_path / "reports")
    assert output.name.startswith("rag-eval-report-")
    assert json.loads(output.read_text(encoding="utf-8"))["total_cases"] == 2


def test_answer_coverage_when_completion_given(tmp_path):
    passage = Passage(
        passage_id="1",
        source_id="tcm/sleep",
        source_title="睡眠调养",
        chunk_index=0,
        text="失眠多梦者宜睡前泡脚。",
        char_count=11,
        embedding=(1.0, 0.0),
    )
    config = replace(
        DEFAULT_RETRIEVAL_CONFIG,
        graph_path=str(tmp_path / "missing.json"),
        embed_timeout_sec=0.0,
    )

    report = run_evaluation(
        [EvalCase(id="q1", category="sleep", question="失眠怎么办", expected_keywords=("泡脚",))],
        config=config,
        complete=lambda messages: "睡前泡脚 [C1]",
        storage=_Storage([passage]),
        embedder=_Embedder(),
        graph_repository=GraphRepository(),
    )

    assert report["cases"][0]["keyword_coverage"] == 1.0
    assert report["summary"]["avg_keyword_coverage"] == 1.0


def test_answer_reuses_case_evidence(tmp_path):
    class _CountingEmbedder(_Embedder):
        calls = 0

        def embed(self, texts):
            _CountingEmbedder.calls += 1
            return super().embed(texts)

    passage = Passage(
        passage_id="1",
        source_id="tcm/sleep",
        source_title="睡眠调养",
        chunk_index=0,
        text="失眠多梦者宜睡前泡脚。",
        char_count=11,
        embedding=(1.0, 0.0),
    )
    config = replace(
        DEFAULT_RETRIEVAL_CONFIG,
        graph_path=str(tmp_path / "missing.json"),
        embed_timeout_sec=0.0,
    )
    prompts = []

    run_evaluation(
        [EvalCase(id="q1", category="sleep", question="失眠怎么办")],
        config=config,
        complete=lambda messages: prompts.append(messages) or "睡前泡脚 [C1]",
        storage=_Storage([passage]),
        embedder=_CountingEmbedder(),
        graph_repository=GraphRepository(),
    )

    assert _CountingEmbedder.calls == 1
    assert "失眠多梦者宜睡前泡脚。" in prompts[0][1]["content"]
