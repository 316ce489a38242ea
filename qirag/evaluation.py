"""Retrieval quality evaluation over a JSONL question set."""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import re
import time
from typing import Any

from .answer import CompletionFn, answer_with_rag
from .retrieval.config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from .retrieval.pipeline import retrieve
from .retrieval.renderer import build_citations
from .retrieval.types import Citation

log = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class EvalCase:
    id: str
    category: str
    question: str
    expected_keywords: tuple[str, ...] = ()
    expected_source_hints: tuple[str, ...] = ()
    difficulty: str = "medium"
    rubric: str = ""


def _case_from_record(record: dict[str, Any]) -> EvalCase:
    return EvalCase(
        id=str(record["id"]),
        category=str(record.get("category", "")),
        question=str(record["question"]),
        expected_keywords=tuple(record.get("expectedKeywords") or ()),
        expected_source_hints=tuple(record.get("expectedSourceHints") or ()),
        difficulty=str(record.get("difficulty", "medium")),
        rubric=str(record.get("rubric", "")),
    )


def read_eval_set(path: str | Path) -> list[EvalCase]:
    """Read one case per non-blank line.

    Raises:
        ValueError: on a malformed line, naming its line number
    """
    cases = []
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    for line_number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            cases.append(_case_from_record(json.loads(line)))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"{path}:{line_number}: invalid eval case: {e}") from e
    return cases


def normalize_for_match(text: str) -> str:
    return _WHITESPACE_RE.sub("", text.lower())


def coverage_rate(text: str, keywords: tuple[str, ...] | list[str]) -> float:
    """Share of keywords found in text, ignoring case and whitespace.

    An empty keyword list counts as full coverage.
    """
    if not keywords:
        return 1.0
    haystack = normalize_for_match(text)
    hits = 0
    for keyword in keywords:
        needle = normalize_for_match(keyword)
        if needle and needle in haystack:
            hits += 1
    return hits / len(keywords)


def source_hint_hit(hints: tuple[str, ...] | list[str], citations: list[Citation]) -> bool:
    """Whether any hint occurs in a cited title, path or section."""
    for hint in hints:
        needle = normalize_for_match(hint)
        if not needle:
            continue
        for citation in citations:
            haystack = normalize_for_match(
                f"{citation.source_title} {citation.source_path or ''} "
                f"{citation.section_title or ''}"
            )
            if needle in haystack:
                return True
    return False


def evidence_text(citations: list[Citation]) -> str:
    return "\n".join(f"[{citation.label}] {citation.excerpt}" for citation in citations)


def evaluate_case(
    case: EvalCase,
    *,
    config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
    complete: CompletionFn | None = None,
    **retrieve_kwargs: Any,
) -> dict[str, Any]:
    """Score one case. Answer coverage is measured only when complete is given."""
    evidence = retrieve(case.question, config.top_k, config=config, **retrieve_kwargs)
    citations = build_citations(evidence)

    result: dict[str, Any] = {
        "id": case.id,
        "category": case.category,
        "difficulty": case.difficulty,
        "citation_count": len(citations),
        "citation_presence": bool(citations),
        "source_hint_hit": source_hint_hit(case.expected_source_hints, citations),
        "evidence_keyword_coverage": round(
            coverage_rate(evidence_text(citations), case.expected_keywords), 4
        ),
    }

    if complete is not None:
        rag = answer_with_rag(
            case.question,
            complete=complete,
            top_k=config.top_k,
            config=config,
            evidence=evidence,
        )
        result["keyword_coverage"] = round(
            coverage_rate(rag["answer"], case.expected_keywords), 4
        )
        result["answer_preview"] = rag["answer"][:160]

    return result


def _mean(values: list[float]) -> float:
    return sum(values) / max(len(values), 1)


def summarize(case_results: list[dict[str, Any]]) -> dict[str, Any]:
    """Aggregate per-case metrics into rates rounded to 4 places."""
    summary = {
        "citation_presence_rate": round(
            _mean([float(item["citation_presence"]) for item in case_results]), 4
        ),
        "source_hint_hit_rate": round(
            _mean([float(item["source_hint_hit"]) for item in case_results]), 4
        ),
        "avg_evidence_keyword_coverage": round(
            _mean([item["evidence_keyword_coverage"] for item in case_results]), 4
        ),
    }
    answer_scores = [
        item["keyword_coverage"] for item in case_results if "keyword_coverage" in item
    ]
    if answer_scores:
        summary["avg_keyword_coverage"] = round(_mean(answer_scores), 4)
    return summary


def run_evaluation(
    cases: list[EvalCase],
    *,
    config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
    complete: CompletionFn | None = None,
    eval_set_path: str | None = None,
    **retrieve_kwargs: Any,
) -> dict[str, Any]:
    """Evaluate every case and build the report document."""
    log.info(f"Evaluating {len(cases)} cases")
    case_results = []
    for case in cases:
        result = evaluate_case(
            case, config=config, complete=complete, **retrieve_kwargs
        )
        log.info(
            f"{case.id} citations={result['citation_count']} "
            f"source_hit={result['source_hint_hit']} "
            f"evidence_kw={result['evidence_keyword_coverage']:.2f}"
        )
        case_results.append(result)

    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "eval_set_path": eval_set_path,
        "total_cases": len(case_results),
        "config": {
            "top_k": config.top_k,
            "candidate_limit": config.candidate_limit,
            "fusion": asdict(config.fusion),
            "graph": asdict(config.graph),
        },
        "summary": summarize(case_results),
        "cases": case_results,
    }


def write_report(report: dict[str, Any], report_dir: str | Path) -> Path:
    """Write the report as rag-eval-report-<epoch ms>.json under report_dir."""
    out_dir = Path(report_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    output_path = out_dir / f"rag-eval-report-{int(time.time() * 1000)}.json"
    output_path.write_text(
        json.dumps(report, ensure_ascii=False, indent=2), encoding="utf-8"
    )
    log.info(f"Report written to {output_path}")
    return output_path
