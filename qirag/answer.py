"""Cited answer composition over retrieved evidence."""

from dataclasses import asdict
import logging
from typing import Any, Callable

from .retrieval.config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from .retrieval.pipeline import retrieve
from .retrieval.renderer import build_citations, render_context_block
from .retrieval.types import RankedPassage

log = logging.getLogger(__name__)

Message = dict[str, str]
CompletionFn = Callable[[list[Message]], str | None]

UNDETERMINED_ANSWER = "根据当前资料无法确定。"

SYSTEM_PROMPT = "\n".join(
    [
        "你是 QiAIchemy 的中医知识助手。",
        "回答必须严格基于提供的参考资料，不要编造。若证据不足，明确说“根据当前资料无法确定”。",
        "用中文回答，结构清晰，尽量给出要点。",
        "每个关键结论后都要附引用标签，例如 [C1]、[C2]。",
        "不要给出替代医生诊断的结论；涉及疾病或紧急症状时提醒线下就医。",
    ]
)


def build_messages(question: str, context_block: str) -> list[Message]:
    """System instructions plus the question and its labeled evidence."""
    user_content = "\n".join(
        [
            "用户问题：",
            question,
            "",
            "参考资料（引用时请用 [C1]/[C2] 标签）：",
            context_block,
        ]
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


def answer_with_rag(
    question: str,
    *,
    complete: CompletionFn,
    top_k: int | None = None,
    config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
    evidence: list[RankedPassage] | None = None,
    **retrieve_kwargs: Any,
) -> dict[str, Any]:
    """Retrieve evidence for question and ask the model for a cited answer.

    Args:
        question: User question
        complete: Chat completion callable taking role/content messages
        top_k: Evidence passages to cite (config default when None)
        config: Retrieval configuration
        evidence: Already ranked passages; retrieval is skipped when given
        **retrieve_kwargs: storage, embedder, graph_repository or context
            forwarded to retrieval

    Returns:
        Dict with answer, citations and evidence_count

    Raises:
        ValueError: if the question is blank
    """
    trimmed = (question or "").strip()
    if not trimmed:
        raise ValueError("Question is empty")

    if evidence is None:
        evidence = retrieve(trimmed, top_k, config=config, **retrieve_kwargs)
    messages = build_messages(trimmed, render_context_block(evidence))

    answer = (complete(messages) or "").strip()
    if not answer:
        log.info("Empty completion, answering as undetermined")
        answer = UNDETERMINED_ANSWER

    return {
        "answer": answer,
        "citations": [asdict(citation) for citation in build_citations(evidence)],
        "evidence_count": len(evidence),
    }
