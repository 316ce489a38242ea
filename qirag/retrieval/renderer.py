"""Deterministic rendering of retrieved evidence for prompts and terminals."""

from .types import Citation, RankedPassage

NO_EVIDENCE_TEXT = "无可用参考资料。"
UNSECTIONED_TITLE = "未分节"
EVIDENCE_SEPARATOR = "\n\n---\n\n"

_EXCERPT_LEN = 240
_SCORE_DIGITS = 6
_MAX_TITLE_LEN = 40


def citation_label(index: int) -> str:
    """Label for the zero-based index-th evidence passage: C1, C2, ..."""
    return f"C{index + 1}"


def _single_line(value: str | None) -> str:
    return " ".join((value or "").split())


def _truncate(value: str, max_len: int) -> str:
    if len(value) <= max_len:
        return value
    return value[: max_len - 3].rstrip() + "..."


def render_evidence_header(index: int, passage: RankedPassage) -> str:
    section = _single_line(passage.section_title) or UNSECTIONED_TITLE
    return (
        f"[{citation_label(index)}] {_single_line(passage.source_title)} | "
        f"{section} | chunk={passage.chunk_index}"
    )


def render_context_block(passages: list[RankedPassage]) -> str:
    """Render evidence as labeled blocks for the model prompt.

    Each block is the header line followed by the passage text; blocks
    are separated by a horizontal rule.
    """
    if not passages:
        return NO_EVIDENCE_TEXT

    return EVIDENCE_SEPARATOR.join(
        f"{render_evidence_header(index, passage)}\n{passage.text}"
        for index, passage in enumerate(passages)
    )


def build_citations(passages: list[RankedPassage]) -> list[Citation]:
    """Citation records in evidence order, labels matching the context block."""
    return [
        Citation(
            label=citation_label(index),
            passage_id=passage.passage_id,
            source_id=passage.source_id,
            source_title=passage.source_title,
            source_path=passage.source_path,
            section_title=passage.section_title,
            chunk_index=passage.chunk_index,
            excerpt=passage.text[:_EXCERPT_LEN],
            score=round(passage.final_score, _SCORE_DIGITS),
        )
        for index, passage in enumerate(passages)
    ]


def render_result_table(passages: list[RankedPassage]) -> str:
    """Plain-text score table for terminal inspection."""
    if not passages:
        return "- (none)"

    lines = ["label | final | lexical | embedding | graph | rrf | source"]
    for index, passage in enumerate(passages):
        title = _truncate(_single_line(passage.source_title), _MAX_TITLE_LEN)
        lines.append(
            f"{citation_label(index)} | {passage.final_score:.4f} | "
            f"{passage.lexical_score:.4f} | {passage.embedding_score:.4f} | "
            f"{passage.graph_score:.4f} | {passage.rrf_score:.4f} | "
            f"{title}#{passage.chunk_index}"
        )
    return "\n".join(lines)
