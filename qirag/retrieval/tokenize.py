"""Deterministic normalization, tokenization and similarity scoring."""

import math
import re

_LATIN_TOKEN_RE = re.compile(r"[a-z0-9]{2,}")
_HORIZONTAL_WS_RE = re.compile(r"[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
# Han script: radicals, ideographic marks, CJK unified ideographs (+ ext A..G),
# compatibility ideographs.
_HAN_RE = re.compile(
    "[\u2e80-\u2e99\u2e9b-\u2ef3\u2f00-\u2fd5\u3005\u3007\u3021-\u3029"
    "\u3038-\u303b\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufa6d\ufa70-\ufad9"
    "\U00020000-\U0003134a]"
)


def normalize_text(text: str | None) -> str:
    """Normalize line endings and whitespace runs, keep paragraph breaks."""
    if not text:
        return ""
    normalized = text.replace("\r\n", "\n").replace("\u3000", " ")
    normalized = _HORIZONTAL_WS_RE.sub(" ", normalized)
    normalized = _BLANK_LINES_RE.sub("\n\n", normalized)
    return normalized.strip()


def is_han(char: str) -> bool:
    return bool(_HAN_RE.fullmatch(char))


def han_characters(text: str | None) -> list[str]:
    """Return the Han-script characters of text in order."""
    if not text:
        return []
    return _HAN_RE.findall(text)


def tokenize_for_search(text: str | None) -> list[str]:
    """Tokenize into lowercase alnum words plus Han character bigrams.

    Bigrams slide over the Han characters of the whole text, so two Han runs
    separated by other characters still produce a bridging bigram. The result
    is de-duplicated in first-seen order, Latin tokens first.
    """
    normalized = normalize_text(text).lower()
    if not normalized:
        return []

    latin_tokens = _LATIN_TOKEN_RE.findall(normalized)
    hans = han_characters(normalized)
    bigrams = [hans[i] + hans[i + 1] for i in range(len(hans) - 1)]

    seen: set[str] = set()
    tokens: list[str] = []
    for token in (*latin_tokens, *bigrams):
        if len(token) < 2 or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens


def cosine_similarity(vector_a: list[float], vector_b: list[float]) -> float:
    """Cosine similarity; 0.0 for empty, mismatched or zero-norm inputs."""
    if not vector_a or not vector_b or len(vector_a) != len(vector_b):
        return 0.0

    dot = 0.0
    mag_a = 0.0
    mag_b = 0.0
    for a, b in zip(vector_a, vector_b):
        dot += a * b
        mag_a += a * a
        mag_b += b * b

    if mag_a == 0 or mag_b == 0:
        return 0.0

    score = dot / (math.sqrt(mag_a) * math.sqrt(mag_b))
    if math.isnan(score):
        return 0.0
    return score


def lexical_similarity(query_tokens: list[str], doc_tokens: list[str]) -> float:
    """Binary bag-of-tokens cosine: hits / sqrt(|query| * |doc|)."""
    if not query_tokens or not doc_tokens:
        return 0.0

    doc_set = set(doc_tokens)
    hits = sum(1 for token in query_tokens if token in doc_set)
    return hits / math.sqrt(len(query_tokens) * len(doc_tokens))
