"""Bounded candidate selection from the passage store."""

import logging
from typing import Protocol

from .tokenize import tokenize_for_search
from .types import Passage

log = logging.getLogger(__name__)


class CandidateStorage(Protocol):
    def find_by_substring(self, tokens: list[str], limit: int) -> list[Passage]: ...

    def find_recent(self, exclude_ids: set[str], limit: int) -> list[Passage]: ...


def query_search_tokens(query: str, limit: int = 8) -> list[str]:
    """Leading query tokens used as substring matchers."""
    tokens = [token for token in tokenize_for_search(query) if len(token) >= 2]
    return tokens[: max(limit, 0)]


def load_candidates(
    store: CandidateStorage,
    query: str,
    limit: int,
    *,
    token_limit: int = 8,
) -> tuple[list[Passage], int]:
    """Fetch substring matches, then top up with the most recent passages.

    Store errors propagate; there is nothing to rank without candidates.

    Returns:
        Tuple of (candidates in fetch order, number of substring matches)
    """
    if limit <= 0:
        return [], 0

    tokens = query_search_tokens(query, token_limit)
    primary = store.find_by_substring(tokens, limit)[:limit] if tokens else []
    if len(primary) >= limit:
        return primary, len(primary)

    seen = {passage.passage_id for passage in primary}
    fallback = [
        passage
        for passage in store.find_recent(seen, limit - len(primary))
        if passage.passage_id not in seen
    ]
    if fallback:
        log.debug(
            f"Candidate fill: {len(primary)} substring matches, {len(fallback)} recent"
        )
    return primary + fallback[: limit - len(primary)], len(primary)
