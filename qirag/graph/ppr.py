"""Personalized PageRank relevance features for a query.

Query tokens seed concept nodes of the relevance graph, a restart-to-seed
random walk spreads that mass along weighted relations, and the top scoring
nodes turn into an IDF-weighted token boost map used to score passages.
"""

import logging
import math
import re
from pathlib import Path

from ..retrieval.config import GraphPolicy
from ..retrieval.tokenize import han_characters, tokenize_for_search
from ..retrieval.types import GraphFeatures, TopNode
from .loader import GraphRepository, RelevanceGraph, shared_graph_repository

log = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9]+")

# Cues that a question spans several concepts.
MULTI_HOP_WORDS = frozenset(
    {
        "and",
        "relationship",
        "why",
        "how",
        "combined",
        "between",
        "versus",
        "compare",
        "both",
        "cause",
        "effect",
    }
)
MULTI_HOP_PHRASES = (
    "为什么",
    "关系",
    "如何",
    "怎么",
    "结合",
    "同时",
    "区别",
    "影响",
    "导致",
    "和",
    "与",
    "及",
)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_query_complexity(query: str, policy: GraphPolicy = GraphPolicy()) -> float:
    """Blend multi-hop cues, query length and Han density into [0, 1]."""
    lowered = (query or "").lower()
    if not lowered.strip():
        return 0.0

    hints = sum(1 for word in _WORD_RE.findall(lowered) if word in MULTI_HOP_WORDS)
    hints += sum(lowered.count(phrase) for phrase in MULTI_HOP_PHRASES)
    hint_score = min(hints, policy.hint_cap) / policy.hint_cap

    length_score = min(len(query.strip()) / policy.length_norm, 1.0)
    bigram_score = _clamp(
        (len(han_characters(lowered)) - 1) / policy.bigram_norm, 0.0, 1.0
    )

    complexity = (
        policy.hint_weight * hint_score
        + policy.length_weight * length_score
        + policy.bigram_weight * bigram_score
    )
    return _clamp(complexity, 0.0, 1.0)


def adaptive_walk_parameters(
    complexity: float,
    policy: GraphPolicy = GraphPolicy(),
) -> tuple[float, int]:
    """Tighter walk and fewer boost nodes for simple queries.

    Returns:
        Tuple of (restart alpha, top node count)
    """
    base_alpha = policy.ppr_alpha
    alpha = _clamp(
        base_alpha - (1.0 - complexity) * policy.alpha_span,
        min(policy.alpha_floor, base_alpha),
        base_alpha,
    )

    base_nodes = policy.top_nodes
    scaled = _round_half_up(
        base_nodes
        * (policy.top_nodes_base_share + (1.0 - policy.top_nodes_base_share) * complexity)
    )
    top_nodes = int(_clamp(scaled, min(policy.top_nodes_floor, base_nodes), base_nodes))
    return alpha, top_nodes


def build_seed_scores(
    graph: RelevanceGraph,
    query: str,
    context: str | None = None,
) -> dict[str, float]:
    """Spread each matched token's unit weight over its nodes, max-normalized."""
    seeds: dict[str, float] = {}
    for token in tokenize_for_search(f"{query}\n{context or ''}"):
        node_ids = graph.token_index.get(token)
        if not node_ids:
            continue
        increment = 1.0 / len(node_ids)
        for node_id in node_ids:
            seeds[node_id] = seeds.get(node_id, 0.0) + increment

    if not seeds:
        return seeds

    peak = max(seeds.values())
    return {node_id: value / peak for node_id, value in seeds.items()}


def personalized_pagerank(
    graph: RelevanceGraph,
    seeds: dict[str, float],
    alpha: float,
    *,
    max_iterations: int = 30,
    tolerance: float = 1e-6,
) -> tuple[dict[str, float], int]:
    """Power iteration with restart to the seed distribution.

    Nodes without outgoing edges keep their propagated mass.

    Returns:
        Tuple of (node scores, iterations run)
    """
    nodes = list(graph.graph.nodes)
    if not nodes or not seeds:
        return {}, 0

    seed_total = sum(seeds.values()) or 1.0
    restart = {node_id: seeds.get(node_id, 0.0) / seed_total for node_id in nodes}
    out_weight = {
        node_id: graph.graph.out_degree(node_id, weight="weight") for node_id in nodes
    }

    scores = dict(restart)
    iterations = 0
    for _ in range(max_iterations):
        iterations += 1
        following = {node_id: (1.0 - alpha) * restart[node_id] for node_id in nodes}

        for node_id in nodes:
            current = scores[node_id]
            if current == 0.0:
                continue
            total = out_weight[node_id]
            if total <= 0:
                following[node_id] += alpha * current
                continue
            for _, target, weight in graph.graph.out_edges(node_id, data="weight"):
                following[target] += alpha * current * (weight / total)

        delta = sum(abs(following[node_id] - scores[node_id]) for node_id in nodes)
        scores = following
        if delta < tolerance:
            break

    return scores, iterations


def rank_nodes(scores: dict[str, float], limit: int) -> list[tuple[str, float]]:
    """Top positive-scoring nodes, ties kept in graph order."""
    ranked = sorted(
        ((node_id, score) for node_id, score in scores.items() if score > 0),
        key=lambda item: -item[1],
    )
    return ranked[: max(limit, 0)]


def build_token_boost_map(
    graph: RelevanceGraph,
    ranked_nodes: list[tuple[str, float]],
) -> dict[str, float]:
    """Map node tokens to score * idf, keeping the max per token."""
    total_nodes = graph.node_count
    boost: dict[str, float] = {}
    for node_id, score in ranked_nodes:
        for token in graph.node_tokens(node_id):
            frequency = graph.document_frequency.get(token, 1)
            value = score * math.log(1.0 + total_nodes / frequency)
            if value > boost.get(token, 0.0):
                boost[token] = value
    return boost


def graph_confidence(
    seed_coverage: float,
    ranked_nodes: list[tuple[str, float]],
    complexity: float,
    policy: GraphPolicy = GraphPolicy(),
) -> float:
    """How far to trust the graph channel for this query."""
    top_mass = sum(score for _, score in ranked_nodes)
    head_mass = sum(score for _, score in ranked_nodes[: policy.concentration_head])
    concentration = head_mass / top_mass if top_mass > 0 else 0.0

    confidence = (
        policy.coverage_confidence_weight * seed_coverage
        + policy.concentration_confidence_weight * concentration
        + policy.complexity_confidence_weight * complexity
    )
    return _clamp(confidence, 0.0, 1.0)


def _seed_coverage(graph: RelevanceGraph, query: str) -> float:
    tokens = tokenize_for_search(query)
    if not tokens:
        return 0.0
    matched = sum(1 for token in tokens if token in graph.token_index)
    return matched / len(tokens)


def compute_graph_query_features(
    query: str,
    context: str | None = None,
    *,
    graph_path: str | Path,
    repository: GraphRepository | None = None,
    policy: GraphPolicy | None = None,
) -> GraphFeatures:
    """Seed, walk and summarize the relevance graph for one query.

    A missing or malformed graph, or a query matching no node, yields
    features with zero confidence and an empty boost map.
    """
    repo = repository or shared_graph_repository()
    graph = repo.get_graph(graph_path)
    if graph is None:
        return GraphFeatures()
    return features_for_graph(graph, query, context, policy or repo.policy)


def features_for_graph(
    graph: RelevanceGraph,
    query: str,
    context: str | None = None,
    policy: GraphPolicy = GraphPolicy(),
) -> GraphFeatures:
    """Graph features for a query against an already loaded graph."""
    complexity = estimate_query_complexity(query, policy)
    alpha, top_node_count = adaptive_walk_parameters(complexity, policy)

    seeds = build_seed_scores(graph, query, context)
    if not seeds:
        return GraphFeatures(
            complexity=complexity, alpha=alpha, top_node_count=top_node_count
        )

    scores, iterations = personalized_pagerank(
        graph,
        seeds,
        alpha,
        max_iterations=policy.max_iterations,
        tolerance=policy.tolerance,
    )
    ranked = rank_nodes(scores, top_node_count)
    seed_coverage = _seed_coverage(graph, query)
    confidence = graph_confidence(seed_coverage, ranked, complexity, policy)

    features = GraphFeatures(
        token_boost=build_token_boost_map(graph, ranked),
        top_nodes=tuple(
            TopNode(node_id=node_id, label=graph.label(node_id), score=round(score, 6))
            for node_id, score in ranked
        ),
        confidence=confidence,
        complexity=complexity,
        alpha=alpha,
        top_node_count=top_node_count,
        seed_coverage=seed_coverage,
        iterations=iterations,
    )
    log.debug(
        f"Graph features: seeds={len(seeds)} iterations={iterations} "
        f"alpha={alpha:.3f} confidence={confidence:.3f}"
    )
    return features


def graph_token_similarity(doc_tokens: list[str], token_boost: dict[str, float]) -> float:
    """Sum of boosts over unique doc tokens, length-normalized."""
    if not doc_tokens or not token_boost:
        return 0.0

    hit_score = sum(token_boost.get(token, 0.0) for token in dict.fromkeys(doc_tokens))
    return hit_score / math.sqrt(len(doc_tokens) * max(len(token_boost), 1))
