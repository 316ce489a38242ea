"""Multi-signal scoring and rank fusion for retrieval candidates."""

from ..graph.ppr import graph_token_similarity
from .config import DEFAULT_RETRIEVAL_CONFIG, FusionPolicy
from .tokenize import cosine_similarity, lexical_similarity, tokenize_for_search
from .types import ChannelWeights, GraphFeatures, Passage, RankedPassage


def clamp_01(value: float | int | None) -> float:
    """Clamp a numeric score into [0, 1]."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score or score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def channel_weights(
    confidence: float,
    embeddings_available: bool,
    policy: FusionPolicy = DEFAULT_RETRIEVAL_CONFIG.fusion,
) -> ChannelWeights:
    """Split blend weight between embedding, lexical and graph channels.

    The graph share grows with graph confidence and is zero below the
    confidence threshold.
    """
    if embeddings_available:
        offset = policy.graph_offset_with_embedding
        slope = policy.graph_slope_with_embedding
    else:
        offset = policy.graph_offset_lexical_only
        slope = policy.graph_slope_lexical_only

    if confidence < policy.graph_min_confidence:
        graph = 0.0
    else:
        graph = _clamp(
            offset + confidence * slope,
            policy.graph_min_weight,
            policy.graph_max_weight,
        )

    if not embeddings_available:
        return ChannelWeights(embedding=0.0, lexical=1.0 - graph, graph=graph)

    embedding = _clamp(
        policy.embedding_weight_max - graph * policy.embedding_graph_tradeoff,
        policy.embedding_weight_min,
        policy.embedding_weight_max,
    )
    lexical = _clamp(
        1.0 - embedding - graph,
        policy.lexical_weight_min,
        policy.lexical_weight_max,
    )
    return ChannelWeights(embedding=embedding, lexical=lexical, graph=graph)


def document_gate(
    lexical_score: float,
    embedding_score: float,
    policy: FusionPolicy = DEFAULT_RETRIEVAL_CONFIG.fusion,
) -> float:
    """Damp graph-only matches that lack lexical or semantic support."""
    return _clamp(
        lexical_score * policy.gate_lexical
        + embedding_score * policy.gate_embedding
        + policy.gate_bias,
        0.0,
        1.0,
    )


def rank_positions(scores: list[float | None]) -> list[int | None]:
    """1-based descending ranks; ties keep input order, None stays unranked."""
    order = sorted(
        (index for index, score in enumerate(scores) if score is not None),
        key=lambda index: -scores[index],
    )
    ranks: list[int | None] = [None] * len(scores)
    for position, index in enumerate(order, 1):
        ranks[index] = position
    return ranks


def reciprocal_rank_fusion(
    rank_lists: list[tuple[list[int | None], float]],
    size: int,
    policy: FusionPolicy = DEFAULT_RETRIEVAL_CONFIG.fusion,
) -> list[float]:
    """Weighted sum of 1/(k + rank) per item across rank lists."""
    fused = [0.0] * size
    for ranks, weight in rank_lists:
        if weight <= 0:
            continue
        for index, rank in enumerate(ranks):
            effective = policy.rrf_missing_rank if rank is None else rank
            fused[index] += weight / (policy.rrf_k + effective)
    return fused


def _passage_sort_key(passage: RankedPassage) -> float:
    return -passage.final_score


def sort_ranked_passages(passages: list[RankedPassage]) -> list[RankedPassage]:
    """Sort by final score; exact ties keep candidate fetch order."""
    return sorted(passages, key=_passage_sort_key)


def score_candidates(
    query: str,
    candidates: list[Passage],
    *,
    query_embedding: list[float] | None,
    graph_features: GraphFeatures,
    policy: FusionPolicy = DEFAULT_RETRIEVAL_CONFIG.fusion,
) -> list[RankedPassage]:
    """Score every candidate on all channels and fuse into a final ranking.

    An empty or missing query embedding means vectors are unavailable: all
    embedding scores are 0 and the embedding rank list is left out of RRF.
    """
    if not candidates:
        return []

    query_tokens = tokenize_for_search(query)
    vectors_available = bool(query_embedding)
    weights = channel_weights(graph_features.confidence, vectors_available, policy)

    lexical_scores: list[float] = []
    embedding_scores: list[float] = []
    graph_scores: list[float] = []
    for candidate in candidates:
        doc_tokens = list(candidate.keywords) or tokenize_for_search(candidate.text)
        lexical = clamp_01(lexical_similarity(query_tokens, doc_tokens))
        embedding = 0.0
        if vectors_available and candidate.embedding:
            embedding = clamp_01(
                cosine_similarity(query_embedding, list(candidate.embedding))
            )
        raw_graph = clamp_01(
            graph_token_similarity(doc_tokens, graph_features.token_boost)
        )

        lexical_scores.append(lexical)
        embedding_scores.append(embedding)
        graph_scores.append(raw_graph * document_gate(lexical, embedding, policy))

    rank_lists: list[tuple[list[int | None], float]] = [
        (rank_positions(lexical_scores), 1.0),
        (
            rank_positions(graph_scores),
            _clamp(graph_features.confidence * policy.rrf_graph_weight, 0.0, 1.0),
        ),
    ]
    if vectors_available:
        # Passages stored without a vector are absent from the embedding list.
        rank_lists.insert(
            0,
            (
                rank_positions(
                    [
                        score if candidate.embedding else None
                        for candidate, score in zip(candidates, embedding_scores)
                    ]
                ),
                1.0,
            ),
        )
    rrf_scores = reciprocal_rank_fusion(rank_lists, len(candidates), policy)

    ranked: list[RankedPassage] = []
    for index, candidate in enumerate(candidates):
        combined = (
            embedding_scores[index] * weights.embedding
            + lexical_scores[index] * weights.lexical
            + graph_scores[index] * weights.graph
        )
        rrf = rrf_scores[index]
        ranked.append(
            RankedPassage(
                passage_id=candidate.passage_id,
                source_id=candidate.source_id,
                source_title=candidate.source_title,
                source_path=candidate.source_path,
                section_title=candidate.section_title,
                chunk_index=candidate.chunk_index,
                text=candidate.text,
                char_count=candidate.char_count,
                keywords=tuple(candidate.keywords),
                lexical_score=lexical_scores[index],
                embedding_score=embedding_scores[index],
                graph_score=graph_scores[index],
                rrf_score=rrf,
                final_score=combined * policy.combined_share + rrf * policy.rrf_share,
            )
        )

    return sort_ranked_passages(ranked)
