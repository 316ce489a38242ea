"""Graph-fused retrieval pipeline orchestration."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from functools import lru_cache
import logging
from typing import Protocol

from ..graph.loader import GraphRepository, shared_graph_repository
from ..graph.ppr import features_for_graph
from .candidates import CandidateStorage, load_candidates
from .config import DEFAULT_RETRIEVAL_CONFIG, RetrievalConfig
from .ranker import channel_weights, score_candidates
from .types import GraphFeatures, RankedPassage, RetrievalOutcome

log = logging.getLogger(__name__)


class QueryEmbedder(Protocol):
    def embed(self, texts: list[str]) -> list[list[float]]: ...


def _default_storage(config: RetrievalConfig) -> CandidateStorage:
    from ..vector.store import PassageStore

    return PassageStore(config.db_path)


@lru_cache(maxsize=4)
def _model_embedder(model: str) -> QueryEmbedder:
    from ..vector.embedder import Embedder

    return Embedder(model)


def _default_embedder(config: RetrievalConfig) -> QueryEmbedder:
    """Process-wide embedder per model name.

    The model loads once, on first use, outside the query embedding timeout.
    """
    return _model_embedder(config.embedding_model)


def embed_query(embedder: QueryEmbedder, text: str, timeout: float = 0.0) -> list[float]:
    """Embed one query, optionally bounded by a timeout in seconds.

    Raises:
        TimeoutError: the provider did not answer in time
    """
    if timeout > 0:
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(embedder.embed, [text])
            vectors = future.result(timeout=timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
    else:
        vectors = embedder.embed([text])

    if not vectors:
        return []
    return [float(value) for value in vectors[0]]


def _empty_outcome(warnings: list[str] | None = None) -> RetrievalOutcome:
    return RetrievalOutcome(
        results=tuple(),
        graph_features=GraphFeatures(),
        weights=None,
        candidate_count=0,
        lexical_hits=0,
        embedding_available=False,
        warnings=tuple(warnings or []),
    )


def run_retrieval(
    query: str,
    top_k: int | None = None,
    context: str | None = None,
    *,
    storage: CandidateStorage | None = None,
    embedder: QueryEmbedder | None = None,
    graph_repository: GraphRepository | None = None,
    config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
) -> RetrievalOutcome:
    """Retrieve and rank passages, reporting degraded channels.

    Embedding and graph failures degrade the ranking; storage failures
    propagate.
    """
    query_text = (query or "").strip()
    bounded_top_k = config.bound_top_k(top_k)
    if not query_text or bounded_top_k == 0:
        return _empty_outcome()

    db = storage or _default_storage(config)
    candidates, lexical_hits = load_candidates(
        db,
        query_text,
        config.candidate_limit,
        token_limit=config.query_token_limit,
    )
    if not candidates:
        return _empty_outcome()

    warnings: list[str] = []
    error_stage: str | None = None

    query_embedding: list[float] = []
    try:
        emb = embedder or _default_embedder(config)
        query_embedding = embed_query(emb, query_text, config.embed_timeout_sec)
    except Exception as e:
        log.warning(f"Query embedding failed, ranking without vectors: {e!r}")
        warnings.append("embedding_failed")
        error_stage = error_stage or "embedding"

    features = GraphFeatures()
    repo = graph_repository or shared_graph_repository()
    graph = repo.get_graph(config.graph_path)
    if graph is None:
        warnings.append("graph_unavailable")
    else:
        try:
            features = features_for_graph(graph, query_text, context, config.graph)
        except Exception as e:
            log.warning(f"Graph features failed, ranking without graph: {e!r}")
            warnings.append("graph_failed")
            error_stage = error_stage or "graph"

    ranked = score_candidates(
        query_text,
        candidates,
        query_embedding=query_embedding,
        graph_features=features,
        policy=config.fusion,
    )

    return RetrievalOutcome(
        results=tuple(ranked[:bounded_top_k]),
        graph_features=features,
        weights=channel_weights(
            features.confidence, bool(query_embedding), config.fusion
        ),
        candidate_count=len(candidates),
        lexical_hits=lexical_hits,
        embedding_available=bool(query_embedding),
        warnings=tuple(warnings),
        error_stage=error_stage,
    )


def retrieve(
    query: str,
    top_k: int | None = None,
    context: str | None = None,
    *,
    storage: CandidateStorage | None = None,
    embedder: QueryEmbedder | None = None,
    graph_repository: GraphRepository | None = None,
    config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
) -> list[RankedPassage]:
    """Return the top-K passages for query, best first."""
    return list(
        run_retrieval(
            query,
            top_k,
            context,
            storage=storage,
            embedder=embedder,
            graph_repository=graph_repository,
            config=config,
        ).results
    )


def retrieve_structured(
    query: str,
    top_k: int | None = None,
    context: str | None = None,
    *,
    storage: CandidateStorage | None = None,
    embedder: QueryEmbedder | None = None,
    graph_repository: GraphRepository | None = None,
    config: RetrievalConfig = DEFAULT_RETRIEVAL_CONFIG,
) -> dict:
    """Run retrieval and return a JSON-ready payload with channel diagnostics."""
    outcome = run_retrieval(
        query,
        top_k,
        context,
        storage=storage,
        embedder=embedder,
        graph_repository=graph_repository,
        config=config,
    )
    features = outcome.graph_features
    weights = outcome.weights

    return {
        "success": True,
        "query": (query or "").strip(),
        "top_k": config.bound_top_k(top_k),
        "retrieval": {
            "candidate_count": outcome.candidate_count,
            "lexical_hits": outcome.lexical_hits,
            "embedding_available": outcome.embedding_available,
            "graph_confidence": features.confidence,
            "graph_weight": weights.graph if weights else 0.0,
            "graph_complexity": features.complexity,
            "graph_alpha": features.alpha,
            "graph_top_nodes": features.top_node_count,
            "weights": asdict(weights) if weights else None,
            "error_stage": outcome.error_stage,
        },
        "warnings": list(outcome.warnings),
        "results": [asdict(passage) for passage in outcome.results],
        "graph_top_nodes": [asdict(node) for node in features.top_nodes],
    }
