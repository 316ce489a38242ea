"""Configuration for graph-fused passage retrieval."""

from dataclasses import dataclass, field, replace
import os
from typing import Mapping

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"


@dataclass(frozen=True)
class GraphPolicy:
    """Constants for seeding, walking and trusting the relevance graph."""

    # Restart probability of the walk, [0.5, 0.99].
    ppr_alpha: float = 0.85
    # Nodes whose tokens feed the boost map, [1, 40].
    top_nodes: int = 12
    max_iterations: int = 30
    tolerance: float = 1e-6

    # Simple queries shrink alpha by up to alpha_span, never below alpha_floor.
    alpha_span: float = 0.18
    alpha_floor: float = 0.6
    top_nodes_floor: int = 4
    top_nodes_base_share: float = 0.45

    min_edge_weight: float = 0.01
    max_edge_weight: float = 10.0

    hint_weight: float = 0.5
    length_weight: float = 0.25
    bigram_weight: float = 0.25
    hint_cap: int = 4
    length_norm: float = 60.0
    bigram_norm: float = 24.0

    coverage_confidence_weight: float = 0.45
    concentration_confidence_weight: float = 0.35
    complexity_confidence_weight: float = 0.2
    concentration_head: int = 3


@dataclass(frozen=True)
class FusionPolicy:
    """Constants blending lexical, embedding and graph channels.

    The weight formulas are empirically tuned; treat them as a tuning surface.
    """

    # Graph channel is dropped below this confidence, [0, 1].
    graph_min_confidence: float = 0.18
    graph_min_weight: float = 0.04
    # Upper bound of the graph weight, [0, 0.5].
    graph_max_weight: float = 0.2
    graph_offset_with_embedding: float = 0.02
    graph_slope_with_embedding: float = 0.2
    graph_offset_lexical_only: float = 0.06
    graph_slope_lexical_only: float = 0.24

    embedding_weight_max: float = 0.76
    embedding_weight_min: float = 0.58
    embedding_graph_tradeoff: float = 0.85
    lexical_weight_min: float = 0.16
    lexical_weight_max: float = 0.34

    # Document relevance gate applied to the raw graph score.
    gate_lexical: float = 2.4
    gate_embedding: float = 0.9
    gate_bias: float = 0.08

    rrf_k: int = 60
    rrf_missing_rank: int = 999
    # Multiplier on graph confidence for the graph RRF list, [0, 2].
    rrf_graph_weight: float = 1.0

    combined_share: float = 0.82
    rrf_share: float = 0.18


@dataclass(frozen=True)
class RetrievalConfig:
    """Static settings consumed by retrieval, ingestion and evaluation."""

    top_k: int = 6
    max_top_k: int = 20
    candidate_limit: int = 300
    query_token_limit: int = 8

    chunk_size: int = 600
    chunk_overlap: int = 120
    keyword_limit: int = 120
    embedding_batch_size: int = 32

    graph_path: str = "data/graph/tcm_graph_lite.json"
    db_path: str = "data/passages.db"
    ingest_dir: str = "data/knowledge"
    eval_set_path: str = "data/eval/tcm_eval_120.jsonl"
    eval_report_dir: str = "reports"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    # Seconds to wait for the query embedding; 0 waits indefinitely.
    embed_timeout_sec: float = 10.0

    graph: GraphPolicy = field(default_factory=GraphPolicy)
    fusion: FusionPolicy = field(default_factory=FusionPolicy)

    def bound_top_k(self, top_k: int | None) -> int:
        """Resolve caller top-K against the default and the hard cap."""
        if top_k is None:
            top_k = self.top_k
        if top_k < 0:
            return 0
        return min(top_k, self.max_top_k)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RetrievalConfig":
        """Build config from RAG_* environment variables.

        Raises:
            ValueError: if a variable is not parseable or out of range
        """
        env = os.environ if environ is None else environ
        base = cls()

        graph = replace(
            base.graph,
            ppr_alpha=_float_env(
                env, "RAG_GRAPH_PPR_ALPHA", base.graph.ppr_alpha, 0.5, 0.99
            ),
            top_nodes=_int_env(env, "RAG_GRAPH_TOP_NODES", base.graph.top_nodes, 1, 40),
        )
        fusion = replace(
            base.fusion,
            graph_min_confidence=_float_env(
                env,
                "RAG_GRAPH_MIN_CONFIDENCE",
                base.fusion.graph_min_confidence,
                0.0,
                1.0,
            ),
            graph_max_weight=_float_env(
                env, "RAG_GRAPH_MAX_WEIGHT", base.fusion.graph_max_weight, 0.0, 0.5
            ),
            rrf_graph_weight=_float_env(
                env, "RAG_RRF_GRAPH_WEIGHT", base.fusion.rrf_graph_weight, 0.0, 2.0
            ),
        )

        max_top_k = _int_env(env, "RAG_TOP_K_MAX", base.max_top_k, 1, 20)
        return cls(
            top_k=_int_env(env, "RAG_TOP_K", base.top_k, 1, max_top_k),
            max_top_k=max_top_k,
            candidate_limit=_int_env(
                env, "RAG_CANDIDATE_LIMIT", base.candidate_limit, 1, None
            ),
            chunk_size=_int_env(env, "RAG_CHUNK_SIZE", base.chunk_size, 1, None),
            chunk_overlap=_int_env(env, "RAG_CHUNK_OVERLAP", base.chunk_overlap, 0, None),
            graph_path=env.get("RAG_GRAPH_PATH", base.graph_path),
            db_path=env.get("RAG_DB_PATH", base.db_path),
            ingest_dir=env.get("RAG_INGEST_DIR", base.ingest_dir),
            eval_set_path=env.get("RAG_EVAL_SET_PATH", base.eval_set_path),
            eval_report_dir=env.get("RAG_EVAL_REPORT_DIR", base.eval_report_dir),
            embedding_model=env.get("EMBEDDING_MODEL", base.embedding_model),
            embed_timeout_sec=_float_env(
                env, "RAG_EMBED_TIMEOUT_SEC", base.embed_timeout_sec, 0.0, None
            ),
            graph=graph,
            fusion=fusion,
        )


def _int_env(
    env: Mapping[str, str],
    name: str,
    default: int,
    minimum: int,
    maximum: int | None,
) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    _check_range(name, value, minimum, maximum)
    return value


def _float_env(
    env: Mapping[str, str],
    name: str,
    default: float,
    minimum: float,
    maximum: float | None,
) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    _check_range(name, value, minimum, maximum)
    return value


def _check_range(name: str, value: float, minimum: float, maximum: float | None) -> None:
    if value < minimum or (maximum is not None and value > maximum):
        upper = "inf" if maximum is None else maximum
        raise ValueError(f"{name}={value} outside [{minimum}, {upper}]")


DEFAULT_RETRIEVAL_CONFIG = RetrievalConfig()
