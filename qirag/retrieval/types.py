"""Typed contracts for graph-fused passage retrieval."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Passage:
    passage_id: str
    source_id: str
    source_title: str
    chunk_index: int
    text: str
    char_count: int
    embedding: tuple[float, ...] = ()
    keywords: tuple[str, ...] = ()
    source_path: str | None = None
    section_title: str | None = None


@dataclass(frozen=True)
class RankedPassage:
    """Passage fields (minus the raw vector) plus per-channel scores."""

    passage_id: str
    source_id: str
    source_title: str
    source_path: str | None
    section_title: str | None
    chunk_index: int
    text: str
    char_count: int
    keywords: tuple[str, ...]
    lexical_score: float
    embedding_score: float
    graph_score: float
    rrf_score: float
    final_score: float


@dataclass(frozen=True)
class TopNode:
    node_id: str
    label: str
    score: float


@dataclass(frozen=True)
class GraphFeatures:
    token_boost: dict[str, float] = field(default_factory=dict)
    top_nodes: tuple[TopNode, ...] = ()
    confidence: float = 0.0
    complexity: float = 0.0
    alpha: float = 0.0
    top_node_count: int = 0
    seed_coverage: float = 0.0
    iterations: int = 0


@dataclass(frozen=True)
class ChannelWeights:
    embedding: float
    lexical: float
    graph: float


@dataclass(frozen=True)
class RetrievalOutcome:
    results: tuple[RankedPassage, ...]
    graph_features: GraphFeatures
    weights: ChannelWeights | None
    candidate_count: int
    lexical_hits: int
    embedding_available: bool
    warnings: tuple[str, ...] = ()
    error_stage: str | None = None


@dataclass(frozen=True)
class Citation:
    """Evidence reference handed back alongside a generated answer."""

    label: str
    passage_id: str
    source_id: str
    source_title: str
    source_path: str | None
    section_title: str | None
    chunk_index: int
    excerpt: str
    score: float
