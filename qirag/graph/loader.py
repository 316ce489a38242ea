"""Relevance graph loading, indexing and per-path caching."""

from collections import Counter
from dataclasses import dataclass, field
from functools import lru_cache
import json
import logging
from pathlib import Path
import threading
from typing import Any

import networkx as nx

from ..retrieval.config import GraphPolicy
from ..retrieval.tokenize import tokenize_for_search

log = logging.getLogger(__name__)


@dataclass
class RelevanceGraph:
    """Weighted concept graph plus its token lookup tables."""

    graph: nx.MultiDiGraph
    token_index: dict[str, list[str]] = field(default_factory=dict)
    document_frequency: dict[str, int] = field(default_factory=dict)

    @property
    def node_count(self) -> int:
        return self.graph.number_of_nodes()

    def label(self, node_id: str) -> str:
        return self.graph.nodes[node_id].get("label", node_id)

    def node_tokens(self, node_id: str) -> list[str]:
        """Search tokens of the node's label and aliases."""
        return self.graph.nodes[node_id].get("tokens", [])


def _string(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _edge_weight(raw: Any, policy: GraphPolicy) -> float:
    if raw is None:
        weight = 1.0
    else:
        try:
            weight = float(raw)
        except (TypeError, ValueError):
            weight = 1.0
    return max(policy.min_edge_weight, min(policy.max_edge_weight, weight))


def load_graph_document(path: str | Path) -> dict[str, Any]:
    """Read a graph JSON document.

    Raises:
        OSError: file cannot be read
        ValueError: invalid JSON or nodes/edges arrays missing
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if (
        not isinstance(data, dict)
        or not isinstance(data.get("nodes"), list)
        or not isinstance(data.get("edges"), list)
    ):
        raise ValueError("Invalid graph document: nodes/edges missing")
    return data


def build_relevance_graph(
    doc: dict[str, Any],
    policy: GraphPolicy = GraphPolicy(),
) -> RelevanceGraph:
    """Build adjacency and token indexes from a parsed graph document.

    Edges pointing at unknown nodes are dropped. Undirected edges are stored
    as two directed edges with the same weight.
    """
    graph = nx.MultiDiGraph()
    token_index: dict[str, list[str]] = {}
    document_frequency: Counter[str] = Counter()

    for raw in doc.get("nodes", []):
        if not isinstance(raw, dict):
            continue
        node_id = _string(raw.get("id"))
        label = _string(raw.get("label"))
        if not node_id or not label:
            continue
        if node_id in graph:
            log.warning(f"Duplicate graph node id ignored: {node_id}")
            continue

        aliases = _string_list(raw.get("aliases"))
        tokens = tokenize_for_search(" ".join([label, *aliases]))
        graph.add_node(
            node_id,
            label=label,
            type=_string(raw.get("type")) or "Concept",
            aliases=aliases,
            source_hints=_string_list(raw.get("sourceHints")),
            tokens=tokens,
        )

        for token in tokens:
            token_index.setdefault(token, []).append(node_id)
        document_frequency.update(tokens)

    dropped = 0
    for raw in doc.get("edges", []):
        if not isinstance(raw, dict):
            dropped += 1
            continue
        source = _string(raw.get("from"))
        target = _string(raw.get("to"))
        if source not in graph or target not in graph:
            dropped += 1
            continue

        weight = _edge_weight(raw.get("weight"), policy)
        relation = _string(raw.get("relation")) or "related_to"
        graph.add_edge(source, target, relation=relation, weight=weight)
        if raw.get("undirected"):
            graph.add_edge(target, source, relation=relation, weight=weight)

    if dropped:
        log.debug(f"Dropped {dropped} graph edges with unknown endpoints")

    return RelevanceGraph(
        graph=graph,
        token_index=token_index,
        document_frequency=dict(document_frequency),
    )


class GraphRepository:
    """Load-once cache of relevance graphs keyed by resolved file path.

    Failed loads are not cached, so a fixed file is picked up on the next
    call. Successful loads are never invalidated.
    """

    def __init__(self, policy: GraphPolicy = GraphPolicy()):
        self.policy = policy
        self._graphs: dict[Path, RelevanceGraph] = {}
        self._lock = threading.Lock()

    def get_graph(self, path: str | Path) -> RelevanceGraph | None:
        """Return the graph for path, or None if it cannot be loaded."""
        resolved = Path(path).expanduser().resolve()
        cached = self._graphs.get(resolved)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._graphs.get(resolved)
            if cached is not None:
                return cached

            try:
                doc = load_graph_document(resolved)
                graph = build_relevance_graph(doc, self.policy)
            except (OSError, ValueError, TypeError) as e:
                log.warning(f"Relevance graph load skipped ({resolved}): {e}")
                return None

            log.info(
                f"Loaded relevance graph {resolved}: "
                f"{graph.node_count} nodes, {graph.graph.number_of_edges()} edges"
            )
            self._graphs[resolved] = graph
            return graph

    def clear(self) -> None:
        with self._lock:
            self._graphs.clear()


@lru_cache(maxsize=1)
def shared_graph_repository() -> GraphRepository:
    """Process-wide repository for callers that do not inject one."""
    return GraphRepository()
