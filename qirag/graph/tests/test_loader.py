from concurrent.futures import ThreadPoolExecutor
import json

import pytest

from qirag.graph.loader import (
    GraphRepository,
    build_relevance_graph,
    load_graph_document,
)


def _doc() -> dict:
    return {
        "nodes": [
            {"id": "spleen", "label": "脾虚", "type": "Pattern", "aliases": ["脾气虚"]},
            {"id": "damp", "label": "湿盛", "type": "Pattern"},
            {"id": "yam", "label": "山药", "type": "Food", "sourceHints": ["食疗"]},
            {"id": "spleen", "label": "重复", "type": "Pattern"},
            {"id": "", "label": "无编号"},
            {"id": "no-label"},
        ],
        "edges": [
            {"from": "spleen", "to": "damp", "relation": "leads_to", "weight": 50},
            {"from": "yam", "to": "spleen", "relation": "treats", "undirected": True},
            {"from": "yam", "to": "ghost", "relation": "treats"},
            {"from": "damp", "to": "yam", "relation": "related_to", "weight": 0},
        ],
    }


def test_nodes_without_id_or_label_and_duplicates_are_skipped():
    graph = build_relevance_graph(_doc())

    assert list(graph.graph.nodes) == ["spleen", "damp", "yam"]
    assert graph.label("spleen") == "脾虚"
    assert graph.graph.nodes["yam"]["source_hints"] == ["食疗"]


def test_edge_weights_are_clamped_and_defaulted():
    graph = build_relevance_graph(_doc())

    weights = {(u, v): w for u, v, w in graph.graph.edges(data="weight")}
    assert weights[("spleen", "damp")] == 10.0
    assert weights[("damp", "yam")] == 0.01
    assert weights[("yam", "spleen")] == 1.0


def test_undirected_edges_are_added_both_ways_and_unknown_endpoints_dropped():
    graph = build_relevance_graph(_doc())

    assert graph.graph.has_edge("yam", "spleen")
    assert graph.graph.has_edge("spleen", "yam")
    assert graph.graph.number_of_edges() == 4


def test_token_index_and_document_frequency():
    graph = build_relevance_graph(_doc())

    assert graph.token_index["脾虚"] == ["spleen"]
    assert graph.token_index["山药"] == ["yam"]
    assert graph.document_frequency["脾虚"] == 1
    assert graph.node_tokens("damp") == ["湿盛"]


def test_load_graph_document_rejects_missing_arrays(tmp_path):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps({"nodes": []}), encoding="utf-8")

    with pytest.raises(ValueError, match="nodes/edges"):
        load_graph_document(path)


def test_repository_caches_by_resolved_path(tmp_path):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(_doc(), ensure_ascii=False), encoding="utf-8")
    repo = GraphRepository()

    first = repo.get_graph(path)
    second = repo.get_graph(tmp_path / "." / "graph.json")

    assert first is not None
    assert first is second


def test_repository_does_not_cache_failed_loads(tmp_path):
    path = tmp_path / "graph.json"
    repo = GraphRepository()

    assert repo.get_graph(path) is None

    path.write_text(json.dumps(_doc(), ensure_ascii=False), encoding="utf-8")
    graph = repo.get_graph(path)
    assert graph is not None
    assert graph.node_count == 3


def test_repository_malformed_json_yields_none(tmp_path):
    path = tmp_path / "graph.json"
    path.write_text("{not json", encoding="utf-8")

    assert GraphRepository().get_graph(path) is None


def test_repository_clear_forces_reload(tmp_path):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(_doc(), ensure_ascii=False), encoding="utf-8")
    repo = GraphRepository()

    first = repo.get_graph(path)
    repo.clear()

    assert repo.get_graph(path) is not first


def test_concurrent_first_loads_share_one_graph(tmp_path, monkeypatch):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(_doc(), ensure_ascii=False), encoding="utf-8")
    loads = []

    def counting_load(p):
        loads.append(p)
        return load_graph_document(p)

    monkeypatch.setattr("qirag.graph.loader.load_graph_document", counting_load)
    repo = GraphRepository()

    with ThreadPoolExecutor(max_workers=16) as pool:
        graphs = list(pool.map(lambda _: repo.get_graph(path), range(64)))

    assert len(loads) == 1
    assert graphs[0] is not None
    assert all(graph is graphs[0] for graph in graphs)
