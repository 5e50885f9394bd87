import random

import networkx as nx
import numpy as np
import pytest

from tabpfn_lite.graph import (
    METADATA_KEY,
    NodeMetadata,
    add_direct_connections,
    feature_target_subgraph,
    isolated_rng,
    node_metadata,
    transitive_closure,
)


def _chain(nodes):
    graph = nx.DiGraph()
    graph.add_nodes_from(nodes)
    graph.add_edges_from(zip(nodes, nodes[1:]))
    return graph


def test_default_metadata_is_empty():
    meta = NodeMetadata()
    assert meta.is_feature is False
    assert meta.is_target is False
    assert meta.feature_idxs == []
    assert meta.target_idxs == []
    assert meta.positional_encoding is None


def test_with_feature_indices_sets_flag():
    meta = NodeMetadata().with_feature_indices([2, 5])
    assert meta.is_feature is True
    assert meta.feature_idxs == [2, 5]
    assert meta.is_target is False


def test_with_empty_indices_clears_flag():
    meta = NodeMetadata().with_feature_indices([1]).with_feature_indices([])
    assert meta.is_feature is False
    assert meta.feature_idxs == []


def test_with_target_indices_keeps_features():
    meta = NodeMetadata().with_feature_indices([3]).with_target_indices([0])
    assert meta.is_target is True
    assert meta.target_idxs == [0]
    assert meta.is_feature is True
    assert meta.feature_idxs == [3]


def test_with_indices_does_not_modify_original():
    original = NodeMetadata()
    original.with_feature_indices([4])
    assert original.feature_idxs == []
    assert original.is_feature is False


def test_add_direct_connections_on_chain():
    graph = _chain(["a", "b", "c"])
    assert add_direct_connections(graph) is True
    assert graph.has_edge("a", "c")
    assert set(graph.edges) == {("a", "b"), ("b", "c"), ("a", "c")}


def test_add_direct_connections_uses_snapshot():
    graph = _chain(["a", "b", "c", "d"])
    add_direct_connections(graph)
    # One pass only looks two steps ahead.
    assert not graph.has_edge("a", "d")
    assert graph.has_edge("a", "c") and graph.has_edge("b", "d")


def test_add_direct_connections_nothing_to_add():
    graph = nx.DiGraph([("a", "b"), ("a", "c")])
    before = set(graph.edges)
    assert add_direct_connections(graph) is False
    assert set(graph.edges) == before


def test_add_direct_connections_cycle_gives_self_loops():
    graph = nx.DiGraph([("a", "b"), ("b", "a")])
    assert add_direct_connections(graph) is True
    assert graph.has_edge("a", "a")
    assert graph.has_edge("b", "b")


def test_transitive_closure_matches_reachability():
    nodes = ["a", "b", "c", "d", "e"]
    graph = _chain(nodes)
    closed = transitive_closure(graph)
    for i, source in enumerate(nodes):
        for target in nodes[i + 1:]:
            assert closed.has_edge(source, target)
    for source, target in closed.edges:
        assert nodes.index(source) < nodes.index(target)
    assert add_direct_connections(closed.copy()) is False


def test_transitive_closure_leaves_input_untouched():
    graph = _chain(["a", "b", "c"])
    transitive_closure(graph)
    assert set(graph.edges) == {("a", "b"), ("b", "c")}


def test_feature_target_subgraph_filters_nodes_and_edges():
    graph = nx.DiGraph()
    graph.add_node("x0", **{METADATA_KEY: NodeMetadata().with_feature_indices([0])})
    graph.add_node("hidden", **{METADATA_KEY: NodeMetadata()})
    graph.add_node("plain")
    graph.add_node("x1", **{METADATA_KEY: NodeMetadata().with_feature_indices([1])})
    graph.add_node("y", **{METADATA_KEY: NodeMetadata().with_target_indices([0])})
    graph.add_edges_from(
        [("x0", "hidden"), ("hidden", "y"), ("x0", "x1"), ("x1", "y"), ("plain", "y")]
    )
    sub = feature_target_subgraph(graph)
    assert list(sub.nodes) == ["x0", "x1", "y"]
    assert set(sub.edges) == {("x0", "x1"), ("x1", "y")}


def test_feature_target_subgraph_after_closure_keeps_indirect_paths():
    graph = nx.DiGraph()
    graph.add_node("x", **{METADATA_KEY: NodeMetadata().with_feature_indices([0])})
    graph.add_node("h", **{METADATA_KEY: NodeMetadata()})
    graph.add_node("y", **{METADATA_KEY: NodeMetadata().with_target_indices([0])})
    graph.add_edges_from([("x", "h"), ("h", "y")])
    sub = feature_target_subgraph(transitive_closure(graph))
    assert set(sub.edges) == {("x", "y")}


def test_feature_target_subgraph_copies_metadata():
    graph = nx.DiGraph()
    graph.add_node("x", **{METADATA_KEY: NodeMetadata().with_feature_indices([7])})
    sub = feature_target_subgraph(graph)
    node_metadata(sub, "x").feature_idxs.append(8)
    assert node_metadata(graph, "x").feature_idxs == [7]


def test_node_metadata_defaults_when_missing():
    graph = nx.DiGraph()
    graph.add_node("n")
    assert node_metadata(graph, "n") == NodeMetadata()


def test_isolated_rng_is_reproducible():
    with isolated_rng(42) as first:
        a = first.normal(size=5)
    with isolated_rng(42) as second:
        b = second.normal(size=5)
    assert np.array_equal(a, b)


def test_isolated_rng_restores_global_state():
    np.random.seed(123)
    random.seed(123)
    expected_np = np.random.random(3)
    expected_py = [random.random() for _ in range(3)]

    np.random.seed(123)
    random.seed(123)
    with isolated_rng(7) as rng:
        drawn = rng.normal(size=3)
        np.random.random(10)
        random.random()
    assert np.array_equal(np.random.random(3), expected_np)
    assert [random.random() for _ in range(3)] == expected_py
    with isolated_rng(7) as again:
        assert np.array_equal(again.normal(size=3), drawn)


def test_isolated_rng_seeds_global_state_inside():
    with isolated_rng(5) as rng_first:
        first = np.random.random(2)
        first_local = rng_first.random(2)
    with isolated_rng(5) as rng_second:
        second = np.random.random(2)
        second_local = rng_second.random(2)
    assert np.array_equal(first, second)
    assert np.array_equal(first_local, second_local)


def test_isolated_rng_restores_on_error():
    np.random.seed(9)
    expected = np.random.random(2)
    np.random.seed(9)
    drawn = []
    with pytest.raises(RuntimeError):
        with isolated_rng(1) as rng:
            drawn.append(rng.random(2))
            np.random.random(4)
            raise RuntimeError("boom")
    assert np.array_equal(np.random.random(2), expected)
    with isolated_rng(1) as again:
        assert np.array_equal(again.random(2), drawn[0])