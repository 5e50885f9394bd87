"""Data-DAG helpers: node metadata, transitive closure and feature/target subgraphs.

Graphs are :class:`networkx.DiGraph` instances whose nodes carry a
:class:`NodeMetadata` under the ``"metadata"`` attribute. Nodes without that
attribute are treated as neither feature nor target.
"""

from __future__ import annotations

import contextlib
import random
from dataclasses import dataclass, field, replace
from typing import Any, Hashable, Iterator

import networkx as nx
import numpy as np

METADATA_KEY = "metadata"


@dataclass
class NodeMetadata:
    """What a node of a data DAG stands for."""

    is_feature: bool = False
    is_target: bool = False
    feature_idxs: list[int] = field(default_factory=list)
    target_idxs: list[int] = field(default_factory=list)
    positional_encoding: np.ndarray | None = None

    def with_feature_indices(self, indices: Any) -> NodeMetadata:
        """Return a copy mapped to the given feature columns."""
        idxs = [int(i) for i in indices]
        return replace(
            self,
            is_feature=bool(idxs),
            feature_idxs=idxs,
            target_idxs=list(self.target_idxs),
        )

    def with_target_indices(self, indices: Any) -> NodeMetadata:
        """Return a copy mapped to the given target columns."""
        idxs = [int(i) for i in indices]
        return replace(
            self,
            is_target=bool(idxs),
            target_idxs=idxs,
            feature_idxs=list(self.feature_idxs),
        )

    def copy(self) -> NodeMetadata:
        """Return an independent copy."""
        pe = self.positional_encoding
        return replace(
            self,
            feature_idxs=list(self.feature_idxs),
            target_idxs=list(self.target_idxs),
            positional_encoding=None if pe is None else np.array(pe, copy=True),
        )


def node_metadata(graph: nx.DiGraph, node: Hashable) -> NodeMetadata:
    """Return the metadata of ``node``, or empty metadata if it has none."""
    meta = graph.nodes[node].get(METADATA_KEY)
    return meta if isinstance(meta, NodeMetadata) else NodeMetadata()


@contextlib.contextmanager
def isolated_rng(seed: int) -> Iterator[np.random.Generator]:
    """Yield a generator seeded with ``seed``; the global random states are restored afterwards.

    Inside the block the global numpy and ``random`` states are also seeded
    with ``seed``, so code drawing from them is reproducible too.
    """
    numpy_state = np.random.get_state()
    python_state = random.getstate()
    np.random.seed(seed)
    random.seed(seed)
    try:
        yield np.random.default_rng(seed)
    finally:
        np.random.set_state(numpy_state)
        random.setstate(python_state)


def add_direct_connections(graph: nx.DiGraph) -> bool:
    """Add an edge ``a -> c`` for every path ``a -> b -> c``; modifies ``graph``.

    Neighbourhoods are taken as they were before the call. Returns whether
    any edge was added.
    """
    successors = {node: list(graph.successors(node)) for node in graph.nodes}
    added = False
    for node, neighbours in successors.items():
        for neighbour in neighbours:
            for second in successors[neighbour]:
                if not graph.has_edge(node, second):
                    graph.add_edge(node, second)
                    added = True
    return added


def transitive_closure(graph: nx.DiGraph) -> nx.DiGraph:
    """Return a copy of ``graph`` with direct connections added until none are missing."""
    closed = graph.copy()
    while add_direct_connections(closed):
        pass
    return closed


def feature_target_subgraph(graph: nx.DiGraph) -> nx.DiGraph:
    """Return a new graph holding only feature and target nodes and the edges among them.

    Node order follows ``graph``; metadata is copied.
    """
    sub = nx.DiGraph()
    kept = []
    for node, data in graph.nodes(data=True):
        meta = data.get(METADATA_KEY)
        if isinstance(meta, NodeMetadata) and (meta.is_feature or meta.is_target):
            attrs = dict(data)
            attrs[METADATA_KEY] = meta.copy()
            sub.add_node(node, **attrs)
            kept.append(node)
    keep = set(kept)
    for source, target in graph.edges:
        if source in keep and target in keep:
            sub.add_edge(source, target)
    return sub