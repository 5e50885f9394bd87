"""Laplacian positional encodings for the nodes of a data DAG."""

from __future__ import annotations

from typing import Any

import networkx as nx
import numpy as np

from tabpfn_lite.graph import (
    METADATA_KEY,
    NodeMetadata,
    feature_target_subgraph,
    transitive_closure,
)

NUM_TARGETS = 1


def _generator(rng: Any) -> np.random.Generator:
    return rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)


def _laplacian(graph: nx.DiGraph, nodes: list) -> np.ndarray:
    """Out-degree Laplacian: ``-1`` per edge ``i -> j``, out-degree on the diagonal."""
    index = {node: i for i, node in enumerate(nodes)}
    laplacian = np.zeros((len(nodes), len(nodes)))
    for i, node in enumerate(nodes):
        out_degree = 0
        for neighbour in graph.successors(node):
            laplacian[i, index[neighbour]] = -1.0
            out_degree += 1
        laplacian[i, i] = float(out_degree)
    return np.nan_to_num(laplacian, nan=0.0)


def add_pos_emb(
    graph: nx.DiGraph,
    is_undirected: bool = False,
    k: int = 2,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray | None:
    """Store a ``k``-dimensional spectral encoding on every node of ``graph``.

    The encoding of a node is its row in the matrix of eigenvectors belonging
    to the smallest eigenvalues of the (symmetrised, for directed graphs)
    Laplacian, skipping the first eigenvector when there is more than one
    node. Missing columns are zero; each column's sign is flipped at random.
    Encodings are written to the nodes' :class:`NodeMetadata`, which is
    created where a node has none.

    Returns the ``(num_nodes, k)`` encoding matrix, or ``None`` when there was
    nothing to encode (no nodes, or no eigenvector to take).
    """
    if k < 0:
        raise ValueError("k must not be negative")
    nodes = list(graph.nodes)
    if not nodes:
        return None

    laplacian = _laplacian(graph, nodes)
    if not is_undirected:
        laplacian = (laplacian + laplacian.T) * 0.5

    eigenvalues, eigenvectors = np.linalg.eigh(laplacian)
    order = np.argsort(eigenvalues, kind="stable")
    eigenvectors = eigenvectors[:, order]

    count = len(nodes)
    start = 1 if count > 1 else 0
    end = min(start + k, count)
    if start >= end:
        return None

    encoding = np.zeros((count, k))
    taken = eigenvectors[:, start:end]
    encoding[:, : taken.shape[1]] = taken

    signs = _generator(rng).choice(np.array([1.0, -1.0]), size=k)
    encoding *= signs

    for row, node in zip(encoding, nodes):
        attrs = graph.nodes[node]
        meta = attrs.get(METADATA_KEY)
        if not isinstance(meta, NodeMetadata):
            meta = NodeMetadata()
            attrs[METADATA_KEY] = meta
        meta.positional_encoding = row.copy()
    return encoding


def dag_positional_embeddings(
    graph: nx.DiGraph,
    num_features: int,
    k: int,
    rng: np.random.Generator | int | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute centred positional embeddings for the features and the target of a DAG.

    The graph is closed transitively, reduced to its feature and target
    nodes and encoded with :func:`add_pos_emb`. Returns a
    ``(num_features, k)`` array for the features and a ``(1, k)`` array for
    the target, both with the mean feature embedding subtracted. The input
    graph is left unchanged.
    """
    if num_features <= 0:
        raise ValueError("num_features must be positive")
    if k < 0:
        raise ValueError("k must not be negative")

    subgraph = feature_target_subgraph(transitive_closure(graph))
    add_pos_emb(subgraph, False, k, rng)

    features = np.zeros((num_features, k))
    targets = np.zeros((NUM_TARGETS, k))
    for _, data in subgraph.nodes(data=True):
        meta = data.get(METADATA_KEY)
        if not isinstance(meta, NodeMetadata) or meta.positional_encoding is None:
            continue
        encoding = np.asarray(meta.positional_encoding)[:k]
        for idx in meta.feature_idxs:
            if 0 <= idx < num_features:
                features[idx, : encoding.shape[0]] = encoding
        for idx in meta.target_idxs:
            if 0 <= idx < NUM_TARGETS:
                targets[idx, : encoding.shape[0]] = encoding

    mean = features.mean(axis=0)
    return features - mean, targets - mean