"""Contact network construction.

Builds the scale-free contact graph (Barabási-Albert preferential
attachment) the agent model runs on, plus a 2-D spring layout that is
carried through untouched for plotting.

The graph is converted once into an index-based neighbour list (CSR) so
the daily agent update never walks Python edge lists:
  - NeighborIndex.indptr / indices: neighbours of node i are
    indices[indptr[i]:indptr[i+1]]
  - NeighborIndex.adjacency: scipy.sparse CSR matrix for vectorised
    "how many Spreader neighbours" counts
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import networkx as nx
import numpy as np
from scipy.sparse import csr_matrix

from epinet.errors import ConfigurationError, GraphConsistencyError
from epinet.types import ContactGraph, readonly

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# GRAPH GENERATION
# ═══════════════════════════════════════════════════════════════════════

def _nx_seed(rng: np.random.Generator) -> int:
    """Derive a networkx seed from the caller's stream (one draw)."""
    return int(rng.integers(0, 2**31))


def generate_contact_graph(
    n_nodes: int,
    rng: np.random.Generator,
    attachment_edges: int = 2,
    layout_iterations: int = 50,
) -> ContactGraph:
    """Generate a preferential-attachment contact graph with a layout.

    Each new node attaches `attachment_edges` edges to existing nodes with
    probability proportional to their degree. Graphs too small for the
    attachment process (n_nodes <= attachment_edges) are complete graphs.

    Draw order (fixed): one seed for the graph, one for the layout.

    Args:
        n_nodes: Number of nodes N (>= 1).
        rng: Generator for this component.
        attachment_edges: Edges added per new node (m >= 1).
        layout_iterations: Spring-layout iterations.

    Returns:
        Immutable ContactGraph.

    Raises:
        ConfigurationError: If n_nodes < 1 or attachment_edges < 1.
    """
    if n_nodes < 1:
        raise ConfigurationError(f"n_nodes must be >= 1, got {n_nodes}")
    if attachment_edges < 1:
        raise ConfigurationError(
            f"attachment_edges must be >= 1, got {attachment_edges}"
        )

    graph_seed = _nx_seed(rng)
    layout_seed = _nx_seed(rng)

    if n_nodes <= attachment_edges:
        G = nx.complete_graph(n_nodes)
    else:
        G = nx.barabasi_albert_graph(n_nodes, attachment_edges, seed=graph_seed)

    layout = nx.spring_layout(G, seed=layout_seed, iterations=layout_iterations)
    positions = np.array([layout[i] for i in range(n_nodes)], dtype=np.float64)
    positions = positions.reshape(n_nodes, 2)

    edges = np.array(sorted(tuple(sorted(e)) for e in G.edges()), dtype=np.int64)
    edges = edges.reshape(-1, 2)

    logger.debug("Contact graph: %d nodes, %d edges", n_nodes, len(edges))
    return ContactGraph(
        n_nodes=n_nodes,
        edges=readonly(edges),
        positions=readonly(positions),
        directed=False,
    )


def degree_sequence(graph: ContactGraph) -> np.ndarray:
    """Degree of each node (undirected: both endpoints count)."""
    deg = np.bincount(graph.edges[:, 0], minlength=graph.n_nodes)
    if not graph.directed:
        deg = deg + np.bincount(graph.edges[:, 1], minlength=graph.n_nodes)
    return deg


# ═══════════════════════════════════════════════════════════════════════
# NEIGHBOUR INDEX
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NeighborIndex:
    """CSR neighbour list built once from a ContactGraph."""
    n_nodes: int
    indptr: np.ndarray
    indices: np.ndarray
    adjacency: csr_matrix

    def neighbors(self, node: int) -> np.ndarray:
        if not (0 <= node < self.n_nodes):
            raise GraphConsistencyError(
                f"node {node} not in graph of {self.n_nodes} nodes"
            )
        return self.indices[self.indptr[node]:self.indptr[node + 1]]

    def count_in_state(self, states: np.ndarray, state: int) -> np.ndarray:
        """Per node, how many neighbours are currently in `state`."""
        if len(states) != self.n_nodes:
            raise GraphConsistencyError(
                f"state array has {len(states)} entries, graph has "
                f"{self.n_nodes} nodes"
            )
        hits = (states == state).astype(np.int64)
        return np.asarray(self.adjacency @ hits).ravel()


def build_neighbor_index(graph: ContactGraph) -> NeighborIndex:
    """Build the CSR neighbour list for a ContactGraph.

    Undirected graphs store each edge in both directions; directed graphs
    store u → v so that node u "sees" v as a neighbour.

    Raises:
        GraphConsistencyError: If any edge endpoint is not a valid node id.
    """
    n = graph.n_nodes
    edges = np.asarray(graph.edges, dtype=np.int64).reshape(-1, 2)
    if len(edges) > 0:
        bad = (edges < 0) | (edges >= n)
        if bad.any():
            row = int(np.where(bad.any(axis=1))[0][0])
            raise GraphConsistencyError(
                f"edge {tuple(edges[row])} references a node outside 0..{n - 1}"
            )

    src = edges[:, 0]
    dst = edges[:, 1]
    if not graph.directed:
        src, dst = np.concatenate([src, dst]), np.concatenate([dst, src])

    data = np.ones(len(src), dtype=np.int64)
    adjacency = csr_matrix((data, (src, dst)), shape=(n, n))
    adjacency.sum_duplicates()
    adjacency.sort_indices()

    return NeighborIndex(
        n_nodes=n,
        indptr=readonly(adjacency.indptr),
        indices=readonly(adjacency.indices),
        adjacency=adjacency,
    )
