"""
Immutable graph snapshots and the per-task structures derived from them.

A :class:`Graph` stores its edges column-wise as int32 arrays, which is also the layout the native kernels expect.
Derived data (out-degrees, adjacency, transition matrix) is a pure function of the graph and is recomputed on demand.
"""
from typing import Iterable, Union

import numpy as np
from scipy.sparse import csr_matrix

from pagerank_engine import PageRankError
from pagerank_engine.utils import RaggedBatch


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class DegenerateGraphError(PageRankError, ValueError):
    """Raised when a computation is requested on a graph without nodes."""
    pass


# Classes --------------------------------------------------------------------------------------------------------------
class Adjacency(RaggedBatch):
    """
    Ordered out-neighbour lists stored in CSR layout.

    ``adjacency[i]`` returns the targets of every edge whose source is ``i``, in the order the edges appear in the
    graph. Duplicate edges appear as many times as they were given.

    Examples:
        >>> g = Graph.from_pairs(3, [(0, 2), (0, 1), (1, 2)])
        >>> g.derive().adjacency[0].tolist()
        [2, 1]
    """
    __slots__ = ('_values',)

    def __init__(self, offsets: np.ndarray, values: np.ndarray):
        super().__init__(offsets)
        self._values = values

    @property
    def values(self) -> np.ndarray: return self._values

    def __getitem__(self, item: int) -> np.ndarray:
        start, stop = self._get_item_bounds(item)
        return self._values[start:stop]

    @classmethod
    def from_edges(cls, node_count: int, sources: np.ndarray, targets: np.ndarray) -> 'Adjacency':
        """Groups targets by source; a stable sort keeps the original edge order within each group."""
        counts = np.bincount(sources, minlength=node_count).astype(np.int64)
        offsets = np.zeros(node_count + 1, dtype=np.int64)
        np.cumsum(counts, out=offsets[1:])
        order = np.argsort(sources, kind='stable')
        return cls(offsets, targets[order].astype(np.int64))


class DerivedGraphData:
    """
    Structures derived from a :class:`Graph` for a single compute task.

    Attributes:
        out_degree: Number of edges leaving each node.
        adjacency: Ordered out-neighbour lists.
    """
    __slots__ = ('node_count', 'out_degree', 'adjacency', '_sources', '_targets')

    def __init__(self, node_count: int, sources: np.ndarray, targets: np.ndarray):
        self.node_count = node_count
        self._sources = sources
        self._targets = targets
        self.adjacency = Adjacency.from_edges(node_count, sources, targets)
        self.out_degree = self.adjacency.lengths()

    @property
    def dangling_nodes(self) -> np.ndarray:
        """Indices of nodes with no outgoing edges."""
        return np.flatnonzero(self.out_degree == 0)

    def transition_matrix(self) -> csr_matrix:
        """
        Builds the row-stochastic transition matrix of the non-dangling nodes.

        Entry ``(s, t)`` is the number of ``s -> t`` edges divided by the out-degree of ``s``; duplicate entries are
        summed by the CSR conversion. Rows of dangling nodes are empty.

        Returns:
            A ``node_count x node_count`` scipy CSR matrix.
        """
        n = self.node_count
        if len(self._sources) == 0: return csr_matrix((n, n), dtype=np.float64)
        weights = 1.0 / self.out_degree[self._sources]
        return csr_matrix((weights, (self._sources, self._targets)), shape=(n, n), dtype=np.float64)


class Graph:
    """
    An immutable graph snapshot with integer node ids in ``[0, node_count)``.

    Edges are kept in the order given; duplicates and self-loops are retained. Range validation is the loader's
    responsibility (see :mod:`pagerank_engine.io.edgelist`), only the shape of the edge array is checked here.

    Examples:
        >>> g = Graph.from_pairs(3, [(0, 1), (1, 2), (2, 0)])
        >>> g
        Directed Graph with 3 nodes and 3 edges
        >>> g.derive().out_degree.tolist()
        [1, 1, 1]
    """
    __slots__ = ('_node_count', '_edges', '_directed')

    def __init__(self, node_count: int, edges: Union[np.ndarray, Iterable] = (), is_directed: bool = True):
        """
        Initializes the Graph.

        Args:
            node_count: Number of nodes.
            edges: An ``(m, 2)`` array-like of ``(source, target)`` pairs.
            is_directed: Whether the graph is directed. Undirected graphs are expected to list both directions.
        """
        if node_count < 0: raise ValueError(f"node_count must be non-negative, got {node_count}")
        edges = np.array(edges, dtype=np.int32)
        if edges.size == 0: edges = np.empty((0, 2), dtype=np.int32)
        elif edges.ndim != 2 or edges.shape[1] != 2:
            raise ValueError(f"Edges must be an (m, 2) array of (source, target) pairs, got shape {edges.shape}")
        edges.setflags(write=False)
        self._node_count = int(node_count)
        self._edges = edges
        self._directed = bool(is_directed)

    @classmethod
    def from_pairs(cls, node_count: int, pairs: Iterable[tuple[int, int]], is_directed: bool = True) -> 'Graph':
        return cls(node_count, list(pairs), is_directed)

    @classmethod
    def from_arrays(cls, node_count: int, sources: np.ndarray, targets: np.ndarray, is_directed: bool = True) -> 'Graph':
        """Builds a graph from parallel source and target arrays."""
        if len(sources) != len(targets):
            raise ValueError(f"Source and target arrays differ in length: {len(sources)} vs {len(targets)}")
        return cls(node_count, np.column_stack((sources, targets)), is_directed)

    @property
    def node_count(self) -> int: return self._node_count
    @property
    def edge_count(self) -> int: return len(self._edges)
    @property
    def edges(self) -> np.ndarray: return self._edges
    @property
    def is_directed(self) -> bool: return self._directed
    @property
    def sources(self) -> np.ndarray: return np.ascontiguousarray(self._edges[:, 0])
    @property
    def targets(self) -> np.ndarray: return np.ascontiguousarray(self._edges[:, 1])

    def __len__(self): return self._node_count
    def __iter__(self): return iter(map(tuple, self._edges.tolist()))

    def __eq__(self, other):
        if not isinstance(other, Graph): return NotImplemented
        return (self._node_count == other._node_count and self._directed == other._directed and
                np.array_equal(self._edges, other._edges))

    __hash__ = None

    def __repr__(self):
        type_str = "Directed" if self._directed else "Undirected"
        return f"{type_str} Graph with {self._node_count} nodes and {len(self._edges)} edges"

    def require_nodes(self) -> 'Graph':
        """Raises DegenerateGraphError if the graph is empty, otherwise returns the graph."""
        if self._node_count == 0: raise DegenerateGraphError("Cannot compute PageRank on a graph with no nodes")
        return self

    def derive(self) -> DerivedGraphData:
        """Computes out-degrees and adjacency. Pure and idempotent, callers may cache the result."""
        return DerivedGraphData(self._node_count, self.sources, self.targets)
