import numpy as np
import pytest
from scipy.sparse import csr_matrix

from pagerank_engine import PageRankError
from pagerank_engine.core.graph import Graph, DegenerateGraphError, Adjacency


class TestGraphInit:
    def test_from_pairs(self, cycle_graph):
        assert cycle_graph.node_count == 3
        assert cycle_graph.edge_count == 3
        assert cycle_graph.is_directed
        assert cycle_graph.edges.dtype == np.int32
        assert list(cycle_graph) == [(0, 1), (1, 2), (2, 0)]

    def test_empty_edges(self):
        g = Graph(5)
        assert g.edges.shape == (0, 2)
        assert g.edge_count == 0
        assert len(g) == 5

    def test_edges_are_read_only(self, cycle_graph):
        with pytest.raises(ValueError):
            cycle_graph.edges[0, 0] = 2

    def test_input_is_copied(self):
        edges = np.array([[0, 1]], dtype=np.int32)
        g = Graph(2, edges)
        edges[0, 0] = 1
        assert g.edges[0, 0] == 0

    def test_bad_shape(self):
        with pytest.raises(ValueError, match=r"\(m, 2\)"):
            Graph(3, [0, 1, 2])

    def test_negative_node_count(self):
        with pytest.raises(ValueError, match="non-negative"):
            Graph(-1)

    def test_from_arrays(self):
        g = Graph.from_arrays(3, np.array([0, 1]), np.array([1, 2]), is_directed=False)
        assert list(g) == [(0, 1), (1, 2)]
        assert not g.is_directed
        with pytest.raises(ValueError, match="differ in length"):
            Graph.from_arrays(3, np.array([0, 1]), np.array([1]))

    def test_sources_and_targets_are_contiguous(self, cycle_graph):
        assert cycle_graph.sources.flags['C_CONTIGUOUS']
        np.testing.assert_array_equal(cycle_graph.sources, [0, 1, 2])
        np.testing.assert_array_equal(cycle_graph.targets, [1, 2, 0])

    def test_equality(self, cycle_graph):
        assert cycle_graph == Graph.from_pairs(3, [(0, 1), (1, 2), (2, 0)])
        assert cycle_graph != Graph.from_pairs(3, [(0, 1), (1, 2), (2, 0)], is_directed=False)
        assert cycle_graph != Graph.from_pairs(3, [(0, 1), (2, 0), (1, 2)])

    def test_repr(self, cycle_graph):
        assert repr(cycle_graph) == "Directed Graph with 3 nodes and 3 edges"
        assert repr(Graph(2, is_directed=False)) == "Undirected Graph with 2 nodes and 0 edges"

    def test_require_nodes(self, cycle_graph):
        assert cycle_graph.require_nodes() is cycle_graph
        with pytest.raises(DegenerateGraphError):
            Graph(0).require_nodes()
        assert issubclass(DegenerateGraphError, PageRankError)


class TestDerivedGraphData:
    def test_out_degree_matches_adjacency(self):
        g = Graph.from_pairs(4, [(0, 1), (2, 3), (0, 2), (0, 1), (3, 3)])
        derived = g.derive()
        np.testing.assert_array_equal(derived.out_degree, [3, 0, 1, 1])
        for node in range(4):
            assert derived.out_degree[node] == len(derived.adjacency[node])

    def test_adjacency_keeps_edge_order_and_duplicates(self):
        g = Graph.from_pairs(4, [(0, 3), (1, 2), (0, 1), (0, 3)])
        adjacency = g.derive().adjacency
        assert isinstance(adjacency, Adjacency)
        assert adjacency[0].tolist() == [3, 1, 3]
        assert adjacency[1].tolist() == [2]
        assert adjacency[2].tolist() == []
        assert adjacency[-1].tolist() == []
        with pytest.raises(IndexError):
            adjacency[4]

    def test_dangling_nodes(self, star_graph):
        np.testing.assert_array_equal(star_graph.derive().dangling_nodes, [1, 2, 3])

    def test_derive_is_pure(self, cycle_graph):
        first, second = cycle_graph.derive(), cycle_graph.derive()
        np.testing.assert_array_equal(first.out_degree, second.out_degree)
        np.testing.assert_array_equal(first.adjacency.values, second.adjacency.values)

    def test_transition_matrix(self):
        g = Graph.from_pairs(3, [(0, 1), (0, 1), (0, 2), (1, 2)])
        matrix = g.derive().transition_matrix()
        assert isinstance(matrix, csr_matrix)
        np.testing.assert_allclose(matrix.toarray(), [[0, 2 / 3, 1 / 3], [0, 0, 1], [0, 0, 0]])

    def test_transition_matrix_without_edges(self):
        matrix = Graph(3).derive().transition_matrix()
        assert matrix.shape == (3, 3)
        assert matrix.nnz == 0
