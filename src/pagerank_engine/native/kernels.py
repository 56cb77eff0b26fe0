"""
Compiled PageRank kernels exposed through a C calling convention.

Importing this module compiles (or loads from numba's cache) two ``cfunc`` entry points whose addresses are bound
to ctypes prototypes by :mod:`pagerank_engine.native.bridge`. They only see raw pointers into foreign memory:

    power_iteration(i32 node_count, i32 edge_count, i32* sources, i32* targets, f64 alpha, i32 iterations,
                    f64* result) -> void
    random_walk(i32 node_count, i32 edge_count, i32* sources, i32* targets, f64 alpha, i32 walks_per_node,
                f64* result, u32 seed) -> void

Both write ``node_count`` float64 scores normalized to sum to one.
"""
import numpy as np
from numba import cfunc, carray, types

from pagerank_engine.utils.resources import jit


# Constants ------------------------------------------------------------------------------------------------------------
_SUM_TOLERANCE = 1e-6
POWER_ITERATION_SIGNATURE = types.void(
    types.int32, types.int32, types.CPointer(types.int32), types.CPointer(types.int32), types.float64, types.int32,
    types.CPointer(types.float64)
)
RANDOM_WALK_SIGNATURE = types.void(
    types.int32, types.int32, types.CPointer(types.int32), types.CPointer(types.int32), types.float64, types.int32,
    types.CPointer(types.float64), types.uint32
)


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _out_degree(n, sources):
    out_degree = np.zeros(n, dtype=np.int64)
    for e in range(sources.shape[0]): out_degree[sources[e]] += 1
    return out_degree


@jit(nopython=True, cache=True, nogil=True)
def _adjacency(n, sources, targets, out_degree):
    """Counting sort of the targets by source, keeping edge order within each source."""
    offsets = np.zeros(n + 1, dtype=np.int64)
    for i in range(n): offsets[i + 1] = offsets[i] + out_degree[i]
    cursor = offsets[:-1].copy()
    neighbours = np.empty(sources.shape[0], dtype=np.int64)
    for e in range(sources.shape[0]):
        s = sources[e]
        neighbours[cursor[s]] = targets[e]
        cursor[s] += 1
    return offsets, neighbours


@jit(nopython=True, cache=True, nogil=True)
def _normalize(scores):
    total = 0.0
    for i in range(scores.shape[0]): total += scores[i]
    if total > 0.0 and abs(total - 1.0) > _SUM_TOLERANCE:
        for i in range(scores.shape[0]): scores[i] /= total


@jit(nopython=True, cache=True, nogil=True)
def _power_sweeps(n, sources, targets, alpha, iterations, pr):
    out_degree = _out_degree(n, sources)
    for i in range(n): pr[i] = 1.0 / n
    new = np.empty(n, dtype=np.float64)
    for _ in range(iterations):
        dangling_sum = 0.0
        for i in range(n):
            if out_degree[i] == 0: dangling_sum += pr[i]
        base = (1.0 - alpha) / n + alpha * dangling_sum / n
        for i in range(n): new[i] = base
        for e in range(sources.shape[0]):
            s = sources[e]
            new[targets[e]] += alpha * pr[s] / out_degree[s]
        for i in range(n): pr[i] = new[i]
    _normalize(pr)


@jit(nopython=True, cache=True, nogil=True)
def _random_walks(n, sources, targets, alpha, walks_per_node, seed, scores):
    np.random.seed(seed)
    offsets, neighbours = _adjacency(n, sources, targets, _out_degree(n, sources))
    visits = np.zeros(n, dtype=np.int64)
    for origin in range(n):
        for _ in range(walks_per_node):
            node = origin
            visits[node] += 1
            while np.random.random() < alpha:
                degree = offsets[node + 1] - offsets[node]
                if degree == 0:
                    node = np.random.randint(0, n)
                    visits[node] += 1
                    break
                node = neighbours[offsets[node] + np.random.randint(0, degree)]
                visits[node] += 1
    total = visits.sum()
    if total == 0:
        for i in range(n): scores[i] = 1.0 / n
        return
    for i in range(n): scores[i] = visits[i] / total
    _normalize(scores)


# Entry points ---------------------------------------------------------------------------------------------------------
@cfunc(POWER_ITERATION_SIGNATURE, nopython=True, cache=True)
def power_iteration(node_count, edge_count, sources_ptr, targets_ptr, alpha, iterations, result_ptr):
    if node_count <= 0: return
    sources = carray(sources_ptr, (edge_count,))
    targets = carray(targets_ptr, (edge_count,))
    result = carray(result_ptr, (node_count,))
    _power_sweeps(node_count, sources, targets, alpha, iterations, result)


@cfunc(RANDOM_WALK_SIGNATURE, nopython=True, cache=True)
def random_walk(node_count, edge_count, sources_ptr, targets_ptr, alpha, walks_per_node, result_ptr, seed):
    if node_count <= 0: return
    sources = carray(sources_ptr, (edge_count,))
    targets = carray(targets_ptr, (edge_count,))
    result = carray(result_ptr, (node_count,))
    _random_walks(node_count, sources, targets, alpha, walks_per_node, seed, result)
