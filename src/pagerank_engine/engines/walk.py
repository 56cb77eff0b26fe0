"""
Monte-Carlo PageRank estimation with independent random walks.

Every node starts ``walks_per_node`` walks. A walk records its start, then keeps going while a uniform draw is below
``alpha``: from a dangling node it teleports to a uniformly random node, records it and stops; otherwise it moves to
a uniformly random out-neighbour and records it. Scores are the normalized visit counts.

Walks are simulated as numpy arrays of walker positions, so each step of the loop advances a whole batch of walkers.
"""
import logging
from math import ceil
from time import perf_counter
from typing import Optional

import numpy as np

from pagerank_engine.core.graph import Graph, DerivedGraphData
from pagerank_engine.engines import CancellationToken, ProgressCallback, visits_to_scores, report_progress

logger = logging.getLogger(__name__)

DEFAULT_MAX_WALKERS = 1 << 20
PROGRESS_BLOCKS = 10


def _walk_batch(walkers: np.ndarray, derived: DerivedGraphData, alpha: float, rng: np.random.Generator,
                visits: np.ndarray):
    """
    Advances a batch of walkers until all of them have stopped, accumulating visits in place.

    Args:
        walkers: Current node of every walker (the walk origins on entry).
        derived: Out-degrees and adjacency of the graph.
        alpha: Continuation probability.
        rng: Source of randomness.
        visits: int64 visit counters, updated in place.
    """
    n = len(visits)
    offsets, neighbours, out_degree = derived.adjacency.offsets, derived.adjacency.values, derived.out_degree
    visits += np.bincount(walkers, minlength=n)
    while len(walkers):
        walkers = walkers[rng.random(len(walkers)) < alpha]
        if not len(walkers): break
        degree = out_degree[walkers]
        if (dangling := degree == 0).any():
            visits += np.bincount(rng.integers(0, n, size=int(dangling.sum())), minlength=n)
            walkers, degree = walkers[~dangling], degree[~dangling]
            if not len(walkers): break
        walkers = neighbours[offsets[walkers] + rng.integers(0, degree)]
        visits += np.bincount(walkers, minlength=n)


def _walker_batches(block_start: int, block_stop: int, walks_per_node: int, max_walkers: int):
    """Yields walk origins for nodes ``[block_start, block_stop)`` in batches of at most ``max_walkers``."""
    if walks_per_node > max_walkers:
        for origin in range(block_start, block_stop):
            for done in range(0, walks_per_node, max_walkers):
                yield np.full(min(max_walkers, walks_per_node - done), origin, dtype=np.int64)
        return
    origins_per_batch = max_walkers // walks_per_node
    for batch_start in range(block_start, block_stop, origins_per_batch):
        origins = np.arange(batch_start, min(block_stop, batch_start + origins_per_batch), dtype=np.int64)
        yield np.repeat(origins, walks_per_node)


def random_walk(graph: Graph, alpha: float, walks_per_node: int, seed: Optional[int] = None,
                on_progress: Optional[ProgressCallback] = None, token: Optional[CancellationToken] = None,
                max_walkers: int = DEFAULT_MAX_WALKERS) -> np.ndarray:
    """
    Estimate PageRank from visit frequencies of random walks.

    Args:
        graph: The graph; must have at least one node.
        alpha: Probability of continuing a walk at each step.
        walks_per_node: Number of walks started from every node.
        seed: Seed for ``numpy.random.default_rng``. The same seed gives exactly the same scores.
        on_progress: Called with ``(percent, label)`` after each block of ``ceil(n / 10)`` origins.
        token: Checked between walker batches; raises ComputeCancelled once set.
        max_walkers: Upper bound on the number of walkers simulated at once (memory bound).

    Returns:
        A float64 score vector of length ``graph.node_count`` summing to 1.0.

    Raises:
        DegenerateGraphError: If the graph has no nodes.
        ComputeCancelled: If the token was set while running.
    """
    n = graph.require_nodes().node_count
    logger.info(f"Starting Random Walk (managed): {n} nodes, {graph.edge_count} edges, "
                f"alpha={alpha}, walks_per_node={walks_per_node}")
    start = perf_counter()

    derived = graph.derive()
    if dangling := int((derived.out_degree == 0).sum()):
        logger.info(f"Found {dangling} dangling nodes (no outgoing edges)")

    rng = np.random.default_rng(seed)
    visits = np.zeros(n, dtype=np.int64)
    block = ceil(n / PROGRESS_BLOCKS)

    for block_start in range(0, n, block):
        block_stop = min(n, block_start + block)
        for walkers in _walker_batches(block_start, block_stop, walks_per_node, max_walkers):
            if token is not None: token.raise_if_cancelled()
            _walk_batch(walkers, derived, alpha, rng, visits)
        percent = block_stop / n * 100
        report_progress(on_progress, percent, f"Processing {round(percent)}% of nodes")

    scores = visits_to_scores(visits)
    logger.info(f"Completed Random Walk (managed) in {perf_counter() - start:.3f}s: "
                f"total_visits={int(visits.sum())}, max={scores.max():.6g}, min={scores.min():.6g}")
    return scores
