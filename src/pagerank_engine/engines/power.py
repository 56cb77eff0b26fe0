"""
PageRank by power iteration over the sparse transition matrix.

Each sweep applies the damped random-surfer recurrence::

    new[i] = (1 - alpha) / n  +  alpha * dangling_sum / n  +  alpha * sum(pr[s] / out_degree[s] for s -> i)

where ``dangling_sum`` is the mass held by nodes without outgoing edges, redistributed uniformly instead of being
lost. The number of sweeps is a fixed budget: the loop never stops early on convergence.
"""
import logging
from time import perf_counter
from typing import Optional

import numpy as np
from scipy.sparse import csr_matrix

from pagerank_engine.core.graph import Graph
from pagerank_engine.engines import CancellationToken, ProgressCallback, normalize_scores, report_progress

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 10


def _sweep(pr: np.ndarray, incoming: csr_matrix, dangling_nodes: np.ndarray, alpha: float) -> np.ndarray:
    """One application of the recurrence. ``incoming @ pr`` sums ``pr[s] / out_degree[s]`` over the in-edges of each node."""
    n = len(pr)
    dangling_sum = pr[dangling_nodes].sum()
    new = alpha * (incoming @ pr)
    new += (1.0 - alpha) / n + alpha * dangling_sum / n
    return new


def power_iteration(graph: Graph, alpha: float, iterations: int, on_progress: Optional[ProgressCallback] = None,
                    token: Optional[CancellationToken] = None) -> np.ndarray:
    """
    Compute PageRank with a fixed number of power-iteration sweeps.

    Args:
        graph: The graph; must have at least one node.
        alpha: Damping factor in (0, 1).
        iterations: Number of sweeps to run.
        on_progress: Called with ``(percent, label)`` after every 10 completed sweeps.
        token: Checked before every sweep; raises ComputeCancelled once set.

    Returns:
        A float64 score vector of length ``graph.node_count`` summing to 1.0.

    Raises:
        DegenerateGraphError: If the graph has no nodes.
        ComputeCancelled: If the token was set while running.
    """
    n = graph.require_nodes().node_count
    logger.info(f"Starting Power Iteration (managed): {n} nodes, {graph.edge_count} edges, "
                f"alpha={alpha}, iterations={iterations}")
    start = perf_counter()

    derived = graph.derive()
    incoming = derived.transition_matrix().T.tocsr()
    dangling_nodes = derived.dangling_nodes
    if len(dangling_nodes): logger.info(f"Found {len(dangling_nodes)} dangling nodes")

    pr = np.full(n, 1.0 / n, dtype=np.float64)
    for iteration in range(iterations):
        if token is not None: token.raise_if_cancelled()
        pr = _sweep(pr, incoming, dangling_nodes, alpha)
        if (iteration + 1) % PROGRESS_EVERY == 0:
            percent = (iteration + 1) / iterations * 100
            report_progress(on_progress, percent, f"Iteration {round(percent)}%")

    pr = normalize_scores(pr)
    logger.info(f"Completed Power Iteration (managed) in {perf_counter() - start:.3f}s: "
                f"sum={pr.sum():.8f}, max={pr.max():.6g}, min={pr.min():.6g}")
    return pr
