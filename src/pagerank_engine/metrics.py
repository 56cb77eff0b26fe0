"""
Comparison of score vectors against a reference, and ranking of the top nodes.
"""
import logging
from dataclasses import dataclass
from typing import NamedTuple, Optional, Callable

import numpy as np

from pagerank_engine import PageRankError

logger = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class VectorLengthMismatchError(PageRankError, ValueError):
    def __init__(self, len1: int, len2: int):
        super().__init__(f"Vector length mismatch: {len1} vs {len2}")


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ErrorMetrics:
    """
    Errors of a score vector against a ground truth.

    Attributes:
        l1: Sum of absolute differences.
        l2: Euclidean distance.
        max_relative: Largest ``|pr - gt| / gt`` over the qualified nodes.
        qualified_nodes: Number of nodes whose ground truth exceeds ``1 / n``.
    """
    l1: float
    l2: float
    max_relative: float
    qualified_nodes: int

    def __str__(self): return format_error_metrics(self)


class TopNode(NamedTuple):
    node_id: int
    score: float
    rank: int


# Functions ------------------------------------------------------------------------------------------------------------
def _pair(pr, gt) -> tuple[np.ndarray, np.ndarray]:
    pr, gt = np.asarray(pr, dtype=np.float64), np.asarray(gt, dtype=np.float64)
    if len(pr) != len(gt): raise VectorLengthMismatchError(len(pr), len(gt))
    return pr, gt


def calculate_l1(pr, gt) -> float: return float(np.abs(np.subtract(*_pair(pr, gt))).sum())
def calculate_l2(pr, gt) -> float: return float(np.linalg.norm(np.subtract(*_pair(pr, gt))))


def calculate_max_relative(pr, gt, n: Optional[int] = None) -> tuple[float, int]:
    """
    Largest relative error among nodes whose ground truth exceeds ``1 / n``.

    Args:
        pr: Computed scores.
        gt: Reference scores.
        n: Node count for the threshold, defaults to the vector length.

    Returns:
        ``(max_relative, qualified_nodes)``; ``(0.0, 0)`` when no node qualifies.
    """
    pr, gt = _pair(pr, gt)
    threshold = 1.0 / (n or len(gt))
    if not (qualified := gt > threshold).any():
        logger.warning(f"No nodes met threshold {threshold:.3g} for max relative error calculation")
        return 0.0, 0
    relative = np.abs(pr[qualified] - gt[qualified]) / gt[qualified]
    return float(relative.max()), int(qualified.sum())


def calculate_error_metrics(pr, gt) -> ErrorMetrics:
    max_relative, qualified = calculate_max_relative(pr, gt)
    metrics = ErrorMetrics(calculate_l1(pr, gt), calculate_l2(pr, gt), max_relative, qualified)
    logger.info(f"Calculated error metrics: {metrics}")
    return metrics


def format_error_metrics(metrics: ErrorMetrics) -> str:
    """
    Examples:
        >>> format_error_metrics(ErrorMetrics(0.1, 0.05, 0.25, 3))
        'L1: 1.000e-01, L2: 5.000e-02, Max Relative: 25.00% (3 nodes)'
    """
    return (f"L1: {metrics.l1:.3e}, L2: {metrics.l2:.3e}, "
            f"Max Relative: {metrics.max_relative * 100:.2f}% ({metrics.qualified_nodes} nodes)")


def top_nodes(scores, k: int = 10, node_id: Callable[[int], int] = int) -> list[TopNode]:
    """
    Returns the ``k`` highest scoring nodes, best first. Ties keep the lower index first.

    Args:
        scores: Score vector.
        k: Number of nodes to return.
        node_id: Maps an index to the id reported in the result (e.g. back to 1-based ids).

    Examples:
        >>> top_nodes([0.1, 0.5, 0.4], k=2)
        [TopNode(node_id=1, score=0.5, rank=1), TopNode(node_id=2, score=0.4, rank=2)]
    """
    scores = np.asarray(scores, dtype=np.float64)
    order = np.argsort(-scores, kind='stable')[:max(k, 0)]
    return [TopNode(node_id(int(i)), float(scores[i]), rank) for rank, i in enumerate(order, 1)]
