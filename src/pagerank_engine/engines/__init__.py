"""
Managed (in-process numpy/scipy) PageRank engines and the plumbing they share: cooperative cancellation,
progress reporting and sum-to-one normalization.
"""
import logging
import threading
from typing import Callable, Optional

import numpy as np

from pagerank_engine import PageRankError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, Optional[str]], None]
"""Called with ``(percent, label)`` as a kernel makes progress."""

SUM_TOLERANCE = 1e-6


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ComputeCancelled(PageRankError):
    """Raised inside a managed kernel when its cancellation token has been set."""
    pass


# Classes --------------------------------------------------------------------------------------------------------------
class CancellationToken:
    """
    A thread-safe, one-way cancellation flag.

    Managed kernels poll it between sweeps or walk batches. Compiled kernels never see it.

    Examples:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.cancelled
        True
    """
    __slots__ = ('_event',)

    def __init__(self): self._event = threading.Event()
    def __repr__(self): return f"CancellationToken(cancelled={self.cancelled})"

    @property
    def cancelled(self) -> bool: return self._event.is_set()

    def cancel(self): self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set(): raise ComputeCancelled("Computation was cancelled")


# Functions ------------------------------------------------------------------------------------------------------------
def normalize_scores(scores: np.ndarray, tolerance: float = SUM_TOLERANCE) -> np.ndarray:
    """
    Rescales a score vector in place when its sum drifts from 1.0 by more than ``tolerance``.

    Args:
        scores: Non-negative float64 scores.
        tolerance: Allowed absolute deviation of the sum from 1.0.

    Returns:
        The (possibly rescaled) input array.
    """
    total = scores.sum()
    if abs(total - 1.0) > tolerance and total > 0:
        logger.warning(f"PageRank sum not 1.0: {total}, normalizing")
        scores /= total
    return scores


def visits_to_scores(visits: np.ndarray) -> np.ndarray:
    """
    Converts visit counts to a probability vector.

    Falls back to the uniform distribution if nothing was visited, which cannot happen with complete walks
    (every walk visits its start) but keeps the division well defined.
    """
    n = len(visits)
    if (total := int(visits.sum())) == 0:
        logger.error("No visits recorded, returning the uniform distribution")
        return np.full(n, 1.0 / n, dtype=np.float64)
    return normalize_scores(visits.astype(np.float64) / total)


def report_progress(on_progress: Optional[ProgressCallback], percent: float, label: str):
    if on_progress is not None: on_progress(percent, label)
