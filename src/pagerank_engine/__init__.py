"""
Top-level module for the PageRank compute engine.

The engine computes node-importance scores with two strategies (power iteration and Monte-Carlo random walks),
each available as a managed numpy implementation and as a compiled native kernel reached through foreign memory.
Work is submitted through :class:`pagerank_engine.runtime.scheduler.ComputeTaskScheduler`.
"""


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class PageRankError(Exception):
    """Base exception for all engine errors."""
    pass


class PageRankWarning(Warning): pass
