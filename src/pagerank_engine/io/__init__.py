"""
Loaders that turn external graph descriptions into validated :class:`~pagerank_engine.core.graph.Graph` objects.
"""
