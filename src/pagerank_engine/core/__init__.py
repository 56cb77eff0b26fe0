"""
Core data model: graph snapshots and algorithm parameters.
"""
