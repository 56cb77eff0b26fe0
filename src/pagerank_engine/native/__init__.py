"""
Native backend: compiled kernels, the foreign-memory allocator they read from, and the bridge that marshals graphs
across the boundary.
"""
