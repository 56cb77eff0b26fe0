"""
Marshaling between managed graphs and the compiled kernels.

A :class:`NativeKernelBridge` call copies the edge columns of a :class:`~pagerank_engine.core.graph.Graph` into
foreign buffers, calls a compiled function through its C prototype, and copies the score vector back. The three
buffers belong to that single call and are released on every exit path.
"""
import ctypes
import logging
from contextlib import ExitStack
from dataclasses import dataclass
from time import perf_counter
from typing import Callable

import numpy as np

from pagerank_engine.core.graph import Graph
from pagerank_engine.native.heap import ForeignHeap, NativeBridgeError

logger = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class NativeModuleLoadError(NativeBridgeError):
    """Raised when the compiled kernels cannot be imported or bound."""
    pass


class NativeKernelError(NativeBridgeError):
    """Raised when a compiled kernel call fails."""
    pass


# Constants ------------------------------------------------------------------------------------------------------------
POWER_ITERATION_PROTOTYPE = ctypes.CFUNCTYPE(
    None, ctypes.c_int32, ctypes.c_int32, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_double, ctypes.c_int32,
    ctypes.c_void_p
)
RANDOM_WALK_PROTOTYPE = ctypes.CFUNCTYPE(
    None, ctypes.c_int32, ctypes.c_int32, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_double, ctypes.c_int32,
    ctypes.c_void_p, ctypes.c_uint32
)


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True)
class NativeModule:
    """
    A loaded set of compiled kernels.

    Attributes:
        power_iteration: Callable with the power-iteration C signature.
        random_walk: Callable with the random-walk C signature.
        name: Where the kernels came from.
    """
    power_iteration: Callable
    random_walk: Callable
    name: str = 'numba'


class NativeKernelBridge:
    """
    Runs compiled kernels on a graph through foreign memory.

    Args:
        module: The loaded kernels.
        heap: Allocator for the marshaling buffers.

    Examples:
        >>> bridge = NativeKernelBridge(load_native_module(), ForeignHeap())
        >>> bridge.power_iteration(Graph.from_pairs(2, [(0, 1), (1, 0)]), 0.85, 10)
        array([0.5, 0.5])
    """
    def __init__(self, module: NativeModule, heap: ForeignHeap):
        self.module = module
        self.heap = heap

    def __repr__(self): return f"NativeKernelBridge({self.module.name}, {self.heap!r})"

    def power_iteration(self, graph: Graph, alpha: float, iterations: int) -> np.ndarray:
        return self._invoke('power_iteration', self.module.power_iteration, graph, alpha, iterations)

    def random_walk(self, graph: Graph, alpha: float, walks_per_node: int, seed: int) -> np.ndarray:
        return self._invoke('random_walk', self.module.random_walk, graph, alpha, walks_per_node, seed)

    def _invoke(self, name: str, kernel: Callable, graph: Graph, alpha: float, budget: int, *extra) -> np.ndarray:
        """
        Marshals the graph, calls ``kernel`` and reads back the scores.

        Raises:
            DegenerateGraphError: If the graph has no nodes.
            ForeignAllocationError: If a buffer cannot be allocated; buffers already obtained are released first.
            NativeKernelError: If the kernel call raises.
        """
        n, m = graph.require_nodes().node_count, graph.edge_count
        with ExitStack() as stack:
            sources = stack.enter_context(self.heap.allocate(m * 4))
            targets = stack.enter_context(self.heap.allocate(m * 4))
            result = stack.enter_context(self.heap.allocate(n * 8))
            sources.write(graph.sources, np.int32)
            targets.write(graph.targets, np.int32)
            logger.debug(f"Calling native {name}: {n} nodes, {m} edges, {self.heap.live_bytes} bytes marshaled")
            start = perf_counter()
            try: kernel(n, m, sources.address, targets.address, alpha, budget, result.address, *extra)
            except Exception as e: raise NativeKernelError(f"Native {name} kernel failed: {e}") from e
            logger.debug(f"Native {name} returned in {perf_counter() - start:.3f}s")
            return result.read(np.float64, n)


# Functions ------------------------------------------------------------------------------------------------------------
def load_native_module() -> NativeModule:
    """
    Imports the compiled kernels and binds them to their C prototypes.

    The first import compiles the kernels with numba, later imports load them from numba's on-disk cache.

    Raises:
        NativeModuleLoadError: If numba is missing or compilation fails.
    """
    start = perf_counter()
    try: from pagerank_engine.native import kernels
    except ImportError as e: raise NativeModuleLoadError(f"Native kernels are unavailable: {e}") from e
    except Exception as e: raise NativeModuleLoadError(f"Native kernels failed to compile: {e}") from e
    module = NativeModule(
        POWER_ITERATION_PROTOTYPE(kernels.power_iteration.address),
        RANDOM_WALK_PROTOTYPE(kernels.random_walk.address)
    )
    logger.info(f"Loaded native kernels in {perf_counter() - start:.3f}s")
    return module
