import ctypes
import threading

import numpy as np
import pytest

from pagerank_engine.core.graph import Graph
from pagerank_engine.engines.power import power_iteration
from pagerank_engine.engines.walk import random_walk
from pagerank_engine.native.bridge import NativeModule
from pagerank_engine.native.heap import ForeignHeap


# Python stand-ins for the compiled kernels: same call signature, same pointer-based I/O.
def _read_graph(n, m, src, tgt) -> Graph:
    if m == 0: return Graph(n)
    sources = np.ctypeslib.as_array((ctypes.c_int32 * m).from_address(src)).copy()
    targets = np.ctypeslib.as_array((ctypes.c_int32 * m).from_address(tgt)).copy()
    return Graph.from_arrays(n, sources, targets)


def _write_scores(result, scores: np.ndarray):
    ctypes.memmove(result, scores.ctypes.data, scores.nbytes)


def python_power_iteration(n, m, src, tgt, alpha, iterations, result):
    if not isinstance(iterations, int): raise TypeError(f"iterations must be an int, got {type(iterations).__name__}")
    _write_scores(result, power_iteration(_read_graph(n, m, src, tgt), alpha, iterations))


def python_random_walk(n, m, src, tgt, alpha, walks_per_node, result, seed):
    _write_scores(result, random_walk(_read_graph(n, m, src, tgt), alpha, walks_per_node, seed))


def failing_kernel(*args): raise RuntimeError("kernel exploded")


class CountingLoader:
    """Native module loader that counts its calls, can be held back with ``release`` and told to fail."""
    def __init__(self, module, failures: int = 0):
        self.module = module
        self.failures = failures
        self.calls = 0
        self.release = threading.Event()
        self.release.set()

    def __call__(self):
        self.calls += 1
        self.release.wait(5)
        if self.failures:
            self.failures -= 1
            raise OSError("fetch failed")
        return self.module


@pytest.fixture
def python_module():
    return NativeModule(python_power_iteration, python_random_walk, 'python')


@pytest.fixture
def make_loader():
    return CountingLoader


@pytest.fixture
def failing_module():
    return NativeModule(failing_kernel, failing_kernel, 'failing')


@pytest.fixture
def heap():
    with ForeignHeap() as heap:
        yield heap


@pytest.fixture
def cycle_graph():
    return Graph.from_pairs(3, [(0, 1), (1, 2), (2, 0)])


@pytest.fixture
def star_graph():
    return Graph.from_pairs(4, [(0, 1), (0, 2), (0, 3)])
