"""
Explicit owner of the loaded native module and the foreign heap used by a worker.
"""
import asyncio
import logging
from time import perf_counter
from typing import Callable, Optional

from pagerank_engine.native.bridge import NativeKernelBridge, NativeModule, NativeModuleLoadError, load_native_module
from pagerank_engine.native.heap import ForeignHeap

logger = logging.getLogger(__name__)


# Classes --------------------------------------------------------------------------------------------------------------
class ExecutionContext:
    """
    Holds the native module once loaded, plus the in-flight load while one is running.

    Concurrent awaiters of :meth:`native_module` share a single load. A failed load clears the in-flight slot so the
    next caller tries again; nothing retries automatically. The context is created when a worker starts and closed
    when it stops, it is never reset implicitly.

    Args:
        loader: Blocking function returning a :class:`NativeModule`, run in the event loop's default executor.
        heap: Allocator for marshaling buffers. A private heap is created lazily when not given.
        heap_capacity: Byte limit of the private heap.

    Attributes:
        load_count: Number of load attempts made so far.
        last_load_seconds: Wall-clock duration of the most recent load attempt.
    """
    def __init__(self, loader: Callable[[], NativeModule] = load_native_module, heap: Optional[ForeignHeap] = None,
                 heap_capacity: Optional[int] = None):
        self._loader = loader
        self._heap = heap
        self._owns_heap = heap is None
        self._heap_capacity = heap_capacity
        self._module: Optional[NativeModule] = None
        self._loading: Optional[asyncio.Future] = None
        self._closed = False
        self.load_count = 0
        self.last_load_seconds = 0.0

    def __repr__(self):
        state = 'closed' if self._closed else 'loaded' if self._module else 'loading' if self._loading else 'empty'
        return f"ExecutionContext({state}, loads={self.load_count})"

    @property
    def is_loaded(self) -> bool: return self._module is not None

    @property
    def heap(self) -> ForeignHeap:
        if self._heap is None: self._heap = ForeignHeap(self._heap_capacity)
        return self._heap

    async def native_module(self) -> NativeModule:
        """
        Returns the loaded module, loading it first if needed.

        Raises:
            NativeModuleLoadError: If the load fails (the failure is not cached).
            RuntimeError: If the context has been closed.
        """
        if self._closed: raise RuntimeError("Execution context is closed")
        if self._module is not None: return self._module
        if self._loading is None: self._loading = asyncio.ensure_future(self._load())
        return await asyncio.shield(self._loading)

    async def bridge(self) -> NativeKernelBridge:
        return NativeKernelBridge(await self.native_module(), self.heap)

    async def _load(self) -> NativeModule:
        self.load_count += 1
        logger.info(f"Loading native module (attempt {self.load_count})")
        start = perf_counter()
        try:
            module = await asyncio.get_running_loop().run_in_executor(None, self._loader)
        except NativeModuleLoadError as e:
            logger.warning(f"Native module load failed: {e}")
            raise
        except Exception as e:
            logger.warning(f"Native module load failed: {e}")
            raise NativeModuleLoadError(f"Failed to load native module: {e}") from e
        finally:
            self.last_load_seconds = perf_counter() - start
            self._loading = None
        self._module = module
        return module

    def close(self):
        """Drops the module, abandons any in-flight load and releases the private heap."""
        self._closed = True
        self._module = None
        if self._loading is not None:
            self._loading.cancel()
            self._loading = None
        if self._owns_heap and self._heap is not None: self._heap.close()
