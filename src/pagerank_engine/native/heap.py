"""
Foreign (non garbage-collected) memory obtained from the C allocator.

Buffers handed to compiled kernels live outside the Python heap, so nothing reclaims them automatically: every
allocation must be paired with an explicit release. :class:`ForeignHeap` keeps a ledger of live allocations so that
leaks can be observed and asserted on.
"""
import ctypes
import logging
import threading
from contextlib import contextmanager
from typing import Generator, Optional
from warnings import warn

import numpy as np

from pagerank_engine import PageRankError, PageRankWarning
from pagerank_engine.utils.resources import RESOURCES

logger = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class NativeBridgeError(PageRankError):
    """Base class for errors raised at the native boundary."""
    pass


class ForeignAllocationError(NativeBridgeError, MemoryError):
    """Raised when foreign memory cannot be obtained."""
    pass


class ForeignMemoryWarning(PageRankWarning): pass


# Classes --------------------------------------------------------------------------------------------------------------
class ForeignBuffer:
    """
    A block of foreign memory owned by a :class:`ForeignHeap`.

    Attributes:
        address: Raw address of the block (None once released).
        nbytes: Usable size in bytes.
    """
    __slots__ = ('address', 'nbytes', '_heap')

    def __init__(self, heap: 'ForeignHeap', address: int, nbytes: int):
        self._heap = heap
        self.address = address
        self.nbytes = nbytes

    def __repr__(self):
        state = f"0x{self.address:x}" if self.address is not None else "released"
        return f"ForeignBuffer({state}, {self.nbytes} bytes)"

    @property
    def released(self) -> bool: return self.address is None

    def _check(self, nbytes: int):
        if self.address is None: raise NativeBridgeError("Buffer has already been released")
        if nbytes > self.nbytes: raise NativeBridgeError(f"Access of {nbytes} bytes overruns a {self.nbytes} byte buffer")

    def write(self, array: np.ndarray, dtype=None):
        """Copies a numpy array into the buffer (converted to a C-contiguous ``dtype`` array first)."""
        data = np.ascontiguousarray(array, dtype=dtype)
        self._check(data.nbytes)
        if data.nbytes: ctypes.memmove(self.address, data.ctypes.data, data.nbytes)

    def read(self, dtype, count: int) -> np.ndarray:
        """Copies ``count`` items of ``dtype`` out of the buffer into a new managed array."""
        out = np.empty(count, dtype=dtype)
        self._check(out.nbytes)
        if out.nbytes: ctypes.memmove(out.ctypes.data, self.address, out.nbytes)
        return out

    def release(self): self._heap.free(self)


class ForeignHeap:
    """
    Allocator for foreign memory backed by the C library's ``malloc`` and ``free``.

    Args:
        capacity: Optional limit on the number of live bytes; requests beyond it fail as if the allocator were
            exhausted.

    Examples:
        >>> heap = ForeignHeap()
        >>> with heap.allocate(16) as buffer:
        ...     buffer.write(np.arange(4, dtype=np.int32))
        >>> heap.live_allocations
        0
    """
    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity
        self._libc = _load_libc()
        self._live: dict[int, int] = {}
        self._lock = threading.Lock()
        self.total_allocations = 0

    def __repr__(self): return f"ForeignHeap(live={self.live_allocations}, bytes={self.live_bytes})"

    @property
    def live_allocations(self) -> int:
        with self._lock: return len(self._live)

    @property
    def live_bytes(self) -> int:
        with self._lock: return sum(self._live.values())

    def malloc(self, nbytes: int) -> ForeignBuffer:
        """
        Allocates ``nbytes`` of foreign memory. Zero-sized requests return a valid, distinct block.

        Raises:
            ForeignAllocationError: If the capacity would be exceeded or the allocator returns NULL.
        """
        if nbytes < 0: raise ValueError(f"Cannot allocate a negative number of bytes: {nbytes}")
        with self._lock:
            if self.capacity is not None and sum(self._live.values()) + nbytes > self.capacity:
                raise ForeignAllocationError(f"Out of foreign memory: requested {nbytes} bytes with "
                                             f"{sum(self._live.values())} of {self.capacity} in use")
            if not (address := self._libc.malloc(max(nbytes, 1))):
                raise ForeignAllocationError(f"malloc failed to allocate {nbytes} bytes")
            self._live[address] = nbytes
            self.total_allocations += 1
        return ForeignBuffer(self, address, nbytes)

    def free(self, buffer: ForeignBuffer):
        """Releases a buffer. Releasing the same buffer twice is a no-op."""
        if buffer.address is None: return
        with self._lock:
            if self._live.pop(buffer.address, None) is None:
                raise NativeBridgeError(f"{buffer!r} does not belong to this heap")
            self._libc.free(buffer.address)
            buffer.address = None

    @contextmanager
    def allocate(self, nbytes: int) -> Generator[ForeignBuffer, None, None]:
        """Scoped allocation: the buffer is released when the block exits, whatever the exit path."""
        buffer = self.malloc(nbytes)
        try: yield buffer
        finally: self.free(buffer)

    def close(self):
        """Frees any allocation still live and warns about it."""
        with self._lock: leaked = list(self._live.items())
        if leaked:
            warn(f"Releasing {len(leaked)} leaked foreign buffers ({sum(n for _, n in leaked)} bytes)",
                 ForeignMemoryWarning)
            for address, nbytes in leaked: self.free(ForeignBuffer(self, address, nbytes))

    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.close()


# Functions ------------------------------------------------------------------------------------------------------------
def _load_libc() -> ctypes.CDLL:
    if not (name := RESOURCES.find_library('c', 'msvcrt')):
        raise NativeBridgeError("Could not locate the C library for foreign memory allocation")
    logger.debug(f"Allocating foreign memory with {name}")
    libc = ctypes.CDLL(name)
    libc.malloc.restype = ctypes.c_void_p
    libc.malloc.argtypes = [ctypes.c_size_t]
    libc.free.restype = None
    libc.free.argtypes = [ctypes.c_void_p]
    return libc
