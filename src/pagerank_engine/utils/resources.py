"""
Shared process-wide resources and the numba `jit` decorator.
"""
from functools import cached_property, lru_cache
from ctypes.util import find_library as _find_library
from pathlib import Path
from numpy.random import default_rng
from typing import Callable, Optional


# Classes --------------------------------------------------------------------------------------------------------------
class Resources:
    """
    Manages process-wide resources like the seed random number generator and shared libraries.

    Attributes:
        package (str): The package name.
    """
    def __init__(self) -> None:
        self.package = Path(__file__).parent.parent.name

    @cached_property
    def rng(self):
        """Returns a default numpy random number generator, used to draw seeds when none are given."""
        return default_rng()

    def draw_seed(self) -> int:
        """Draws a fresh unsigned 32-bit seed."""
        return int(self.rng.integers(0, 2 ** 32, dtype='uint64'))

    @staticmethod
    @lru_cache(maxsize=None)
    def find_library(*names: str) -> Optional[str]:
        """
        Locates a shared library by trying each name in turn.
        Returns the loadable library name if found, else None.

        Examples:
            >>> RESOURCES.find_library('c', 'msvcrt')
            'libc.so.6'
        """
        for name in names:
            if path := _find_library(name): return path
        return None


# Decorators -----------------------------------------------------------------------------------------------------------
def jit(signature_or_function=None, **options) -> Callable:
    """
    Applies `numba.jit`, bare or with options. Used by the compiled kernels, which require numba.

    Examples:
        >>> @jit  # Bare usage
        ... def func(): ...

        >>> @jit(nopython=True, cache=True)  # Configured usage
        ... def func(): ...
    """
    from numba import jit as real_jit
    if callable(signature_or_function): return real_jit(signature_or_function)  # Handle bare @jit
    return real_jit(signature_or_function, **options)  # Handle @jit(...)


# Constants ------------------------------------------------------------------------------------------------------------
RESOURCES = Resources()
