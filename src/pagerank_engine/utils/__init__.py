"""
Module containing various utility functions and classes.
"""
from abc import ABC, abstractmethod
from dataclasses import fields
from shutil import get_terminal_size
from time import monotonic
import sys
from typing import IO, Any, Optional
import threading

import numpy as np


# Classes --------------------------------------------------------------------------------------------------------------
class Batch(ABC):
    """
    Abstract base class for all batch containers.
    Enforces the Sequence protocol (len, getitem, iter).
    """
    __slots__ = ()
    @abstractmethod
    def __len__(self) -> int: ...
    @abstractmethod
    def __getitem__(self, item): ...
    def __iter__(self):
        for i in range(len(self)): yield self[i]


class RaggedBatch(Batch):
    """
    Base class for batches that store variable-length items in a flattened format (CSR-like).
    Manages the offsets array and length calculation.
    """
    __slots__ = ('_offsets', '_length')
    def __init__(self, offsets: np.ndarray):
        self._offsets = offsets
        self._length = len(offsets) - 1
    def __len__(self) -> int: return self._length

    @property
    def offsets(self) -> np.ndarray: return self._offsets

    def lengths(self) -> np.ndarray:
        """Returns the length of every item."""
        return np.diff(self._offsets)

    def _get_item_bounds(self, item: int) -> tuple[int, int]:
        if item < 0: item += self._length
        if not 0 <= item < self._length: raise IndexError(f"Index {item} out of range for batch of {self._length}")
        return int(self._offsets[item]), int(self._offsets[item + 1])


class Config:
    """
    Config parent class that can conveniently set attributes from CLI args
    """
    @classmethod
    def from_obj(cls, obj: Any) -> 'Config':
        return cls(**{f.name: val for f in fields(cls) if (val := getattr(obj, f.name, None)) is not None})


class ProgressBar:
    """
    A lightweight progress bar for percentage-style progress reports.
    Supports incremental updates and absolute positioning (e.g. from progress messages).

    Examples:
        >>> with ProgressBar(total=100, desc='PageRank', unit='%') as bar:
        ...     bar.update_to(40.0)
    """
    __slots__ = ('_total', '_desc', '_unit', '_leave', '_file', '_cols', '_min_interval', '_last_print_t',
                 '_start_t', '_n', '_bar_char', '_label', '_lock')

    def __init__(self, total: float = 100, desc: str = None, unit: str = '%', leave: bool = True,
                 file: IO = None, min_interval: float = 0.1, bar_char: str = '#', cols: int = None):
        self._total = total
        self._desc = desc + ": " if desc else ""
        self._unit = unit
        self._leave = leave
        self._file = file or sys.stderr
        self._min_interval = min_interval
        self._bar_char = bar_char
        self._cols = cols
        self._n = 0.0
        self._label = ''
        self._start_t = monotonic()
        self._last_print_t = self._start_t
        self._lock = threading.Lock()

    def __enter__(self):
        self._start_t = monotonic()
        self._last_print_t = self._start_t
        self._update(self._start_t)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._update(monotonic(), final=True)

    @property
    def n(self) -> float: return self._n

    def update(self, n: float = 1):
        with self._lock:
            self._n += n
            self._maybe_print()

    def update_to(self, n: float, label: Optional[str] = None):
        """Moves the bar to an absolute position; progress never moves backwards."""
        with self._lock:
            self._n = max(self._n, n)
            if label is not None: self._label = label
            self._maybe_print()

    def _maybe_print(self):
        curr_t = monotonic()
        if curr_t - self._last_print_t >= self._min_interval: self._update(curr_t)

    @staticmethod
    def _format_time(seconds):
        if not seconds or seconds < 0 or seconds == float('inf'): return "00:00"
        m, s = divmod(int(seconds), 60)
        h, m = divmod(m, 60)
        if h: return f"{h}:{m:02d}:{s:02d}"
        return f"{m:02d}:{s:02d}"

    def _update(self, curr_t, final=False):
        self._last_print_t = curr_t
        cols = self._cols or get_terminal_size().columns
        elapsed = self._format_time(curr_t - self._start_t)
        frac = min(1.0, self._n / self._total) if self._total else 0.0

        l_bar = f"{self._desc}{frac * 100:3.0f}{self._unit}|"
        r_bar = f"| [{elapsed}] {self._label}"
        bar_len = max(1, cols - len(l_bar) - len(r_bar) - 1)
        fill = int(frac * bar_len)
        line = f"\r{l_bar}{self._bar_char * fill}{'-' * (bar_len - fill)}{r_bar}"

        # Pad to clear previous
        if len(line) < cols: line += " " * (cols - len(line))

        self._file.write(line)
        self._file.flush()

        if final:
            if self._leave: self._file.write('\n')
            else: self._file.write(f"\r{' ' * cols}\r")
            self._file.flush()
