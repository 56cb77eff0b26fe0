"""
Caller-side task management on top of a :class:`~pagerank_engine.runtime.worker.ComputeWorker`.

The scheduler owns the task registry. It posts Compute and Cancel messages to the worker, and a relay thread drains
the worker's outbox to move each task through ``PENDING -> RUNNING -> COMPLETED | FAILED | CANCELLED``.

Examples:
    >>> with ComputeTaskScheduler() as scheduler:
    ...     task = scheduler.submit(Graph.from_pairs(3, [(0, 1), (1, 2), (2, 0)]), 'power-iteration', 'managed')
    ...     task.result(timeout=10).scores.round(3)
    array([0.333, 0.333, 0.333])
"""
import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union
from uuid import uuid4

import numpy as np

from pagerank_engine import PageRankError
from pagerank_engine.core.graph import Graph
from pagerank_engine.core.params import Algorithm, Backend, Params
from pagerank_engine.engines.walk import DEFAULT_MAX_WALKERS
from pagerank_engine.runtime.context import ExecutionContext
from pagerank_engine.runtime.messages import (Cancel, Cancelled, Compute, Error, Message, Progress, Result,
                                              TERMINAL)
from pagerank_engine.runtime.worker import ComputeWorker

logger = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ComputeTaskError(PageRankError):
    """
    Raised by :meth:`ComputeTask.result` for a failed task.

    Attributes:
        cause: The root cause as ``"<ExceptionType>: <text>"``, when known.
    """
    def __init__(self, message: str, cause: Optional[str] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self): return f"{self.args[0]} ({self.cause})" if self.cause else self.args[0]


# Classes --------------------------------------------------------------------------------------------------------------
class TaskStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool: return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


@dataclass(frozen=True, eq=False)
class TaskResult:
    scores: np.ndarray = field(repr=False)
    compute_time_ms: float


class ComputeTask:
    """
    Handle to a submitted task. Its status is only changed by the scheduler.

    Attributes:
        id: Opaque task identifier.
        algorithm: Requested algorithm, as given.
        backend: Requested backend, as given.
        params: Requested parameters, as given.
        progress: Latest reported percentage.
        label: Latest reported phase label.
    """
    __slots__ = ('id', 'algorithm', 'backend', 'params', 'status', 'progress', 'label', '_future', '_on_progress')

    def __init__(self, task_id: str, algorithm, backend, params, on_progress: Optional[Callable] = None):
        self.id = task_id
        self.algorithm = algorithm
        self.backend = backend
        self.params = params
        self.status = TaskStatus.PENDING
        self.progress = 0.0
        self.label: Optional[str] = None
        self._future: Future = Future()
        self._on_progress = on_progress

    def __repr__(self): return f"ComputeTask({self.id}, {self.algorithm}/{self.backend}, {self.status.value})"

    @property
    def done(self) -> bool: return self.status.is_terminal

    def result(self, timeout: Optional[float] = None) -> TaskResult:
        """
        Waits for the task to finish.

        Raises:
            ComputeTaskError: If the task failed.
            concurrent.futures.CancelledError: If the task was cancelled.
            TimeoutError: If ``timeout`` elapsed first.
        """
        return self._future.result(timeout)

    def add_done_callback(self, fn: Callable[['ComputeTask'], None]):
        self._future.add_done_callback(lambda _: fn(self))


class ComputeTaskScheduler:
    """
    Submits tasks to a background worker and tracks their state.

    Exactly one task runs at a time; further submissions queue behind it in order.

    Args:
        context_factory: Builds the worker's :class:`ExecutionContext`, called again on every restart.
        max_walkers: Walker batch bound for the managed random walk.
    """
    def __init__(self, context_factory: Callable[[], ExecutionContext] = ExecutionContext,
                 max_walkers: int = DEFAULT_MAX_WALKERS):
        self._context_factory = context_factory
        self._max_walkers = max_walkers
        self._tasks: dict[str, ComputeTask] = {}
        self._lock = threading.RLock()
        self._outbox: queue.Queue = queue.Queue()
        self._closed = False
        self._generation = 0
        self.worker = self._start_worker()
        self._relay = threading.Thread(target=self._relay_loop, name='pagerank-relay', daemon=True)
        self._relay.start()

    def __repr__(self): return f"ComputeTaskScheduler({len(self._tasks)} tasks, {self.worker!r})"
    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.close()

    def _start_worker(self) -> ComputeWorker:
        self._generation += 1
        return ComputeWorker(self._context_factory, self._outbox, self._max_walkers,
                             name=f"pagerank-worker-{self._generation}").start()

    @property
    def tasks(self) -> list[ComputeTask]:
        with self._lock: return list(self._tasks.values())

    def get(self, task_id: str) -> ComputeTask:
        with self._lock: return self._tasks[task_id]

    def submit(self, graph: Graph, algorithm: Union[Algorithm, str], backend: Union[Backend, str],
               params: Union[Params, dict, None] = None,
               on_progress: Optional[Callable[[float, Optional[str]], None]] = None) -> ComputeTask:
        """
        Registers a task and sends it to the worker.

        Identifiers and parameters are validated by the worker, so an invalid request produces a FAILED task rather
        than an exception here.

        Args:
            graph: The graph to score.
            algorithm: ``'power-iteration'`` or ``'random-walk'``.
            backend: ``'managed'`` or ``'native'``.
            params: Parameter object, wire-format dict or None for defaults.
            on_progress: Called on the relay thread with ``(percent, label)`` for every progress message.

        Returns:
            The PENDING task.
        """
        if self._closed: raise RuntimeError("Scheduler is closed")
        task = ComputeTask(uuid4().hex, algorithm, backend, params, on_progress)
        with self._lock: self._tasks[task.id] = task
        logger.debug(f"Submitting task {task.id}: {algorithm}/{backend}")
        self.worker.post(Compute(task.id, str(algorithm), str(backend), graph, params))
        return task

    def cancel(self, task_id: str) -> bool:
        """
        Marks a task CANCELLED immediately and asks the worker to stop it.

        A queued task is dropped, a running managed task stops at its next check, and a running native task runs to
        completion with its result discarded.

        Returns:
            False if the task had already finished.
        """
        with self._lock:
            task = self._tasks[task_id]
            if task.done: return False
            self._finish(task, TaskStatus.CANCELLED)
        self.worker.post(Cancel(task_id))
        return True

    def acknowledge(self, task_id: str):
        """Forgets a finished task."""
        with self._lock:
            if not self._tasks[task_id].done: raise ValueError(f"Task {task_id} has not finished")
            del self._tasks[task_id]

    def restart(self):
        """
        Replaces the worker with a fresh one and a fresh execution context.

        Unfinished tasks are failed. A compiled kernel still running on the old worker is abandoned.
        """
        logger.warning(f"Restarting {self.worker.name}")
        old, self.worker = self.worker, self._start_worker()
        with self._lock:
            for task in self._tasks.values():
                if not task.done:
                    self._finish(task, TaskStatus.FAILED, ComputeTaskError("Worker was restarted before the task finished"))
        old.stop()

    def close(self):
        """Stops the worker and the relay. Unfinished tasks are cancelled."""
        if self._closed: return
        self._closed = True
        with self._lock:
            for task in self._tasks.values():
                if not task.done: self._finish(task, TaskStatus.CANCELLED)
        self.worker.stop()
        self._outbox.put(None)
        self._relay.join()

    # Relay side -------------------------------------------------------------------------------------------------------
    def _relay_loop(self):
        while (message := self._outbox.get()) is not None: self._on_message(message)

    def _on_message(self, message: Message):
        with self._lock:
            if (task := self._tasks.get(message.task_id)) is None or task.done:
                logger.debug(f"Dropping {message.type} for inactive task {message.task_id}")
                return
            if isinstance(message, TERMINAL): self._on_terminal(task, message)
            elif isinstance(message, Progress):
                task.status = TaskStatus.RUNNING
                task.progress = max(task.progress, message.percent)
                task.label = message.message
                callback = task._on_progress
            else: return
        if isinstance(message, Progress) and callback is not None:
            try: callback(message.percent, message.message)
            except Exception as e: logger.error(f"Progress callback for task {task.id} raised: {e}")

    def _on_terminal(self, task: ComputeTask, message: Message):
        if isinstance(message, Result):
            task.progress = 100.0
            self._finish(task, TaskStatus.COMPLETED, TaskResult(message.scores, message.compute_time_ms))
        elif isinstance(message, Error):
            self._finish(task, TaskStatus.FAILED, ComputeTaskError(message.message, message.cause))
        elif isinstance(message, Cancelled):
            self._finish(task, TaskStatus.CANCELLED)

    @staticmethod
    def _finish(task: ComputeTask, status: TaskStatus, outcome: Union[TaskResult, Exception, None] = None):
        task.status = status
        if status is TaskStatus.COMPLETED: task._future.set_result(outcome)
        elif status is TaskStatus.FAILED: task._future.set_exception(outcome)
        else: task._future.cancel()
        logger.info(f"Task {task.id} {status.value}")
