"""
The background execution context that runs compute tasks.

A :class:`ComputeWorker` owns one daemon thread running an asyncio event loop. Callers only talk to it through
messages: :meth:`ComputeWorker.post` feeds the inbox, and every outgoing message is put on :attr:`ComputeWorker.outbox`.
Tasks run one at a time in submission order. The kernels themselves execute on a single-thread executor owned by the
worker, so the loop keeps serving Cancel messages while a kernel is busy.

Managed kernels honour cancellation at their next token check. Compiled kernels cannot be interrupted: a cancelled
native task runs to completion and its result is discarded. Only :meth:`ComputeWorker.stop` (with a fresh worker
started in its place) abandons such a call.
"""
import asyncio
import logging
import queue
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from time import perf_counter
from typing import Awaitable, Callable, Optional, Union

import numpy as np

from pagerank_engine.core.graph import Graph
from pagerank_engine.core.params import (Algorithm, Backend, Params, PowerIterationParams, RandomWalkParams,
                                         UnknownAlgorithmError, params_for)
from pagerank_engine.engines import CancellationToken, ComputeCancelled, ProgressCallback
from pagerank_engine.engines.power import power_iteration
from pagerank_engine.engines.walk import DEFAULT_MAX_WALKERS, random_walk
from pagerank_engine.runtime.context import ExecutionContext
from pagerank_engine.runtime.messages import (Cancel, Cancelled, Compute, Error, Message, Progress, Result,
                                              decode_message)
from pagerank_engine.utils.resources import RESOURCES

logger = logging.getLogger(__name__)

KernelRun = Callable[['ComputeWorker', Graph, Params, CancellationToken, ProgressCallback],
                     Awaitable[tuple[np.ndarray, float]]]
"""A capability: runs one algorithm on one backend, returning the scores and the seconds to exclude from timing."""


# Classes --------------------------------------------------------------------------------------------------------------
class ComputeWorker:
    """
    Single-flight task runner living on its own thread.

    Args:
        context_factory: Builds the :class:`ExecutionContext` when the worker starts.
        outbox: Queue receiving every outgoing message; a new one is created when not given.
        max_walkers: Walker batch bound for the managed random walk.
        name: Thread name.

    Examples:
        >>> worker = ComputeWorker().start()
        >>> worker.post(Compute('t1', 'power-iteration', 'managed', Graph.from_pairs(2, [(0, 1)])))
        >>> worker.outbox.get()
        Progress(task_id='t1', percent=0.0, message='Started')
    """
    def __init__(self, context_factory: Callable[[], ExecutionContext] = ExecutionContext,
                 outbox: Optional[queue.Queue] = None, max_walkers: int = DEFAULT_MAX_WALKERS,
                 name: str = 'pagerank-worker'):
        self.outbox: queue.Queue = outbox if outbox is not None else queue.Queue()
        self.max_walkers = max_walkers
        self.name = name
        self.context: Optional[ExecutionContext] = None
        self._context_factory = context_factory
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inbox: Optional[asyncio.Queue] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._ready = threading.Event()
        self._queued: deque[Compute] = deque()
        self._wakeup: Optional[asyncio.Event] = None
        self._dropped: set[str] = set()
        self._running: Optional[tuple[str, CancellationToken]] = None

    def __repr__(self): return f"ComputeWorker({self.name}, alive={self.is_alive})"
    def __enter__(self): return self.start()
    def __exit__(self, exc_type, exc_val, exc_tb): self.stop()

    @property
    def is_alive(self) -> bool: return self._thread is not None and self._thread.is_alive()

    def start(self) -> 'ComputeWorker':
        if self._thread is not None: raise RuntimeError(f"{self.name} has already been started")
        self._thread = threading.Thread(target=asyncio.run, args=(self._serve(),), name=self.name, daemon=True)
        self._thread.start()
        self._ready.wait()
        return self

    def post(self, message: Union[Message, dict]):
        """Sends a message (or its wire dict) to the worker. Safe to call from any thread."""
        if isinstance(message, dict): message = decode_message(message)
        if self._loop is None or self._loop.is_closed(): raise RuntimeError(f"{self.name} is not running")
        self._loop.call_soon_threadsafe(self._inbox.put_nowait, message)

    def stop(self, timeout: Optional[float] = 5.0):
        """
        Stops the event loop and waits up to ``timeout`` seconds for the thread to exit.

        A compiled kernel that is still running keeps its executor thread busy until it returns; that thread is
        abandoned rather than joined.
        """
        if not self.is_alive: return
        self._loop.call_soon_threadsafe(self._inbox.put_nowait, None)
        self._thread.join(timeout)
        if self._thread.is_alive(): logger.warning(f"{self.name} did not stop within {timeout}s, abandoning it")

    # Event loop side ---------------------------------------------------------------------------------------------------
    async def _serve(self):
        self._loop = asyncio.get_running_loop()
        self._inbox = asyncio.Queue()
        self._wakeup = asyncio.Event()
        self._ready.set()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{self.name}-kernel")
        self.context = self._context_factory()
        logger.debug(f"{self.name} started")
        runner = asyncio.create_task(self._run_tasks())
        try:
            while (message := await self._inbox.get()) is not None: self._handle(message)
        finally:
            abandoned = self._running
            runner.cancel()
            # buffers of a running kernel must outlive it
            if abandoned is None: self.context.close()
            else: logger.warning(f"{self.name} abandoned task {abandoned[0]} with a kernel still running")
            self._executor.shutdown(wait=False, cancel_futures=True)
            logger.debug(f"{self.name} stopped")

    def _handle(self, message: Message):
        logger.debug(f"{self.name} received {message.type} for task {message.task_id}")
        if isinstance(message, Compute):
            self._queued.append(message)
            self._wakeup.set()
        elif isinstance(message, Cancel):
            if self._running is not None and self._running[0] == message.task_id: self._running[1].cancel()
            elif any(c.task_id == message.task_id for c in self._queued): self._dropped.add(message.task_id)
        else:
            logger.warning(f"{self.name} ignored unexpected {message.type} message")

    async def _run_tasks(self):
        while True:
            if not self._queued:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            compute = self._queued.popleft()
            if compute.task_id in self._dropped:
                self._dropped.discard(compute.task_id)
                self._emit(Cancelled(compute.task_id))
                continue
            await self._execute(compute)

    def _emit(self, message: Message):
        logger.debug(f"{self.name} sent {message.type} for task {message.task_id}")
        self.outbox.put(message)

    async def _execute(self, compute: Compute):
        task_id, token = compute.task_id, CancellationToken()
        self._running = (task_id, token)
        self._emit(Progress(task_id, 0.0, 'Started'))

        def on_progress(percent: float, label: Optional[str] = None):
            if not token.cancelled: self._emit(Progress(task_id, percent, label))

        start = perf_counter()
        try:
            algorithm, backend = Algorithm.parse(compute.algorithm), Backend.parse(compute.backend)
            if (run := CAPABILITIES.get(backend, {}).get(algorithm)) is None:
                raise UnknownAlgorithmError(f"{algorithm} is not available on the {backend} backend")
            params = params_for(algorithm, compute.params)
            logger.info(f"Task {task_id}: {algorithm} on {backend} backend, {compute.graph!r}")
            scores, excluded = await run(self, compute.graph.require_nodes(), params, token, on_progress)
        except ComputeCancelled:
            logger.info(f"Task {task_id} cancelled")
            self._emit(Cancelled(task_id))
        except Exception as e:
            logger.error(f"Task {task_id} failed: {e}")
            self._emit(Error.from_exception(task_id, e))
        else:
            if token.cancelled:
                logger.info(f"Task {task_id} was cancelled while running, discarding its result")
                self._emit(Cancelled(task_id))
            else:
                compute_time_ms = max(0.0, perf_counter() - start - excluded) * 1000
                logger.info(f"Task {task_id} completed in {compute_time_ms:.1f}ms")
                self._emit(Result(task_id, scores, compute_time_ms))
        finally:
            self._running = None

    async def _in_executor(self, func: Callable, *args):
        return await self._loop.run_in_executor(self._executor, func, *args)

    async def _native_bridge(self, token: CancellationToken, on_progress: ProgressCallback):
        """Acquires the bridge, returning it with the seconds spent waiting for the module load."""
        start = perf_counter()
        if not self.context.is_loaded: on_progress(0.0, 'Loading native module')
        bridge = await self.context.bridge()
        token.raise_if_cancelled()
        on_progress(0.0, 'Running native kernel')
        return bridge, perf_counter() - start


# Capabilities ---------------------------------------------------------------------------------------------------------
async def _managed_power_iteration(worker: ComputeWorker, graph: Graph, params: PowerIterationParams,
                                   token: CancellationToken, on_progress: ProgressCallback):
    return await worker._in_executor(power_iteration, graph, params.alpha, params.iterations, on_progress, token), 0.0


async def _managed_random_walk(worker: ComputeWorker, graph: Graph, params: RandomWalkParams,
                               token: CancellationToken, on_progress: ProgressCallback):
    scores = await worker._in_executor(random_walk, graph, params.alpha, params.walks_per_node, params.seed,
                                       on_progress, token, worker.max_walkers)
    return scores, 0.0


async def _native_power_iteration(worker: ComputeWorker, graph: Graph, params: PowerIterationParams,
                                  token: CancellationToken, on_progress: ProgressCallback):
    bridge, load_seconds = await worker._native_bridge(token, on_progress)
    return await worker._in_executor(bridge.power_iteration, graph, params.alpha, params.iterations), load_seconds


async def _native_random_walk(worker: ComputeWorker, graph: Graph, params: RandomWalkParams,
                              token: CancellationToken, on_progress: ProgressCallback):
    bridge, load_seconds = await worker._native_bridge(token, on_progress)
    seed = RESOURCES.draw_seed() if params.seed is None else params.seed
    scores = await worker._in_executor(bridge.random_walk, graph, params.alpha, params.walks_per_node, seed)
    return scores, load_seconds


CAPABILITIES: dict[Backend, dict[Algorithm, KernelRun]] = {
    Backend.MANAGED: {
        Algorithm.POWER_ITERATION: _managed_power_iteration,
        Algorithm.RANDOM_WALK: _managed_random_walk,
    },
    Backend.NATIVE: {
        Algorithm.POWER_ITERATION: _native_power_iteration,
        Algorithm.RANDOM_WALK: _native_random_walk,
    },
}
"""Kernel runners keyed by backend, then algorithm."""
