import threading
import time
from concurrent.futures import CancelledError

import numpy as np
import pytest

from pagerank_engine.core.graph import Graph
from pagerank_engine.core.params import PowerIterationParams, RandomWalkParams
from pagerank_engine.engines.power import power_iteration
from pagerank_engine.native.bridge import NativeModule
from pagerank_engine.runtime.context import ExecutionContext
from pagerank_engine.runtime.scheduler import ComputeTaskScheduler, ComputeTaskError, TaskStatus

TIMEOUT = 30


@pytest.fixture
def loader(python_module, make_loader):
    return make_loader(python_module)


@pytest.fixture
def scheduler(loader):
    with ComputeTaskScheduler(lambda: ExecutionContext(loader)) as scheduler:
        yield scheduler


@pytest.fixture
def ring():
    n = 2000
    return Graph.from_pairs(n, [(i, (i + 1) % n) for i in range(n)] + [(i, (i * 7) % n) for i in range(n)])


def _blocking_module(python_module, started: threading.Event, release: threading.Event):
    def kernel(*args):
        started.set()
        release.wait(TIMEOUT)
        python_module.power_iteration(*args)
    return NativeModule(kernel, python_module.random_walk, 'blocking')


class TestEndToEnd:
    def test_cycle_power_iteration(self, scheduler, cycle_graph):
        task = scheduler.submit(cycle_graph, 'power-iteration', 'managed', PowerIterationParams(0.85, 100))
        result = task.result(TIMEOUT)
        np.testing.assert_allclose(result.scores, 1 / 3, atol=0.01)
        assert result.scores.sum() == pytest.approx(1.0, abs=1e-6)
        assert result.compute_time_ms >= 0
        assert task.status is TaskStatus.COMPLETED
        assert task.progress == 100.0

    def test_star_power_iteration(self, scheduler, star_graph):
        scores = scheduler.submit(star_graph, 'power-iteration', 'managed').result(TIMEOUT).scores
        assert scores[0] < scores[1]
        assert (scores > 0).all()
        assert scores.sum() == pytest.approx(1.0, abs=1e-6)

    def test_cycle_random_walk(self, scheduler, cycle_graph):
        params = RandomWalkParams(0.85, 100_000, seed=11)
        scores = scheduler.submit(cycle_graph, 'random-walk', 'managed', params).result(TIMEOUT).scores
        np.testing.assert_allclose(scores, power_iteration(cycle_graph, 0.85, 100), atol=0.02)

    def test_no_edges(self, scheduler):
        scores = scheduler.submit(Graph(5), 'power-iteration', 'native').result(TIMEOUT).scores
        np.testing.assert_allclose(scores, 0.2)

    def test_native_module_loaded_once(self, scheduler, loader, cycle_graph):
        first = scheduler.submit(cycle_graph, 'power-iteration', 'native').result(TIMEOUT)
        second = scheduler.submit(cycle_graph, 'random-walk', 'native', {'alpha': 0.85, 'walksPerNode': 10,
                                                                          'seed': 1}).result(TIMEOUT)
        assert loader.calls == 1
        np.testing.assert_allclose(first.scores, 1 / 3, atol=0.01)
        assert second.scores.sum() == pytest.approx(1.0, abs=1e-6)

    def test_load_time_is_excluded(self, python_module, cycle_graph):
        def slow_loader():
            time.sleep(0.5)
            return python_module

        with ComputeTaskScheduler(lambda: ExecutionContext(slow_loader)) as scheduler:
            result = scheduler.submit(cycle_graph, 'power-iteration', 'native').result(TIMEOUT)
        assert result.compute_time_ms < 400

    def test_progress_order(self, scheduler, cycle_graph):
        reports = []
        task = scheduler.submit(cycle_graph, 'power-iteration', 'managed', PowerIterationParams(0.85, 50),
                                on_progress=lambda p, label: reports.append((p, label)))
        task.result(TIMEOUT)
        assert reports[0] == (0.0, 'Started')
        percents = [p for p, _ in reports]
        assert percents == sorted(percents)
        assert percents[-1] == pytest.approx(100.0)

    def test_native_phase_labels(self, scheduler, cycle_graph):
        labels = []
        scheduler.submit(cycle_graph, 'power-iteration', 'native',
                         on_progress=lambda p, label: labels.append(label)).result(TIMEOUT)
        assert labels == ['Started', 'Loading native module', 'Running native kernel']

    def test_tasks_run_in_order(self, scheduler, cycle_graph):
        finished = []
        tasks = [scheduler.submit(cycle_graph, 'power-iteration', 'managed') for _ in range(4)]
        for task in tasks: task.add_done_callback(lambda t: finished.append(t.id))
        for task in tasks: task.result(TIMEOUT)
        assert finished == [task.id for task in tasks]
        assert len({task.id for task in tasks}) == 4


class TestFailures:
    def test_unknown_algorithm(self, scheduler, cycle_graph):
        task = scheduler.submit(cycle_graph, 'hits', 'managed')
        with pytest.raises(ComputeTaskError) as excinfo:
            task.result(TIMEOUT)
        assert "hits" in str(excinfo.value)
        assert excinfo.value.cause.startswith("UnknownAlgorithmError")
        assert task.status is TaskStatus.FAILED
        # the worker keeps serving
        assert scheduler.submit(cycle_graph, 'power-iteration', 'managed').result(TIMEOUT).scores.size == 3

    def test_invalid_parameters(self, scheduler, cycle_graph):
        with pytest.raises(ComputeTaskError) as excinfo:
            scheduler.submit(cycle_graph, 'power-iteration', 'managed', {'alpha': 1.5}).result(TIMEOUT)
        assert excinfo.value.cause.startswith("InvalidParameterError")

    def test_empty_graph(self, scheduler):
        for backend in ('managed', 'native'):
            with pytest.raises(ComputeTaskError) as excinfo:
                scheduler.submit(Graph(0), 'power-iteration', backend).result(TIMEOUT)
            assert excinfo.value.cause.startswith("DegenerateGraphError")

    def test_load_failure_is_retried(self, python_module, cycle_graph, make_loader):
        loader = make_loader(python_module, failures=1)
        with ComputeTaskScheduler(lambda: ExecutionContext(loader)) as scheduler:
            with pytest.raises(ComputeTaskError) as excinfo:
                scheduler.submit(cycle_graph, 'power-iteration', 'native').result(TIMEOUT)
            assert excinfo.value.cause == "OSError: fetch failed"
            scheduler.submit(cycle_graph, 'power-iteration', 'native').result(TIMEOUT)
        assert loader.calls == 2

    def test_allocation_failure(self, loader, cycle_graph):
        with ComputeTaskScheduler(lambda: ExecutionContext(loader, heap_capacity=8)) as scheduler:
            with pytest.raises(ComputeTaskError) as excinfo:
                scheduler.submit(cycle_graph, 'power-iteration', 'native').result(TIMEOUT)
            assert excinfo.value.cause.startswith("ForeignAllocationError")
            assert scheduler.worker.context.heap.live_allocations == 0


class TestCancellation:
    def test_cancel_running_managed_task(self, scheduler, ring, cycle_graph):
        running = threading.Event()
        task = scheduler.submit(ring, 'power-iteration', 'managed', PowerIterationParams(0.85, 10 ** 7),
                                on_progress=lambda p, label: running.set())
        assert running.wait(TIMEOUT)
        assert scheduler.cancel(task.id)
        assert task.status is TaskStatus.CANCELLED
        with pytest.raises(CancelledError):
            task.result(TIMEOUT)
        # the kernel stopped, otherwise this would queue behind it
        assert scheduler.submit(cycle_graph, 'power-iteration', 'managed').result(TIMEOUT).scores.size == 3

    def test_cancel_queued_task(self, scheduler, ring, cycle_graph):
        running = threading.Event()
        first = scheduler.submit(ring, 'random-walk', 'managed', RandomWalkParams(0.85, 10 ** 6, seed=0),
                                 on_progress=lambda p, label: running.set())
        second = scheduler.submit(cycle_graph, 'power-iteration', 'managed')
        assert running.wait(TIMEOUT)
        scheduler.cancel(second.id)
        scheduler.cancel(first.id)
        for task in (first, second):
            with pytest.raises(CancelledError):
                task.result(TIMEOUT)
        assert scheduler.submit(cycle_graph, 'power-iteration', 'managed').result(TIMEOUT).scores.size == 3
        assert second.status is TaskStatus.CANCELLED

    def test_cancelled_native_result_is_discarded(self, python_module, cycle_graph):
        started, release = threading.Event(), threading.Event()
        module = _blocking_module(python_module, started, release)
        with ComputeTaskScheduler(lambda: ExecutionContext(lambda: module)) as scheduler:
            task = scheduler.submit(cycle_graph, 'power-iteration', 'native')
            assert started.wait(TIMEOUT)
            scheduler.cancel(task.id)
            release.set()
            follow_up = scheduler.submit(cycle_graph, 'power-iteration', 'managed')
            follow_up.result(TIMEOUT)
            assert task.status is TaskStatus.CANCELLED
            with pytest.raises(CancelledError):
                task.result(0)

    def test_cancel_finished_task(self, scheduler, cycle_graph):
        task = scheduler.submit(cycle_graph, 'power-iteration', 'managed')
        task.result(TIMEOUT)
        assert not scheduler.cancel(task.id)
        assert task.status is TaskStatus.COMPLETED

    def test_restart_abandons_native_call(self, python_module, cycle_graph):
        started, release = threading.Event(), threading.Event()
        module = _blocking_module(python_module, started, release)
        with ComputeTaskScheduler(lambda: ExecutionContext(lambda: module)) as scheduler:
            old_worker = scheduler.worker
            task = scheduler.submit(cycle_graph, 'power-iteration', 'native')
            assert started.wait(TIMEOUT)
            scheduler.restart()
            assert scheduler.worker is not old_worker
            with pytest.raises(ComputeTaskError, match="restarted"):
                task.result(0)
            assert scheduler.submit(cycle_graph, 'power-iteration', 'managed').result(TIMEOUT).scores.size == 3
            release.set()


class TestRegistry:
    def test_acknowledge(self, scheduler, cycle_graph):
        task = scheduler.submit(cycle_graph, 'power-iteration', 'managed')
        assert scheduler.get(task.id) is task
        task.result(TIMEOUT)
        scheduler.acknowledge(task.id)
        assert task.id not in {t.id for t in scheduler.tasks}
        with pytest.raises(KeyError):
            scheduler.get(task.id)

    def test_acknowledge_unfinished(self, python_module, cycle_graph):
        started, release = threading.Event(), threading.Event()
        module = _blocking_module(python_module, started, release)
        with ComputeTaskScheduler(lambda: ExecutionContext(lambda: module)) as scheduler:
            task = scheduler.submit(cycle_graph, 'power-iteration', 'native')
            assert started.wait(TIMEOUT)
            with pytest.raises(ValueError, match="has not finished"):
                scheduler.acknowledge(task.id)
            release.set()
            task.result(TIMEOUT)

    def test_submit_after_close(self, loader, cycle_graph):
        scheduler = ComputeTaskScheduler(lambda: ExecutionContext(loader))
        scheduler.close()
        with pytest.raises(RuntimeError, match="closed"):
            scheduler.submit(cycle_graph, 'power-iteration', 'managed')
