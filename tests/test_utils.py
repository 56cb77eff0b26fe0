import io

import pytest

from pagerank_engine.utils import ProgressBar
from pagerank_engine.utils.resources import RESOURCES, jit


class TestProgressBar:
    def test_update_to_never_moves_backwards(self):
        out = io.StringIO()
        with ProgressBar(desc='PageRank', file=out, cols=60, min_interval=0) as bar:
            bar.update_to(40.0, 'Iteration 40%')
            bar.update_to(10.0)
            assert bar.n == 40.0
        assert 'PageRank:  40%|' in out.getvalue()
        assert out.getvalue().endswith('\n')

    def test_update_and_label(self):
        out = io.StringIO()
        with ProgressBar(file=out, cols=60, min_interval=0) as bar:
            bar.update(25)
            bar.update_to(100.0, 'Done')
        assert bar.n == 100.0
        assert '100%|' in out.getvalue()
        assert 'Done' in out.getvalue()

    def test_throttled(self):
        out = io.StringIO()
        with ProgressBar(file=out, cols=60, min_interval=3600) as bar:
            for i in range(50): bar.update_to(i)
        # entry and exit only
        assert out.getvalue().count('\r') == 2


class TestResources:
    def test_draw_seed_range(self):
        seeds = [RESOURCES.draw_seed() for _ in range(20)]
        assert all(0 <= s < 2 ** 32 for s in seeds)

    def test_jit_keeps_semantics(self):
        pytest.importorskip('numba')
        @jit(nopython=True, cache=False)
        def add(a, b): return a + b
        assert add(2, 3) == 5
