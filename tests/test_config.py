import argparse
import logging
import os
from unittest import mock

import pytest

from pagerank_engine.config import EngineConfig
from pagerank_engine.core.params import PowerIterationParams, RandomWalkParams

_VARIABLES = ('ALPHA', 'ITERATIONS', 'WALKS_PER_NODE', 'SEED', 'MAX_WALKERS', 'HEAP_CAPACITY')


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _VARIABLES: monkeypatch.delenv(f'PAGERANK_{name}', raising=False)


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig.from_env(dotenv=False)
        assert config == EngineConfig()
        assert config.default_params('power-iteration') == PowerIterationParams()
        assert config.default_params('random-walk') == RandomWalkParams()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('PAGERANK_ALPHA', '0.9')
        monkeypatch.setenv('PAGERANK_ITERATIONS', '20')
        monkeypatch.setenv('PAGERANK_WALKS_PER_NODE', '50')
        monkeypatch.setenv('PAGERANK_SEED', '7')
        monkeypatch.setenv('PAGERANK_HEAP_CAPACITY', '4096')
        config = EngineConfig.from_env(dotenv=False)
        assert config.default_params('power_iteration') == PowerIterationParams(0.9, 20)
        assert config.default_params('random-walk') == RandomWalkParams(0.9, 50, 7)
        assert config.heap_capacity == 4096

    @pytest.mark.parametrize('name, value', [
        ('ALPHA', 'high'), ('ALPHA', '1.5'), ('ITERATIONS', '0'), ('ITERATIONS', 'ten'), ('SEED', '-3'),
    ])
    def test_invalid_values_fall_back(self, monkeypatch, caplog, name, value):
        monkeypatch.setenv(f'PAGERANK_{name}', value)
        with caplog.at_level(logging.WARNING):
            config = EngineConfig.from_env(dotenv=False)
        assert config == EngineConfig()
        assert f'PAGERANK_{name}' in caplog.text

    def test_dotenv(self, monkeypatch, tmp_path):
        (tmp_path / '.env').write_text("PAGERANK_ITERATIONS=33\n")
        monkeypatch.chdir(tmp_path)
        with mock.patch.dict(os.environ):
            assert EngineConfig.from_env().iterations == 33

    def test_from_obj(self):
        args = argparse.Namespace(alpha=0.5, iterations=None, walks_per_node=9, unrelated=1)
        assert EngineConfig.from_obj(args) == EngineConfig(alpha=0.5, walks_per_node=9)
