"""
Engine defaults, optionally read from ``PAGERANK_*`` environment variables (and a ``.env`` file).

Examples:
    >>> EngineConfig(alpha=0.9).default_params('power-iteration')
    PowerIterationParams(alpha=0.9, iterations=100)
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional, TypeVar, Union

from dotenv import find_dotenv, load_dotenv

from pagerank_engine.core.params import Algorithm, Params, PowerIterationParams, RandomWalkParams
from pagerank_engine.engines.walk import DEFAULT_MAX_WALKERS
from pagerank_engine.utils import Config

logger = logging.getLogger(__name__)

ENV_PREFIX = 'PAGERANK_'
T = TypeVar('T', int, float)


# Functions ------------------------------------------------------------------------------------------------------------
def _get_numeric_env(key: str, default: T, min_val: T, conv_func=None) -> T:
    """Reads a number from the environment, falling back to ``default`` if it is missing or invalid."""
    if (value := os.getenv(key)) is None or not value.strip(): return default
    try: result = (conv_func or type(default))(value)
    except ValueError:
        logger.error(f"Invalid {key}={value}, using default {default}")
        return default
    if result < min_val:
        logger.warning(f"{key}={value} below minimum {min_val}, using default {default}")
        return default
    return result


def _get_optional_int_env(key: str, min_val: int = 0) -> Optional[int]:
    if (value := os.getenv(key)) is None or not value.strip(): return None
    try: result = int(value)
    except ValueError:
        logger.error(f"Invalid {key}={value}, ignoring it")
        return None
    if result < min_val:
        logger.warning(f"{key}={value} below minimum {min_val}, ignoring it")
        return None
    return result


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class EngineConfig(Config):
    """
    Default parameters and resource limits.

    Attributes:
        alpha: Damping factor used by both algorithms.
        iterations: Power-iteration sweeps.
        walks_per_node: Random walks started from every node.
        seed: Random-walk seed; None draws a fresh one per run.
        max_walkers: Walker batch bound for the managed random walk.
        heap_capacity: Optional byte limit for foreign memory.
    """
    alpha: float = 0.85
    iterations: int = 100
    walks_per_node: int = 1000
    seed: Optional[int] = None
    max_walkers: int = DEFAULT_MAX_WALKERS
    heap_capacity: Optional[int] = None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> 'EngineConfig':
        """
        Builds a config from ``PAGERANK_ALPHA``, ``PAGERANK_ITERATIONS``, ``PAGERANK_WALKS_PER_NODE``,
        ``PAGERANK_SEED``, ``PAGERANK_MAX_WALKERS`` and ``PAGERANK_HEAP_CAPACITY``. Invalid values are logged and
        replaced by the defaults.

        Args:
            dotenv: Whether to load a ``.env`` file first (existing variables win).
        """
        if dotenv: load_dotenv(find_dotenv(usecwd=True))
        default = cls()
        alpha = _get_numeric_env(f'{ENV_PREFIX}ALPHA', default.alpha, 0.0)
        if not 0.0 < alpha < 1.0:
            logger.warning(f"{ENV_PREFIX}ALPHA={alpha} outside (0, 1), using default {default.alpha}")
            alpha = default.alpha
        return cls(
            alpha=alpha,
            iterations=_get_numeric_env(f'{ENV_PREFIX}ITERATIONS', default.iterations, 1),
            walks_per_node=_get_numeric_env(f'{ENV_PREFIX}WALKS_PER_NODE', default.walks_per_node, 1),
            seed=_get_optional_int_env(f'{ENV_PREFIX}SEED'),
            max_walkers=_get_numeric_env(f'{ENV_PREFIX}MAX_WALKERS', default.max_walkers, 1),
            heap_capacity=_get_optional_int_env(f'{ENV_PREFIX}HEAP_CAPACITY')
        )

    def default_params(self, algorithm: Union[Algorithm, str]) -> Params:
        if Algorithm.parse(algorithm) is Algorithm.POWER_ITERATION:
            return PowerIterationParams(self.alpha, self.iterations)
        return RandomWalkParams(self.alpha, self.walks_per_node, self.seed)
