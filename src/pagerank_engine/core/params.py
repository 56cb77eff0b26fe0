"""
Algorithm and backend identifiers plus validated parameter sets.
"""
from dataclasses import dataclass
from enum import Enum
from math import isfinite
from numbers import Integral, Real
from typing import Optional, Union, Any

from pagerank_engine import PageRankError


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class InvalidParameterError(PageRankError, ValueError):
    """Raised when algorithm parameters are outside their valid domain."""
    pass


class UnknownAlgorithmError(PageRankError, ValueError):
    """Raised when an algorithm or backend identifier cannot be resolved."""
    pass


# Classes --------------------------------------------------------------------------------------------------------------
class _Tag(str, Enum):
    """A string enum that parses identifiers leniently ('Power_Iteration' -> 'power-iteration')."""
    @classmethod
    def parse(cls, value: Union[str, '_Tag']):
        if isinstance(value, cls): return value
        try: return cls(str(value).strip().lower().replace('_', '-'))
        except ValueError:
            raise UnknownAlgorithmError(
                f"Unknown {cls.__name__.lower()}: {value!r} (expected one of {', '.join(m.value for m in cls)})"
            ) from None

    def __str__(self): return self.value


class Algorithm(_Tag):
    """PageRank strategy."""
    POWER_ITERATION = 'power-iteration'
    RANDOM_WALK = 'random-walk'


class Backend(_Tag):
    """Execution environment for a strategy."""
    MANAGED = 'managed'
    NATIVE = 'native'


def _check_alpha(alpha: Any) -> float:
    if isinstance(alpha, bool) or not isinstance(alpha, Real) or not isfinite(alpha) or not 0.0 < alpha < 1.0:
        raise InvalidParameterError(f"alpha must be a number in the open interval (0, 1), got {alpha!r}")
    return float(alpha)


def _check_count(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral) or value <= 0:
        raise InvalidParameterError(f"{name} must be a positive integer, got {value!r}")
    if value > _INT32_MAX:
        raise InvalidParameterError(f"{name} must fit in a signed 32-bit integer, got {value!r}")
    return int(value)


@dataclass(frozen=True, slots=True)
class PowerIterationParams:
    """
    Parameters for power iteration.

    Attributes:
        alpha: Damping factor in (0, 1).
        iterations: Fixed number of sweeps; there is no convergence-based early exit.
    """
    alpha: float = 0.85
    iterations: int = 100

    def __post_init__(self):
        object.__setattr__(self, 'alpha', _check_alpha(self.alpha))
        object.__setattr__(self, 'iterations', _check_count('iterations', self.iterations))

    @property
    def budget(self) -> int: return self.iterations

    def encode(self) -> dict: return {'alpha': self.alpha, 'iterations': self.iterations}


@dataclass(frozen=True, slots=True)
class RandomWalkParams:
    """
    Parameters for the Monte-Carlo random-walk estimator.

    Attributes:
        alpha: Probability of continuing a walk at each step, in (0, 1).
        walks_per_node: Number of walks started from every node.
        seed: Optional unsigned 32-bit seed. The same seed reproduces the same scores on the same backend.
    """
    alpha: float = 0.85
    walks_per_node: int = 1000
    seed: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'alpha', _check_alpha(self.alpha))
        object.__setattr__(self, 'walks_per_node', _check_count('walks_per_node', self.walks_per_node))
        if self.seed is not None:
            if isinstance(self.seed, bool) or not isinstance(self.seed, Integral) or not 0 <= self.seed <= _UINT32_MAX:
                raise InvalidParameterError(f"seed must be an unsigned 32-bit integer, got {self.seed!r}")
            object.__setattr__(self, 'seed', int(self.seed))

    @property
    def budget(self) -> int: return self.walks_per_node

    def encode(self) -> dict:
        data = {'alpha': self.alpha, 'walksPerNode': self.walks_per_node}
        if self.seed is not None: data['seed'] = self.seed
        return data


Params = Union[PowerIterationParams, RandomWalkParams]


# Functions ------------------------------------------------------------------------------------------------------------
def params_for(algorithm: Union[Algorithm, str], params: Union[Params, dict, None] = None) -> Params:
    """
    Resolves parameters for an algorithm.

    Args:
        algorithm: The algorithm the parameters belong to.
        params: A parameter object, a wire-format dict (``{alpha, iterations}`` or ``{alpha, walksPerNode, seed?}``),
            or None for defaults.

    Returns:
        The validated parameter object.

    Raises:
        UnknownAlgorithmError: If the algorithm is unknown.
        InvalidParameterError: If the parameters do not match the algorithm or are invalid.
    """
    algorithm = Algorithm.parse(algorithm)
    cls = _PARAMS[algorithm]
    if params is None: return cls()
    if isinstance(params, cls): return params
    if not isinstance(params, dict):
        raise InvalidParameterError(f"Expected {cls.__name__} or dict for {algorithm}, got {type(params).__name__}")
    kwargs = {}
    for key, value in params.items():
        if (name := _WIRE_NAMES.get(key, key)) not in cls.__dataclass_fields__:
            raise InvalidParameterError(f"Unexpected parameter {key!r} for {algorithm}")
        kwargs[name] = value
    return cls(**kwargs)


# Constants ------------------------------------------------------------------------------------------------------------
_INT32_MAX = 2 ** 31 - 1
_UINT32_MAX = 2 ** 32 - 1
_PARAMS = {Algorithm.POWER_ITERATION: PowerIterationParams, Algorithm.RANDOM_WALK: RandomWalkParams}
_WIRE_NAMES = {'walksPerNode': 'walks_per_node'}
