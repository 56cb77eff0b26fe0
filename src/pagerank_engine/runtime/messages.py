"""
Messages exchanged between callers and the background worker.

Each message is a frozen dataclass with an ``encode()`` method producing its wire form, a plain dict with camelCase
keys and a ``type`` discriminator. :func:`decode_message` is the inverse.

Examples:
    >>> msg = Progress('abc', 40.0, 'Iteration 40%')
    >>> msg.encode()
    {'type': 'Progress', 'taskId': 'abc', 'percent': 40.0, 'message': 'Iteration 40%'}
    >>> decode_message(msg.encode()) == msg
    True
"""
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Union

import numpy as np

from pagerank_engine import PageRankError
from pagerank_engine.core.graph import Graph
from pagerank_engine.core.params import Params


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class MessageDecodeError(PageRankError, ValueError):
    """Raised when a wire message is malformed."""
    pass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True)
class Compute:
    """
    Request to run a task. Algorithm and backend are kept as given, the worker resolves them so that an unknown
    identifier fails only the task that carries it.
    """
    type: ClassVar[str] = 'Compute'
    task_id: str
    algorithm: str
    backend: str
    graph: Graph
    params: Union[Params, dict, None] = None

    def encode(self) -> dict:
        if self.params is None: parameters = {}
        elif isinstance(self.params, dict): parameters = dict(self.params)
        else: parameters = self.params.encode()
        return {
            'type': self.type, 'taskId': self.task_id, 'algorithm': str(self.algorithm), 'backend': str(self.backend),
            'graph': encode_graph(self.graph), 'parameters': parameters
        }


@dataclass(frozen=True)
class Cancel:
    type: ClassVar[str] = 'Cancel'
    task_id: str

    def encode(self) -> dict: return {'type': self.type, 'taskId': self.task_id}


@dataclass(frozen=True)
class Progress:
    type: ClassVar[str] = 'Progress'
    task_id: str
    percent: float
    message: Optional[str] = None

    def encode(self) -> dict:
        data = {'type': self.type, 'taskId': self.task_id, 'percent': self.percent}
        if self.message is not None: data['message'] = self.message
        return data


@dataclass(frozen=True, eq=False)
class Result:
    """Terminal message carrying the score vector and the compute time (native module load excluded)."""
    type: ClassVar[str] = 'Result'
    task_id: str
    scores: np.ndarray = field(repr=False)
    compute_time_ms: float

    def __eq__(self, other):
        if not isinstance(other, Result): return NotImplemented
        return (self.task_id == other.task_id and self.compute_time_ms == other.compute_time_ms and
                np.array_equal(self.scores, other.scores))

    __hash__ = None

    def encode(self) -> dict:
        return {'type': self.type, 'taskId': self.task_id, 'scoreVector': self.scores.tolist(),
                'computeTimeMs': self.compute_time_ms}


@dataclass(frozen=True)
class Error:
    """Terminal failure: a human readable ``message`` and the ``cause`` as ``"<ExceptionType>: <text>"``."""
    type: ClassVar[str] = 'Error'
    task_id: str
    message: str
    cause: Optional[str] = None

    @classmethod
    def from_exception(cls, task_id: str, exc: BaseException) -> 'Error':
        root = exc
        while root.__cause__ is not None: root = root.__cause__
        return cls(task_id, str(exc), f"{type(root).__name__}: {root}")

    def encode(self) -> dict:
        data = {'type': self.type, 'taskId': self.task_id, 'message': self.message}
        if self.cause is not None: data['cause'] = self.cause
        return data


@dataclass(frozen=True)
class Cancelled:
    type: ClassVar[str] = 'Cancelled'
    task_id: str

    def encode(self) -> dict: return {'type': self.type, 'taskId': self.task_id}


Message = Union[Compute, Cancel, Progress, Result, Error, Cancelled]
TERMINAL = (Result, Error, Cancelled)


# Functions ------------------------------------------------------------------------------------------------------------
def encode_graph(graph: Graph) -> dict:
    return {'nodeCount': graph.node_count, 'edges': graph.edges.tolist(), 'isDirected': graph.is_directed}


def decode_graph(data: dict) -> Graph:
    """Builds a graph from its wire form. Edges may be ``[s, t]`` pairs or ``{source, target}`` objects."""
    try:
        edges = [(e['source'], e['target']) if isinstance(e, dict) else tuple(e) for e in data.get('edges', ())]
        return Graph(int(data['nodeCount']), edges, bool(data.get('isDirected', True)))
    except (KeyError, TypeError, ValueError) as e:
        raise MessageDecodeError(f"Malformed graph: {e}") from e


def decode_message(data: dict) -> Message:
    """
    Decodes a wire dict into a message.

    Raises:
        MessageDecodeError: If the type is unknown or a required field is missing.
    """
    try:
        match data['type']:
            case 'Compute':
                return Compute(data['taskId'], data['algorithm'], data['backend'], decode_graph(data['graph']),
                               data.get('parameters') or None)
            case 'Cancel': return Cancel(data['taskId'])
            case 'Progress': return Progress(data['taskId'], float(data['percent']), data.get('message'))
            case 'Result':
                return Result(data['taskId'], np.asarray(data['scoreVector'], dtype=np.float64),
                              float(data['computeTimeMs']))
            case 'Error': return Error(data['taskId'], data['message'], data.get('cause'))
            case 'Cancelled': return Cancelled(data['taskId'])
            case other: raise MessageDecodeError(f"Unknown message type: {other!r}")
    except KeyError as e:
        raise MessageDecodeError(f"Message is missing field {e}") from e
