"""
Plain-text edge-list parsing.

One edge per line as two whitespace-separated non-negative integers. Blank lines and lines starting with ``#`` or
``%`` are ignored. A first line ``n m`` is taken as a header when ``m`` equals the number of remaining edge lines and
no remaining id exceeds ``n``. Ids are treated as 1-based when none of them is 0.

Examples:
    >>> g = parse_edge_list("3 3\\n1 2\\n2 3\\n3 1\\n")
    >>> g, g.was_one_based
    (Directed Graph with 3 nodes and 3 edges, True)
"""
import logging
from os import PathLike
from pathlib import Path
from typing import Union

import numpy as np

from pagerank_engine import PageRankError
from pagerank_engine.core.graph import Graph

logger = logging.getLogger(__name__)

_COMMENT_PREFIXES = ('#', '%')


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class GraphParseError(PageRankError, ValueError):
    """
    Raised for malformed edge lists.

    Attributes:
        line: 1-based line number of the offending line, if any.
    """
    def __init__(self, message: str, line: int = None):
        super().__init__(f"Line {line}: {message}" if line is not None else message)
        self.line = line


# Classes --------------------------------------------------------------------------------------------------------------
class ParsedGraph(Graph):
    """
    A :class:`Graph` produced by the parser, remembering how ids were mapped.

    Attributes:
        was_one_based: Whether the input ids were shifted down by one.
        original_max_node_id: Largest id as written in the input.
    """
    __slots__ = ('was_one_based', 'original_max_node_id')

    def __init__(self, node_count: int, edges, is_directed: bool = True, was_one_based: bool = False,
                 original_max_node_id: int = -1):
        super().__init__(node_count, edges, is_directed)
        self.was_one_based = was_one_based
        self.original_max_node_id = original_max_node_id

    def original_id(self, node: int) -> int:
        """Maps a 0-based node index back to the id used in the input."""
        return node + 1 if self.was_one_based else node


# Functions ------------------------------------------------------------------------------------------------------------
def _parse_line(text: str, lineno: int) -> tuple[int, int]:
    if len(parts := text.split()) != 2:
        raise GraphParseError(f"Expected two node ids, got {len(parts)} fields: {text!r}", lineno)
    try: source, target = int(parts[0]), int(parts[1])
    except ValueError: raise GraphParseError(f"Node ids must be integers: {text!r}", lineno) from None
    if source < 0 or target < 0: raise GraphParseError(f"Node ids must be non-negative: {text!r}", lineno)
    return source, target


def parse_edge_list(text: str, directed: bool = True) -> ParsedGraph:
    """
    Parses an edge list into a graph.

    Args:
        text: The edge-list contents.
        directed: If False, every non-loop edge is also added in the reverse direction.

    Returns:
        The parsed graph with 0-based node ids.

    Raises:
        GraphParseError: On wrong arity, non-integer or negative ids, or when there are no edges.
    """
    rows = [(lineno, line.strip()) for lineno, line in enumerate(text.splitlines(), 1)]
    rows = [(lineno, line) for lineno, line in rows if line and not line.startswith(_COMMENT_PREFIXES)]
    if not rows: raise GraphParseError("No edges found")
    pairs = np.array([_parse_line(line, lineno) for lineno, line in rows], dtype=np.int64)

    declared_nodes = None
    if len(pairs) > 1:
        n, m = pairs[0]
        if m == len(pairs) - 1 and pairs[1:].max() <= n:
            logger.debug(f"Treating first line as header: {n} nodes, {m} edges")
            declared_nodes, pairs = int(n), pairs[1:]

    max_id = int(pairs.max())
    one_based = bool(pairs.min() > 0)
    if one_based: pairs = pairs - 1
    node_count = max(max_id + (0 if one_based else 1), declared_nodes or 0)
    if max_id > np.iinfo(np.int32).max: raise GraphParseError(f"Node id {max_id} does not fit in 32 bits")

    if not directed:
        forward = pairs[pairs[:, 0] != pairs[:, 1]]
        pairs = np.concatenate([pairs, forward[:, ::-1]])
    logger.info(f"Parsed {'directed' if directed else 'undirected'} edge list: {node_count} nodes, "
                f"{len(pairs)} edges{' (1-based ids)' if one_based else ''}")
    return ParsedGraph(node_count, pairs, directed, one_based, max_id)


def load_edge_list(path: Union[str, PathLike], directed: bool = True) -> ParsedGraph:
    """Reads and parses an edge-list file."""
    return parse_edge_list(Path(path).read_text(), directed)
