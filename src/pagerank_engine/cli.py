"""
Command-line front end: score an edge-list file and print the top nodes.

Examples:
    $ pagerank-engine graph.txt --algorithm random-walk --backend native --walks-per-node 1000 --seed 7 --top 5
"""
import argparse
import logging
import sys
from dataclasses import fields, replace
from functools import partial
from typing import Optional, Sequence

from pagerank_engine import PageRankError
from pagerank_engine.config import EngineConfig
from pagerank_engine.core.params import Algorithm, Backend, PowerIterationParams
from pagerank_engine.io.edgelist import load_edge_list
from pagerank_engine.metrics import calculate_error_metrics, format_error_metrics, top_nodes
from pagerank_engine.runtime.context import ExecutionContext
from pagerank_engine.runtime.scheduler import ComputeTaskScheduler
from pagerank_engine.utils import ProgressBar

logger = logging.getLogger(__name__)


# Functions ------------------------------------------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='pagerank-engine', description=__doc__.splitlines()[1])
    parser.add_argument('graph', help="Edge-list file: one 'source target' pair per line")
    parser.add_argument('-a', '--algorithm', type=Algorithm.parse, default=Algorithm.POWER_ITERATION,
                        help="power-iteration (default) or random-walk")
    parser.add_argument('-b', '--backend', type=Backend.parse, default=Backend.MANAGED,
                        help="managed (default) or native")
    parser.add_argument('--alpha', type=float, default=None, help="Damping factor in (0, 1) (default: 0.85)")
    parser.add_argument('--iterations', type=int, default=None, help="Power-iteration sweeps (default: 100)")
    parser.add_argument('--walks-per-node', type=int, default=None, help="Random walks per node (default: 1000)")
    parser.add_argument('--seed', type=int, default=None, help="Random-walk seed")
    parser.add_argument('--max-walkers', type=int, default=None, help="Managed random-walk batch bound")
    parser.add_argument('--heap-capacity', type=int, default=None, help="Foreign memory limit in bytes")
    parser.add_argument('-u', '--undirected', action='store_true', help="Treat edges as undirected")
    parser.add_argument('-k', '--top', type=int, default=10, help="Number of top nodes to print (default: 10)")
    parser.add_argument('--ground-truth', action='store_true',
                        help="Also report errors against managed power iteration")
    parser.add_argument('--no-progress', action='store_true', help="Do not draw a progress bar")
    parser.add_argument('-v', '--verbose', action='count', default=0, help="Increase log verbosity (-v, -vv)")
    return parser


def _run(scheduler: ComputeTaskScheduler, graph, algorithm, backend, params, desc: str, show_progress: bool):
    if not show_progress: return scheduler.submit(graph, algorithm, backend, params).result()
    with ProgressBar(desc=desc) as bar:
        return scheduler.submit(graph, algorithm, backend, params, on_progress=bar.update_to).result()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=(logging.WARNING, logging.INFO, logging.DEBUG)[min(args.verbose, 2)],
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s', stream=sys.stderr)

    config = EngineConfig.from_env()
    config = replace(config, **{f.name: v for f in fields(config) if (v := getattr(args, f.name, None)) is not None})
    context_factory = partial(ExecutionContext, heap_capacity=config.heap_capacity)

    try:
        graph = load_edge_list(args.graph, directed=not args.undirected)
        params = config.default_params(args.algorithm)
        with ComputeTaskScheduler(context_factory, config.max_walkers) as scheduler:
            result = _run(scheduler, graph, args.algorithm, args.backend, params, f"{args.algorithm} ({args.backend})",
                          not args.no_progress)
            reference = None
            if args.ground_truth:
                reference = _run(scheduler, graph, Algorithm.POWER_ITERATION, Backend.MANAGED,
                                 PowerIterationParams(config.alpha, config.iterations), "ground truth",
                                 not args.no_progress)
    except (PageRankError, OSError) as e:
        logger.error(f"{e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130

    print(f"{graph!r}")
    print(f"{args.algorithm} on {args.backend} backend: {result.compute_time_ms:.1f} ms")
    print(f"{'Rank':>4}  {'Node':>10}  Score")
    for node in top_nodes(result.scores, args.top, graph.original_id):
        print(f"{node.rank:>4}  {node.node_id:>10}  {node.score:.6e}")
    if reference is not None:
        print(format_error_metrics(calculate_error_metrics(result.scores, reference.scores)))
    return 0


if __name__ == '__main__':
    sys.exit(main())
