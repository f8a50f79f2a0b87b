import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from tsp_island.cluster import ClusterResult, collect, run_node, solve
from tsp_island.data import parse_point_source
from tsp_island.errors import TSPIslandError
from tsp_island.evaluation import TourResult
from tsp_island.island import DIRECTIONS, IslandConfig
from tsp_island.tour import initial_tour
from tsp_island.transport import create_transport

logger = logging.getLogger("tsp_island")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def print_result(result: Optional[TourResult]) -> None:
    if result is None:
        print("No result.")
        return
    print(result.format())


def _config_from_args(args) -> IslandConfig:
    return IslandConfig(
        population_size=args.population_size,
        ga_iterations=args.ga_iterations,
        migration_rounds=args.migrations,
        workers=args.workers,
        nodes=args.nodes,
        migrants=args.migrants,
        mutation_rate=args.mutation_rate,
        random_seed=args.seed,
        direction=args.direction,
        migration_timeout=args.timeout,
    ).validate()


def run(args) -> None:
    cfg = _config_from_args(args)
    source = parse_point_source(args.ctor)
    outcome = solve(source, cfg)
    if args.output:
        outcome.save(Path(args.output))
        logger.info(f"result written to {args.output}")
    print_result(outcome.result)


def _redis_transport(args):
    # Keys are namespaced per run so a previous run's leftovers are never read.
    return create_transport("redis", redis_url=args.redis_url, prefix=f"tsp_island:{args.run_id}")


def node(args) -> None:
    cfg = _config_from_args(args)
    if not 0 <= args.rank < cfg.nodes:
        raise TSPIslandError(f"rank must be in [0, {cfg.nodes}), got {args.rank}")
    transport = _redis_transport(args)
    tour = initial_tour(parse_point_source(args.ctor))
    run_node(args.rank, tour, cfg, transport)


def reduce_results(args) -> None:
    transport = _redis_transport(args)
    best = collect(transport, args.nodes, timeout=args.timeout, clear=True)
    print_result(TourResult.from_tour(best))


def show(args) -> None:
    path = Path(args.path)
    if not path.exists():
        raise TSPIslandError(f"no result file at {path}")
    outcome = ClusterResult.load(path)
    for rank, history in sorted(outcome.histories.items()):
        if history:
            print(f"node {rank}: rounds={len(history)} best={history[-1]['best']:.3f}")
    print_result(outcome.result)


def _add_ga_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("ctor", help='point source expression, e.g. "RandomPointSource(100, 50, 142857)"')
    parser.add_argument("population_size", type=int)
    parser.add_argument("ga_iterations", type=int, help="GA generations per migration round")
    parser.add_argument("migrations", type=int, help="number of migration rounds")
    parser.add_argument("--workers", type=int, default=4)
    parser.add_argument("--nodes", type=int, default=1)
    parser.add_argument("--migrants", type=int, default=10)
    parser.add_argument("--mutation-rate", type=float, default=10.0)
    parser.add_argument("--seed", type=int, default=123)
    parser.add_argument("--direction", choices=DIRECTIONS, default="anticlockwise")
    parser.add_argument("--timeout", type=float, default=30.0, help="seconds to wait for migrants")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Island-model GA for the Euclidean TSP")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a whole cluster in this process")
    _add_ga_arguments(run_parser)
    run_parser.add_argument("--output", help="write the result as JSON")
    run_parser.set_defaults(func=run)

    node_parser = subparsers.add_parser("node", help="Run one node of a Redis-connected cluster")
    node_parser.add_argument("rank", type=int)
    _add_ga_arguments(node_parser)
    node_parser.add_argument("--redis-url", default="redis://localhost:6379")
    node_parser.add_argument("--run-id", default="default", help="namespace for this run's Redis keys")
    node_parser.set_defaults(func=node)

    reduce_parser = subparsers.add_parser("reduce", help="Collect node candidates from Redis")
    reduce_parser.add_argument("--nodes", type=int, required=True)
    reduce_parser.add_argument("--redis-url", default="redis://localhost:6379")
    reduce_parser.add_argument("--run-id", default="default", help="namespace for this run's Redis keys")
    reduce_parser.add_argument("--timeout", type=float, default=None)
    reduce_parser.set_defaults(func=reduce_results)

    show_parser = subparsers.add_parser("show", help="Print a saved result")
    show_parser.add_argument("path")
    show_parser.set_defaults(func=show)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        args.func(args)
    except TSPIslandError as e:
        parser.print_usage(sys.stderr)
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
