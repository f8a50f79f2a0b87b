import concurrent.futures
import logging
import queue
import random
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

import networkx as nx

from .errors import ConfigurationError
from .evolutionary import EvolutionConfig, Population
from .tour import Tour
from .transport import MigrationEnvelope, Transport

logger = logging.getLogger(__name__)

DIRECTIONS = ("clockwise", "anticlockwise")


@dataclass
class IslandConfig(EvolutionConfig):
    workers: int = 4
    nodes: int = 1
    migration_rounds: int = 10
    migrants: int = 10
    direction: str = "anticlockwise"  # inter-node ring direction
    migration_timeout: Optional[float] = 30.0

    def validate(self) -> "IslandConfig":
        positive = {
            "population_size": self.population_size,
            "ga_iterations": self.ga_iterations,
            "migration_rounds": self.migration_rounds,
            "workers": self.workers,
            "nodes": self.nodes,
        }
        for name, value in positive.items():
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.population_size < 2:
            raise ConfigurationError("population_size must be at least 2 to allow crossover")
        if self.migrants < 0:
            raise ConfigurationError(f"migrants must be non-negative, got {self.migrants}")
        if not 0 <= self.mutation_rate <= 100:
            raise ConfigurationError(f"mutation_rate is a percentage, got {self.mutation_rate}")
        if self.direction not in DIRECTIONS:
            raise ConfigurationError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")
        if self.migration_timeout is not None and self.migration_timeout <= 0:
            raise ConfigurationError(f"migration_timeout must be positive, got {self.migration_timeout}")
        return self

    def to_state(self) -> Dict:
        return asdict(self)


class RingTopology:
    """Directed ring over ``size`` ranks; clockwise is ``r -> r + 1``."""

    def __init__(self, size: int, direction: str = "clockwise"):
        if direction not in DIRECTIONS:
            raise ConfigurationError(f"direction must be one of {DIRECTIONS}, got {direction!r}")
        self.size = size
        self.direction = direction
        ring = nx.cycle_graph(size, create_using=nx.DiGraph)
        if size == 1:
            ring.add_edge(0, 0)
        self.graph = ring if direction == "clockwise" else ring.reverse(copy=True)

    def successor(self, rank: int) -> int:
        return next(iter(self.graph.successors(rank)))

    def predecessor(self, rank: int) -> int:
        return next(iter(self.graph.predecessors(rank)))


class WorkerUnit:
    """One evolution slot of a node: a private population plus an inbox."""

    def __init__(self, node_rank: int, rank: int, initial_tour: Tour, cfg: IslandConfig):
        self.node_rank = node_rank
        self.rank = rank
        self.cfg = cfg
        rng = random.Random(cfg.random_seed + node_rank * cfg.workers + rank)
        self.population = Population(initial_tour, cfg, rng=rng)
        self.population.create()
        self.inbox: queue.Queue = queue.Queue()

    def evolve(self) -> Dict[str, float]:
        self.population.run_ga(self.cfg.ga_iterations)
        stats = self.population.stats()
        logger.debug(
            f"node {self.node_rank} worker {self.rank}: gen={stats['generation']} "
            f"best={stats['best']:.3f} mean={stats['mean']:.3f}"
        )
        return stats

    def deliver(self, tours: List[Tour]) -> None:
        self.inbox.put(tours)

    def absorb(self) -> int:
        received = 0
        while True:
            try:
                batch = self.inbox.get_nowait()
            except queue.Empty:
                break
            received += self.population.ingest(batch)
        return received

    def best(self) -> Tour:
        return self.population.best()


class NodeCoordinator:
    """
    Drives the worker units of one node through evolve/migrate rounds.

    Intra-node: every worker except the last pushes its whole population to
    its ring successor. Inter-node: worker 0 sends its elites to the next
    node on the node ring, and the last worker waits for the batch addressed
    to it.
    """

    def __init__(self, node_rank: int, initial_tour: Tour, cfg: IslandConfig, transport: Transport):
        self.node_rank = node_rank
        self.cfg = cfg
        self.transport = transport
        self.worker_ring = RingTopology(cfg.workers, "clockwise")
        self.node_ring = RingTopology(cfg.nodes, cfg.direction)
        self.workers: List[WorkerUnit] = [
            WorkerUnit(node_rank, r, initial_tour, cfg) for r in range(cfg.workers)
        ]
        self.round = 0
        self.history: List[Dict] = []

    @property
    def last_worker(self) -> int:
        return self.cfg.workers - 1

    def _map_workers(self, ex: concurrent.futures.Executor, fn) -> List:
        # list() waits for every worker, which is the round barrier.
        return list(ex.map(fn, self.workers))

    def run_round(self, ex: concurrent.futures.Executor) -> Dict:
        self._map_workers(ex, WorkerUnit.evolve)
        self.migrate(ex)
        best = self.candidate()
        record = {"round": self.round, "best": best.length}
        self.history.append(record)
        logger.info(f"node {self.node_rank} round {self.round}: best={best.length:.3f}")
        self.round += 1
        return record

    def migrate(self, ex: concurrent.futures.Executor) -> None:
        # Take every outgoing copy before anyone ingests.
        pushes = {
            w.rank: w.population.snapshot() for w in self.workers if w.rank != self.last_worker
        }
        elites = self.workers[0].population.extract_best(self.cfg.migrants)
        for rank, tours in pushes.items():
            self.workers[self.worker_ring.successor(rank)].deliver(tours)
        envelope = MigrationEnvelope(
            dest_node=self.node_ring.successor(self.node_rank),
            dest_worker=self.last_worker,
            source_node=self.node_rank,
            round=self.round,
            tours=elites,
        )
        self.transport.send(envelope)
        logger.debug(
            f"node {self.node_rank} sent {len(elites)} elites to node {envelope.dest_node}"
        )
        self._receive_immigrants()
        self._map_workers(ex, WorkerUnit.absorb)

    def _receive_immigrants(self) -> None:
        incoming = self.transport.receive(
            self.node_rank, self.last_worker, timeout=self.cfg.migration_timeout
        )
        if incoming is None:
            logger.warning(
                f"node {self.node_rank} round {self.round}: no migrants within "
                f"{self.cfg.migration_timeout}s, skipping inter-node migration"
            )
            return
        logger.debug(
            f"node {self.node_rank} received {len(incoming.tours)} tours from node "
            f"{incoming.source_node} (round {incoming.round})"
        )
        self.workers[self.last_worker].deliver(incoming.tours)

    def run(self) -> Tour:
        logger.info(
            f"node {self.node_rank}: {self.cfg.workers} workers, "
            f"{self.cfg.migration_rounds} rounds x {self.cfg.ga_iterations} generations"
        )
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.cfg.workers, thread_name_prefix=f"node{self.node_rank}"
        ) as ex:
            for _ in range(self.cfg.migration_rounds):
                self.run_round(ex)
        best = self.candidate()
        logger.info(f"node {self.node_rank} finished: best={best.length:.3f}")
        return best

    def candidate(self) -> Tour:
        best = min((w.best() for w in self.workers), key=lambda t: t.length)
        return best.copy()

    def to_state(self) -> Dict:
        return {
            "node": self.node_rank,
            "round": self.round,
            "history": list(self.history),
            "workers": [
                {"rank": w.rank, "population": [t.to_state() for t in w.population.tours]}
                for w in self.workers
            ],
        }
