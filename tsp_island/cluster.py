import concurrent.futures
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .data import PointSource
from .evaluation import TourResult, reduce_candidates
from .island import IslandConfig, NodeCoordinator
from .tour import Tour, initial_tour
from .transport import InMemoryTransport, Transport

logger = logging.getLogger(__name__)


@dataclass
class ClusterResult:
    best: Optional[Tour]
    config: IslandConfig
    histories: Dict[int, List[Dict]] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def result(self) -> Optional[TourResult]:
        return TourResult.from_tour(self.best)

    def to_state(self) -> Dict:
        return {
            "cfg": self.config.to_state(),
            "best": self.best.to_state() if self.best is not None else None,
            "histories": {str(k): v for k, v in self.histories.items()},
            "elapsed": self.elapsed,
        }

    @classmethod
    def from_state(cls, state: Dict) -> "ClusterResult":
        best = state.get("best")
        return cls(
            best=Tour.from_state(best) if best is not None else None,
            config=IslandConfig(**state["cfg"]),
            histories={int(k): v for k, v in state.get("histories", {}).items()},
            elapsed=state.get("elapsed", 0.0),
        )

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_state(), indent=2))

    @classmethod
    def load(cls, path: Path) -> "ClusterResult":
        return cls.from_state(json.loads(Path(path).read_text()))


def run_node(rank: int, tour: Tour, cfg: IslandConfig, transport: Transport) -> NodeCoordinator:
    """Run one node to completion and publish its candidate."""
    node = NodeCoordinator(rank, tour, cfg, transport)
    best = node.run()
    transport.publish_candidate(rank, best)
    return node


def collect(
    transport: Transport, nodes: int, timeout: Optional[float] = None, clear: bool = False
) -> Optional[Tour]:
    """Reduce the published node candidates; ``clear`` drops the run's traffic afterwards."""
    candidates = transport.collect_candidates(nodes, timeout=timeout)
    if clear:
        transport.clear()
    best = reduce_candidates(candidates)
    if best is None:
        logger.warning("reduction produced no result")
    return best


def solve(source: PointSource, cfg: IslandConfig, transport: Optional[Transport] = None) -> ClusterResult:
    """Run a whole cluster in this process, one thread per node."""
    cfg.validate()
    transport = transport or InMemoryTransport()
    t0 = time.perf_counter()
    tour = initial_tour(source)
    logger.info(
        f"solving {len(tour)} cities on {cfg.nodes} node(s) x {cfg.workers} worker(s), "
        f"population={cfg.population_size}"
    )
    with concurrent.futures.ThreadPoolExecutor(max_workers=cfg.nodes, thread_name_prefix="node") as ex:
        futures = [ex.submit(run_node, rank, tour, cfg, transport) for rank in range(cfg.nodes)]
        nodes = [f.result() for f in futures]
    best = collect(transport, cfg.nodes, timeout=cfg.migration_timeout)
    elapsed = time.perf_counter() - t0
    logger.info(f"done in {elapsed:.2f}s: best={best.length if best else float('nan'):.3f}")
    return ClusterResult(
        best=best,
        config=cfg,
        histories={n.node_rank: n.history for n in nodes},
        elapsed=elapsed,
    )
