"""
Tests for tsp_island/island.py

Tests configuration, ring topology, worker units and node-level migration.
"""

import concurrent.futures
import logging

import pytest

from tsp_island.data import RandomPointSource
from tsp_island.errors import ConfigurationError
from tsp_island.island import IslandConfig, NodeCoordinator, RingTopology, WorkerUnit
from tsp_island.tour import initial_tour
from tsp_island.transport import InMemoryTransport


@pytest.fixture
def tour():
    return initial_tour(RandomPointSource(10, 50, seed=11))


def small_config(**overrides):
    params = dict(
        population_size=6,
        ga_iterations=1,
        migration_rounds=2,
        workers=3,
        nodes=1,
        migrants=2,
        migration_timeout=5.0,
    )
    params.update(overrides)
    return IslandConfig(**params).validate()


# ==================== Config Tests ====================

class TestIslandConfig:
    """Tests for IslandConfig."""

    def test_defaults_are_valid(self):
        """Default configuration passes validation."""
        cfg = IslandConfig().validate()
        assert cfg.workers == 4
        assert cfg.direction == "anticlockwise"
        assert cfg.mutation_rate == 10.0

    @pytest.mark.parametrize("overrides", [
        {"population_size": 0},
        {"population_size": 1},
        {"ga_iterations": 0},
        {"migration_rounds": -1},
        {"workers": 0},
        {"nodes": 0},
        {"migrants": -1},
        {"mutation_rate": 150.0},
        {"direction": "sideways"},
        {"migration_timeout": 0},
    ])
    def test_invalid_values(self, overrides):
        """Non-positive counts and unknown options are rejected."""
        with pytest.raises(ConfigurationError):
            IslandConfig(**overrides).validate()

    def test_state_round_trip(self):
        """Config survives asdict and back."""
        cfg = small_config(direction="clockwise")
        assert IslandConfig(**cfg.to_state()) == cfg


# ==================== Ring Topology Tests ====================

class TestRingTopology:
    """Tests for RingTopology."""

    def test_clockwise(self):
        """Clockwise successor is rank + 1, wrapping at the end."""
        ring = RingTopology(4, "clockwise")
        assert [ring.successor(r) for r in range(4)] == [1, 2, 3, 0]
        assert ring.predecessor(0) == 3

    def test_anticlockwise(self):
        """Anticlockwise successor is rank - 1."""
        ring = RingTopology(4, "anticlockwise")
        assert [ring.successor(r) for r in range(4)] == [3, 0, 1, 2]
        assert ring.predecessor(3) == 0

    def test_single_rank_points_to_itself(self):
        """A ring of one is a self loop."""
        ring = RingTopology(1, "anticlockwise")
        assert ring.successor(0) == 0
        assert ring.predecessor(0) == 0

    def test_unknown_direction(self):
        """Only the two directions are allowed."""
        with pytest.raises(ConfigurationError):
            RingTopology(3, "diagonal")


# ==================== Worker Tests ====================

class TestWorkerUnit:
    """Tests for WorkerUnit."""

    def test_owns_full_population(self, tour):
        """A worker starts with population_size tours."""
        worker = WorkerUnit(0, 1, tour, small_config())
        assert len(worker.population) == 6

    def test_workers_seeded_differently(self, tour):
        """Each worker draws from its own random stream."""
        cfg = small_config()
        a = WorkerUnit(0, 0, tour, cfg)
        b = WorkerUnit(0, 1, tour, cfg)
        assert [t.city_ids() for t in a.population.tours] != [t.city_ids() for t in b.population.tours]

    def test_deliver_then_absorb(self, tour):
        """Delivered batches are ingested on absorb()."""
        cfg = small_config()
        worker = WorkerUnit(0, 0, tour, cfg)
        other = WorkerUnit(0, 1, tour, cfg)

        worker.deliver(other.population.snapshot())
        worker.deliver(other.population.extract_best(2))

        assert worker.absorb() == 8
        assert len(worker.population) == 14
        assert worker.absorb() == 0

    def test_evolve_restores_size(self, tour):
        """Evolution trims immigrants back to target size."""
        cfg = small_config()
        worker = WorkerUnit(0, 0, tour, cfg)
        worker.population.ingest(worker.population.snapshot())

        stats = worker.evolve()

        assert len(worker.population) == 6
        assert stats["generation"] == cfg.ga_iterations


# ==================== Node Coordinator Tests ====================

class TestNodeCoordinator:
    """Tests for NodeCoordinator."""

    def test_round_moves_tours_around_the_ring(self, tour):
        """Workers 0..W-2 push whole populations; W-1 also gets elites."""
        cfg = small_config(workers=3, migrants=2)
        node = NodeCoordinator(0, tour, cfg, InMemoryTransport())

        with concurrent.futures.ThreadPoolExecutor(max_workers=3) as ex:
            node.run_round(ex)

        sizes = [len(w.population) for w in node.workers]
        assert sizes == [6, 12, 14]
        assert node.history[0]["round"] == 0

    def test_single_worker_node(self, tour):
        """With one worker, worker 0 is also the inter-node receiver."""
        cfg = small_config(workers=1, migrants=2)
        node = NodeCoordinator(0, tour, cfg, InMemoryTransport())

        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as ex:
            node.run_round(ex)

        assert len(node.workers[0].population) == 8

    @pytest.mark.parametrize("direction,target", [("anticlockwise", 2), ("clockwise", 1)])
    def test_elites_follow_ring_direction(self, tour, direction, target):
        """Worker 0 sends elites to the node ring successor's last worker."""
        cfg = small_config(nodes=3, direction=direction, migration_timeout=0.05)
        transport = InMemoryTransport()
        node = NodeCoordinator(0, tour, cfg, transport)

        with concurrent.futures.ThreadPoolExecutor(max_workers=3) as ex:
            node.run_round(ex)

        assert transport.pending(target, cfg.workers - 1) == 1
        envelope = transport.receive(target, cfg.workers - 1, timeout=0.1)
        assert envelope.source_node == 0
        assert len(envelope.tours) == 2

    def test_missing_migrants_skip_round(self, tour, caplog):
        """A receive timeout is logged and the round still completes."""
        cfg = small_config(nodes=2, migration_timeout=0.05)
        node = NodeCoordinator(0, tour, cfg, InMemoryTransport())

        with caplog.at_level(logging.WARNING, logger="tsp_island.island"):
            with concurrent.futures.ThreadPoolExecutor(max_workers=3) as ex:
                node.run_round(ex)

        assert "skipping inter-node migration" in caplog.text
        assert len(node.workers[-1].population) == 12
        assert node.round == 1

    def test_run_returns_best_candidate(self, tour):
        """run() executes every round and returns the shortest worker tour."""
        cfg = small_config(migration_rounds=3)
        node = NodeCoordinator(0, tour, cfg, InMemoryTransport())

        best = node.run()

        assert len(node.history) == 3
        assert sorted(best.city_ids()) == list(range(10))
        assert best.length == min(w.best().length for w in node.workers)
        assert best is not node.workers[0].best()

    def test_two_nodes_exchange(self, tour):
        """Two nodes sharing a transport both finish."""
        cfg = small_config(nodes=2, migration_rounds=2)
        transport = InMemoryTransport()
        nodes = [NodeCoordinator(rank, tour, cfg, transport) for rank in range(2)]

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as ex:
            results = list(ex.map(NodeCoordinator.run, nodes))

        assert all(len(n.history) == 2 for n in nodes)
        assert all(sorted(r.city_ids()) == list(range(10)) for r in results)
        assert transport.pending(0, 2) == 0
        assert transport.pending(1, 2) == 0

    def test_to_state(self, tour):
        """to_state() records each worker's population."""
        cfg = small_config(migration_rounds=1)
        node = NodeCoordinator(0, tour, cfg, InMemoryTransport())
        node.run()

        state = node.to_state()

        assert state["node"] == 0
        assert len(state["workers"]) == 3
        assert len(state["history"]) == 1
