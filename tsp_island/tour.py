import math
import random
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from .data import Point, PointSource
from .errors import ConfigurationError


def tour_length(cities: Sequence[Point]) -> float:
    n = len(cities)
    if n < 2:
        return 0.0
    coords = np.array([(c.x, c.y) for c in cities], dtype=np.float64)
    # Closed tour: each city to its successor, last back to first.
    deltas = coords - np.roll(coords, -1, axis=0)
    return float(np.hypot(deltas[:, 0], deltas[:, 1]).sum())


@dataclass
class Tour:
    """
    One candidate closed tour plus the metrics the GA derives from it.

    ``length`` is stored and only refreshed by ``recompute_length()``;
    ``fitness``, ``selection_probability`` and ``sample_count`` are relative
    to the population that currently owns the tour.
    """

    cities: List[Point] = field(default_factory=list)
    length: float = 0.0
    fitness: float = 0.0
    selection_probability: float = 0.0
    sample_count: int = 0

    def __len__(self) -> int:
        return len(self.cities)

    def recompute_length(self) -> float:
        self.length = tour_length(self.cities)
        return self.length

    def compute_fitness(self, max_length: float) -> float:
        self.fitness = max_length - self.length
        return self.fitness

    def compute_selection(self, total_fitness: float, population_size: int) -> int:
        if total_fitness > 0:
            self.selection_probability = self.fitness / total_fitness
        else:
            self.selection_probability = 0.0
        # Halves round up; the +1 keeps every tour in the mating pool at least once.
        self.sample_count = int(math.floor(self.selection_probability * population_size + 0.5)) + 1
        return self.sample_count

    def copy(self) -> "Tour":
        return Tour(
            cities=list(self.cities),
            length=self.length,
            fitness=self.fitness,
            selection_probability=self.selection_probability,
            sample_count=self.sample_count,
        )

    def shuffled(self, rng: random.Random) -> "Tour":
        cities = list(self.cities)
        rng.shuffle(cities)
        tour = Tour(cities=cities)
        tour.recompute_length()
        return tour

    def city_ids(self) -> List[int]:
        return [c.id for c in self.cities]

    def to_state(self) -> Dict:
        return {
            "cities": [c.to_state() for c in self.cities],
            "length": self.length,
            "fitness": self.fitness,
            "selection_probability": self.selection_probability,
            "sample_count": self.sample_count,
        }

    @classmethod
    def from_state(cls, state: Dict) -> "Tour":
        return cls(
            cities=[Point.from_state(c) for c in state["cities"]],
            length=float(state["length"]),
            fitness=float(state.get("fitness", 0.0)),
            selection_probability=float(state.get("selection_probability", 0.0)),
            sample_count=int(state.get("sample_count", 0)),
        )


def initial_tour(source: PointSource) -> Tour:
    """Drain ``source`` into the tour every population is seeded from."""
    cities = [source.next() for _ in range(source.count())]
    if len(cities) < 2:
        raise ConfigurationError(f"need at least 2 cities, got {len(cities)}")
    tour = Tour(cities=cities)
    tour.recompute_length()
    return tour
