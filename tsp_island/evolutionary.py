import logging
import random
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from .tour import Tour

logger = logging.getLogger(__name__)


@dataclass
class EvolutionConfig:
    population_size: int = 40
    ga_iterations: int = 50
    mutation_rate: float = 10.0  # percent of the offspring buffer
    random_seed: int = 123


class Population:
    """
    A set of tours evolved together by one worker.

    Each generation runs selection (truncate + sample-count mating pool),
    ordered crossover into an offspring buffer, swap mutation on that buffer,
    and then merges survivors with offspring and trims back to
    ``target_size``. ``max_length`` and all fitness values are only ever
    rewritten together in ``refresh_metrics()``.
    """

    def __init__(self, initial_tour: Tour, config: EvolutionConfig, rng: Optional[random.Random] = None):
        self.cfg = config
        self.initial_tour = initial_tour.copy()
        self.target_size = config.population_size
        self.rng = rng or random.Random(config.random_seed)
        self.tours: List[Tour] = []
        self.mating_pool: List[Tour] = []
        self.offspring: List[Tour] = []
        self.max_length = 0.0
        self.generation = 0

    def __len__(self) -> int:
        return len(self.tours)

    def create(self) -> None:
        self.tours = [self.initial_tour.shuffled(self.rng) for _ in range(self.target_size)]
        self.refresh_metrics()

    def refresh_metrics(self) -> None:
        if not self.tours:
            self.max_length = 0.0
            return
        self.max_length = max(t.length for t in self.tours)
        for t in self.tours:
            t.compute_fitness(self.max_length)
        total = sum(t.fitness for t in self.tours)
        for t in self.tours:
            t.compute_selection(total, self.target_size)

    def ranked(self) -> List[Tour]:
        # sorted() is stable: equal fitness keeps insertion order.
        return sorted(self.tours, key=lambda t: t.fitness, reverse=True)

    def selection(self) -> None:
        self.tours = self.ranked()[: self.target_size]
        self.mating_pool = []
        for t in self.tours:
            self.mating_pool.extend([t] * t.sample_count)

    def _draw_parents(self, visited: Set[int]):
        size = len(self.mating_pool)
        while True:
            i = self.rng.randrange(size)
            j = self.rng.randrange(size)
            if i != j and not (i in visited and j in visited):
                return i, j

    def crossover(self) -> None:
        if len(self.mating_pool) < 2:
            raise RuntimeError("mating pool needs at least two slots; call selection() first")
        visited: Set[int] = set()
        for _ in range(self.target_size // 2):
            i, j = self._draw_parents(visited)
            self.offspring.extend(self.ordered_crossover(self.mating_pool[i], self.mating_pool[j]))
            visited.add(i)
            visited.add(j)

    def _cut_points(self, size: int):
        p1 = self.rng.randrange(size)
        p2 = self.rng.randrange(size)
        while p1 == p2:
            p2 = self.rng.randrange(size)
        if p1 > p2:
            p1, p2 = p2, p1
        return p1, p2

    def ordered_crossover(self, parent_a: Tour, parent_b: Tour) -> List[Tour]:
        size = len(parent_a.cities)
        p1, p2 = self._cut_points(size)
        return [
            self._ox_child(donor=parent_b, filler=parent_a, p1=p1, p2=p2),
            self._ox_child(donor=parent_a, filler=parent_b, p1=p1, p2=p2),
        ]

    @staticmethod
    def _ox_child(donor: Tour, filler: Tour, p1: int, p2: int) -> Tour:
        size = len(filler.cities)
        child = [None] * size
        child[p1 : p2 + 1] = donor.cities[p1 : p2 + 1]
        placed = {c.id for c in donor.cities[p1 : p2 + 1]}
        pos = (p2 + 1) % size
        for k in range(size):
            city = filler.cities[(p2 + 1 + k) % size]
            if city.id in placed:
                continue
            child[pos] = city
            placed.add(city.id)
            pos = (pos + 1) % size
        tour = Tour(cities=child)
        tour.recompute_length()
        return tour

    def mutation(self) -> int:
        size = len(self.offspring)
        count = int(size * self.cfg.mutation_rate // 100)
        for _ in range(count):
            tour = self.offspring[self.rng.randrange(size)]
            n = len(tour.cities)
            a = self.rng.randrange(n)
            b = self.rng.randrange(n)
            while a == b:
                b = self.rng.randrange(n)
            tour.cities[a], tour.cities[b] = tour.cities[b], tour.cities[a]
            tour.recompute_length()
        return count

    def advance_generation(self) -> None:
        self.selection()
        self.crossover()
        self.mutation()
        merged = self.tours + self.offspring
        self.offspring = []
        self.mating_pool = []
        # Survivors compete with their children; shortest target_size remain.
        self.tours = sorted(merged, key=lambda t: t.length)[: self.target_size]
        self.refresh_metrics()
        self.generation += 1

    def run_ga(self, iterations: int) -> None:
        for _ in range(iterations):
            self.advance_generation()

    def extract_best(self, n: int) -> List[Tour]:
        return [t.copy() for t in self.ranked()[:n]]

    def snapshot(self) -> List[Tour]:
        return [t.copy() for t in self.tours]

    def ingest(self, incoming: Iterable[Tour]) -> int:
        copies = [t.copy() for t in incoming]
        self.tours.extend(copies)
        self.refresh_metrics()
        return len(copies)

    def best(self) -> Tour:
        return min(self.tours, key=lambda t: t.length)

    def stats(self) -> Dict[str, float]:
        lengths = [t.length for t in self.tours]
        return {
            "generation": self.generation,
            "size": len(lengths),
            "best": min(lengths),
            "mean": sum(lengths) / len(lengths),
            "worst": max(lengths),
        }
