import logging

from tsp_island.cluster import solve
from tsp_island.data import RandomPointSource
from tsp_island.island import IslandConfig


def main():
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(message)s", datefmt="%H:%M:%S")
    source = RandomPointSource(30, 50, seed=142857)
    cfg = IslandConfig(
        population_size=30,
        ga_iterations=20,
        migration_rounds=5,
        workers=2,
        nodes=2,
        migrants=3,
    )
    outcome = solve(source, cfg)
    for rank, history in outcome.histories.items():
        lengths = " ".join(f"{h['best']:.1f}" for h in history)
        print(f"node {rank}: {lengths}")
    print(outcome.result.format())


if __name__ == "__main__":
    main()
