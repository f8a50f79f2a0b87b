"""
Island-model genetic algorithm for the Euclidean TSP, with ring migration
between worker units of a node and between nodes of a cluster.
"""

__version__ = "0.1.0"

__all__ = [
    "cluster",
    "data",
    "evaluation",
    "evolutionary",
    "island",
    "tour",
    "transport",
]
