import ast
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Type

import numpy as np
import tsplib95

from .errors import ConfigurationError, PointSourceExhausted


@dataclass(frozen=True, eq=False)
class Point:
    x: float
    y: float
    id: int = 0

    # The id is bookkeeping only; two points at the same spot are the same city.
    def __eq__(self, other) -> bool:
        if not isinstance(other, Point):
            return NotImplemented
        return self.x == other.x and self.y == other.y

    def __hash__(self) -> int:
        return hash((self.x, self.y))

    def to_state(self) -> Dict:
        return {"x": self.x, "y": self.y, "id": self.id}

    @classmethod
    def from_state(cls, state: Dict) -> "Point":
        return cls(x=float(state["x"]), y=float(state["y"]), id=int(state["id"]))


class PointSource(ABC):
    """
    A finite supply of cities.

    ``next()`` may be called exactly ``count()`` times; ids are handed out in
    generation order starting at 0.
    """

    def __init__(self):
        self._generated = 0

    @abstractmethod
    def count(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def _coordinate(self, index: int) -> Tuple[float, float]:
        raise NotImplementedError

    def next(self) -> Point:
        if self._generated >= self.count():
            raise PointSourceExhausted(
                f"{type(self).__name__}.next(): too many points requested "
                f"(count={self.count()})"
            )
        idx = self._generated
        x, y = self._coordinate(idx)
        self._generated += 1
        return Point(x=float(x), y=float(y), id=idx)

    def remaining(self) -> int:
        return self.count() - self._generated

    def points(self) -> List[Point]:
        return [self.next() for _ in range(self.remaining())]

    def __len__(self) -> int:
        return self.count()


class RandomPointSource(PointSource):
    """Points with coordinates drawn uniformly from [-bound, +bound]."""

    def __init__(self, n: int, bound: float = 100.0, seed: int = 0):
        super().__init__()
        if n < 0:
            raise ConfigurationError(f"point count must be non-negative, got {n}")
        self.n = int(n)
        self.bound = float(bound)
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def count(self) -> int:
        return self.n

    def _coordinate(self, index: int) -> Tuple[float, float]:
        x, y = (self._rng.random(2) * 2.0 - 1.0) * self.bound
        return x, y


class StaticPointSource(PointSource):
    def __init__(self, coords: Sequence[Sequence[float]]):
        super().__init__()
        self.coords = [tuple(c) for c in coords]
        for c in self.coords:
            if len(c) != 2:
                raise ConfigurationError(f"expected (x, y) pairs, got {c!r}")

    def count(self) -> int:
        return len(self.coords)

    def _coordinate(self, index: int) -> Tuple[float, float]:
        return self.coords[index]


class TsplibPointSource(PointSource):
    """Cities read from the NODE_COORD_SECTION of a TSPLIB ``.tsp`` file."""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        if not self.path.exists():
            raise ConfigurationError(f"TSPLIB file not found: {self.path}")
        problem = tsplib95.load(self.path)
        coords = problem.node_coords
        if not coords:
            raise ConfigurationError(f"{self.path} has no node coordinates")
        self.name = problem.name
        self.coords = [tuple(coords[n][:2]) for n in sorted(coords)]

    def count(self) -> int:
        return len(self.coords)

    def _coordinate(self, index: int) -> Tuple[float, float]:
        return self.coords[index]


POINT_SOURCES: Dict[str, Type[PointSource]] = {
    "RandomPointSource": RandomPointSource,
    "StaticPointSource": StaticPointSource,
    "TsplibPointSource": TsplibPointSource,
}


def parse_point_source(expr: str) -> PointSource:
    """Build a point source from an expression like ``RandomPointSource(100, 50, 7)``."""
    try:
        node = ast.parse(expr.strip(), mode="eval").body
    except SyntaxError as e:
        raise ConfigurationError(f"malformed point source expression {expr!r}: {e.msg}") from e
    if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Name):
        raise ConfigurationError(f"expected a constructor call, got {expr!r}")
    cls = POINT_SOURCES.get(node.func.id)
    if cls is None:
        known = ", ".join(sorted(POINT_SOURCES))
        raise ConfigurationError(f"unknown point source {node.func.id!r} (known: {known})")
    try:
        args = [ast.literal_eval(a) for a in node.args]
        kwargs = {kw.arg: ast.literal_eval(kw.value) for kw in node.keywords}
    except (ValueError, TypeError, SyntaxError) as e:
        raise ConfigurationError(f"point source arguments must be literals in {expr!r}") from e
    try:
        return cls(*args, **kwargs)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"bad arguments for {node.func.id}: {e}") from e
