from dataclasses import dataclass
from functools import reduce
from typing import Dict, Iterable, List, Optional

from .tour import Tour


def _absent(tour: Optional[Tour]) -> bool:
    # A tour with no cities is the empty placeholder a reduction starts from.
    return tour is None or not tour.cities


def reduce_pair(a: Optional[Tour], b: Optional[Tour]) -> Optional[Tour]:
    if _absent(a):
        return b
    if _absent(b):
        return a
    return a if a.length <= b.length else b


def reduce_candidates(candidates: Iterable[Optional[Tour]]) -> Optional[Tour]:
    best = reduce(reduce_pair, candidates, None)
    return None if _absent(best) else best


@dataclass
class TourResult:
    city_ids: List[int]
    length: float

    @classmethod
    def from_tour(cls, tour: Optional[Tour]) -> Optional["TourResult"]:
        if tour is None:
            return None
        return cls(city_ids=tour.city_ids(), length=tour.length)

    def format(self) -> str:
        path = "-->".join(str(i) for i in self.city_ids + self.city_ids[:1])
        return f"OPTIMAL PATH:\n{path}\nOPTIMAL DISTANCE:\n{self.length:.3f}"

    def to_state(self) -> Dict:
        return {"city_ids": list(self.city_ids), "length": self.length}

    @classmethod
    def from_state(cls, state: Dict) -> "TourResult":
        return cls(city_ids=[int(i) for i in state["city_ids"]], length=float(state["length"]))
