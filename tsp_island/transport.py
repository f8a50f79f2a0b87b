"""
Message transport between nodes of a cluster.

Two kinds of traffic cross node boundaries:
- migration envelopes: a batch of elite tours addressed to one
  ``(node, worker)`` slot of another node
- candidates: each node's best tour, collected once by the reducer

Everything is serialised to JSON on the way in, so a received tour never
shares state with the sender's copy.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError, MigrationTimeout
from .tour import Tour

logger = logging.getLogger(__name__)


@dataclass
class MigrationEnvelope:
    """A batch of tours tagged with the slot that must receive it."""
    dest_node: int
    dest_worker: int
    source_node: int
    round: int = 0
    tours: List[Tour] = field(default_factory=list)

    @property
    def tag(self) -> Tuple[int, int]:
        return self.dest_node, self.dest_worker

    def to_json(self) -> str:
        return json.dumps({
            "dest_node": self.dest_node,
            "dest_worker": self.dest_worker,
            "source_node": self.source_node,
            "round": self.round,
            "tours": [t.to_state() for t in self.tours],
        })

    @classmethod
    def from_json(cls, data: str) -> "MigrationEnvelope":
        d = json.loads(data)
        return cls(
            dest_node=d["dest_node"],
            dest_worker=d["dest_worker"],
            source_node=d["source_node"],
            round=d.get("round", 0),
            tours=[Tour.from_state(t) for t in d["tours"]],
        )


def _candidate_json(node: int, tour: Optional[Tour]) -> str:
    return json.dumps({"node": node, "tour": tour.to_state() if tour is not None else None})


def _candidate_from_json(data: str) -> Tuple[int, Optional[Tour]]:
    d = json.loads(data)
    tour = Tour.from_state(d["tour"]) if d["tour"] is not None else None
    return d["node"], tour


class Transport(ABC):
    """Interface the node coordinator and reducer talk through."""

    @abstractmethod
    def send(self, envelope: MigrationEnvelope) -> None:
        pass

    @abstractmethod
    def _pop(self, node: int, worker: int, timeout: Optional[float]) -> Optional[str]:
        pass

    def receive(
        self,
        node: int,
        worker: int,
        timeout: Optional[float] = None,
        strict: bool = False,
    ) -> Optional[MigrationEnvelope]:
        """
        Block until an envelope tagged ``(node, worker)`` arrives.

        Returns None when ``timeout`` expires, or raises MigrationTimeout if
        ``strict`` is set.
        """
        data = self._pop(node, worker, timeout)
        if data is None:
            if strict:
                raise MigrationTimeout(
                    f"no envelope for node {node} worker {worker} within {timeout}s"
                )
            return None
        return MigrationEnvelope.from_json(data)

    @abstractmethod
    def publish_candidate(self, node: int, tour: Optional[Tour]) -> None:
        pass

    @abstractmethod
    def _pop_candidate(self, timeout: Optional[float]) -> Optional[str]:
        pass

    def collect_candidates(self, expected: int, timeout: Optional[float] = None) -> List[Tour]:
        """Gather up to ``expected`` node candidates; stops early on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        tours: List[Tour] = []
        for _ in range(expected):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            data = self._pop_candidate(remaining)
            if data is None:
                logger.warning(f"Collected {len(tours)} of {expected} candidates before timeout")
                break
            node, tour = _candidate_from_json(data)
            logger.debug(f"Candidate from node {node}: {tour.length if tour else None}")
            if tour is not None:
                tours.append(tour)
        return tours

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryTransport(Transport):
    """
    Thread-safe transport for nodes running inside one process.

    One FIFO queue per ``(node, worker)`` tag keeps delivery order per ring
    edge.
    """

    def __init__(self):
        self._queues: Dict[Tuple[int, int], queue.Queue] = {}
        self._candidates: queue.Queue = queue.Queue()
        self._lock = threading.Lock()

    def _queue(self, tag: Tuple[int, int]) -> queue.Queue:
        with self._lock:
            if tag not in self._queues:
                self._queues[tag] = queue.Queue()
            return self._queues[tag]

    def send(self, envelope: MigrationEnvelope) -> None:
        self._queue(envelope.tag).put(envelope.to_json())

    def _pop(self, node: int, worker: int, timeout: Optional[float]) -> Optional[str]:
        try:
            return self._queue((node, worker)).get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self, node: int, worker: int) -> int:
        return self._queue((node, worker)).qsize()

    def publish_candidate(self, node: int, tour: Optional[Tour]) -> None:
        self._candidates.put(_candidate_json(node, tour))

    def _pop_candidate(self, timeout: Optional[float]) -> Optional[str]:
        try:
            return self._candidates.get(timeout=timeout)
        except queue.Empty:
            return None

    def clear(self) -> None:
        with self._lock:
            self._queues.clear()
        while True:
            try:
                self._candidates.get_nowait()
            except queue.Empty:
                break


class RedisTransport(Transport):
    """
    Redis-backed transport for nodes running as separate processes.

    Uses one Redis list per tag with blocking pops.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", prefix: str = "tsp_island"):
        self.redis_url = redis_url
        self.prefix = prefix
        self._redis = None

    def _get_redis(self):
        """Lazy connection to Redis."""
        if self._redis is None:
            try:
                import redis
            except ImportError:
                raise ImportError(
                    "redis package required for RedisTransport. "
                    "Install with: pip install tsp-island[redis]"
                )
            self._redis = redis.from_url(self.redis_url)
            self._redis.ping()
            logger.info(f"Connected to Redis at {self.redis_url}")
        return self._redis

    def _key(self, node: int, worker: int) -> str:
        return f"{self.prefix}:migration:{node}:{worker}"

    @property
    def _candidate_key(self) -> str:
        return f"{self.prefix}:candidates"

    def send(self, envelope: MigrationEnvelope) -> None:
        self._get_redis().rpush(self._key(*envelope.tag), envelope.to_json())

    @staticmethod
    def _blpop(r, key: str, timeout: Optional[float]) -> Optional[str]:
        # blpop treats 0 as "forever"; a spent deadline must not block.
        if timeout is not None and timeout <= 0:
            data = r.lpop(key)
        else:
            result = r.blpop(key, timeout=timeout or 0)
            data = result[1] if result is not None else None
        if data is None:
            return None
        return data.decode("utf-8")

    def _pop(self, node: int, worker: int, timeout: Optional[float]) -> Optional[str]:
        return self._blpop(self._get_redis(), self._key(node, worker), timeout)

    def publish_candidate(self, node: int, tour: Optional[Tour]) -> None:
        self._get_redis().rpush(self._candidate_key, _candidate_json(node, tour))

    def _pop_candidate(self, timeout: Optional[float]) -> Optional[str]:
        return self._blpop(self._get_redis(), self._candidate_key, timeout)

    def clear(self) -> None:
        r = self._get_redis()
        keys = list(r.scan_iter(match=f"{self.prefix}:*"))
        if keys:
            r.delete(*keys)
        logger.info(f"Cleared {len(keys)} transport keys")


def create_transport(backend: str = "memory", redis_url: str = "redis://localhost:6379", **kwargs) -> Transport:
    """
    Factory function to create a transport.

    Args:
        backend: "memory" or "redis"
        redis_url: Redis connection URL (for redis backend)
    """
    if backend == "memory":
        return InMemoryTransport()
    if backend == "redis":
        return RedisTransport(redis_url=redis_url, **kwargs)
    raise ConfigurationError(f"Unknown transport backend: {backend}")
