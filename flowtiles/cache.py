"""Route and flow field caches with expiry.

Readers never take the lock: a lookup is a plain dictionary read and an
expired entry is treated as a miss. Writers (inserts, evictions, purges)
serialise on a per-cache lock.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, NamedTuple, Optional, TypeVar

import structlog

from flowtiles.constants import DEFAULT_CACHE_TTL
from flowtiles.fields.flow_field import FlowField
from flowtiles.portals.route_planner import Route, RouteKey, RouteMetadata
from flowtiles.world.dimensions import FieldCell, RegionID

log = structlog.get_logger(__name__)

K = TypeVar("K")
E = TypeVar("E")

Clock = Callable[[], float]


class FieldKey(NamedTuple):
    region: RegionID
    goal_cell: FieldCell
    exit_to: Optional[RegionID]


@dataclass(frozen=True)
class RouteEntry:
    route: Route
    metadata: RouteMetadata
    created: float


@dataclass(frozen=True)
class FieldEntry:
    flow_field: FlowField
    created: float


class _ExpiringCache(Generic[K, E]):
    def __init__(self, ttl: float = DEFAULT_CACHE_TTL, clock: Clock = time.monotonic):
        if ttl <= 0:
            raise ValueError("Cache TTL must be positive.")
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[K, E] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self._lookup(key) is not None  # type: ignore[arg-type]

    def _expired(self, entry: E, now: float) -> bool:
        return now - entry.created > self.ttl  # type: ignore[attr-defined]

    def _lookup(self, key: K) -> Optional[E]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry, self.clock()):
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
            log.debug("Cache entry expired", cache=type(self).__name__, key=key)
            return None
        return entry

    def _store(self, key: K, entry: E) -> None:
        with self._lock:
            self._entries[key] = entry

    def _evict(self, predicate: Callable[[K, E], bool]) -> List[K]:
        with self._lock:
            doomed = [k for k, e in self._entries.items() if predicate(k, e)]
            for key in doomed:
                del self._entries[key]
        return doomed

    def purge_expired(self) -> int:
        """Drop every entry older than the TTL; returns how many went."""
        now = self.clock()
        doomed = self._evict(lambda _k, e: self._expired(e, now))
        if doomed:
            log.debug("Purged expired entries", cache=type(self).__name__, count=len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RouteCache(_ExpiringCache[RouteKey, RouteEntry]):
    def insert(self, route: Route) -> RouteEntry:
        entry = RouteEntry(route, route.metadata, self.clock())
        self._store(route.key, entry)
        return entry

    def get(self, key: RouteKey) -> Optional[RouteEntry]:
        return self._lookup(key)

    def get_route(self, key: RouteKey) -> Optional[Route]:
        entry = self._lookup(key)
        return entry.route if entry is not None else None

    def evict_region(self, region: RegionID) -> int:
        """Drop routes that pass through ``region``, and every no-route result.

        A cost change anywhere may open a path, so unreachable results never
        survive an eviction.
        """
        doomed = self._evict(
            lambda _k, e: not e.route.reachable or e.route.touches(region)
        )
        if doomed:
            log.debug("Routes evicted", region=region, count=len(doomed))
        return len(doomed)


class FieldCache(_ExpiringCache[FieldKey, FieldEntry]):
    def insert(self, flow_field: FlowField) -> FieldEntry:
        key = FieldKey(flow_field.region, flow_field.goal_cell, flow_field.exit_to)
        entry = FieldEntry(flow_field, self.clock())
        self._store(key, entry)
        return entry

    def get(self, key: FieldKey) -> Optional[FieldEntry]:
        return self._lookup(key)

    def get_field(
        self,
        region: RegionID,
        goal_cell: FieldCell,
        exit_to: Optional[RegionID] = None,
    ) -> Optional[FlowField]:
        entry = self._lookup(FieldKey(region, goal_cell, exit_to))
        return entry.flow_field if entry is not None else None

    def evict_region(self, region: RegionID) -> int:
        doomed = self._evict(lambda k, _e: k.region == region)
        if doomed:
            log.debug("Fields evicted", region=region, count=len(doomed))
        return len(doomed)


__all__ = ["FieldCache", "FieldEntry", "FieldKey", "RouteCache", "RouteEntry"]
