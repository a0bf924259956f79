"""Navigation service for one agent class.

``Navigator`` owns the cost grids, portals, region graph and the two caches,
and advances all outstanding work once per :meth:`Navigator.tick`:

1. apply queued cost writes,
2. rebuild portals and graph for dirty regions, evict their cached data and
   bump their generations,
3. plan every pending route request,
4. build one flow field hop for every in-flight field job,
5. publish results whose regions were not rebuilt in the meantime.

Readers only ever look at the caches. A miss means the data is not ready or
was invalidated, and the caller should request it again.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

import structlog

from flowtiles.cache import FieldCache, FieldKey, RouteCache
from flowtiles.config import NavigationSettings
from flowtiles.constants import COST_IMPASSABLE
from flowtiles.errors import ConfigError, ImpassableGoalError
from flowtiles.fields.flow_field import FlowField, build_flow_field
from flowtiles.portals.portals import PortalMap
from flowtiles.portals.region_graph import RegionGraph
from flowtiles.portals.route_planner import FieldHop, Route, RouteKey, plan_route
from flowtiles.scheduler import MutationQueue, RegionScheduler
from flowtiles.world.clearance import ClearanceConfig
from flowtiles.world.cost_grid import CostGrids, validate_cost
from flowtiles.world.dimensions import FieldCell, RegionID, WorldDimensions
from flowtiles.world.loaders import CostGridLoader

log = structlog.get_logger(__name__)


@dataclass
class FieldJob:
    """Flow fields still to build for one route, goal region first."""

    route_key: RouteKey
    hops: List[FieldHop]
    generations: Dict[RegionID, int]


@dataclass
class TickReport:
    tick: int
    mutations: int = 0
    rebuilt_regions: Set[RegionID] = field(default_factory=set)
    routes_planned: int = 0
    fields_built: int = 0
    fields_published: int = 0
    discarded: int = 0


class Navigator:
    def __init__(
        self,
        grids: CostGrids,
        settings: Optional[NavigationSettings] = None,
        route_cache: Optional[RouteCache] = None,
        field_cache: Optional[FieldCache] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or NavigationSettings(
            field_resolution=grids.dims.field_resolution,
            cell_size=grids.dims.cell_size,
        )
        _check_settings_match(self.settings, grids.dims)
        self.grids = grids
        self.dims = grids.dims
        self.clock = clock
        ttl = self.settings.cache_ttl_seconds
        self.route_cache = route_cache if route_cache is not None else RouteCache(ttl, clock)
        self.field_cache = field_cache if field_cache is not None else FieldCache(ttl, clock)

        self.portal_map = PortalMap(grids)
        self.portal_map.build_all()
        self.graph = RegionGraph(self.portal_map, self.settings.crossing_cost)
        self.graph.build()

        self.scheduler = RegionScheduler(self.settings.worker_threads)
        self.mutations = MutationQueue()
        self._dirty: Set[RegionID] = set()
        self._pending_routes: Dict[RouteKey, None] = {}
        self._jobs: Dict[RouteKey, FieldJob] = {}
        self._tick_count = 0
        grids.subscribe(self._mark_dirty)
        log.info(
            "Navigator ready",
            regions=len(grids.region_ids()),
            portal_nodes=self.graph.node_count,
            clearance_scale=grids.clearance.scale,
        )

    @classmethod
    def from_loader(
        cls,
        loader: CostGridLoader,
        columns: int,
        rows: int,
        settings: Optional[NavigationSettings] = None,
        **kwargs,
    ) -> "Navigator":
        """Assemble a navigator whose world and clearance come from ``settings``."""
        settings = settings or NavigationSettings()
        dims = WorldDimensions(columns, rows, settings.field_resolution, settings.cell_size)
        clearance = ClearanceConfig(settings.actor_size, settings.cell_size)
        grids = CostGrids.from_loader(loader, dims, clearance)
        return cls(grids, settings, **kwargs)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def request_path(
        self,
        source_region: Tuple[int, int],
        source_cell: Tuple[int, int],
        target_region: Tuple[int, int],
        target_cell: Tuple[int, int],
    ) -> RouteKey:
        """Queue a route request; the route is published on a later tick."""
        key = RouteKey(
            self.dims.validate_region(source_region),
            self.dims.validate_cell(source_cell),
            self.dims.validate_region(target_region),
            self.dims.validate_cell(target_cell),
        )
        if self.grids.view_cost(key.target_region, key.target_cell) == COST_IMPASSABLE:
            log.error(
                "Rejected path request to impassable target",
                region=key.target_region,
                cell=key.target_cell,
            )
            raise ImpassableGoalError(
                f"Target {key.target_cell} in region {key.target_region} is impassable."
            )
        if key in self._pending_routes or key in self._jobs:
            return key
        route = self.route_cache.get_route(key)
        if route is not None:
            self._queue_missing_fields(route)
            return key
        self._pending_routes[key] = None
        log.debug("Path requested", key=key)
        return key

    def mutate_cost(self, region: Tuple[int, int], cell: Tuple[int, int], cost: int) -> None:
        """Queue a cost write; it takes effect on the next tick."""
        region = self.dims.validate_region(region)
        cell = self.dims.validate_cell(cell)
        validate_cost(cost)
        self.mutations.push(region, cell, cost)

    def get_route(self, key: RouteKey) -> Optional[Route]:
        return self.route_cache.get_route(key)

    def get_field(
        self,
        region: Tuple[int, int],
        goal_cell: Tuple[int, int],
        exit_to: Optional[Tuple[int, int]] = None,
    ) -> Optional[FlowField]:
        return self.field_cache.get_field(
            RegionID(*region),
            FieldCell(*goal_cell),
            RegionID(*exit_to) if exit_to is not None else None,
        )

    def fields_for(self, key: RouteKey) -> Optional[List[FlowField]]:
        """Every flow field of a published route, in travel order.

        ``None`` until the route and all of its fields are cached.
        """
        route = self.get_route(key)
        if route is None or not route.reachable:
            return None
        found = []
        for hop in route.field_hops():
            flow = self.get_field(hop.region, hop.goal_cell, hop.exit_to)
            if flow is None:
                return None
            found.append(flow)
        return found

    def locate(self, x: float, y: float) -> Optional[Tuple[RegionID, FieldCell]]:
        return self.dims.locate(x, y)

    def cell_centre(self, region: RegionID, cell: FieldCell) -> Tuple[float, float]:
        return self.dims.cell_centre(region, cell)

    @property
    def pending(self) -> int:
        """Route requests and field jobs not yet finished."""
        return len(self._pending_routes) + len(self._jobs)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def _mark_dirty(self, regions: Set[RegionID]) -> None:
        """Invalidate everything built on the old costs of ``regions``.

        Runs as soon as the grids change, even mid-tick, so work started
        earlier fails its generation check and is never published. Portals
        and the graph are rebuilt in the next tick.
        """
        touched = set(regions)
        for region in regions:
            touched.update(n for _side, n in self.dims.neighbours(region))
        self.scheduler.bump(touched)
        for region in touched:
            self.route_cache.evict_region(region)
            self.field_cache.evict_region(region)
        self._dirty.update(regions)
        log.debug("Regions invalidated by cost change", regions=sorted(touched))

    def tick(self) -> TickReport:
        self._tick_count += 1
        report = TickReport(self._tick_count)

        # 1. coalesced cost writes
        updates = self.mutations.drain()
        if updates:
            self.grids.set_many(updates)
            report.mutations = len(updates)

        # 2. rebuild and invalidate
        if self._dirty:
            dirty, self._dirty = self._dirty, set()
            touched = self.portal_map.update_portals(dirty)
            self.graph.rebuild(touched)
            for region in touched:
                self.route_cache.evict_region(region)
                self.field_cache.evict_region(region)
            self.scheduler.bump(touched)
            report.rebuilt_regions = touched
            report.discarded += self._drop_stale_jobs()
        self.route_cache.purge_expired()
        self.field_cache.purge_expired()

        # 3. route planning
        planned: List[Tuple[Route, Dict[RegionID, int]]] = []
        for key in list(self._pending_routes):
            del self._pending_routes[key]
            try:
                route = plan_route(self.graph, key, self.clock)
            except ImpassableGoalError:
                log.warning("Target became impassable before planning", key=key)
                route = Route.unreachable(key, self.clock())
            planned.append((route, self.scheduler.snapshot(route.metadata.regions)))
        report.routes_planned = len(planned)

        # 4. one hop per field job
        built = self._advance_jobs()
        report.fields_built = len(built)

        # 5. publish
        for route, generations in planned:
            if not self.scheduler.is_current(generations):
                report.discarded += 1
                continue
            self.route_cache.insert(route)
            log.info(
                "Route published",
                key=route.key,
                reachable=route.reachable,
                cost=route.metadata.total_cost,
                regions=len(route.metadata.regions),
            )
            self._queue_missing_fields(route, generations)
        for flow, generation in built:
            if self.scheduler.generation(flow.region) != generation:
                report.discarded += 1
                log.debug("Discarded stale flow field", region=flow.region)
                continue
            self.field_cache.insert(flow)
            report.fields_published += 1

        log.debug(
            "Tick finished",
            tick=report.tick,
            mutations=report.mutations,
            rebuilt=len(report.rebuilt_regions),
            routes=report.routes_planned,
            fields=report.fields_built,
            discarded=report.discarded,
        )
        return report

    def _queue_missing_fields(
        self, route: Route, generations: Optional[Dict[RegionID, int]] = None
    ) -> None:
        if route.key in self._jobs:
            return
        hops = [
            hop
            for hop in reversed(route.field_hops())
            if self.field_cache.get(FieldKey(*hop)) is None
        ]
        if hops:
            if generations is None:
                generations = self.scheduler.snapshot(route.metadata.regions)
            self._jobs[route.key] = FieldJob(route.key, hops, generations)

    def _drop_stale_jobs(self) -> int:
        stale = [k for k, job in self._jobs.items() if not self.scheduler.is_current(job.generations)]
        for key in stale:
            del self._jobs[key]
            log.debug("Discarded in-flight field job", key=key)
        return len(stale)

    def _advance_jobs(self) -> List[Tuple[FlowField, int]]:
        wanted: Dict[FieldKey, FieldHop] = {}
        for key in list(self._jobs):
            job = self._jobs[key]
            while job.hops and self.field_cache.get(FieldKey(*job.hops[0])) is not None:
                job.hops.pop(0)
            if not job.hops:
                del self._jobs[key]
                continue
            hop = job.hops.pop(0)
            wanted.setdefault(FieldKey(*hop), hop)
            if not job.hops:
                del self._jobs[key]
        if not wanted:
            return []

        hops = list(wanted.values())
        generations = [self.scheduler.generation(hop.region) for hop in hops]
        tasks = [
            (hop.region, lambda hop=hop: build_flow_field(self.grids, hop.region, hop.goal_cell, hop.exit_to))
            for hop in hops
        ]
        flows = self.scheduler.run_grouped(tasks)
        return list(zip(flows, generations))


def _check_settings_match(settings: NavigationSettings, dims: WorldDimensions) -> None:
    problems = []
    if settings.field_resolution != dims.field_resolution:
        problems.append(
            f"field_resolution {settings.field_resolution} != grid resolution {dims.field_resolution}"
        )
    if settings.cell_size != dims.cell_size:
        problems.append(f"cell_size {settings.cell_size} != grid cell size {dims.cell_size}")
    if problems:
        log.error("Settings do not match cost grids", problems=problems)
        raise ConfigError("; ".join(problems))


__all__ = ["FieldJob", "Navigator", "TickReport"]
