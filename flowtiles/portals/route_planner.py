# flowtiles/portals/route_planner.py
from __future__ import annotations

import heapq
import itertools
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

import structlog

from flowtiles.constants import COST_IMPASSABLE
from flowtiles.errors import ImpassableGoalError
from flowtiles.fields.wavefront import COST_MAX, cell_distances
from flowtiles.portals.region_graph import RegionGraph
from flowtiles.world.dimensions import FieldCell, RegionID, WorldDimensions

log = structlog.get_logger(__name__)

Waypoint = Tuple[RegionID, FieldCell]

_SOURCE = -1
_TARGET = -2


class RouteKey(NamedTuple):
    source_region: RegionID
    source_cell: FieldCell
    target_region: RegionID
    target_cell: FieldCell


class FieldHop(NamedTuple):
    """One flow field to build: ``goal_cell`` of ``region``, exiting into ``exit_to``."""

    region: RegionID
    goal_cell: FieldCell
    exit_to: Optional[RegionID]


@dataclass(frozen=True)
class RouteMetadata:
    total_cost: int
    regions: Tuple[RegionID, ...]
    created: float


@dataclass(frozen=True)
class Route:
    """Portal waypoints from source to target, ending at the target cell."""

    key: RouteKey
    reachable: bool
    waypoints: Tuple[Waypoint, ...] = ()
    metadata: RouteMetadata = field(
        default_factory=lambda: RouteMetadata(0, (), 0.0)
    )

    @classmethod
    def unreachable(cls, key: RouteKey, created: float) -> "Route":
        return cls(
            key,
            False,
            (),
            RouteMetadata(COST_MAX, (key.source_region, key.target_region), created),
        )

    def touches(self, region: RegionID) -> bool:
        return region in self.metadata.regions

    def field_hops(self) -> List[FieldHop]:
        """Flow fields needed to follow this route, in travel order.

        A hop is emitted for every waypoint whose successor lies in another
        region, plus the final hop onto the target cell.
        """
        if not self.reachable:
            return []
        hops = []
        for (region, cell), (next_region, _cell) in zip(self.waypoints, self.waypoints[1:]):
            if next_region != region:
                hops.append(FieldHop(region, cell, next_region))
        hops.append(FieldHop(self.key.target_region, self.key.target_cell, None))
        return hops


def _manhattan(dims: WorldDimensions, region: RegionID, cell: FieldCell, goal: Tuple[int, int]) -> int:
    row, col = dims.to_global(region, cell)
    return abs(row - goal[0]) + abs(col - goal[1])


def plan_route(
    graph: RegionGraph,
    key: RouteKey,
    clock: Callable[[], float] = time.monotonic,
) -> Route:
    """A* over the portal graph from ``key.source_cell`` to ``key.target_cell``.

    The open list is ordered by ``(f, g, insertion sequence)`` and edges are
    expanded in handle order, so the same graph always yields the same route.
    """
    grids = graph.grids
    dims = grids.dims
    source_region = dims.validate_region(key.source_region)
    target_region = dims.validate_region(key.target_region)
    source_cell = dims.validate_cell(key.source_cell)
    target_cell = dims.validate_cell(key.target_cell)
    key = RouteKey(source_region, source_cell, target_region, target_cell)

    target_costs = grids.view(target_region)
    target_cost = int(target_costs[target_cell.row, target_cell.col])
    if target_cost == COST_IMPASSABLE:
        log.error("Route target is impassable", region=target_region, cell=target_cell)
        raise ImpassableGoalError(f"Target {target_cell} in region {target_region} is impassable.")

    start_time = time.perf_counter()
    goal_global = dims.to_global(target_region, target_cell)
    from_source = cell_distances(grids.view(source_region), [source_cell])
    to_target = cell_distances(target_costs, [target_cell])

    def exit_cost(node) -> Optional[int]:
        """Walk cost from a target-region portal midpoint onto the target."""
        reverse = int(to_target[node.midpoint.row, node.midpoint.col])
        if reverse >= COST_MAX:
            return None
        return reverse - int(target_costs[node.midpoint.row, node.midpoint.col]) + target_cost

    counter = itertools.count()
    open_heap: List[Tuple[int, int, int, int]] = []
    best_g: Dict[int, int] = {}
    came_from: Dict[int, int] = {}

    def push(handle: int, g: int, parent: int, h: int) -> None:
        if g >= best_g.get(handle, COST_MAX + 1):
            return
        best_g[handle] = g
        came_from[handle] = parent
        heapq.heappush(open_heap, (g + h, g, next(counter), handle))

    if source_region == target_region:
        direct = int(from_source[target_cell.row, target_cell.col])
        if direct < COST_MAX:
            push(_TARGET, direct, _SOURCE, 0)
    for node in graph.nodes_in(source_region):
        g = int(from_source[node.midpoint.row, node.midpoint.col])
        if g < COST_MAX:
            push(node.handle, g, _SOURCE, _manhattan(dims, node.region, node.midpoint, goal_global))

    closed = set()
    found_cost: Optional[int] = None
    while open_heap:
        _f, g, _seq, handle = heapq.heappop(open_heap)
        if handle in closed or g > best_g.get(handle, COST_MAX + 1):
            continue
        if handle == _TARGET:
            found_cost = g
            break
        closed.add(handle)
        node = graph.node(handle)
        if node.region == target_region:
            tail = exit_cost(node)
            if tail is not None:
                push(_TARGET, g + tail, handle, 0)
        for edge in graph.edges(handle):
            if edge.target in closed:
                continue
            neighbour = graph.node(edge.target)
            push(
                edge.target,
                g + edge.weight,
                handle,
                _manhattan(dims, neighbour.region, neighbour.midpoint, goal_global),
            )

    created = clock()
    if found_cost is None:
        log.warning(
            "No route between regions",
            source=(source_region, source_cell),
            target=(target_region, target_cell),
            explored=len(closed),
        )
        return Route.unreachable(key, created)

    chain: List[int] = []
    current = came_from[_TARGET]
    while current != _SOURCE:
        chain.append(current)
        current = came_from[current]
    chain.reverse()

    waypoints: List[Waypoint] = [
        (graph.node(h).region, graph.node(h).midpoint) for h in chain
    ]
    waypoints.append((target_region, target_cell))
    regions: List[RegionID] = [source_region]
    for region, _cell in waypoints:
        if region not in regions:
            regions.append(region)

    route = Route(
        key,
        True,
        tuple(waypoints),
        RouteMetadata(found_cost, tuple(regions), created),
    )
    log.debug(
        "Route planned",
        source=(source_region, source_cell),
        target=(target_region, target_cell),
        cost=found_cost,
        waypoints=len(waypoints),
        explored=len(closed),
        duration_ms=round((time.perf_counter() - start_time) * 1000.0, 3),
    )
    return route


__all__ = ["FieldHop", "Route", "RouteKey", "RouteMetadata", "Waypoint", "plan_route"]
