"""Coarse connectivity graph over region portals.

Every portal is a node with a stable integer handle. Internal edges join two
portals of the same region when one can walk between their midpoints,
weighted by the cheapest orthogonal walk. External edges join a portal to
its twin on the other side of the boundary.

The translator between portals and nodes is two plain maps, ``PortalKey ->
handle`` and ``handle -> PortalNode``. Handles survive incremental rebuilds
for as long as their portal does.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Set

import structlog

from flowtiles.constants import DEFAULT_CROSSING_COST, Ordinal
from flowtiles.fields.wavefront import COST_MAX, cell_distances
from flowtiles.portals.portals import Portal, PortalMap
from flowtiles.world.dimensions import FieldCell, RegionID

log = structlog.get_logger(__name__)


class PortalKey(NamedTuple):
    region: RegionID
    side: Ordinal
    start: int
    end: int


@dataclass(frozen=True)
class PortalNode:
    handle: int
    region: RegionID
    side: Ordinal
    start: int
    end: int
    midpoint: FieldCell

    @property
    def key(self) -> PortalKey:
        return PortalKey(self.region, self.side, self.start, self.end)


class EdgeKind(Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


class Edge(NamedTuple):
    target: int
    weight: int
    kind: EdgeKind


def portal_key(portal: Portal) -> PortalKey:
    return PortalKey(portal.region, portal.side, portal.start, portal.end)


class RegionGraph:
    """Portal graph of the whole world, rebuilt region by region."""

    def __init__(self, portal_map: PortalMap, crossing_cost: int = DEFAULT_CROSSING_COST):
        if crossing_cost < 1:
            raise ValueError("Crossing cost must be at least 1.")
        self.portal_map = portal_map
        self.grids = portal_map.grids
        self.crossing_cost = crossing_cost
        self._handles: Dict[PortalKey, int] = {}
        self._nodes: Dict[int, PortalNode] = {}
        self._by_region: Dict[RegionID, Set[int]] = {}
        self._edges: Dict[int, Dict[int, Edge]] = {}
        self._next_handle = 0

    # ------------------------------------------------------------------
    # Translator
    # ------------------------------------------------------------------
    def handle_of(self, key: PortalKey) -> Optional[int]:
        return self._handles.get(key)

    def node(self, handle: int) -> PortalNode:
        return self._nodes[handle]

    def nodes_in(self, region: RegionID) -> List[PortalNode]:
        """Nodes of ``region`` in handle order."""
        return [self._nodes[h] for h in sorted(self._by_region.get(region, ()))]

    def edges(self, handle: int) -> List[Edge]:
        """Outgoing edges of ``handle`` in target handle order."""
        out = self._edges.get(handle, {})
        return [out[target] for target in sorted(out)]

    def edge(self, source: int, target: int) -> Optional[Edge]:
        return self._edges.get(source, {}).get(target)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return sum(len(out) for out in self._edges.values())

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def build(self, regions: Optional[Iterable[RegionID]] = None) -> None:
        """Build from scratch in three passes: nodes, internal, external."""
        self._handles.clear()
        self._nodes.clear()
        self._by_region.clear()
        self._edges.clear()
        self._next_handle = 0
        regions = sorted(regions) if regions is not None else self.grids.region_ids()

        for region in regions:
            for portal in self.portal_map.portals_of(region):
                self._add_node(portal)
        for region in regions:
            self._link_internal(region)
        for region in regions:
            self._link_external(region)
        log.info(
            "Region graph built",
            regions=len(regions),
            nodes=self.node_count,
            edges=self.edge_count,
        )

    def rebuild(self, regions: Iterable[RegionID]) -> None:
        """Refresh the nodes and edges of ``regions`` after a portal update.

        Nodes whose portal vanished are dropped with every edge touching them;
        unchanged portals keep their handle.
        """
        regions = sorted(set(regions))
        removed = added = 0
        for region in regions:
            current = {portal_key(p): p for p in self.portal_map.portals_of(region)}
            for handle in sorted(self._by_region.get(region, set())):
                if self._nodes[handle].key not in current:
                    self._remove_node(handle)
                    removed += 1
            for key, portal in current.items():
                if key not in self._handles:
                    self._add_node(portal)
                    added += 1
        for region in regions:
            self._link_internal(region)
        for region in regions:
            self._link_external(region)
        log.info(
            "Region graph rebuilt",
            regions=regions,
            removed=removed,
            added=added,
            nodes=self.node_count,
            edges=self.edge_count,
        )

    def _add_node(self, portal: Portal) -> int:
        handle = self._next_handle
        self._next_handle += 1
        res = self.grids.dims.field_resolution
        node = PortalNode(
            handle,
            portal.region,
            portal.side,
            portal.start,
            portal.end,
            portal.midpoint(res),
        )
        self._handles[node.key] = handle
        self._nodes[handle] = node
        self._by_region.setdefault(node.region, set()).add(handle)
        self._edges[handle] = {}
        return handle

    def _remove_node(self, handle: int) -> None:
        node = self._nodes.pop(handle)
        del self._handles[node.key]
        self._by_region[node.region].discard(handle)
        for target in self._edges.pop(handle, {}):
            self._edges.get(target, {}).pop(handle, None)
        for out in self._edges.values():
            out.pop(handle, None)

    def _link_internal(self, region: RegionID) -> None:
        nodes = self.nodes_in(region)
        for node in nodes:
            out = self._edges[node.handle]
            for target in [t for t, e in out.items() if e.kind is EdgeKind.INTERNAL]:
                del out[target]
        if len(nodes) < 2:
            return
        costs = self.grids.view(region)
        for node in nodes:
            distances = cell_distances(costs, [node.midpoint])
            for other in nodes:
                if other.handle == node.handle:
                    continue
                weight = int(distances[other.midpoint.row, other.midpoint.col])
                if weight < COST_MAX:
                    self._edges[node.handle][other.handle] = Edge(
                        other.handle, weight, EdgeKind.INTERNAL
                    )

    def _link_external(self, region: RegionID) -> None:
        dims = self.grids.dims
        for node in self.nodes_in(region):
            out = self._edges[node.handle]
            for target in [t for t, e in out.items() if e.kind is EdgeKind.EXTERNAL]:
                del out[target]
            neighbour = dims.neighbour(region, node.side)
            if neighbour is None:
                continue
            twin = self._handles.get(
                PortalKey(neighbour, node.side.inverse(), node.start, node.end)
            )
            if twin is None:
                continue
            out[twin] = Edge(twin, self.crossing_cost, EdgeKind.EXTERNAL)
            self._edges[twin][node.handle] = Edge(
                node.handle, self.crossing_cost, EdgeKind.EXTERNAL
            )


__all__ = ["Edge", "EdgeKind", "PortalKey", "PortalNode", "RegionGraph", "portal_key"]
