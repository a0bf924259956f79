"""Portal extraction along shared region boundaries.

A portal is a maximal run of boundary cells that is pathable on both sides
of the edge between two adjacent regions. Both regions store the run under
the same ``start..end`` range, on opposite sides.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import structlog

from flowtiles.constants import COST_IMPASSABLE, ORTHOGONALS, Ordinal
from flowtiles.world.cost_grid import CostGrids
from flowtiles.world.dimensions import FieldCell, RegionID

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Portal:
    region: RegionID
    side: Ordinal
    start: int
    end: int

    @property
    def midpoint_index(self) -> int:
        return (self.start + self.end) // 2

    def __len__(self) -> int:
        return self.end - self.start + 1

    def midpoint(self, resolution: int) -> FieldCell:
        return boundary_cell(self.side, self.midpoint_index, resolution)

    def cells(self, resolution: int) -> List[FieldCell]:
        return [
            boundary_cell(self.side, index, resolution)
            for index in range(self.start, self.end + 1)
        ]

    def covers(self, cell: Tuple[int, int], resolution: int) -> bool:
        index = boundary_index(self.side, cell, resolution)
        return index is not None and self.start <= index <= self.end


def boundary_cell(side: Ordinal, index: int, resolution: int) -> FieldCell:
    """Cell at position ``index`` along the ``side`` boundary of a region."""
    last = resolution - 1
    if side is Ordinal.NORTH:
        return FieldCell(0, index)
    if side is Ordinal.SOUTH:
        return FieldCell(last, index)
    if side is Ordinal.EAST:
        return FieldCell(index, last)
    if side is Ordinal.WEST:
        return FieldCell(index, 0)
    raise ValueError(f"{side!r} is not a region side")


def boundary_index(
    side: Ordinal, cell: Tuple[int, int], resolution: int
) -> Optional[int]:
    """Position of ``cell`` along ``side``, or ``None`` if it is not on it."""
    row, col = cell
    last = resolution - 1
    if side is Ordinal.NORTH and row == 0:
        return col
    if side is Ordinal.SOUTH and row == last:
        return col
    if side is Ordinal.EAST and col == last:
        return row
    if side is Ordinal.WEST and col == 0:
        return row
    return None


def boundary_strip(grid: np.ndarray, side: Ordinal) -> np.ndarray:
    if side is Ordinal.NORTH:
        return grid[0, :]
    if side is Ordinal.SOUTH:
        return grid[-1, :]
    if side is Ordinal.EAST:
        return grid[:, -1]
    if side is Ordinal.WEST:
        return grid[:, 0]
    raise ValueError(f"{side!r} is not a region side")


def crossable_mask(grids: CostGrids, region: RegionID, side: Ordinal) -> np.ndarray:
    """Boolean mask of boundary indices pathable on both sides of ``side``."""
    neighbour = grids.dims.neighbour(region, side)
    if neighbour is None:
        return np.zeros(grids.dims.field_resolution, dtype=np.bool_)
    own = boundary_strip(grids.view(region), side)
    other = boundary_strip(grids.view(neighbour), side.inverse())
    return (own != COST_IMPASSABLE) & (other != COST_IMPASSABLE)


def _runs(mask: np.ndarray) -> List[Tuple[int, int]]:
    runs = []
    start = None
    for index, open_cell in enumerate(mask):
        if open_cell and start is None:
            start = index
        elif not open_cell and start is not None:
            runs.append((start, index - 1))
            start = None
    if start is not None:
        runs.append((start, len(mask) - 1))
    return runs


def extract_portals(grids: CostGrids, region: RegionID) -> Dict[Ordinal, List[Portal]]:
    """Scan every side of ``region`` that has a neighbour for portals."""
    found: Dict[Ordinal, List[Portal]] = {}
    for side, _neighbour in grids.dims.neighbours(region):
        mask = crossable_mask(grids, region, side)
        found[side] = [Portal(region, side, start, end) for start, end in _runs(mask)]
    return found


def expand_portal(
    grids: CostGrids,
    region: RegionID,
    cell: Tuple[int, int],
    neighbour: RegionID,
) -> List[FieldCell]:
    """Recover the whole crossable segment containing a portal cell.

    Walks outward along the boundary facing ``neighbour`` from ``cell`` in
    both directions while the boundary stays pathable on both sides. Returns
    an empty list when ``cell`` itself cannot be crossed.
    """
    dims = grids.dims
    side = dims.side_towards(region, neighbour)
    res = dims.field_resolution
    index = boundary_index(side, cell, res)
    if index is None:
        log.warning("Cell is not on the portal boundary", region=region, cell=cell, side=side.name)
        return []
    mask = crossable_mask(grids, region, side)
    if not mask[index]:
        return []
    low = index
    while low > 0 and mask[low - 1]:
        low -= 1
    high = index
    while high < res - 1 and mask[high + 1]:
        high += 1
    return [boundary_cell(side, i, res) for i in range(low, high + 1)]


class PortalMap:
    """Portals of every region, kept symmetric across shared boundaries."""

    def __init__(self, grids: CostGrids):
        self.grids = grids
        self._portals: Dict[RegionID, Dict[Ordinal, List[Portal]]] = {}

    def build_all(self) -> None:
        for region in self.grids.region_ids():
            self._portals[region] = extract_portals(self.grids, region)
        log.info(
            "Portals extracted",
            regions=len(self._portals),
            portals=sum(len(self.portals_of(r)) for r in self._portals),
        )

    def update_portals(self, regions: Iterable[RegionID]) -> Set[RegionID]:
        """Recompute ``regions`` and their neighbours; return everything touched."""
        touched: Set[RegionID] = set()
        for region in regions:
            touched.add(region)
            touched.update(neighbour for _side, neighbour in self.grids.dims.neighbours(region))
        for region in touched:
            self._portals[region] = extract_portals(self.grids, region)
        log.debug("Portals updated", regions=sorted(touched))
        return touched

    def portals(self, region: RegionID) -> Dict[Ordinal, List[Portal]]:
        return self._portals.get(region, {})

    def portals_of(self, region: RegionID) -> List[Portal]:
        """Flat list of a region's portals, sides in north, east, south, west order."""
        by_side = self.portals(region)
        return [portal for side in ORTHOGONALS for portal in by_side.get(side, [])]

    def portal_at(self, region: RegionID, side: Ordinal, cell: Tuple[int, int]) -> Optional[Portal]:
        res = self.grids.dims.field_resolution
        for portal in self.portals(region).get(side, []):
            if portal.covers(cell, res):
                return portal
        return None

    def matching(self, portal: Portal) -> Optional[Portal]:
        """The neighbour's portal covering the same boundary range."""
        neighbour = self.grids.dims.neighbour(portal.region, portal.side)
        if neighbour is None:
            return None
        for other in self.portals(neighbour).get(portal.side.inverse(), []):
            if other.start == portal.start and other.end == portal.end:
                return other
        return None


__all__ = [
    "Portal",
    "PortalMap",
    "boundary_cell",
    "boundary_index",
    "expand_portal",
    "extract_portals",
]
