"""flowtiles/fields/integration_field.py

Cumulative cost field for one region hop of a route.

The goal hop seeds a line-of-sight wavefront from the goal cell. Cells the
wavefront cannot see are filled by a cost wavefront started at the corners
where sight was lost. A portal hop has no line of sight phase: the exit
portal is expanded to its full crossable segment and the cost wavefront
starts there.
"""

from __future__ import annotations

from collections import deque
from typing import Final, List, Optional, Tuple

import numpy as np
import structlog

from flowtiles.constants import COST_IMPASSABLE, ORTHOGONALS
from flowtiles.errors import FieldBuildError, ImpassableGoalError
from flowtiles.fields.wavefront import COST_MASK, COST_MAX, propagate_costs, seed_arrays
from flowtiles.portals.portals import expand_portal
from flowtiles.world.cost_grid import CostGrids
from flowtiles.world.dimensions import FieldCell, RegionID
from flowtiles.world.los import cells_between, line_of_sight, ray_to_boundary

log = structlog.get_logger(__name__)

# --- High byte flags of a packed integration value ---
LOS_FLAG: Final[int] = 1 << 24
GOAL_FLAG: Final[int] = 1 << 25
WAVE_BLOCKED_FLAG: Final[int] = 1 << 26
PORTAL_FLAG: Final[int] = 1 << 27
IMPASSABLE_FLAG: Final[int] = 1 << 28
CORNER_FLAG: Final[int] = 1 << 29


class IntegrationField:
    """Packed ``uint32`` grid: cumulative cost below, flags in the high byte."""

    def __init__(self, resolution: int):
        self.resolution = resolution
        self.values = np.full((resolution, resolution), COST_MAX, dtype=np.uint32)

    def reset(self, costs: np.ndarray) -> None:
        self.values.fill(COST_MAX)
        self.values[costs == COST_IMPASSABLE] |= np.uint32(IMPASSABLE_FLAG)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def cost(self, cell: Tuple[int, int]) -> int:
        return int(self.values[cell[0], cell[1]]) & COST_MASK

    def flags(self, cell: Tuple[int, int]) -> int:
        return int(self.values[cell[0], cell[1]]) & ~COST_MASK

    def has_flag(self, cell: Tuple[int, int], flag: int) -> bool:
        return bool(int(self.values[cell[0], cell[1]]) & flag)

    def add_flag(self, cell: Tuple[int, int], flag: int) -> None:
        self.values[cell[0], cell[1]] |= np.uint32(flag)

    def set_cost(self, cell: Tuple[int, int], cost: int) -> None:
        packed = int(self.values[cell[0], cell[1]])
        self.values[cell[0], cell[1]] = (packed & ~COST_MASK) | (cost & COST_MASK)

    def is_reached(self, cell: Tuple[int, int]) -> bool:
        return self.cost(cell) < COST_MAX

    @property
    def costs(self) -> np.ndarray:
        return (self.values & np.uint32(COST_MASK)).astype(np.int64)

    def flag_mask(self, flag: int) -> np.ndarray:
        return (self.values & np.uint32(flag)) != 0

    def cells_with(self, flag: int) -> List[FieldCell]:
        rows, cols = np.nonzero(self.flag_mask(flag))
        return [FieldCell(int(r), int(c)) for r, c in zip(rows, cols)]


def _in_bounds(row: int, col: int, resolution: int) -> bool:
    return 0 <= row < resolution and 0 <= col < resolution


def _block_behind_corner(
    field: IntegrationField,
    pathable: np.ndarray,
    goal: Tuple[int, int],
    corner: Tuple[int, int],
) -> None:
    """Shade the cells hidden behind ``corner`` as seen from ``goal``."""
    end = ray_to_boundary(goal, corner, field.resolution)
    for row, col in cells_between(corner, end)[1:]:
        if field.has_flag((row, col), IMPASSABLE_FLAG):
            break
        if field.has_flag((row, col), LOS_FLAG):
            continue
        if line_of_sight(goal[0], goal[1], row, col, pathable):
            continue
        field.add_flag((row, col), WAVE_BLOCKED_FLAG)


def propagate_los(field: IntegrationField, costs: np.ndarray, goal: Tuple[int, int]) -> List[FieldCell]:
    """Breadth-first line of sight wavefront from ``goal``.

    Returns the corner cells, in the order they were found.
    """
    res = field.resolution
    pathable = costs != COST_IMPASSABLE
    goal_row, goal_col = goal
    field.set_cost(goal, 0)
    field.add_flag(goal, GOAL_FLAG | LOS_FLAG)

    corners: List[FieldCell] = []
    queue = deque([FieldCell(goal_row, goal_col)])
    while queue:
        cell = queue.popleft()
        distance = field.cost(cell)
        is_corner = False
        for ordinal in ORTHOGONALS:
            d_row, d_col = ordinal.offset
            nr, nc = cell.row + d_row, cell.col + d_col
            if not _in_bounds(nr, nc, res):
                continue
            neighbour = FieldCell(nr, nc)
            if field.has_flag(neighbour, LOS_FLAG):
                continue
            if field.has_flag(neighbour, IMPASSABLE_FLAG | WAVE_BLOCKED_FLAG):
                is_corner = True
                continue
            if line_of_sight(goal_row, goal_col, nr, nc, pathable):
                field.set_cost(neighbour, distance + 1)
                field.add_flag(neighbour, LOS_FLAG)
                queue.append(neighbour)
            else:
                is_corner = True
        if is_corner and not field.has_flag(cell, CORNER_FLAG):
            field.add_flag(cell, CORNER_FLAG)
            corners.append(cell)
            _block_behind_corner(field, pathable, goal, cell)
    return corners


def integrate(field: IntegrationField, costs: np.ndarray, seeds: List[Tuple[int, int]]) -> None:
    """Fill every cell the line of sight pass left unresolved."""
    if not seeds:
        return
    allowed = (field.values & np.uint32(LOS_FLAG | PORTAL_FLAG | IMPASSABLE_FLAG)) == 0
    rows, cols = seed_arrays(seeds)
    propagate_costs(costs, field.values, rows, cols, allowed)


def build_integration_field(
    grids: CostGrids,
    region: RegionID,
    goal_cell: Tuple[int, int],
    exit_to: Optional[RegionID] = None,
) -> IntegrationField:
    """Build the integration field of one route hop.

    With ``exit_to`` unset, ``goal_cell`` is the route target and the field
    runs the line of sight pass. Otherwise ``goal_cell`` is the midpoint of
    the portal leading into ``exit_to``.
    """
    dims = grids.dims
    region = dims.validate_region(region)
    goal = dims.validate_cell(goal_cell)
    costs = grids.view(region)
    field = IntegrationField(dims.field_resolution)
    field.reset(costs)

    if exit_to is None:
        if costs[goal.row, goal.col] == COST_IMPASSABLE:
            log.error("Goal cell is impassable", region=region, cell=goal)
            raise ImpassableGoalError(f"Goal {goal} in region {region} is impassable.")
        corners = propagate_los(field, costs, goal)
        seeds = corners if corners else [goal]
        integrate(field, costs, seeds)
        log.debug(
            "Goal integration field built",
            region=region,
            goal=goal,
            corners=len(corners),
            los_cells=int(np.count_nonzero(field.flag_mask(LOS_FLAG))),
        )
        return field

    portal_cells = expand_portal(grids, region, goal, exit_to)
    if not portal_cells:
        log.error("No crossable portal at hop goal", region=region, cell=goal, exit_to=exit_to)
        raise FieldBuildError(f"Cell {goal} of region {region} does not lead into {exit_to}.")
    for cell in portal_cells:
        field.set_cost(cell, 0)
        field.add_flag(cell, PORTAL_FLAG)
    integrate(field, costs, portal_cells)
    log.debug(
        "Portal integration field built",
        region=region,
        exit_to=exit_to,
        portal_cells=len(portal_cells),
    )
    return field


__all__ = [
    "CORNER_FLAG",
    "GOAL_FLAG",
    "IMPASSABLE_FLAG",
    "IntegrationField",
    "LOS_FLAG",
    "PORTAL_FLAG",
    "WAVE_BLOCKED_FLAG",
    "build_integration_field",
    "integrate",
    "propagate_los",
]
