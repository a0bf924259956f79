# flowtiles/world/cost_grid.py
from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import numpy as np
import structlog

from flowtiles.constants import COST_IMPASSABLE, COST_MIN
from flowtiles.errors import InvalidCostError
from flowtiles.world.clearance import ClearanceConfig, apply_clearance
from flowtiles.world.dimensions import FieldCell, RegionID, WorldDimensions
from flowtiles.world.loaders import CostGridLoader, validate_cost_arrays

log = structlog.get_logger(__name__)

CostListener = Callable[[Set[RegionID]], None]
CostUpdate = Tuple[Tuple[int, int], Tuple[int, int], int]


class CostGrids:
    """Per-region traversal costs plus the clearance view derived from them.

    ``baseline`` arrays hold the costs as authored. The ``view`` arrays are
    what portals, the region graph and the fields are built from: the
    baseline with gaps sealed for the configured agent clearance.
    """

    def __init__(
        self,
        dims: WorldDimensions,
        clearance: Optional[ClearanceConfig] = None,
        default_cost: int = COST_MIN,
        arrays: Optional[Mapping[Tuple[int, int], np.ndarray]] = None,
    ):
        validate_cost(default_cost)
        self.dims = dims
        self.clearance = clearance or ClearanceConfig(cell_size=dims.cell_size)
        res = dims.field_resolution
        log.info(
            "Initializing CostGrids",
            columns=dims.columns,
            rows=dims.rows,
            resolution=res,
            clearance_scale=self.clearance.scale,
        )
        if arrays is None:
            self._baseline: Dict[RegionID, np.ndarray] = {
                region: np.full((res, res), default_cost, dtype=np.uint8, order="C")
                for region in dims.region_ids()
            }
        else:
            self._baseline = validate_cost_arrays(dims, arrays)
        self._view: Dict[RegionID, np.ndarray] = {}
        self._listeners: List[CostListener] = []
        self._rescale()

    @classmethod
    def from_loader(
        cls,
        loader: CostGridLoader,
        dims: WorldDimensions,
        clearance: Optional[ClearanceConfig] = None,
    ) -> "CostGrids":
        return cls(dims, clearance=clearance, arrays=loader.load(dims))

    def with_clearance(self, clearance: ClearanceConfig) -> "CostGrids":
        """Copy of these grids viewed by a different agent class."""
        arrays = {region: grid.copy() for region, grid in self._baseline.items()}
        return CostGrids(self.dims, clearance=clearance, arrays=arrays)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def subscribe(self, listener: CostListener) -> None:
        """Call ``listener`` with the changed regions after every mutation."""
        self._listeners.append(listener)

    def _notify(self, regions: Set[RegionID]) -> None:
        for listener in self._listeners:
            listener(set(regions))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, region: Tuple[int, int], cell: Tuple[int, int]) -> int:
        """Authored cost of ``cell``."""
        region = self.dims.validate_region(region)
        cell = self.dims.validate_cell(cell)
        return int(self._baseline[region][cell.row, cell.col])

    def view_cost(self, region: Tuple[int, int], cell: Tuple[int, int]) -> int:
        """Cost of ``cell`` after clearance."""
        region = self.dims.validate_region(region)
        cell = self.dims.validate_cell(cell)
        return int(self._view[region][cell.row, cell.col])

    def is_pathable(self, region: RegionID, cell: FieldCell) -> bool:
        return self._view[region][cell.row, cell.col] != COST_IMPASSABLE

    def baseline(self, region: RegionID) -> np.ndarray:
        grid = self._baseline[region].view()
        grid.flags.writeable = False
        return grid

    def view(self, region: RegionID) -> np.ndarray:
        grid = self._view[region].view()
        grid.flags.writeable = False
        return grid

    def region_ids(self) -> List[RegionID]:
        return sorted(self._baseline)

    def stitched(self, derived: bool = True) -> np.ndarray:
        """Whole-world cost array, ``(rows, cols)`` in cells."""
        source = self._view if derived else self._baseline
        res = self.dims.field_resolution
        world = np.empty(self.dims.cell_shape, dtype=np.uint8)
        for region, grid in source.items():
            world[
                region.row * res : (region.row + 1) * res,
                region.column * res : (region.column + 1) * res,
            ] = grid
        return world

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def set(self, region: Tuple[int, int], cell: Tuple[int, int], cost: int) -> Set[RegionID]:
        """Write a single cost; see :meth:`set_many`."""
        return self.set_many([(region, cell, cost)])

    def set_many(self, updates: Iterable[CostUpdate]) -> Set[RegionID]:
        """Apply several cost writes and notify listeners once.

        Every update is validated before anything is written, so a bad entry
        leaves the grids untouched. Returns the regions whose costs or derived
        view changed; writes of an unchanged value are ignored.
        """
        checked = []
        for region, cell, cost in updates:
            region = self.dims.validate_region(region)
            cell = self.dims.validate_cell(cell)
            validate_cost(cost)
            checked.append((region, cell, int(cost)))

        mutated: Set[RegionID] = set()
        for region, cell, cost in checked:
            grid = self._baseline[region]
            if grid[cell.row, cell.col] == cost:
                continue
            grid[cell.row, cell.col] = cost
            mutated.add(region)
        if not mutated:
            log.debug("Cost writes left grids unchanged", updates=len(checked))
            return set()

        changed = mutated | self._rescale(mutated)
        log.info(
            "Region costs changed",
            mutated=sorted(mutated),
            changed=sorted(changed),
        )
        self._notify(changed)
        return changed

    def _rescale(self, mutated: Optional[Set[RegionID]] = None) -> Set[RegionID]:
        """Refresh the clearance view, returning regions whose view changed."""
        scale = self.clearance.scale
        if scale <= 1:
            regions = mutated if mutated is not None else set(self._baseline)
            changed = set()
            for region in regions:
                fresh = self._baseline[region].copy()
                if region not in self._view or not np.array_equal(fresh, self._view[region]):
                    changed.add(region)
                self._view[region] = fresh
            return changed

        world = apply_clearance(self.stitched(derived=False), scale)
        res = self.dims.field_resolution
        changed = set()
        for region in self._baseline:
            fresh = np.ascontiguousarray(
                world[
                    region.row * res : (region.row + 1) * res,
                    region.column * res : (region.column + 1) * res,
                ]
            )
            if region not in self._view or not np.array_equal(fresh, self._view[region]):
                changed.add(region)
                self._view[region] = fresh
        return changed


def validate_cost(cost: int) -> None:
    """Reject anything but an integer cost in ``1..255``."""
    if not isinstance(cost, (int, np.integer)) or not COST_MIN <= cost <= COST_IMPASSABLE:
        log.error("Invalid cost value", cost=cost)
        raise InvalidCostError(f"Cost {cost!r} must be an integer in 1..255.")


__all__ = ["CostGrids", "CostListener", "validate_cost"]
