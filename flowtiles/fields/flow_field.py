# flowtiles/fields/flow_field.py
from __future__ import annotations

import math
import time
from typing import Final, Optional, Tuple

import numpy as np
import structlog
from numba import njit

from flowtiles.constants import NEIGHBOUR_CODES, NEIGHBOUR_OFFSETS, Ordinal
from flowtiles.errors import FieldBuildError
from flowtiles.fields.integration_field import (
    GOAL_FLAG,
    IMPASSABLE_FLAG,
    LOS_FLAG,
    PORTAL_FLAG,
    IntegrationField,
    build_integration_field,
)
from flowtiles.fields.wavefront import COST_MASK, COST_MAX
from flowtiles.world.cost_grid import CostGrids
from flowtiles.world.dimensions import FieldCell, RegionID

log = structlog.get_logger(__name__)

# --- Flow cell bit layout ---
DIRECTION_MASK: Final[int] = 0b0000_1111
SENTINEL: Final[int] = 0b0000_1111
PATHABLE_BIT: Final[int] = 0b0001_0000
LOS_BIT: Final[int] = 0b0010_0000
GOAL_BIT: Final[int] = 0b0100_0000
PORTAL_GOAL_BIT: Final[int] = 0b1000_0000

_DIAGONAL: Final[float] = 1.0 / math.sqrt(2.0)


@njit(cache=True)
def _calculate_flow_bits_numba(values: np.ndarray, portal_code: int, out: np.ndarray) -> None:
    """Encode the steepest descent of ``values`` into ``out``.

    Cells left without a strictly lower neighbour keep the sentinel.
    """
    height, width = values.shape
    for r in range(height):
        for c in range(width):
            packed = np.int64(values[r, c])
            if packed & IMPASSABLE_FLAG:
                out[r, c] = 0
                continue
            if packed & GOAL_FLAG:
                out[r, c] = GOAL_BIT | PATHABLE_BIT | LOS_BIT
                continue
            if packed & PORTAL_FLAG:
                out[r, c] = PORTAL_GOAL_BIT | PATHABLE_BIT | portal_code
                continue
            current = packed & COST_MASK
            if current >= COST_MAX:
                out[r, c] = PATHABLE_BIT
                continue

            best = current
            best_code = 0
            for k in range(NEIGHBOUR_OFFSETS.shape[0]):
                d_row = NEIGHBOUR_OFFSETS[k, 0]
                d_col = NEIGHBOUR_OFFSETS[k, 1]
                nr = r + d_row
                nc = c + d_col
                if nr < 0 or nr >= height or nc < 0 or nc >= width:
                    continue
                neighbour = np.int64(values[nr, nc])
                if neighbour & IMPASSABLE_FLAG:
                    continue
                if d_row != 0 and d_col != 0:
                    if np.int64(values[nr, c]) & IMPASSABLE_FLAG:
                        continue
                    if np.int64(values[r, nc]) & IMPASSABLE_FLAG:
                        continue
                cost = neighbour & COST_MASK
                if cost < best:
                    best = cost
                    best_code = NEIGHBOUR_CODES[k]

            if best_code == 0:
                continue
            bits = PATHABLE_BIT | best_code
            if packed & LOS_FLAG:
                bits |= LOS_BIT
            out[r, c] = bits


# ----------------------------------------------------------------------
# Bit decoding
# ----------------------------------------------------------------------
def ordinal_from_bits(bits: int) -> Ordinal:
    code = int(bits) & DIRECTION_MASK
    try:
        return Ordinal(code)
    except ValueError:
        raise ValueError(f"Flow bits {int(bits):#010b} hold no valid direction") from None


def is_pathable(bits: int) -> bool:
    return bool(int(bits) & PATHABLE_BIT)


def has_los(bits: int) -> bool:
    return bool(int(bits) & LOS_BIT)


def is_goal(bits: int) -> bool:
    return bool(int(bits) & GOAL_BIT)


def is_portal_goal(bits: int) -> bool:
    return bool(int(bits) & PORTAL_GOAL_BIT)


def direction_2d(bits: int) -> Tuple[float, float]:
    """Unit ``(x, y)`` vector of a flow cell, north is ``+y``."""
    d_row, d_col = ordinal_from_bits(bits).offset
    scale = _DIAGONAL if d_row and d_col else 1.0
    return d_col * scale, -d_row * scale


def direction_3d(bits: int) -> Tuple[float, float, float]:
    """Unit ``(x, y, z)`` vector on the ground plane, north is ``-z``."""
    x, y = direction_2d(bits)
    return x, 0.0, -y


class FlowField:
    """Encoded directions for one region hop, one byte per cell."""

    def __init__(
        self,
        region: RegionID,
        bits: np.ndarray,
        goal_cell: FieldCell,
        exit_to: Optional[RegionID] = None,
    ):
        self.region = region
        self.bits = bits
        self.goal_cell = goal_cell
        self.exit_to = exit_to

    @property
    def resolution(self) -> int:
        return self.bits.shape[0]

    def get(self, cell: Tuple[int, int]) -> int:
        return int(self.bits[cell[0], cell[1]])

    def ordinal(self, cell: Tuple[int, int]) -> Ordinal:
        return ordinal_from_bits(self.get(cell))

    def next_cell(self, cell: Tuple[int, int]) -> Optional[FieldCell]:
        """Cell the flow points at, ``None`` at a goal or a dead end.

        Portal goal cells point out of the region, so their next cell is
        outside the grid and ``None`` is returned as well.
        """
        d_row, d_col = self.ordinal(cell).offset
        if d_row == 0 and d_col == 0:
            return None
        nr, nc = cell[0] + d_row, cell[1] + d_col
        if not (0 <= nr < self.resolution and 0 <= nc < self.resolution):
            return None
        return FieldCell(nr, nc)

    def to_bytes(self) -> bytes:
        """Row-major wire encoding."""
        return self.bits.tobytes(order="C")

    @classmethod
    def from_bytes(
        cls,
        region: RegionID,
        data: bytes,
        resolution: int,
        goal_cell: FieldCell,
        exit_to: Optional[RegionID] = None,
    ) -> "FlowField":
        if len(data) != resolution * resolution:
            raise ValueError(
                f"Expected {resolution * resolution} bytes for a {resolution}x{resolution} field, "
                f"got {len(data)}."
            )
        bits = np.frombuffer(data, dtype=np.uint8).reshape(resolution, resolution).copy()
        return cls(region, bits, goal_cell, exit_to)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FlowField):
            return NotImplemented
        return (
            self.region == other.region
            and self.goal_cell == other.goal_cell
            and self.exit_to == other.exit_to
            and np.array_equal(self.bits, other.bits)
        )

    def __repr__(self) -> str:
        return (
            f"FlowField(region={self.region}, goal_cell={self.goal_cell}, "
            f"exit_to={self.exit_to})"
        )


def flow_from_integration(
    field: IntegrationField, exit_side: Optional[Ordinal] = None
) -> np.ndarray:
    """Encode ``field`` into flow bits, raising if a sentinel survives."""
    out = np.full(field.values.shape, SENTINEL, dtype=np.uint8)
    portal_code = int(exit_side) if exit_side is not None else 0
    _calculate_flow_bits_numba(field.values, portal_code, out)
    leftover = int(np.count_nonzero(out == SENTINEL))
    if leftover:
        log.error("Flow field sentinel survived", cells=leftover)
        raise FieldBuildError(f"{leftover} flow cells were never resolved.")
    return out


def build_flow_field(
    grids: CostGrids,
    region: RegionID,
    goal_cell: Tuple[int, int],
    exit_to: Optional[RegionID] = None,
) -> FlowField:
    """Build the integration field for one hop and encode it."""
    start_time = time.perf_counter()
    dims = grids.dims
    region = dims.validate_region(region)
    goal = dims.validate_cell(goal_cell)
    field = build_integration_field(grids, region, goal, exit_to)
    exit_side = dims.side_towards(region, exit_to) if exit_to is not None else None
    bits = flow_from_integration(field, exit_side)
    log.debug(
        "Flow field built",
        region=region,
        goal=goal,
        exit_to=exit_to,
        duration_ms=round((time.perf_counter() - start_time) * 1000.0, 3),
    )
    return FlowField(region, bits, goal, exit_to)


__all__ = [
    "DIRECTION_MASK",
    "FlowField",
    "GOAL_BIT",
    "LOS_BIT",
    "PATHABLE_BIT",
    "PORTAL_GOAL_BIT",
    "SENTINEL",
    "build_flow_field",
    "direction_2d",
    "direction_3d",
    "flow_from_integration",
    "has_los",
    "is_goal",
    "is_pathable",
    "is_portal_goal",
    "ordinal_from_bits",
]
