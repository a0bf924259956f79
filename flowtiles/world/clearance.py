# flowtiles/world/clearance.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final

import numpy as np
import structlog
from numba import njit

from flowtiles.constants import COST_IMPASSABLE, NEIGHBOUR_OFFSETS

log = structlog.get_logger(__name__)

_ORTHOGONAL_STEPS: Final[np.ndarray] = NEIGHBOUR_OFFSETS[:4].copy()


@dataclass(frozen=True)
class ClearanceConfig:
    """Footprint of an agent class relative to the cell size."""

    actor_size: float = 0.0
    cell_size: float = 1.0

    def __post_init__(self) -> None:
        if self.actor_size < 0:
            raise ValueError("Actor size cannot be negative.")
        if self.cell_size <= 0:
            raise ValueError("Cell size must be positive.")

    @property
    def scale(self) -> int:
        """Number of cells an agent of this class needs to pass a gap."""
        return max(1, int(math.ceil(self.actor_size / self.cell_size)))


@njit(cache=True)
def _close_gaps_kernel(world: np.ndarray, scale: int, out: np.ndarray) -> None:
    """Seal gaps narrower than ``scale`` next to impassable cells.

    Walks up to ``scale`` cells away from every impassable cell along each
    orthogonal. Hitting another impassable cell or the world edge first
    marks every crossed cell impassable in ``out``.
    """
    rows, cols = world.shape
    for r in range(rows):
        for c in range(cols):
            if world[r, c] != COST_IMPASSABLE:
                continue
            for k in range(_ORTHOGONAL_STEPS.shape[0]):
                d_row = _ORTHOGONAL_STEPS[k, 0]
                d_col = _ORTHOGONAL_STEPS[k, 1]
                closed = False
                crossed = 0
                for i in range(1, scale + 1):
                    nr = r + d_row * i
                    nc = c + d_col * i
                    if nr < 0 or nr >= rows or nc < 0 or nc >= cols:
                        closed = True
                        break
                    if world[nr, nc] == COST_IMPASSABLE:
                        closed = True
                        break
                    crossed = i
                if closed:
                    for i in range(1, crossed + 1):
                        out[r + d_row * i, c + d_col * i] = COST_IMPASSABLE


def apply_clearance(world: np.ndarray, scale: int) -> np.ndarray:
    """Return a copy of the stitched ``world`` costs dilated for ``scale``."""
    out = world.copy()
    if scale <= 1:
        return out
    _close_gaps_kernel(world, scale, out)
    log.debug(
        "Clearance applied",
        scale=scale,
        sealed=int(np.count_nonzero(out != world)),
    )
    return out


__all__ = ["ClearanceConfig", "apply_clearance"]
