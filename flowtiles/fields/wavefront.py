# flowtiles/fields/wavefront.py
"""Label-correcting cost wavefront shared by the field builders and the
region graph's in-region distances."""

from __future__ import annotations

from typing import Final, Iterable, Tuple

import numpy as np
from numba import njit

from flowtiles.constants import COST_IMPASSABLE, NEIGHBOUR_OFFSETS

COST_MASK: Final[int] = 0x00FFFFFF
COST_MAX: Final[int] = 0x00FFFFFF
FLAG_MASK: Final[int] = 0xFF000000

_ORTHOGONAL_STEPS: Final[np.ndarray] = NEIGHBOUR_OFFSETS[:4].copy()


@njit(cache=True)
def propagate_costs(
    costs: np.ndarray,
    field: np.ndarray,
    seed_rows: np.ndarray,
    seed_cols: np.ndarray,
    allowed: np.ndarray,
) -> None:
    """Relax ``field`` outward from the seeds until no cost improves.

    ``field`` holds packed values: the low 24 bits are the cumulative cost,
    the high byte is left untouched. Only cells with ``allowed`` set are
    written, and stepping onto a cell adds its ``costs`` value. Moves are
    orthogonal.
    """
    rows, cols = costs.shape
    capacity = rows * cols
    queue_rows = np.empty(capacity, dtype=np.int64)
    queue_cols = np.empty(capacity, dtype=np.int64)
    in_queue = np.zeros((rows, cols), dtype=np.bool_)
    head = 0
    size = 0

    for i in range(seed_rows.shape[0]):
        r = seed_rows[i]
        c = seed_cols[i]
        if in_queue[r, c]:
            continue
        queue_rows[(head + size) % capacity] = r
        queue_cols[(head + size) % capacity] = c
        in_queue[r, c] = True
        size += 1

    while size > 0:
        r = queue_rows[head]
        c = queue_cols[head]
        head = (head + 1) % capacity
        size -= 1
        in_queue[r, c] = False
        current = np.int64(field[r, c]) & COST_MASK

        for k in range(_ORTHOGONAL_STEPS.shape[0]):
            nr = r + _ORTHOGONAL_STEPS[k, 0]
            nc = c + _ORTHOGONAL_STEPS[k, 1]
            if nr < 0 or nr >= rows or nc < 0 or nc >= cols:
                continue
            if not allowed[nr, nc]:
                continue
            candidate = current + np.int64(costs[nr, nc])
            if candidate > COST_MAX:
                candidate = COST_MAX
            packed = np.int64(field[nr, nc])
            if candidate < (packed & COST_MASK):
                field[nr, nc] = (packed & FLAG_MASK) | candidate
                if not in_queue[nr, nc]:
                    queue_rows[(head + size) % capacity] = nr
                    queue_cols[(head + size) % capacity] = nc
                    in_queue[nr, nc] = True
                    size += 1


def seed_arrays(cells: Iterable[Tuple[int, int]]) -> Tuple[np.ndarray, np.ndarray]:
    cells = list(cells)
    rows = np.array([cell[0] for cell in cells], dtype=np.int64)
    cols = np.array([cell[1] for cell in cells], dtype=np.int64)
    return rows, cols


def cell_distances(costs: np.ndarray, sources: Iterable[Tuple[int, int]]) -> np.ndarray:
    """Cheapest orthogonal walk cost from any of ``sources`` to every cell.

    Sources cost 0, each step adds the cost of the cell stepped onto.
    Impassable cells and cells cut off from every source stay at
    :data:`COST_MAX`. Returns an ``int64`` array.
    """
    field = np.full(costs.shape, COST_MAX, dtype=np.uint32)
    rows, cols = seed_arrays(sources)
    field[rows, cols] = 0
    allowed = costs != COST_IMPASSABLE
    propagate_costs(costs, field, rows, cols, allowed)
    return field.astype(np.int64)


__all__ = ["COST_MASK", "COST_MAX", "FLAG_MASK", "cell_distances", "propagate_costs", "seed_arrays"]
