"""flowtiles/world/los.py

Numba-accelerated Bresenham line of sight over a region grid, plus the ray
helpers used to shade cells behind obstacle corners. Coordinates are
``(row, col)`` throughout to match the numpy layout of the cost grids.
"""

from __future__ import annotations

from typing import List, Tuple

import numpy as np
from numba import njit


@njit(cache=True)
def line_of_sight(
    row0: int,
    col0: int,
    row1: int,
    col1: int,
    pathable: np.ndarray,
) -> bool:
    """Return ``True`` if a straight line between two cells is unobstructed.

    Every cell stepped onto (the destination included, the origin excluded)
    must be pathable, and a diagonal step may not squeeze between two
    impassable cells.
    """

    height, width = pathable.shape
    if not (
        0 <= row0 < height
        and 0 <= col0 < width
        and 0 <= row1 < height
        and 0 <= col1 < width
    ):
        return False

    d_col = abs(col1 - col0)
    d_row = -abs(row1 - row0)
    s_col = 1 if col0 < col1 else -1
    s_row = 1 if row0 < row1 else -1
    err = d_col + d_row

    ri, ci = row0, col0
    n_steps = max(d_col, -d_row)

    for _ in range(n_steps):
        e2 = 2 * err
        step_col = False
        step_row = False

        if e2 >= d_row:
            if ci == col1:
                break
            err += d_row
            step_col = True

        if e2 <= d_col:
            if ri == row1:
                break
            err += d_col
            step_row = True

        next_r, next_c = ri, ci
        if step_col:
            next_c += s_col
        if step_row:
            next_r += s_row

        if not pathable[next_r, next_c]:
            return False
        if step_col and step_row:
            if not pathable[ri, next_c] and not pathable[next_r, ci]:
                return False

        ri, ci = next_r, next_c
        if ri == row1 and ci == col1:
            break

    return True


def cells_between(
    start: Tuple[int, int], end: Tuple[int, int]
) -> List[Tuple[int, int]]:
    """Bresenham cells from ``start`` to ``end``, both inclusive."""
    row0, col0 = start
    row1, col1 = end
    d_col = abs(col1 - col0)
    d_row = -abs(row1 - row0)
    s_col = 1 if col0 < col1 else -1
    s_row = 1 if row0 < row1 else -1
    err = d_col + d_row
    cells = [(row0, col0)]
    while (row0, col0) != (row1, col1):
        e2 = 2 * err
        if e2 >= d_row:
            err += d_row
            col0 += s_col
        if e2 <= d_col:
            err += d_col
            row0 += s_row
        cells.append((row0, col0))
    return cells


def ray_to_boundary(
    origin: Tuple[int, int], through: Tuple[int, int], size: int
) -> Tuple[int, int]:
    """Extend the ray ``origin -> through`` until it meets the grid edge.

    Returns the last cell inside a ``size x size`` grid along the ray. When
    ``origin == through`` the ray has no direction and ``through`` is returned.
    """
    d_row = through[0] - origin[0]
    d_col = through[1] - origin[1]
    if d_row == 0 and d_col == 0:
        return through
    limits = []
    if d_row > 0:
        limits.append((size - 1 - through[0]) / d_row)
    elif d_row < 0:
        limits.append(through[0] / -d_row)
    if d_col > 0:
        limits.append((size - 1 - through[1]) / d_col)
    elif d_col < 0:
        limits.append(through[1] / -d_col)
    t = min(limits)
    end_row = int(round(through[0] + t * d_row))
    end_col = int(round(through[1] + t * d_col))
    return (
        min(max(end_row, 0), size - 1),
        min(max(end_col, 0), size - 1),
    )


__all__ = ["cells_between", "line_of_sight", "ray_to_boundary"]
