from enum import IntEnum
from typing import Final, Tuple

import numpy as np

# --- Cost grid values ---
COST_MIN: Final[int] = 1
COST_IMPASSABLE: Final[int] = 255

DEFAULT_FIELD_RESOLUTION: Final[int] = 10
# Seconds before a cached route or flow field is considered stale
DEFAULT_CACHE_TTL: Final[float] = 15 * 60.0
# Weight of an external edge between two matching portals
DEFAULT_CROSSING_COST: Final[int] = 1


class Ordinal(IntEnum):
    """Compass directions used for region sides and cell neighbours.

    The integer values double as the 4-bit direction codes of a flow field
    cell, so ``int(Ordinal.NORTH_EAST) == 0b0011``.
    """

    ZERO = 0b0000
    NORTH = 0b0001
    EAST = 0b0010
    SOUTH = 0b0100
    WEST = 0b1000
    NORTH_EAST = 0b0011
    SOUTH_EAST = 0b0110
    SOUTH_WEST = 0b1100
    NORTH_WEST = 0b1001

    @property
    def offset(self) -> Tuple[int, int]:
        """``(d_row, d_col)`` step; north is towards row 0."""
        return _OFFSETS[self]

    def inverse(self) -> "Ordinal":
        return _INVERSE[self]

    @property
    def is_orthogonal(self) -> bool:
        return self in ORTHOGONALS

    @classmethod
    def from_offset(cls, d_row: int, d_col: int) -> "Ordinal":
        for ordinal, offset in _OFFSETS.items():
            if offset == (d_row, d_col):
                return ordinal
        raise ValueError(f"No ordinal for offset ({d_row}, {d_col})")


_OFFSETS = {
    Ordinal.ZERO: (0, 0),
    Ordinal.NORTH: (-1, 0),
    Ordinal.EAST: (0, 1),
    Ordinal.SOUTH: (1, 0),
    Ordinal.WEST: (0, -1),
    Ordinal.NORTH_EAST: (-1, 1),
    Ordinal.SOUTH_EAST: (1, 1),
    Ordinal.SOUTH_WEST: (1, -1),
    Ordinal.NORTH_WEST: (-1, -1),
}

_INVERSE = {
    Ordinal.ZERO: Ordinal.ZERO,
    Ordinal.NORTH: Ordinal.SOUTH,
    Ordinal.EAST: Ordinal.WEST,
    Ordinal.SOUTH: Ordinal.NORTH,
    Ordinal.WEST: Ordinal.EAST,
    Ordinal.NORTH_EAST: Ordinal.SOUTH_WEST,
    Ordinal.SOUTH_EAST: Ordinal.NORTH_WEST,
    Ordinal.SOUTH_WEST: Ordinal.NORTH_EAST,
    Ordinal.NORTH_WEST: Ordinal.SOUTH_EAST,
}

# Order matters: orthogonals are always inspected before diagonals
ORTHOGONALS: Final[Tuple[Ordinal, ...]] = (
    Ordinal.NORTH,
    Ordinal.EAST,
    Ordinal.SOUTH,
    Ordinal.WEST,
)
DIAGONALS: Final[Tuple[Ordinal, ...]] = (
    Ordinal.NORTH_EAST,
    Ordinal.SOUTH_EAST,
    Ordinal.SOUTH_WEST,
    Ordinal.NORTH_WEST,
)
ALL_NEIGHBOURS: Final[Tuple[Ordinal, ...]] = ORTHOGONALS + DIAGONALS

# Numba-friendly copies of the neighbour tables, same order as ALL_NEIGHBOURS
NEIGHBOUR_OFFSETS: Final[np.ndarray] = np.array(
    [_OFFSETS[o] for o in ALL_NEIGHBOURS], dtype=np.int64
)
NEIGHBOUR_CODES: Final[np.ndarray] = np.array(
    [int(o) for o in ALL_NEIGHBOURS], dtype=np.uint8
)

__all__ = [
    "ALL_NEIGHBOURS",
    "COST_IMPASSABLE",
    "COST_MIN",
    "DEFAULT_CACHE_TTL",
    "DEFAULT_CROSSING_COST",
    "DEFAULT_FIELD_RESOLUTION",
    "DIAGONALS",
    "NEIGHBOUR_CODES",
    "NEIGHBOUR_OFFSETS",
    "ORTHOGONALS",
    "Ordinal",
]
