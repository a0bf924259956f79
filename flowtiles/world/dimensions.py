# flowtiles/world/dimensions.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final, Iterator, List, NamedTuple, Optional, Tuple

import structlog

from flowtiles.constants import DEFAULT_FIELD_RESOLUTION, ORTHOGONALS, Ordinal
from flowtiles.errors import InvalidCellError, InvalidRegionError

log = structlog.get_logger(__name__)

# 254 * 256 * 256 still fits in the 24-bit integration cost
MAX_FIELD_RESOLUTION: Final[int] = 256


class RegionID(NamedTuple):
    """Key of a region in the world partition, ``(column, row)``."""

    column: int
    row: int


class FieldCell(NamedTuple):
    """Local ``(row, col)`` index of a cell inside a region grid."""

    row: int
    col: int


@dataclass(frozen=True)
class WorldDimensions:
    """Partition of the world into ``columns x rows`` square regions.

    Every region holds ``field_resolution x field_resolution`` cells, each
    covering ``cell_size`` world units. The world is centred on the origin
    with ``y`` growing towards the north (region row 0).
    """

    columns: int
    rows: int
    field_resolution: int = DEFAULT_FIELD_RESOLUTION
    cell_size: float = 1.0

    def __post_init__(self) -> None:
        if self.columns <= 0 or self.rows <= 0:
            log.error("Invalid world dimensions", columns=self.columns, rows=self.rows)
            raise ValueError("World must contain at least one region.")
        if not 2 <= self.field_resolution <= MAX_FIELD_RESOLUTION:
            log.error("Invalid field resolution", resolution=self.field_resolution)
            raise ValueError(
                f"Field resolution must be between 2 and {MAX_FIELD_RESOLUTION}."
            )
        if self.cell_size <= 0:
            raise ValueError("Cell size must be positive.")

    @classmethod
    def from_world_size(
        cls,
        length: float,
        depth: float,
        region_size: float,
        field_resolution: int = DEFAULT_FIELD_RESOLUTION,
    ) -> "WorldDimensions":
        """Derive the partition from world units.

        ``length`` and ``depth`` must be exact multiples of ``region_size``.
        """
        if region_size <= 0:
            raise ValueError("Region size must be positive.")
        columns = length / region_size
        rows = depth / region_size
        if not (columns.is_integer() and rows.is_integer()):
            log.error(
                "World size is not a multiple of the region size",
                length=length,
                depth=depth,
                region_size=region_size,
            )
            raise ValueError(
                f"World dimensions ({length}, {depth}) must be exact multiples of {region_size}."
            )
        return cls(
            columns=int(columns),
            rows=int(rows),
            field_resolution=field_resolution,
            cell_size=region_size / field_resolution,
        )

    # ------------------------------------------------------------------
    # Sizes
    # ------------------------------------------------------------------
    @property
    def region_size(self) -> float:
        return self.field_resolution * self.cell_size

    @property
    def length(self) -> float:
        return self.columns * self.region_size

    @property
    def depth(self) -> float:
        return self.rows * self.region_size

    @property
    def cell_shape(self) -> Tuple[int, int]:
        """Shape of the stitched world grid, ``(rows, cols)`` in cells."""
        return self.rows * self.field_resolution, self.columns * self.field_resolution

    # ------------------------------------------------------------------
    # Bounds checks
    # ------------------------------------------------------------------
    def region_ids(self) -> Iterator[RegionID]:
        for column in range(self.columns):
            for row in range(self.rows):
                yield RegionID(column, row)

    def contains_region(self, region: Tuple[int, int]) -> bool:
        column, row = region
        return 0 <= column < self.columns and 0 <= row < self.rows

    def contains_cell(self, cell: Tuple[int, int]) -> bool:
        row, col = cell
        return 0 <= row < self.field_resolution and 0 <= col < self.field_resolution

    def validate_region(self, region: Tuple[int, int]) -> RegionID:
        if not self.contains_region(region):
            log.error("Region outside world bounds", region=tuple(region))
            raise InvalidRegionError(
                f"Region {tuple(region)} is outside a {self.columns}x{self.rows} world."
            )
        return RegionID(*region)

    def validate_cell(self, cell: Tuple[int, int]) -> FieldCell:
        if not self.contains_cell(cell):
            log.error("Cell outside region bounds", cell=tuple(cell))
            raise InvalidCellError(
                f"Cell {tuple(cell)} is outside a {self.field_resolution}x"
                f"{self.field_resolution} region."
            )
        return FieldCell(*cell)

    # ------------------------------------------------------------------
    # Neighbourhood
    # ------------------------------------------------------------------
    def neighbour(self, region: RegionID, ordinal: Ordinal) -> Optional[RegionID]:
        """Region found one step in ``ordinal`` direction, ``None`` off-world."""
        d_row, d_col = ordinal.offset
        candidate = RegionID(region.column + d_col, region.row + d_row)
        return candidate if self.contains_region(candidate) else None

    def neighbours(self, region: RegionID) -> List[Tuple[Ordinal, RegionID]]:
        """Orthogonal neighbours in north, east, south, west order."""
        found = []
        for ordinal in ORTHOGONALS:
            other = self.neighbour(region, ordinal)
            if other is not None:
                found.append((ordinal, other))
        return found

    def side_towards(self, region: RegionID, other: RegionID) -> Ordinal:
        """Side of ``region`` shared with the orthogonally adjacent ``other``."""
        d_col = other.column - region.column
        d_row = other.row - region.row
        ordinal = Ordinal.from_offset(d_row, d_col)
        if not ordinal.is_orthogonal:
            raise InvalidRegionError(f"Regions {region} and {other} are not adjacent.")
        return ordinal

    # ------------------------------------------------------------------
    # Coordinate conversion
    # ------------------------------------------------------------------
    def to_global(self, region: RegionID, cell: FieldCell) -> Tuple[int, int]:
        """``(row, col)`` of a cell in the stitched world grid."""
        res = self.field_resolution
        return region.row * res + cell.row, region.column * res + cell.col

    def from_global(self, row: int, col: int) -> Tuple[RegionID, FieldCell]:
        res = self.field_resolution
        return RegionID(col // res, row // res), FieldCell(row % res, col % res)

    def locate(self, x: float, y: float) -> Optional[Tuple[RegionID, FieldCell]]:
        """Region and cell under the world position ``(x, y)``."""
        half_length = self.length / 2.0
        half_depth = self.depth / 2.0
        if abs(x) > half_length or abs(y) > half_depth:
            log.warning("Position outside world", x=x, y=y)
            return None
        total_rows, total_cols = self.cell_shape
        col = min(int(math.floor((x + half_length) / self.cell_size)), total_cols - 1)
        row = min(int(math.floor((half_depth - y) / self.cell_size)), total_rows - 1)
        return self.from_global(row, col)

    def cell_centre(self, region: RegionID, cell: FieldCell) -> Tuple[float, float]:
        """World ``(x, y)`` of the centre of a cell."""
        row, col = self.to_global(region, cell)
        x = -self.length / 2.0 + (col + 0.5) * self.cell_size
        y = self.depth / 2.0 - (row + 0.5) * self.cell_size
        return x, y


__all__ = ["FieldCell", "MAX_FIELD_RESOLUTION", "RegionID", "WorldDimensions"]
