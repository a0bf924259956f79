"""Cost grid ingestion.

Loaders turn some external source into a complete ``RegionID -> uint8 array``
mapping before the navigation core sees it. Structured-file, tabular and
image readers live outside this package; they only need to satisfy
:class:`CostGridLoader`.
"""

from __future__ import annotations

from typing import Dict, Mapping, Protocol, Sequence, Tuple, Union

import numpy as np
import structlog

from flowtiles.constants import COST_MIN
from flowtiles.errors import InvalidCostError, InvalidRegionError
from flowtiles.world.dimensions import RegionID, WorldDimensions

log = structlog.get_logger(__name__)

CostArrays = Dict[RegionID, np.ndarray]


class CostGridLoader(Protocol):
    def load(self, dims: WorldDimensions) -> Mapping[Tuple[int, int], np.ndarray]:
        """Return one cost array per region of ``dims``."""
        ...


class MappingLoader:
    """Serve cost grids held in memory as arrays or nested lists.

    Regions missing from ``grids`` are filled with ``default_cost`` when
    ``fill_missing`` is set, otherwise validation rejects the mapping.
    """

    def __init__(
        self,
        grids: Mapping[Tuple[int, int], Union[np.ndarray, Sequence[Sequence[int]]]],
        fill_missing: bool = False,
        default_cost: int = COST_MIN,
    ):
        self.grids = grids
        self.fill_missing = fill_missing
        self.default_cost = default_cost

    def load(self, dims: WorldDimensions) -> CostArrays:
        arrays: CostArrays = {}
        for key, grid in self.grids.items():
            arrays[RegionID(*key)] = np.asarray(grid)
        if self.fill_missing:
            res = dims.field_resolution
            for region in dims.region_ids():
                if region not in arrays:
                    arrays[region] = np.full((res, res), self.default_cost, dtype=np.uint8)
        return arrays


def validate_cost_arrays(
    dims: WorldDimensions, arrays: Mapping[Tuple[int, int], np.ndarray]
) -> CostArrays:
    """Check that ``arrays`` is a complete, well-formed cost grid set.

    Returns C-ordered ``uint8`` copies keyed by :class:`RegionID`.
    """
    res = dims.field_resolution
    expected = set(dims.region_ids())
    provided = {RegionID(*key) for key in arrays}
    missing = expected - provided
    extra = provided - expected
    if missing or extra:
        log.error(
            "Cost grid set does not match world partition",
            missing=sorted(missing),
            extra=sorted(extra),
        )
        raise InvalidRegionError(
            f"Cost grids must cover exactly the world regions "
            f"(missing {len(missing)}, unexpected {len(extra)})."
        )

    validated: CostArrays = {}
    for key, grid in arrays.items():
        region = RegionID(*key)
        values = np.asarray(grid)
        if values.shape != (res, res):
            log.error("Cost grid has wrong shape", region=region, shape=values.shape)
            raise InvalidCostError(
                f"Cost grid for {region} has shape {values.shape}, expected {(res, res)}."
            )
        if values.size and (values.min() < COST_MIN or values.max() > 255):
            log.error("Cost grid has out of range values", region=region)
            raise InvalidCostError(f"Cost grid for {region} holds values outside 1..255.")
        validated[region] = np.ascontiguousarray(values, dtype=np.uint8)
    return validated


__all__ = ["CostArrays", "CostGridLoader", "MappingLoader", "validate_cost_arrays"]
