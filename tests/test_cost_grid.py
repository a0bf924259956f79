import numpy as np
import pytest

from flowtiles.errors import InvalidCostError, InvalidRegionError
from flowtiles.world.clearance import ClearanceConfig
from flowtiles.world.cost_grid import CostGrids
from flowtiles.world.dimensions import RegionID, WorldDimensions
from flowtiles.world.loaders import MappingLoader


def make_grids(columns=2, rows=1, resolution=4, actor_size=0.0, arrays=None):
    dims = WorldDimensions(columns, rows, field_resolution=resolution)
    clearance = ClearanceConfig(actor_size=actor_size, cell_size=1.0)
    return CostGrids(dims, clearance=clearance, arrays=arrays)


def test_grids_default_to_cheapest_cost():
    grids = make_grids()
    assert grids.region_ids() == [RegionID(0, 0), RegionID(1, 0)]
    assert np.all(grids.baseline(RegionID(0, 0)) == 1)
    assert grids.get((1, 0), (3, 3)) == 1


def test_set_reports_mutated_region_and_notifies():
    grids = make_grids()
    seen = []
    grids.subscribe(seen.append)
    changed = grids.set((1, 0), (2, 1), 40)
    assert changed == {RegionID(1, 0)}
    assert grids.get((1, 0), (2, 1)) == 40
    assert grids.view_cost((1, 0), (2, 1)) == 40
    assert seen == [{RegionID(1, 0)}]


def test_unchanged_write_is_a_no_op():
    grids = make_grids()
    seen = []
    grids.subscribe(seen.append)
    assert grids.set((0, 0), (0, 0), 1) == set()
    assert seen == []


@pytest.mark.parametrize("cost", [0, 256, -3, 1.5])
def test_invalid_cost_is_rejected_without_mutation(cost):
    grids = make_grids()
    with pytest.raises(InvalidCostError):
        grids.set((0, 0), (1, 1), cost)
    assert grids.get((0, 0), (1, 1)) == 1


def test_batch_with_one_bad_entry_writes_nothing():
    grids = make_grids()
    with pytest.raises(InvalidRegionError):
        grids.set_many([((0, 0), (1, 1), 9), ((5, 0), (1, 1), 9)])
    assert grids.get((0, 0), (1, 1)) == 1


def test_views_are_read_only():
    grids = make_grids()
    with pytest.raises(ValueError):
        grids.view(RegionID(0, 0))[0, 0] = 7


def test_clearance_change_crosses_region_boundary():
    # Global row 1: wall at col 5 (region 1, local col 1) from the start
    arrays = {
        (0, 0): np.ones((4, 4), dtype=np.uint8),
        (1, 0): np.ones((4, 4), dtype=np.uint8),
    }
    arrays[(1, 0)][1, 1] = 255
    grids = make_grids(actor_size=2.0, arrays=arrays)
    assert grids.view_cost((1, 0), (1, 0)) == 1

    changed = grids.set((0, 0), (1, 3), 255)

    assert changed == {RegionID(0, 0), RegionID(1, 0)}
    assert grids.view_cost((1, 0), (1, 0)) == 255
    assert grids.get((1, 0), (1, 0)) == 1


def test_from_loader_fills_missing_regions():
    dims = WorldDimensions(2, 1, field_resolution=4)
    loader = MappingLoader({(0, 0): [[3] * 4] * 4}, fill_missing=True)
    grids = CostGrids.from_loader(loader, dims)
    assert grids.get((0, 0), (2, 2)) == 3
    assert grids.get((1, 0), (2, 2)) == 1


def test_loader_rejects_incomplete_or_bad_grids():
    dims = WorldDimensions(2, 1, field_resolution=4)
    with pytest.raises(InvalidRegionError):
        CostGrids.from_loader(MappingLoader({(0, 0): np.ones((4, 4))}), dims)
    bad_shape = {(0, 0): np.ones((3, 4)), (1, 0): np.ones((4, 4))}
    with pytest.raises(InvalidCostError):
        CostGrids.from_loader(MappingLoader(bad_shape), dims)
    bad_value = {(0, 0): np.zeros((4, 4)), (1, 0): np.ones((4, 4))}
    with pytest.raises(InvalidCostError):
        CostGrids.from_loader(MappingLoader(bad_value), dims)


def test_stitched_places_regions_by_row_and_column():
    grids = make_grids(columns=2, rows=2, resolution=2)
    grids.set((1, 0), (0, 1), 9)
    grids.set((0, 1), (1, 0), 7)
    world = grids.stitched()
    assert world.shape == (4, 4)
    assert world[0, 3] == 9
    assert world[3, 0] == 7
