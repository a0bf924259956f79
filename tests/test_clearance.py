import numpy as np

from flowtiles.constants import COST_IMPASSABLE
from flowtiles.world.clearance import ClearanceConfig, apply_clearance


def _world_with_row(row_values, size=7):
    world = np.ones((size, size), dtype=np.uint8)
    world[3, : len(row_values)] = row_values
    return world


def test_scale_from_actor_size():
    assert ClearanceConfig().scale == 1
    assert ClearanceConfig(actor_size=1.0, cell_size=1.0).scale == 1
    assert ClearanceConfig(actor_size=1.5, cell_size=1.0).scale == 2
    assert ClearanceConfig(actor_size=4.0, cell_size=2.0).scale == 2


def test_one_cell_gap_is_sealed_for_wide_agents():
    world = _world_with_row([255, 1, 255])
    out = apply_clearance(world, 2)
    assert out[3, 1] == COST_IMPASSABLE
    assert world[3, 1] == 1


def test_two_cell_gap_stays_open_at_scale_two():
    world = _world_with_row([255, 1, 1, 255])
    out = apply_clearance(world, 2)
    assert out[3, 1] == 1
    assert out[3, 2] == 1


def test_scale_one_changes_nothing():
    world = _world_with_row([255, 1, 255])
    out = apply_clearance(world, 1)
    np.testing.assert_array_equal(out, world)
    assert out is not world


def test_world_edge_closes_gaps():
    world = np.ones((5, 5), dtype=np.uint8)
    world[2, 1] = COST_IMPASSABLE
    out = apply_clearance(world, 2)
    assert out[2, 0] == COST_IMPASSABLE
    assert out[2, 2] == 1
