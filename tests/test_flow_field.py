import numpy as np
import pytest

from flowtiles.constants import Ordinal
from flowtiles.errors import FieldBuildError
from flowtiles.fields.flow_field import (
    GOAL_BIT,
    LOS_BIT,
    PATHABLE_BIT,
    PORTAL_GOAL_BIT,
    SENTINEL,
    FlowField,
    build_flow_field,
    direction_2d,
    direction_3d,
    flow_from_integration,
    is_goal,
    ordinal_from_bits,
)
from flowtiles.fields.integration_field import IntegrationField, build_integration_field
from flowtiles.fields.wavefront import COST_MAX
from flowtiles.world.cost_grid import CostGrids
from flowtiles.world.dimensions import FieldCell, RegionID, WorldDimensions

HOME = RegionID(0, 0)


def make_grids(columns=1, resolution=10, walls=()):
    grids = CostGrids(WorldDimensions(columns, 1, field_resolution=resolution))
    grids.set_many([(HOME, cell, 255) for cell in walls])
    return grids


def obstacle_walls():
    return [(r, c) for r in range(3, 7) for c in (4, 5)] + [(8, 9), (9, 8)]


def walk_downhill(flow, field, start):
    """Follow ``flow`` from ``start``; costs must strictly drop until the goal."""
    cell = FieldCell(*start)
    for _ in range(flow.resolution ** 2):
        bits = flow.get(cell)
        if is_goal(bits):
            return cell
        nxt = flow.next_cell(cell)
        assert nxt is not None, cell
        assert field.cost(nxt) < field.cost(cell)
        cell = nxt
    pytest.fail(f"flow from {start} never reached the goal")


def test_uniform_flow_reaches_goal_from_everywhere():
    grids = make_grids()
    field = build_integration_field(grids, HOME, (0, 0))
    flow = FlowField(HOME, flow_from_integration(field), FieldCell(0, 0))
    for r in range(10):
        for c in range(10):
            assert walk_downhill(flow, field, (r, c)) == (0, 0)
    assert flow.get((0, 0)) == GOAL_BIT | PATHABLE_BIT | LOS_BIT


def test_flow_around_obstacle_never_keeps_sentinel():
    grids = make_grids(walls=obstacle_walls())
    field = build_integration_field(grids, HOME, (5, 1))
    bits = flow_from_integration(field)
    assert not np.any(bits == SENTINEL)
    flow = FlowField(HOME, bits, FieldCell(5, 1))
    for r in range(10):
        for c in range(10):
            if grids.view(HOME)[r, c] == 255 or not field.is_reached((r, c)):
                continue
            assert walk_downhill(flow, field, (r, c)) == (5, 1)
    # the hidden side of the block still flows, without line of sight
    assert flow.get((5, 8)) & PATHABLE_BIT
    assert not flow.get((5, 8)) & LOS_BIT


def test_impassable_and_unreachable_cells():
    grids = make_grids(walls=obstacle_walls())
    flow = build_flow_field(grids, HOME, (5, 1))
    assert flow.get((4, 4)) == 0
    assert flow.get((9, 9)) == PATHABLE_BIT
    assert flow.ordinal((9, 9)) is Ordinal.ZERO


def test_diagonals_need_both_orthogonals_open():
    open_flow = build_flow_field(make_grids(), HOME, (0, 0))
    assert open_flow.ordinal((1, 1)) is Ordinal.NORTH_WEST
    walled = build_flow_field(make_grids(walls=[(0, 1)]), HOME, (0, 0))
    assert walled.ordinal((1, 1)) is Ordinal.WEST


def test_portal_hop_points_across_the_boundary():
    grids = make_grids(columns=2)
    flow = build_flow_field(grids, HOME, (4, 9), exit_to=RegionID(1, 0))
    for row in range(10):
        assert flow.get((row, 9)) == PORTAL_GOAL_BIT | PATHABLE_BIT | int(Ordinal.EAST)
    assert flow.ordinal((4, 0)) is Ordinal.EAST
    assert flow.next_cell((4, 9)) is None
    assert not np.any(flow.bits == SENTINEL)


def test_unresolved_cells_fail_the_build():
    field = IntegrationField(3)
    field.values.fill(5)
    with pytest.raises(FieldBuildError):
        flow_from_integration(field)
    field.values.fill(COST_MAX)
    assert np.all(flow_from_integration(field) == PATHABLE_BIT)


def test_direction_vectors():
    assert direction_2d(PATHABLE_BIT | int(Ordinal.NORTH)) == (0.0, 1.0)
    assert direction_2d(int(Ordinal.WEST)) == (-1.0, 0.0)
    x, y = direction_2d(int(Ordinal.SOUTH_EAST))
    assert (x, y) == pytest.approx((2 ** -0.5, -(2 ** -0.5)))
    assert direction_3d(int(Ordinal.NORTH)) == pytest.approx((0.0, 0.0, -1.0))
    assert direction_2d(GOAL_BIT | PATHABLE_BIT) == (0.0, 0.0)


def test_invalid_direction_bits_raise():
    with pytest.raises(ValueError):
        ordinal_from_bits(SENTINEL)
    with pytest.raises(ValueError):
        ordinal_from_bits(0b0101)


def test_wire_format_is_row_major_bytes():
    grids = make_grids(walls=obstacle_walls())
    flow = build_flow_field(grids, HOME, (5, 1))
    data = flow.to_bytes()
    assert len(data) == 100
    assert data[4 * 10 + 4] == 0
    restored = FlowField.from_bytes(HOME, data, 10, FieldCell(5, 1))
    assert restored == flow
    with pytest.raises(ValueError):
        FlowField.from_bytes(HOME, data[:-1], 10, FieldCell(5, 1))
