import numpy as np
import pytest

import flowtiles.navigator as navigator_module
from flowtiles.config import NavigationSettings
from flowtiles.constants import Ordinal
from flowtiles.errors import ConfigError, ImpassableGoalError, InvalidCostError, InvalidRegionError
from flowtiles.fields.flow_field import is_goal, is_portal_goal
from flowtiles.navigator import Navigator
from flowtiles.world.clearance import ClearanceConfig
from flowtiles.world.cost_grid import CostGrids
from flowtiles.world.dimensions import FieldCell, RegionID, WorldDimensions
from flowtiles.world.loaders import MappingLoader


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_navigator(columns=2, rows=1, actor_size=0.0, walls=(), clock=None, **settings):
    dims = WorldDimensions(columns, rows, field_resolution=10)
    grids = CostGrids(dims, clearance=ClearanceConfig(actor_size=actor_size, cell_size=1.0))
    grids.set_many([(region, cell, 255) for region, cell in walls])
    return Navigator(
        grids,
        settings=NavigationSettings(**settings),
        clock=clock or FakeClock(),
    )


def run_until_idle(navigator, limit=50):
    for _ in range(limit):
        navigator.tick()
        if not navigator.pending:
            return
    pytest.fail("navigator never went idle")


def follow_route(navigator, key):
    """Walk an agent from the route source to its target using only cached fields."""
    dims = navigator.dims
    hops = navigator.get_route(key).field_hops()
    step = 0
    region, cell = key.source_region, key.source_cell
    visited = [region]
    for _ in range(1000):
        hop = hops[step]
        assert hop.region == region
        flow = navigator.get_field(hop.region, hop.goal_cell, hop.exit_to)
        assert flow is not None
        bits = flow.get(cell)
        if is_goal(bits):
            return region, cell, visited
        if is_portal_goal(bits):
            d_row, d_col = flow.ordinal(cell).offset
            row, col = dims.to_global(region, cell)
            region, cell = dims.from_global(row + d_row, col + d_col)
            assert region == hop.exit_to
            visited.append(region)
            step += 1
            continue
        nxt = flow.next_cell(cell)
        assert nxt is not None, (region, cell)
        cell = nxt
    pytest.fail("agent never arrived")


def test_request_publishes_route_then_fields():
    navigator = make_navigator()
    key = navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    assert navigator.get_route(key) is None

    report = navigator.tick()
    assert report.routes_planned == 1
    route = navigator.get_route(key)
    assert route is not None and route.reachable
    assert navigator.fields_for(key) is None

    run_until_idle(navigator)
    flows = navigator.fields_for(key)
    assert [f.region for f in flows] == [RegionID(0, 0), RegionID(1, 0)]
    assert flows[0].exit_to == RegionID(1, 0)
    assert flows[1].exit_to is None


def test_three_by_three_corner_request_flows_downhill_to_goal():
    navigator = make_navigator(columns=3, rows=3)
    key = navigator.request_path((2, 2), (9, 9), (0, 0), (0, 0))
    run_until_idle(navigator)

    region, cell, visited = follow_route(navigator, key)
    assert (region, cell) == (RegionID(0, 0), FieldCell(0, 0))
    assert len(visited) == 5
    for a, b in zip(visited, visited[1:]):
        assert b.column <= a.column and b.row <= a.row


def test_boundary_mutation_evicts_route_fields_and_portals():
    navigator = make_navigator()
    key = navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    run_until_idle(navigator)
    old_portals = navigator.portal_map.portals(RegionID(0, 0))[Ordinal.EAST]
    assert navigator.get_field((0, 0), (4, 9), (1, 0)) is not None

    navigator.mutate_cost((0, 0), (4, 9), 255)
    report = navigator.tick()

    assert report.rebuilt_regions == {RegionID(0, 0), RegionID(1, 0)}
    assert navigator.get_route(key) is None
    assert navigator.get_field((0, 0), (4, 9), (1, 0)) is None
    assert navigator.get_field((1, 0), (7, 7)) is None
    new_portals = navigator.portal_map.portals(RegionID(0, 0))[Ordinal.EAST]
    assert new_portals != old_portals
    assert [(p.start, p.end) for p in new_portals] == [(0, 3), (5, 9)]

    # consumers re-request after invalidation
    navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    run_until_idle(navigator)
    assert navigator.fields_for(key) is not None


def test_in_flight_field_jobs_are_discarded_on_mutation():
    navigator = make_navigator(columns=3)
    key = navigator.request_path((0, 0), (5, 5), (2, 0), (5, 5))
    navigator.tick()
    assert navigator.pending == 1

    navigator.mutate_cost((1, 0), (5, 5), 9)
    report = navigator.tick()
    assert report.discarded == 1
    assert navigator.pending == 0
    assert navigator.get_route(key) is None


def test_mutations_are_coalesced_per_cell():
    navigator = make_navigator()
    navigator.mutate_cost((0, 0), (3, 3), 20)
    navigator.mutate_cost((0, 0), (3, 3), 40)
    report = navigator.tick()
    assert report.mutations == 1
    assert navigator.grids.get((0, 0), (3, 3)) == 40
    assert report.rebuilt_regions == {RegionID(0, 0), RegionID(1, 0)}


def test_invalid_requests_raise_synchronously():
    navigator = make_navigator(walls=[(RegionID(1, 0), FieldCell(7, 7))])
    with pytest.raises(ImpassableGoalError):
        navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    with pytest.raises(InvalidRegionError):
        navigator.request_path((0, 0), (2, 2), (3, 0), (1, 1))
    with pytest.raises(InvalidCostError):
        navigator.mutate_cost((0, 0), (1, 1), 0)
    assert len(navigator.mutations) == 0


def test_unreachable_target_publishes_no_route():
    walls = [(RegionID(0, 0), FieldCell(r, 9)) for r in range(10)]
    navigator = make_navigator(walls=walls)
    key = navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    run_until_idle(navigator)
    route = navigator.get_route(key)
    assert route is not None
    assert not route.reachable
    assert navigator.fields_for(key) is None


def test_cached_data_expires_after_ttl():
    clock = FakeClock(0.0)
    navigator = make_navigator(clock=clock, cache_ttl_seconds=30.0)
    key = navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    run_until_idle(navigator)
    assert navigator.get_route(key) is not None
    clock.now = 31.0
    assert navigator.get_route(key) is None
    assert navigator.get_field((1, 0), (7, 7)) is None


def test_wide_agent_routes_around_narrow_gap():
    # Wall down column 5 of region (0, 0) with a single open cell at row 4
    arrays = {region: np.ones((10, 10), dtype=np.uint8) for region in [(0, 0), (1, 0), (0, 1), (1, 1)]}
    arrays[(0, 0)][:, 5] = 255
    arrays[(0, 0)][4, 5] = 1
    settings = NavigationSettings(actor_size=0.0)
    narrow = Navigator.from_loader(MappingLoader(arrays), 2, 2, settings, clock=FakeClock())
    wide = Navigator.from_loader(
        MappingLoader(arrays), 2, 2, NavigationSettings(actor_size=2.0), clock=FakeClock()
    )
    assert narrow.grids.view_cost((0, 0), (4, 5)) == 1
    assert wide.grids.view_cost((0, 0), (4, 5)) == 255

    routes = []
    for navigator in (narrow, wide):
        key = navigator.request_path((0, 0), (2, 1), (1, 0), (2, 5))
        run_until_idle(navigator)
        route = navigator.get_route(key)
        assert route.reachable
        routes.append(route)
        region, cell, _visited = follow_route(navigator, key)
        assert (region, cell) == (RegionID(1, 0), FieldCell(2, 5))

    assert routes[0].metadata.regions == (RegionID(0, 0), RegionID(1, 0))
    assert RegionID(0, 1) in routes[1].metadata.regions
    assert routes[1].metadata.total_cost > routes[0].metadata.total_cost


def test_world_position_helpers_delegate_to_dimensions():
    navigator = make_navigator()
    x, y = navigator.cell_centre(RegionID(1, 0), FieldCell(0, 0))
    assert navigator.locate(x, y) == (RegionID(1, 0), FieldCell(0, 0))


def test_cost_write_during_field_build_is_not_published(monkeypatch):
    navigator = make_navigator()
    key = navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    navigator.tick()
    assert navigator.get_route(key) is not None

    real_build = navigator_module.build_flow_field
    written = []

    def build_then_write(grids, region, goal_cell, exit_to=None):
        flow = real_build(grids, region, goal_cell, exit_to)
        if not written:
            written.append(region)
            grids.set((1, 0), (7, 6), 255)
        return flow

    monkeypatch.setattr(navigator_module, "build_flow_field", build_then_write)
    report = navigator.tick()

    assert written == [RegionID(1, 0)]
    assert report.fields_built == 1
    assert report.fields_published == 0
    assert report.discarded == 1
    assert navigator.get_field((1, 0), (7, 7)) is None
    assert navigator.get_route(key) is None

    report = navigator.tick()
    assert report.rebuilt_regions == {RegionID(0, 0), RegionID(1, 0)}
    assert navigator.pending == 0


def test_direct_grid_write_evicts_cached_data_immediately():
    navigator = make_navigator()
    key = navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    run_until_idle(navigator)
    assert navigator.fields_for(key) is not None

    navigator.grids.set((1, 0), (7, 6), 9)
    assert navigator.get_route(key) is None
    assert navigator.get_field((1, 0), (7, 7)) is None
    assert navigator.get_field((0, 0), (4, 9), (1, 0)) is None


def test_cost_write_to_unchanged_value_keeps_cache():
    navigator = make_navigator()
    key = navigator.request_path((0, 0), (2, 2), (1, 0), (7, 7))
    run_until_idle(navigator)
    navigator.grids.set((1, 0), (7, 6), 1)
    assert navigator.fields_for(key) is not None


@pytest.mark.parametrize(
    "settings",
    [
        NavigationSettings(field_resolution=12),
        NavigationSettings(cell_size=2.0),
    ],
)
def test_settings_must_match_grid_dimensions(settings):
    grids = CostGrids(WorldDimensions(2, 1, field_resolution=10))
    with pytest.raises(ConfigError):
        Navigator(grids, settings=settings)


@pytest.mark.parametrize("cost", [0, 256, 1.5, "3", None])
def test_navigator_and_grids_reject_the_same_costs(cost):
    navigator = make_navigator()
    with pytest.raises(InvalidCostError):
        navigator.mutate_cost((0, 0), (1, 1), cost)
    with pytest.raises(InvalidCostError):
        navigator.grids.set((0, 0), (1, 1), cost)
    assert navigator.grids.get((0, 0), (1, 1)) == 1
