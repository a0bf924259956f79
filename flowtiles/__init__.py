"""Hierarchical flow field navigation over region-partitioned cost grids."""

from .cache import FieldCache, FieldKey, RouteCache
from .config import NavigationSettings, load_settings
from .constants import COST_IMPASSABLE, COST_MIN, Ordinal
from .errors import (
    ConfigError,
    FieldBuildError,
    ImpassableGoalError,
    InvalidCellError,
    InvalidCostError,
    InvalidRegionError,
    NavigationError,
)
from .fields.flow_field import FlowField, build_flow_field
from .navigator import Navigator, TickReport
from .portals.route_planner import FieldHop, Route, RouteKey
from .utils.logging_utils import setup_logging
from .world.clearance import ClearanceConfig
from .world.cost_grid import CostGrids
from .world.dimensions import FieldCell, RegionID, WorldDimensions
from .world.loaders import CostGridLoader, MappingLoader

__all__ = [
    "COST_IMPASSABLE",
    "COST_MIN",
    "ClearanceConfig",
    "ConfigError",
    "CostGridLoader",
    "CostGrids",
    "FieldBuildError",
    "FieldCache",
    "FieldCell",
    "FieldHop",
    "FieldKey",
    "FlowField",
    "ImpassableGoalError",
    "InvalidCellError",
    "InvalidCostError",
    "InvalidRegionError",
    "MappingLoader",
    "NavigationError",
    "NavigationSettings",
    "Navigator",
    "Ordinal",
    "RegionID",
    "Route",
    "RouteCache",
    "RouteKey",
    "TickReport",
    "WorldDimensions",
    "build_flow_field",
    "load_settings",
    "setup_logging",
]
