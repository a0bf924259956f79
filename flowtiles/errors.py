"""Exceptions raised by the navigation core.

Only invalid input and internal consistency failures raise. An unreachable
target resolves to an explicit no-route result, and stale or discarded work
simply shows up as a cache miss.
"""

from __future__ import annotations


class NavigationError(Exception):
    """Base class for every error raised by :mod:`flowtiles`."""


class InvalidRegionError(NavigationError, ValueError):
    """A region id lies outside the world partition."""


class InvalidCellError(NavigationError, ValueError):
    """A field cell lies outside the region resolution."""


class InvalidCostError(NavigationError, ValueError):
    """A cost value is outside ``1..255``."""


class ImpassableGoalError(NavigationError):
    """The requested target cell cannot be stood on."""


class FieldBuildError(NavigationError):
    """A finished field failed its consistency check."""


class ConfigError(NavigationError):
    """Settings could not be parsed or hold invalid values."""


__all__ = [
    "ConfigError",
    "FieldBuildError",
    "ImpassableGoalError",
    "InvalidCellError",
    "InvalidCostError",
    "InvalidRegionError",
    "NavigationError",
]
