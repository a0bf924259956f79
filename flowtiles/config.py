# flowtiles/config.py
from __future__ import annotations

import logging
import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog
import yaml

from flowtiles.constants import DEFAULT_CACHE_TTL, DEFAULT_CROSSING_COST, DEFAULT_FIELD_RESOLUTION
from flowtiles.errors import ConfigError
from flowtiles.world.dimensions import MAX_FIELD_RESOLUTION

log = structlog.get_logger(__name__)

# Shipped as package data, so installed copies find it too
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "data" / "navigation.yaml"


@dataclass(frozen=True)
class NavigationSettings:
    """Tunables for one :class:`~flowtiles.navigator.Navigator`."""

    field_resolution: int = DEFAULT_FIELD_RESOLUTION
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL
    crossing_cost: int = DEFAULT_CROSSING_COST
    worker_threads: int = 4
    actor_size: float = 0.0
    cell_size: float = 1.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        problems = []
        if not 2 <= self.field_resolution <= MAX_FIELD_RESOLUTION:
            problems.append(f"field_resolution must be in 2..{MAX_FIELD_RESOLUTION}")
        if self.cache_ttl_seconds <= 0:
            problems.append("cache_ttl_seconds must be positive")
        if self.crossing_cost < 1:
            problems.append("crossing_cost must be at least 1")
        if self.worker_threads < 1:
            problems.append("worker_threads must be at least 1")
        if self.actor_size < 0:
            problems.append("actor_size cannot be negative")
        if self.cell_size <= 0:
            problems.append("cell_size must be positive")
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            problems.append(f"unknown log_level {self.log_level!r}")
        if problems:
            log.error("Invalid navigation settings", problems=problems)
            raise ConfigError("; ".join(problems))

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigationSettings":
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            log.warning("Ignoring unknown navigation settings", keys=unknown)
        values = {}
        for name, value in data.items():
            if name not in known:
                continue
            values[name] = _coerce(name, known[name].default, value)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(name: str, default: Any, value: Any) -> Any:
    """Match ``value`` to the type of ``default`` without lossy conversion."""
    if isinstance(default, int) and not isinstance(value, bool):
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    elif isinstance(default, float) and not isinstance(value, bool):
        if isinstance(value, (int, float)):
            return float(value)
    elif isinstance(default, str) and isinstance(value, str):
        return value
    log.error("Navigation setting has wrong type", key=name, value=value)
    raise ConfigError(
        f"Setting {name!r} must be {type(default).__name__}, got {value!r}"
    )


def load_toml_config(config_path: Path) -> Dict[str, Any]:
    """Loads a TOML configuration file."""
    try:
        with config_path.open("rb") as f:  # tomllib requires bytes mode
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        log.error("Error parsing TOML config", path=str(config_path), error=str(e))
        raise ConfigError(f"Malformed TOML in {config_path}: {e}") from e


def load_yaml_config(config_path: Path) -> Dict[str, Any]:
    """Loads a YAML configuration file."""
    try:
        with config_path.open("r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        log.error("Error parsing YAML config", path=str(config_path), error=str(e))
        raise ConfigError(f"Malformed YAML in {config_path}: {e}") from e
    if config_data is None:
        log.warning("Config file is empty", path=str(config_path))
        return {}
    return config_data


def load_settings(path: Optional[Union[str, Path]] = None) -> NavigationSettings:
    """Read settings from a YAML or TOML file, chosen by extension.

    A missing file yields the defaults. Settings may sit at the top level or
    under a ``navigation`` table.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not config_path.is_file():
        log.warning("Navigation config not found, using defaults", path=str(config_path))
        return NavigationSettings()

    suffix = config_path.suffix.lower()
    if suffix == ".toml":
        data = load_toml_config(config_path)
    elif suffix in (".yaml", ".yml"):
        data = load_yaml_config(config_path)
    else:
        log.error("Unsupported config format", path=str(config_path))
        raise ConfigError(f"Unsupported config format {suffix!r}; use .yaml, .yml or .toml")

    if not isinstance(data, dict):
        log.error("Config root is not a mapping", path=str(config_path))
        raise ConfigError(f"Config root in {config_path} must be a mapping")
    section = data.get("navigation", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'navigation' section in {config_path} must be a mapping")
    settings = NavigationSettings.from_dict(section)
    log.info("Navigation config loaded", path=str(config_path), **settings.to_dict())
    return settings


__all__ = ["DEFAULT_CONFIG_PATH", "NavigationSettings", "load_settings"]
