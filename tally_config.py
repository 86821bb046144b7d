# tally_config.py — YAML configuration for Tally
#
# A config file is a flat YAML mapping merged over DEFAULT_CONFIG. Unknown
# keys are logged and ignored; a value of the wrong type is a ConfigError.
#
#   precision: 50          # digits for inexact results (powers, pi)
#   decimal_places: 10     # display rounding only
#   fractions: true        # kitchen fractions for families that allow them
#   pack_units: true       # show 12 tsp as 1/4 cup
#   units_file: extra.yaml # merged into the built-in unit table

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import yaml

from tally_diagnostic import ConfigError
from tally_units import UnitRegistry

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    'precision': 50,
    'decimal_places': 10,
    'fractions': True,
    'pack_units': True,
    'units_file': None,
}

_TYPES = {
    'precision': int,
    'decimal_places': int,
    'fractions': bool,
    'pack_units': bool,
    'units_file': str,
}


@dataclass(frozen=True)
class TallyConfig:
    precision:      int = DEFAULT_CONFIG['precision']
    decimal_places: int = DEFAULT_CONFIG['decimal_places']
    fractions:      bool = DEFAULT_CONFIG['fractions']
    pack_units:     bool = DEFAULT_CONFIG['pack_units']
    units_file:     Optional[str] = DEFAULT_CONFIG['units_file']

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TallyConfig":
        config = DEFAULT_CONFIG.copy()
        for key, value in data.items():
            if key not in DEFAULT_CONFIG:
                logger.warning("Ignoring unknown config key %r", key)
                continue
            config[key] = _checked(key, value)
        if config['precision'] < 12:
            raise ConfigError(
                f"`precision` must be at least 12, got {config['precision']}")
        if config['decimal_places'] < 0:
            raise ConfigError("`decimal_places` cannot be negative")
        return cls(**config)

    def registry(self, base: Optional[UnitRegistry] = None) -> UnitRegistry:
        """The unit registry this config describes."""
        base = base or UnitRegistry.default()
        if not self.units_file:
            return base
        return base.merge(UnitRegistry.from_yaml(Path(self.units_file)))


def _checked(key: str, value: Any) -> Any:
    expected = _TYPES[key]
    if value is None and key == 'units_file':
        return None
    # bool is an int subclass; `precision: true` is still wrong.
    if isinstance(value, bool) and expected is not bool:
        raise ConfigError(f"`{key}` must be {expected.__name__}, got {value!r}")
    if not isinstance(value, expected):
        raise ConfigError(f"`{key}` must be {expected.__name__}, got {value!r}")
    return value


def load_config(path: Optional[Union[str, Path]] = None) -> TallyConfig:
    """Load config from a YAML file; defaults when path is None or missing."""
    if path is None:
        return TallyConfig()
    config_path = Path(path)
    if not config_path.exists():
        logger.info("No config at %s, using defaults", config_path)
        return TallyConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read {config_path}: {e}", code="E0042")
    except yaml.YAMLError as e:
        raise ConfigError(f"{config_path} is not valid YAML: {e}")
    if not isinstance(user_config, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    # units_file is relative to the config file
    units_file = user_config.get('units_file')
    if isinstance(units_file, str) and not Path(units_file).is_absolute():
        user_config['units_file'] = str(config_path.parent / units_file)

    config = TallyConfig.from_dict(user_config)
    logger.info("Loaded config from %s", config_path)
    return config
