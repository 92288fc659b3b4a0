"""
Configuration loader with environment variable support

Placeholders of the form ${VAR} may appear anywhere inside a string value,
so a raster pattern such as "${NTL_DATA_ROOT}/ntl_{period}.tif" keeps its
{period} field for the pipeline to fill.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml

ENV_PLACEHOLDER = re.compile(r'\$\{([^}]+)\}')

FREQUENCIES = ('M', 'Y')
STATISTICS = ('sum', 'mean')


class Config:
    """Run configuration for the nighttime-light pipeline"""

    def __init__(self, config_path: str = 'config.yaml', create_dirs: bool = True):
        """
        Load configuration from a YAML file

        Args:
            config_path: Path to configuration YAML file
            create_dirs: Create the output and log directories
        """
        self.config_path = Path(config_path)

        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(self.config_path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Expected YAML mapping at {config_path}")

        self.config = self._resolve(data)
        self._validate()
        if create_dirs:
            self._create_directories()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Build a configuration from an in-memory mapping (no directories created)"""
        config = cls.__new__(cls)
        config.config_path = None
        config.config = config._resolve(data)
        config._validate()
        return config

    def _resolve(self, obj):
        """Substitute ${VAR} placeholders from the environment"""
        if isinstance(obj, dict):
            return {k: self._resolve(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [self._resolve(item) for item in obj]
        if isinstance(obj, str):
            return ENV_PLACEHOLDER.sub(self._lookup_env, obj)
        return obj

    @staticmethod
    def _lookup_env(match) -> str:
        name = match.group(1)
        value = os.getenv(name)
        if value is None:
            raise ValueError(
                f"Environment variable '{name}' not set. "
                f"Please set it before running the pipeline."
            )
        return value

    def _validate(self):
        """Reject settings the components cannot act on"""
        freq = self.get('periods', 'freq', default='M')
        if freq not in FREQUENCIES:
            raise ValueError(f"periods.freq must be one of {FREQUENCIES}, got {freq!r}")

        months = self.get('baseline', 'months', default=6)
        if not isinstance(months, int) or months < 1:
            raise ValueError(f"baseline.months must be a positive integer, got {months!r}")

        statistic = self.get('aggregation', 'statistic', default='sum')
        if statistic not in STATISTICS:
            raise ValueError(f"aggregation.statistic must be one of {STATISTICS}, got {statistic!r}")

    def _create_directories(self):
        for key in ('output_dir', 'log_dir'):
            dir_path = self.get('project', key)
            if dir_path:
                Path(dir_path).mkdir(parents=True, exist_ok=True)

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get nested configuration value

        Args:
            *keys: Sequence of keys to traverse
            default: Default value if key path doesn't exist

        Example:
            config.get('change', 'pixel_threshold', default=0.5)
        """
        value = self.config
        for key in keys:
            if not isinstance(value, dict):
                return default
            value = value.get(key)
            if value is None:
                return default
        return value

    def get_required(self, *keys: str) -> Any:
        """
        Get required configuration value

        Raises:
            ValueError: If configuration key is missing
        """
        value = self.get(*keys)
        if value is None:
            raise ValueError(f"Required configuration missing: {'.'.join(keys)}")
        return value

    def section(self, *keys: str) -> Dict[str, Any]:
        """Nested mapping for a component constructor (empty if absent)"""
        value = self.get(*keys, default={})
        if not isinstance(value, dict):
            raise ValueError(f"Configuration section {'.'.join(keys)} must be a mapping")
        return dict(value)

    def __repr__(self) -> str:
        source = self.config_path if self.config_path is not None else '<dict>'
        return f"Config({source}, sections={sorted(self.config)})"
