"""
Rollup configuration.

Limits and tuning knobs shared by every collector of a rollup session.
Loaded from YAML the same way model registries are.
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "APM_ROLLUP_CONFIG"


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for applications embedding the rollup engine."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )


@dataclass
class RollupConfig:
    """Configuration for one rollup session."""

    # Cardinality limits
    max_queries_per_type: int = 500
    max_service_calls_per_type: int = 500

    # Histogram
    histogram_max_exact_values: int = 1024
    histogram_significant_digits: int = 2

    # Profiles (0 disables truncation of snapshot profiles)
    profile_min_samples: int = 0
    timer_marker: str = "$apm$timer$"

    def __post_init__(self):
        for name in (
            "max_queries_per_type",
            "max_service_calls_per_type",
            "histogram_max_exact_values",
            "profile_min_samples",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if not 1 <= self.histogram_significant_digits <= 5:
            raise ValueError(
                "histogram_significant_digits must be between 1 and 5, "
                f"got {self.histogram_significant_digits}"
            )
        if not self.timer_marker:
            raise ValueError("timer_marker must not be empty")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollupConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key in known:
                kwargs[key] = value
            else:
                logger.debug(f"Ignoring unknown rollup config key: {key}")
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "RollupConfig":
        """Load config from a YAML file, optionally nested under a 'rollup' key."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Rollup config in {path} must be a mapping")
        section = data.get("rollup", data)
        if not isinstance(section, dict):
            raise ValueError(f"'rollup' section in {path} must be a mapping")

        config = cls.from_dict(section)
        logger.info(f"Loaded rollup config from {path}")
        return config

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "RollupConfig":
        """
        Load config from path, or from $APM_ROLLUP_CONFIG when no path is given.

        Falls back to defaults when neither is set or the file does not exist.
        """
        path = path or os.environ.get(CONFIG_ENV_VAR)
        if not path:
            return cls()
        if not Path(path).exists():
            logger.warning(f"Rollup config not found: {path}, using defaults")
            return cls()
        return cls.from_yaml(path)
