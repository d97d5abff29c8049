"""Configuration for the robot description loader."""

import logging

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import yaml

console_logger = logging.getLogger(__name__)


@dataclass
class LoaderConfig:
    """Settings shared by every stage of the loading pipeline.

    The hosting environment supplies ``base_url`` (the file-serving root) and
    ``working_path`` (the directory the description was opened from).
    """

    base_url: str = "/"
    """Prefix of every fetched URL, e.g. ``http://localhost:8888/``."""

    working_path: str = ""
    """Root for relative resource references."""

    request_timeout_s: float = 30.0
    """Timeout for a single resource fetch."""

    default_rgba: Tuple[float, float, float, float] = (0.8, 0.8, 0.8, 1.0)
    """Surface color for meshes without embedded materials."""

    xacro_args: Dict[str, str] = field(default_factory=dict)
    """Values for ``$(arg ...)`` substitutions."""

    def __post_init__(self) -> None:
        """Validate values loaded from untyped sources."""
        if not self.base_url.endswith("/"):
            self.base_url = self.base_url + "/"
        if self.request_timeout_s <= 0:
            raise ValueError(
                f"request_timeout_s must be positive, got {self.request_timeout_s}"
            )
        self.default_rgba = tuple(float(c) for c in self.default_rgba)
        if len(self.default_rgba) != 4:
            raise ValueError(f"default_rgba needs 4 components: {self.default_rgba}")
        self.xacro_args = {str(k): str(v) for k, v in self.xacro_args.items()}

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "LoaderConfig":
        """Create a config from a plain mapping, ignoring unknown keys.

        Args:
            cfg: Mapping with any subset of the config fields.

        Returns:
            LoaderConfig instance.
        """
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(cfg) - known)
        if unknown:
            console_logger.warning(f"Ignoring unknown loader config keys: {unknown}")
        return cls(**{k: v for k, v in cfg.items() if k in known})

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "LoaderConfig":
        """Load a config from a YAML file.

        An empty file yields the defaults.
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Loader config must be a mapping: {path}")
        return cls.from_dict(data)
