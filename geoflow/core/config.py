"""Correspondence transfer configuration."""

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Any, Union
import torch
import yaml

from .errors import ConfigurationError


BACKENDS = ("torch", "reference")
DTYPES = {"float32": torch.float32, "float64": torch.float64}


@dataclass
class FlowConfig:
    """Configuration for geometric correspondence transfer.

    kernel_size is the half-width of the square search window, threshold the
    largest 3D distance (exclusive) accepted as a match.
    """
    kernel_size: int = 3
    threshold: float = 0.01

    # Running minimum starts here; neighbours at or beyond it are never picked
    max_distance: float = 1000.0

    backend: str = "torch"  # "torch" | "reference"
    num_workers: int = 4  # reference backend thread pool size

    device: str = "cpu"
    dtype: str = "float32"  # "float32" | "float64"

    def validate(self) -> "FlowConfig":
        """Reject settings that make the op undefined."""
        if isinstance(self.kernel_size, bool) or not isinstance(self.kernel_size, int):
            raise ConfigurationError(f"Need integer kernel_size, got {self.kernel_size!r}")
        if self.kernel_size < 0:
            raise ConfigurationError(f"Need kernel_size >= 0, got {self.kernel_size}")
        if not self.threshold >= 0:
            raise ConfigurationError(f"Need threshold >= 0, got {self.threshold}")
        if not self.max_distance > 0:
            raise ConfigurationError(f"Need max_distance > 0, got {self.max_distance}")
        if self.backend not in BACKENDS:
            raise ConfigurationError(f"Unknown backend: {self.backend}")
        if self.dtype not in DTYPES:
            raise ConfigurationError(f"Unknown dtype: {self.dtype}")
        if self.num_workers < 1:
            raise ConfigurationError(f"Need num_workers >= 1, got {self.num_workers}")
        return self

    @property
    def torch_dtype(self) -> torch.dtype:
        return DTYPES[self.dtype]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FlowConfig":
        valid_keys = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in d.items() if k in valid_keys})

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "FlowConfig":
        """Load config from a YAML file; a top-level ``flow:`` section is accepted."""
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if "flow" in raw and isinstance(raw["flow"], dict):
            raw = raw["flow"]
        return cls.from_dict(raw)
