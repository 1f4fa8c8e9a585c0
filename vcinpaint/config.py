"""Configuration dataclasses and utilities for the inpainting pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Union


@dataclass
class DeviceConfig:
    backend: str = "auto"
    pitch_alignment: int = 512  # bytes


@dataclass
class TilingConfig:
    block_size: int = 32
    iterations_per_launch: int = 4


@dataclass
class ConvergenceConfig:
    max_num_iterations: int = 100
    max_change_rate_threshold: float = 0.01
    check_interval: int = 25


@dataclass
class InpaintingConfig:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    tiling: TilingConfig = field(default_factory=TilingConfig)
    convergence: ConvergenceConfig = field(default_factory=ConvergenceConfig)
    use_weighting: bool = False
    depth_input_scaling_factor: float = 1.0
    edge_weight_scale: float = 10.0

    @staticmethod
    def from_dict(config: Dict[str, Any]) -> "InpaintingConfig":
        """Build an InpaintingConfig from nested dictionaries."""
        device_cfg = config.get("device", {}) or {}
        tiling_cfg = config.get("tiling", {}) or {}
        convergence_cfg = config.get("convergence", {}) or {}
        defaults = InpaintingConfig.__dataclass_fields__

        return InpaintingConfig(
            device=DeviceConfig(**device_cfg),
            tiling=TilingConfig(**tiling_cfg),
            convergence=ConvergenceConfig(**convergence_cfg),
            use_weighting=bool(config.get("use_weighting", defaults["use_weighting"].default)),
            depth_input_scaling_factor=float(
                config.get(
                    "depth_input_scaling_factor",
                    defaults["depth_input_scaling_factor"].default,
                )
            ),
            edge_weight_scale=float(config.get("edge_weight_scale", defaults["edge_weight_scale"].default)),
        )


def load_yaml_config(path: Union[str, Path]) -> InpaintingConfig:
    """Load a YAML configuration file into an InpaintingConfig."""
    import yaml

    path = Path(path)
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    return InpaintingConfig.from_dict(raw)
