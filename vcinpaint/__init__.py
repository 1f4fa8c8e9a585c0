"""Convolution-based inpainting of depth maps and RGBA images on pitched device buffers."""

from .config import InpaintingConfig, load_yaml_config
from .inpaint import (
    DepthInpainter,
    InpaintingResult,
    inpaint_depth_map_with_convolution,
    inpaint_image_with_convolution,
)

__all__ = [
    "DepthInpainter",
    "InpaintingConfig",
    "InpaintingResult",
    "inpaint_depth_map_with_convolution",
    "inpaint_image_with_convolution",
    "load_yaml_config",
]
