"""Tile-based diffusion inpainting of depth maps and RGBA images."""

from .blocks import ActiveBlockList, is_depth_hole, is_rgba_hole, locate_active_blocks
from .convolution import (
    ConvergenceMonitor,
    InpaintingResult,
    InpaintingState,
    inpaint_depth_map_with_convolution,
    inpaint_image_with_convolution,
)
from .diffusion import diffuse_depth_tiles, diffuse_rgba_tiles, edge_weights
from .inpainter import DepthInpainter
from .tiles import BLOCK_SIZE, ITERATIONS_PER_LAUNCH, TileCache, TileGeometry

__all__ = [
    "ActiveBlockList",
    "BLOCK_SIZE",
    "ConvergenceMonitor",
    "DepthInpainter",
    "ITERATIONS_PER_LAUNCH",
    "InpaintingResult",
    "InpaintingState",
    "TileCache",
    "TileGeometry",
    "diffuse_depth_tiles",
    "diffuse_rgba_tiles",
    "edge_weights",
    "inpaint_depth_map_with_convolution",
    "inpaint_image_with_convolution",
    "is_depth_hole",
    "is_rgba_hole",
    "locate_active_blocks",
]
