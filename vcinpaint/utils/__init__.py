"""Utility helpers for the inpainting pipeline."""

from .visualization import colorize_depth, draw_active_blocks

__all__ = [
    "colorize_depth",
    "draw_active_blocks",
]
