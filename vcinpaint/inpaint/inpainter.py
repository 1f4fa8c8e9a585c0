"""Host-level convenience wrapper around the convolution inpainting entry points."""

from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import Optional, Tuple

import numpy as np

from vcinpaint.config import InpaintingConfig
from vcinpaint.device import DeviceBuffer, Sampler, Stream
from vcinpaint.inpaint.convolution import (
    InpaintingResult,
    inpaint_depth_map_with_convolution,
    inpaint_image_with_convolution,
)
from vcinpaint.inpaint.tiles import TileGeometry

logger = logging.getLogger(__name__)


class DepthInpainter:
    """Upload a host image, inpaint it on the configured backend and download the result.

    Every call allocates its own device buffers and releases them before
    returning, so one instance can be reused for images of any size.
    """

    def __init__(self, config: Optional[InpaintingConfig] = None) -> None:
        self.config = config or InpaintingConfig()
        self.geometry = TileGeometry(
            block_size=self.config.tiling.block_size,
            halo=self.config.tiling.iterations_per_launch,
        )
        self.stream = Stream(self.config.device.backend)

    def _buffer(
        self,
        stack: ExitStack,
        height: int,
        width: int,
        dtype,
        channels: int = 1,
        pitch_alignment: Optional[int] = None,
    ) -> DeviceBuffer:
        return stack.enter_context(
            DeviceBuffer(
                height,
                width,
                dtype=dtype,
                channels=channels,
                backend=self.config.device.backend,
                pitch_alignment=pitch_alignment or self.config.device.pitch_alignment,
            )
        )

    def _scratch(self, stack: ExitStack, height: int, width: int) -> Tuple[DeviceBuffer, DeviceBuffer]:
        # Single-row buffers have no row stride, so they are allocated packed.
        cells = self.geometry.cell_count(height, width)
        max_change = self._buffer(stack, 1, cells, np.uint8, pitch_alignment=1)
        coordinates = self._buffer(stack, 1, 2 * cells, np.uint16, pitch_alignment=1)
        return max_change, coordinates

    def _edge_sampler(
        self, stack: ExitStack, edge_strength: Optional[np.ndarray], shape: Tuple[int, int]
    ) -> Optional[Sampler]:
        if edge_strength is None:
            if self.config.use_weighting:
                raise ValueError("use_weighting requires an edge-strength image.")
            return None
        edge_strength = np.asarray(edge_strength, dtype=np.float32)
        if edge_strength.shape != shape:
            raise ValueError(f"Edge-strength image has shape {edge_strength.shape}, expected {shape}.")
        edge_buffer = self._buffer(stack, shape[0], shape[1], np.float32)
        edge_buffer.upload_async(self.stream, edge_strength)
        return edge_buffer.get_cached_sampler()

    def inpaint_depth(
        self, depth: np.ndarray, edge_strength: Optional[np.ndarray] = None
    ) -> Tuple[np.ndarray, InpaintingResult]:
        """Fill the zero pixels of ``depth`` (``H x W``); returns the float32 result and statistics."""
        depth = np.asarray(depth)
        if depth.ndim != 2:
            raise ValueError(f"Expected a 2-D depth map, got shape {depth.shape}.")
        height, width = depth.shape
        convergence = self.config.convergence

        with ExitStack() as stack:
            input_buffer = self._buffer(stack, height, width, depth.dtype)
            input_buffer.upload_async(self.stream, depth)
            output_buffer = self._buffer(stack, height, width, np.float32)
            max_change, coordinates = self._scratch(stack, height, width)
            edge_sampler = self._edge_sampler(stack, edge_strength, (height, width))

            result = inpaint_depth_map_with_convolution(
                self.stream,
                self.config.use_weighting,
                convergence.max_num_iterations,
                convergence.max_change_rate_threshold,
                self.config.depth_input_scaling_factor,
                edge_sampler,
                input_buffer.get_cached_sampler(),
                max_change,
                output_buffer,
                coordinates,
                edge_weight_scale=self.config.edge_weight_scale,
                convergence_check_interval=convergence.check_interval,
                geometry=self.geometry,
            )
            output = output_buffer.download_async(self.stream)
            self.stream.synchronize()

        logger.debug(
            "Inpainted %d depth pixels in %d iterations (converged=%s).",
            result.pixel_to_inpaint_count,
            result.iterations,
            result.converged,
        )
        return output, result

    def inpaint_image(self, rgba: np.ndarray) -> Tuple[np.ndarray, InpaintingResult]:
        """Fill the zero-alpha pixels of an ``H x W x 4`` image; returns the float32 result and statistics.

        Colour inpainting is never edge-weighted, whatever ``use_weighting`` says.
        """
        rgba = np.asarray(rgba, dtype=np.float32)
        if rgba.ndim != 3 or rgba.shape[2] != 4:
            raise ValueError(f"Expected an H x W x 4 image, got shape {rgba.shape}.")
        height, width = rgba.shape[:2]
        convergence = self.config.convergence

        with ExitStack() as stack:
            input_buffer = self._buffer(stack, height, width, np.float32, channels=4)
            input_buffer.upload_async(self.stream, rgba)
            output_buffer = self._buffer(stack, height, width, np.float32, channels=4)
            max_change, coordinates = self._scratch(stack, height, width)

            result = inpaint_image_with_convolution(
                self.stream,
                False,
                convergence.max_num_iterations,
                convergence.max_change_rate_threshold,
                None,
                input_buffer,
                max_change,
                output_buffer,
                coordinates,
                convergence_check_interval=convergence.check_interval,
                geometry=self.geometry,
            )
            output = output_buffer.download_async(self.stream)
            self.stream.synchronize()

        logger.debug(
            "Inpainted %d RGBA pixels in %d iterations (converged=%s).",
            result.pixel_to_inpaint_count,
            result.iterations,
            result.converged,
        )
        return output, result
