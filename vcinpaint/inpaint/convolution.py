"""Convergence-monitored convolution inpainting of depth maps and RGBA images."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np

from vcinpaint.device import DeviceBuffer, Sampler, Stream
from vcinpaint.inpaint.blocks import ActiveBlockList, is_depth_hole, is_rgba_hole, locate_active_blocks
from vcinpaint.inpaint.diffusion import DEFAULT_EDGE_WEIGHT_SCALE, diffuse_depth_tiles, diffuse_rgba_tiles
from vcinpaint.inpaint.tiles import BLOCK_SIZE, TileGeometry

logger = logging.getLogger(__name__)

CONVERGENCE_CHECK_INTERVAL = 25


class InpaintingState(Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CHECKING_CONVERGENCE = "checking_convergence"
    SHRINKING = "shrinking"
    CONVERGED = "converged"
    DONE = "done"


@dataclass
class InpaintingResult:
    """Outcome of one inpainting call."""

    iterations: int
    pixel_to_inpaint_count: int
    converged: bool = True
    active_block_history: List[int] = field(default_factory=list)


@dataclass
class ConvergenceMonitor:
    """Decides when to check convergence and records the active-list size at each check."""

    check_interval: int = CONVERGENCE_CHECK_INTERVAL
    last_check_iteration: int = 0
    history: List[int] = field(default_factory=list)
    state: InpaintingState = InpaintingState.INITIALIZING

    def transition(self, state: InpaintingState) -> None:
        logger.debug("Inpainting state %s -> %s", self.state.name, state.name)
        self.state = state

    def should_check(self, iteration: int) -> bool:
        """Whether the launch ending at ``iteration`` runs the convergence check."""
        return iteration - self.last_check_iteration >= self.check_interval

    def record_check(self, iteration: int, active_blocks: int) -> None:
        self.last_check_iteration = iteration
        self.history.append(active_blocks)


Launch = Callable[[int, bool], None]


def _run_inpainting(
    stream: Stream,
    geometry: TileGeometry,
    max_change_buffer: DeviceBuffer,
    block_coordinates_buffer: DeviceBuffer,
    max_num_iterations: int,
    check_interval: int,
    locate: Callable[[], Tuple[int, int]],
    launch: Launch,
) -> InpaintingResult:
    monitor = ConvergenceMonitor(check_interval=check_interval)

    grid_shape = locate()
    counts = np.empty(grid_shape[0] * grid_shape[1], dtype=np.uint16)
    block_coordinates_buffer.download_part_async(0, counts.nbytes, stream, counts)
    stream.synchronize()
    active, pixel_to_inpaint_count = ActiveBlockList.from_counts(counts, grid_shape, geometry.output_size)
    logger.debug(
        "%d of %d blocks active, %d pixels to inpaint.", len(active), counts.size, pixel_to_inpaint_count
    )

    if len(active) == 0:
        monitor.transition(InpaintingState.DONE)
        return InpaintingResult(iterations=0, pixel_to_inpaint_count=pixel_to_inpaint_count)

    active.upload(block_coordinates_buffer, stream)
    monitor.transition(InpaintingState.ITERATING)

    iteration = 0
    while iteration < max_num_iterations:
        iteration += geometry.iterations_per_launch
        check = monitor.should_check(iteration)
        if check:
            monitor.transition(InpaintingState.CHECKING_CONVERGENCE)
        launch(len(active), check)
        if not check:
            continue

        flags = np.empty(len(active), dtype=np.uint8)
        max_change_buffer.download_part_async(0, flags.nbytes, stream, flags)
        stream.synchronize()
        active = active.shrink(flags)
        monitor.record_check(iteration, len(active))

        if len(active) == 0:
            monitor.transition(InpaintingState.CONVERGED)
            logger.debug("Inpainting converged after %d iterations.", iteration)
            monitor.transition(InpaintingState.DONE)
            return InpaintingResult(
                iterations=iteration,
                pixel_to_inpaint_count=pixel_to_inpaint_count,
                converged=True,
                active_block_history=monitor.history,
            )

        monitor.transition(InpaintingState.SHRINKING)
        logger.debug("Iteration %d: %d blocks still changing.", iteration, len(active))
        active.upload(block_coordinates_buffer, stream)
        monitor.transition(InpaintingState.ITERATING)

    logger.warning(
        "Inpainting did not converge within %d iterations (%d blocks still active).",
        max_num_iterations,
        len(active),
    )
    monitor.transition(InpaintingState.DONE)
    return InpaintingResult(
        iterations=max_num_iterations,
        pixel_to_inpaint_count=pixel_to_inpaint_count,
        converged=False,
        active_block_history=monitor.history,
    )


def _check_common(
    geometry: TileGeometry,
    max_num_iterations: int,
    max_change_rate_threshold: float,
    output_buffer: Optional[DeviceBuffer],
    max_change_buffer: Optional[DeviceBuffer],
    block_coordinates_buffer: Optional[DeviceBuffer],
    check_interval: int,
) -> None:
    if output_buffer is None:
        raise ValueError("The output buffer must not be None.")
    if max_change_buffer is None or block_coordinates_buffer is None:
        raise ValueError("The scratch buffers must not be None.")
    if geometry.block_size != BLOCK_SIZE:
        raise ValueError(f"Block size must be {BLOCK_SIZE}, got {geometry.block_size}.")
    if max_change_rate_threshold <= 0:
        raise ValueError("max_change_rate_threshold must be > 0")
    if max_num_iterations < 0:
        raise ValueError("max_num_iterations must be >= 0")
    if check_interval <= 0:
        raise ValueError("convergence_check_interval must be >= 1")

    cells = geometry.cell_count(output_buffer.height, output_buffer.width)
    if max_change_buffer.height != 1 or max_change_buffer.width < cells:
        raise ValueError(f"max_change_buffer must be a 1 x >= {cells} buffer.")
    if max_change_buffer.dtype != np.uint8:
        raise ValueError("max_change_buffer must hold uint8 flags.")
    if block_coordinates_buffer.height != 1 or block_coordinates_buffer.width < 2 * cells:
        raise ValueError(f"block_coordinates_buffer must be a 1 x >= {2 * cells} buffer.")
    if block_coordinates_buffer.dtype != np.uint16:
        raise ValueError("block_coordinates_buffer must hold uint16 values.")


def _check_sampler_shape(name: str, sampler: Sampler, shape: Tuple[int, int]) -> None:
    if sampler.shape != shape:
        raise ValueError(f"{name} has shape {sampler.shape}, expected {shape}.")


def inpaint_depth_map_with_convolution(
    stream: Stream,
    use_weighting: bool,
    max_num_iterations: int,
    max_change_rate_threshold: float,
    depth_input_scaling_factor: float,
    edge_strength_sampler: Optional[Sampler],
    depth_map_input_sampler: Sampler,
    max_change_buffer: DeviceBuffer,
    depth_map_output_buffer: DeviceBuffer,
    block_coordinates_buffer: DeviceBuffer,
    *,
    edge_weight_scale: float = DEFAULT_EDGE_WEIGHT_SCALE,
    convergence_check_interval: int = CONVERGENCE_CHECK_INTERVAL,
    geometry: Optional[TileGeometry] = None,
) -> InpaintingResult:
    """Fill the holes of a depth map by tile-wise diffusion.

    The scaled input is first written to ``depth_map_output_buffer``, so the
    caller does not need to pre-fill it. ``max_change_buffer`` (uint8) and
    ``block_coordinates_buffer`` (uint16) are flattened scratch buffers
    holding at least one, respectively two, entries per tile.

    Returns the number of iterations used (``max_num_iterations`` when the
    active set did not empty in time) and the initial hole count.
    """
    geometry = geometry or TileGeometry()
    _check_common(
        geometry,
        max_num_iterations,
        max_change_rate_threshold,
        depth_map_output_buffer,
        max_change_buffer,
        block_coordinates_buffer,
        convergence_check_interval,
    )
    if depth_map_input_sampler is None:
        raise ValueError("depth_map_input_sampler must not be None.")
    shape = depth_map_output_buffer.shape
    _check_sampler_shape("depth_map_input_sampler", depth_map_input_sampler, shape)
    if use_weighting:
        if edge_strength_sampler is None:
            raise ValueError("use_weighting requires an edge_strength_sampler.")
        _check_sampler_shape("edge_strength_sampler", edge_strength_sampler, shape)

    def locate() -> Tuple[int, int]:
        return locate_active_blocks(
            stream,
            depth_map_input_sampler,
            depth_map_output_buffer,
            block_coordinates_buffer,
            geometry,
            hole_test=lambda values: is_depth_hole(values, use_weighting),
            scaling_factor=depth_input_scaling_factor,
        )

    def launch(block_count: int, check_convergence: bool) -> None:
        diffuse_depth_tiles(
            stream,
            depth_map_output_buffer,
            depth_map_input_sampler,
            block_coordinates_buffer,
            block_count,
            geometry,
            use_weighting=use_weighting,
            edge_strength_sampler=edge_strength_sampler,
            edge_weight_scale=edge_weight_scale,
            check_convergence=check_convergence,
            max_change_buffer=max_change_buffer,
            max_change_rate_threshold=max_change_rate_threshold,
        )

    return _run_inpainting(
        stream,
        geometry,
        max_change_buffer,
        block_coordinates_buffer,
        max_num_iterations,
        convergence_check_interval,
        locate,
        launch,
    )


def inpaint_image_with_convolution(
    stream: Stream,
    use_weighting: bool,
    max_num_iterations: int,
    max_change_rate_threshold: float,
    edge_strength_sampler: Optional[Sampler],
    rgba_input_buffer: DeviceBuffer,
    max_change_buffer: DeviceBuffer,
    rgba_output_buffer: DeviceBuffer,
    block_coordinates_buffer: DeviceBuffer,
    *,
    convergence_check_interval: int = CONVERGENCE_CHECK_INTERVAL,
    geometry: Optional[TileGeometry] = None,
) -> InpaintingResult:
    """Fill the zero-alpha pixels of an RGBA image by tile-wise diffusion.

    Same contract as :func:`inpaint_depth_map_with_convolution`; the input is
    copied unscaled into ``rgba_output_buffer``, which must be a different
    buffer of the same size. Colour inpainting has no edge-weighted variant:
    ``use_weighting`` and ``edge_strength_sampler`` are accepted for
    signature parity and ignored.
    """
    geometry = geometry or TileGeometry()
    _check_common(
        geometry,
        max_num_iterations,
        max_change_rate_threshold,
        rgba_output_buffer,
        max_change_buffer,
        block_coordinates_buffer,
        convergence_check_interval,
    )
    if rgba_input_buffer is None:
        raise ValueError("rgba_input_buffer must not be None.")
    if rgba_input_buffer is rgba_output_buffer:
        raise ValueError("rgba_input_buffer and rgba_output_buffer must be distinct buffers.")
    for name, buffer in (("rgba_input_buffer", rgba_input_buffer), ("rgba_output_buffer", rgba_output_buffer)):
        if buffer.channels != 4:
            raise ValueError(f"{name} must have 4 channels, got {buffer.channels}.")
    shape = rgba_output_buffer.shape
    if rgba_input_buffer.shape != shape:
        raise ValueError(f"rgba_input_buffer has shape {rgba_input_buffer.shape}, expected {shape}.")
    if use_weighting:
        logger.debug("Edge weighting is not applied to RGBA inpainting.")

    input_sampler = rgba_input_buffer.get_cached_sampler()

    def locate() -> Tuple[int, int]:
        return locate_active_blocks(
            stream,
            input_sampler,
            rgba_output_buffer,
            block_coordinates_buffer,
            geometry,
            hole_test=is_rgba_hole,
        )

    def launch(block_count: int, check_convergence: bool) -> None:
        diffuse_rgba_tiles(
            stream,
            rgba_output_buffer,
            input_sampler,
            block_coordinates_buffer,
            block_count,
            geometry,
            check_convergence=check_convergence,
            max_change_buffer=max_change_buffer,
            max_change_rate_threshold=max_change_rate_threshold,
        )

    return _run_inpainting(
        stream,
        geometry,
        max_change_buffer,
        block_coordinates_buffer,
        max_num_iterations,
        convergence_check_interval,
        locate,
        launch,
    )
