"""Tile-cached diffusion kernels for depth maps and RGBA images.

One launch processes exactly the tiles in the active list. Every tile is
loaded into a :class:`TileCache` (output region plus halo), diffused for
``geometry.iterations_per_launch`` sub-iterations entirely inside the cache
and flushed back once. Holes take the weighted mean of their eight
neighbours under a fixed 3x3 kernel; only neighbours inside the image that
currently hold a value contribute.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import numpy as np

from vcinpaint.device import DeviceBuffer, Sampler, Stream, checked_call
from vcinpaint.device.stream import on_stream
from vcinpaint.inpaint.blocks import is_depth_hole, is_rgba_hole, read_block_origins
from vcinpaint.inpaint.tiles import TileCache, TileGeometry

logger = logging.getLogger(__name__)

DIAGONAL_WEIGHT = 0.073235
AXIAL_WEIGHT = 0.176765
DEFAULT_EDGE_WEIGHT_SCALE = 10.0

_NEIGHBOURS = (
    (-1, -1, DIAGONAL_WEIGHT),
    (-1, 0, AXIAL_WEIGHT),
    (-1, 1, DIAGONAL_WEIGHT),
    (0, -1, AXIAL_WEIGHT),
    (0, 1, AXIAL_WEIGHT),
    (1, -1, DIAGONAL_WEIGHT),
    (1, 0, AXIAL_WEIGHT),
    (1, 1, DIAGONAL_WEIGHT),
)

Validity = Callable[[Any], Any]


def edge_weights(edge_strength: Any, scale: float, xp) -> Any:
    """Per-pixel neighbour weight, falling off with edge strength."""
    return (1.0 / (1.0 + scale * xp.maximum(edge_strength, 0.0))).astype(xp.float32)


def _depth_validity(values: Any) -> Any:
    return values[..., 0] != 0


def _positive_validity(values: Any) -> Any:
    return values[..., 0] > 0


def _alpha_validity(values: Any) -> Any:
    return values[..., 3] != 0


def _diffusion_step(values: Any, source_weights: Any, in_image: Any, hole: Any, xp):
    """One Jacobi sub-iteration over all cached tiles.

    Returns the new values and the mask of inner pixels that were updated.
    """
    size = values.shape[1]
    inner_shape = values.shape[:1] + (size - 2, size - 2)
    total = xp.zeros(inner_shape + values.shape[3:], dtype=xp.float32)
    weight = xp.zeros(inner_shape, dtype=xp.float32)

    sources = source_weights * in_image
    for dy, dx, kernel_weight in _NEIGHBOURS:
        rows = slice(1 + dy, size - 1 + dy)
        cols = slice(1 + dx, size - 1 + dx)
        w = sources[:, rows, cols] * np.float32(kernel_weight)
        total += w[..., None] * values[:, rows, cols]
        weight += w

    update = hole[:, 1:-1, 1:-1] & (weight > 0)
    candidate = total / xp.where(weight > 0, weight, 1.0)[..., None]
    new_values = values.copy()
    new_values[:, 1:-1, 1:-1] = xp.where(update[..., None], candidate, values[:, 1:-1, 1:-1])
    return new_values, update


def _max_change_flags(old: Any, new: Any, mask: Any, pending: Any, threshold: float, xp) -> Any:
    """Flag tiles where any masked pixel is still changing.

    A pixel is changing when any channel moved by more than ``threshold``
    relative to ``|old|``, or when it is still ``pending`` (holds no value yet).
    ``old`` is not guarded against zero: 0 to positive yields +inf. A hole
    that stays at 0 yields NaN but is still pending, so tiles the fill has
    not reached yet stay active. Negative holes of the weighted
    variant compare against ``|old|`` and flag like any other change.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        relative = xp.abs(new - old) / xp.abs(old)
    exceeded = ((relative > threshold).any(axis=-1) | pending) & mask
    return exceeded.reshape(exceeded.shape[0], -1).any(axis=1)


def _launch(
    stream: Optional[Stream],
    working_buffer: DeviceBuffer,
    input_sampler: Sampler,
    block_coordinates_buffer: DeviceBuffer,
    block_count: int,
    geometry: TileGeometry,
    hole_test: Callable[[Any], Any],
    validity: Validity,
    edge_strength_sampler: Optional[Sampler],
    edge_weight_scale: float,
    check_convergence: bool,
    max_change_buffer: Optional[DeviceBuffer],
    max_change_rate_threshold: Optional[float],
) -> None:
    if block_count <= 0:
        return
    if check_convergence and (max_change_buffer is None or max_change_rate_threshold is None):
        raise ValueError("A convergence check needs a max-change buffer and threshold.")

    xp = working_buffer.xp
    view = working_buffer.device_view()
    logger.debug("Diffusion launch over %d tiles (check=%s).", block_count, check_convergence)
    with checked_call("diffusion launch"), on_stream(stream):
        origins = read_block_origins(block_coordinates_buffer, block_count)
        cache = TileCache.load(view, origins, geometry, xp)
        hole = hole_test(cache.sample(input_sampler))

        base_weights = None
        if edge_strength_sampler is not None:
            edge = cache.sample(edge_strength_sampler)
            if edge.ndim == 4:
                edge = edge[..., 0]
            base_weights = edge_weights(edge, edge_weight_scale, xp)
            source_weights = base_weights * validity(cache.values)
        else:
            source_weights = validity(cache.values).astype(xp.float32)

        iterations = geometry.iterations_per_launch
        for sub_iteration in range(iterations):
            previous = cache.values
            cache.values, updated = _diffusion_step(cache.values, source_weights, cache.in_image, hole, xp)

            if base_weights is not None:
                inner = source_weights[:, 1:-1, 1:-1]
                source_weights[:, 1:-1, 1:-1] = xp.where(updated, base_weights[:, 1:-1, 1:-1], inner)
            else:
                source_weights = validity(cache.values).astype(xp.float32)

            if check_convergence and sub_iteration == iterations - 1:
                flags = _max_change_flags(
                    previous,
                    cache.values,
                    cache.writable(hole),
                    ~validity(cache.values),
                    max_change_rate_threshold,
                    xp,
                )
                max_change_buffer.flat_view()[:block_count] = flags.astype(xp.uint8)

        cache.flush(view, hole, xp)


def diffuse_depth_tiles(
    stream: Optional[Stream],
    depth_buffer: DeviceBuffer,
    depth_input_sampler: Sampler,
    block_coordinates_buffer: DeviceBuffer,
    block_count: int,
    geometry: TileGeometry,
    use_weighting: bool = False,
    edge_strength_sampler: Optional[Sampler] = None,
    edge_weight_scale: float = DEFAULT_EDGE_WEIGHT_SCALE,
    check_convergence: bool = False,
    max_change_buffer: Optional[DeviceBuffer] = None,
    max_change_rate_threshold: Optional[float] = None,
) -> None:
    """Run one launch of depth diffusion over the first ``block_count`` active tiles.

    Holes are decided from ``depth_input_sampler`` (the unmodified input), never
    from the working ``depth_buffer``. With ``use_weighting`` each neighbour's
    kernel weight is multiplied by its edge-derived weight, and a pixel only
    acts as a source while its depth is positive.
    """
    if use_weighting and edge_strength_sampler is None:
        raise ValueError("Edge-weighted diffusion requires an edge-strength sampler.")
    _launch(
        stream,
        depth_buffer,
        depth_input_sampler,
        block_coordinates_buffer,
        block_count,
        geometry,
        hole_test=lambda values: is_depth_hole(values, use_weighting),
        validity=_positive_validity if use_weighting else _depth_validity,
        edge_strength_sampler=edge_strength_sampler if use_weighting else None,
        edge_weight_scale=edge_weight_scale,
        check_convergence=check_convergence,
        max_change_buffer=max_change_buffer,
        max_change_rate_threshold=max_change_rate_threshold,
    )


def diffuse_rgba_tiles(
    stream: Optional[Stream],
    rgba_buffer: DeviceBuffer,
    rgba_input_sampler: Sampler,
    block_coordinates_buffer: DeviceBuffer,
    block_count: int,
    geometry: TileGeometry,
    check_convergence: bool = False,
    max_change_buffer: Optional[DeviceBuffer] = None,
    max_change_rate_threshold: Optional[float] = None,
) -> None:
    """Channel-wise diffusion of an RGBA image whose zero-alpha pixels are holes.

    There is no edge-weighted variant: every in-image neighbour with a
    non-zero alpha contributes with its plain kernel weight.
    """
    _launch(
        stream,
        rgba_buffer,
        rgba_input_sampler,
        block_coordinates_buffer,
        block_count,
        geometry,
        hole_test=is_rgba_hole,
        validity=_alpha_validity,
        edge_strength_sampler=None,
        edge_weight_scale=DEFAULT_EDGE_WEIGHT_SCALE,
        check_convergence=check_convergence,
        max_change_buffer=max_change_buffer,
        max_change_rate_threshold=max_change_rate_threshold,
    )
