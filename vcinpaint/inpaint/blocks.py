"""Active-block location on the device and host-side compaction of active tiles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

import numpy as np

from vcinpaint.device import DeviceBuffer, Sampler, Stream, checked_call
from vcinpaint.device.stream import on_stream
from vcinpaint.inpaint.tiles import TileGeometry

logger = logging.getLogger(__name__)

HoleTest = Callable[[Any], Any]


def is_depth_hole(values: Any, use_weighting: bool = False) -> Any:
    """Depth holes are exactly zero, or non-positive for edge-weighted inpainting."""
    if use_weighting:
        return values <= 0
    return values == 0


def is_rgba_hole(values: Any) -> Any:
    """RGBA holes have a zero alpha (``w``) channel."""
    return values[..., 3] == 0


def locate_active_blocks(
    stream: Optional[Stream],
    input_sampler: Sampler,
    output_buffer: DeviceBuffer,
    counts_buffer: DeviceBuffer,
    geometry: TileGeometry,
    hole_test: HoleTest,
    scaling_factor: Optional[float] = None,
) -> Tuple[int, int]:
    """Copy the (scaled) input into ``output_buffer`` and count holes per tile.

    The per-tile hole counts of the output regions are written row-major as
    uint16 into the flattened ``counts_buffer``. Returns the tile grid shape.
    """
    height, width = output_buffer.shape
    rows, cols = geometry.grid_shape(height, width)
    out = geometry.output_size
    xp = output_buffer.xp
    counts_view = counts_buffer.flat_view()

    with checked_call("active block locator"), on_stream(stream):
        xs = xp.arange(cols * out, dtype=xp.int64)
        ys = xp.arange(rows * out, dtype=xp.int64)
        values = input_sampler.texel(xs[None, :], ys[:, None])
        if scaling_factor is not None:
            values = values * scaling_factor
        output_buffer.device_view()[...] = values[:height, :width].astype(output_buffer.dtype)

        holes = hole_test(values)
        holes[height:, :] = False
        holes[:, width:] = False
        counts = holes.reshape(rows, out, cols, out).sum(axis=(1, 3))
        counts_view[: rows * cols] = counts.reshape(-1).astype(counts_view.dtype)

    logger.debug("Located holes over a %d x %d tile grid.", rows, cols)
    return rows, cols


@dataclass
class ActiveBlockList:
    """Origins ``(x, y)`` of the tiles still being inpainted, in output-pixel coordinates."""

    coordinates: np.ndarray  # (n, 2) uint16

    def __len__(self) -> int:
        return int(self.coordinates.shape[0])

    @classmethod
    def from_counts(
        cls, counts: np.ndarray, grid_shape: Tuple[int, int], output_size: int
    ) -> Tuple["ActiveBlockList", int]:
        """Compact per-tile hole counts into the list of tiles with holes.

        Returns the list (row-major scan order) and the total hole count.
        """
        rows, cols = grid_shape
        counts = np.asarray(counts).reshape(-1)[: rows * cols]
        active = np.flatnonzero(counts)
        coordinates = np.empty((active.size, 2), dtype=np.uint16)
        coordinates[:, 0] = (active % cols) * output_size
        coordinates[:, 1] = (active // cols) * output_size
        return cls(coordinates), int(counts.sum(dtype=np.int64))

    def shrink(self, flags: np.ndarray) -> "ActiveBlockList":
        """Keep only the tiles whose max-change flag is set."""
        flags = np.asarray(flags).reshape(-1)[: len(self)]
        return ActiveBlockList(self.coordinates[flags != 0])

    def upload(self, buffer: DeviceBuffer, stream: Optional[Stream]) -> None:
        if len(self) == 0:
            return
        buffer.upload_part_async(0, self.coordinates.nbytes, stream, self.coordinates)


def read_block_origins(buffer: DeviceBuffer, count: int) -> Any:
    """Device view of the first ``count`` tile origins stored in ``buffer``."""
    return buffer.flat_view()[: 2 * count].reshape(count, 2)
