"""Tile geometry and the per-tile cache with halo margin."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple

BLOCK_SIZE = 32
ITERATIONS_PER_LAUNCH = 4


@dataclass(frozen=True)
class TileGeometry:
    """Square tiles of ``block_size`` pixels whose outer ``halo`` ring is read-only.

    Each launch runs ``halo`` sub-iterations and every sub-iteration reads one
    ring of neighbours, so only the inner ``output_size`` region of a tile is
    written back.
    """

    block_size: int = BLOCK_SIZE
    halo: int = ITERATIONS_PER_LAUNCH

    def __post_init__(self) -> None:
        if self.halo < 1:
            raise ValueError("halo must be >= 1")
        if self.output_size <= 0:
            raise ValueError(f"block_size {self.block_size} leaves no output region for halo {self.halo}.")

    @property
    def output_size(self) -> int:
        return self.block_size - 2 * self.halo

    @property
    def iterations_per_launch(self) -> int:
        return self.halo

    def grid_shape(self, height: int, width: int) -> Tuple[int, int]:
        """Number of tiles ``(rows, cols)`` needed to cover an image."""
        out = self.output_size
        return -(-height // out), -(-width // out)

    def cell_count(self, height: int, width: int) -> int:
        rows, cols = self.grid_shape(height, width)
        return rows * cols


@dataclass
class TileCache:
    """Local copy of every active tile, loaded once per launch and flushed once.

    ``values`` has shape ``(tiles, B, B, C)``. ``xs``/``ys`` hold the
    unclamped image coordinates of each tile column/row; ``x_idx``/``y_idx``
    the same coordinates clamped into the image, which is where the values
    were read from.
    """

    values: Any
    xs: Any
    ys: Any
    x_idx: Any
    y_idx: Any
    in_image: Any
    output_region: Any
    squeeze_channels: bool

    @classmethod
    def load(cls, view: Any, origins: Any, geometry: TileGeometry, xp) -> "TileCache":
        """Gather tiles whose output regions start at ``origins`` (``(n, 2)`` as ``x, y``)."""
        height, width = int(view.shape[0]), int(view.shape[1])
        offsets = xp.arange(geometry.block_size, dtype=xp.int64) - geometry.halo
        xs = origins[:, 0:1].astype(xp.int64) + offsets[None, :]
        ys = origins[:, 1:2].astype(xp.int64) + offsets[None, :]
        x_idx = xp.clip(xs, 0, width - 1)
        y_idx = xp.clip(ys, 0, height - 1)

        values = view[y_idx[:, :, None], x_idx[:, None, :]]
        squeeze = values.ndim == 3
        if squeeze:
            values = values[..., None]

        in_x = (xs >= 0) & (xs < width)
        in_y = (ys >= 0) & (ys < height)
        in_image = in_y[:, :, None] & in_x[:, None, :]

        local = xp.arange(geometry.block_size)
        inner = (local >= geometry.halo) & (local < geometry.block_size - geometry.halo)
        output_region = inner[:, None] & inner[None, :]

        return cls(
            values=values.astype(xp.float32),
            xs=xs,
            ys=ys,
            x_idx=x_idx,
            y_idx=y_idx,
            in_image=in_image,
            output_region=output_region,
            squeeze_channels=squeeze,
        )

    @property
    def count(self) -> int:
        return int(self.values.shape[0])

    @property
    def block_size(self) -> int:
        return int(self.values.shape[1])

    def sample(self, sampler) -> Any:
        """Sample ``sampler`` at every cached pixel (``(n, B, B[, C])``)."""
        return sampler.texel(self.xs[:, None, :], self.ys[:, :, None])

    def writable(self, hole: Any) -> Any:
        """Pixels flushed back to the image: in-image holes of the output region."""
        return hole & self.in_image & self.output_region[None, :, :]

    def flush(self, view: Any, hole: Any, xp) -> None:
        mask = self.writable(hole)
        shape = mask.shape
        rows = xp.broadcast_to(self.y_idx[:, :, None], shape)[mask]
        cols = xp.broadcast_to(self.x_idx[:, None, :], shape)[mask]
        values = self.values[mask]
        if self.squeeze_channels:
            values = values[..., 0]
        view[rows, cols] = values.astype(view.dtype)
