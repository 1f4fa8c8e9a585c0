"""Read-only boundary samplers over pitched device storage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

import numpy as np

from vcinpaint.device.errors import DeviceError

logger = logging.getLogger(__name__)


class AddressMode(Enum):
    CLAMP = "clamp"
    BORDER = "border"
    WRAP = "wrap"
    MIRROR = "mirror"


class FilterMode(Enum):
    POINT = "point"
    LINEAR = "linear"


class ReadMode(Enum):
    ELEMENT_TYPE = "element_type"
    NORMALIZED_FLOAT = "normalized_float"


@dataclass(frozen=True)
class SamplerConfig:
    """Addressing, filtering and read configuration of a sampler."""

    address_mode_x: AddressMode = AddressMode.CLAMP
    address_mode_y: AddressMode = AddressMode.CLAMP
    filter_mode: FilterMode = FilterMode.POINT
    read_mode: ReadMode = ReadMode.ELEMENT_TYPE
    normalized_coordinates: bool = False


class Sampler:
    """Sampling view with a fixed out-of-range policy.

    ``texel`` addresses integer texels; ``fetch`` takes continuous coordinates
    with texel centres at ``i + 0.5`` (scaled by the storage size when the
    sampler uses normalised coordinates). The sampler shares memory with the
    buffer it was created from and must not outlive it.
    """

    def __init__(self, storage: Any, config: SamplerConfig, xp) -> None:
        dtype = np.dtype(storage.dtype)
        if (
            config.filter_mode is FilterMode.LINEAR
            and config.read_mode is ReadMode.ELEMENT_TYPE
            and not np.issubdtype(dtype, np.floating)
        ):
            raise ValueError("Linear filtering of integer data requires ReadMode.NORMALIZED_FLOAT.")
        self._storage = storage
        self.config = config
        self.xp = xp
        self.height = int(storage.shape[0])
        self.width = int(storage.shape[1])
        self.channels = int(storage.shape[2]) if storage.ndim == 3 else 1

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    @property
    def destroyed(self) -> bool:
        return self._storage is None

    def destroy(self) -> None:
        self._storage = None

    def _require_storage(self):
        if self._storage is None:
            logger.critical("Sampler used after it was destroyed.")
            raise DeviceError("Sampler used after it was destroyed.")
        return self._storage

    # ------------------------------------------------------------------ #
    def _resolve(self, index, size: int, mode: AddressMode):
        xp = self.xp
        if mode is AddressMode.CLAMP:
            return xp.clip(index, 0, size - 1), None
        if mode is AddressMode.WRAP:
            return xp.mod(index, size), None
        if mode is AddressMode.MIRROR:
            period = 2 * size
            folded = xp.mod(index, period)
            return xp.where(folded >= size, period - 1 - folded, folded), None
        inside = (index >= 0) & (index < size)
        return xp.clip(index, 0, size - 1), inside

    def _convert(self, values):
        if self.config.read_mode is ReadMode.ELEMENT_TYPE:
            return values
        dtype = np.dtype(values.dtype)
        if np.issubdtype(dtype, np.integer):
            return values.astype(np.float32) / np.float32(np.iinfo(dtype).max)
        return values

    def _raw_texel(self, ix, iy):
        storage = self._require_storage()
        xp = self.xp
        ix, inside_x = self._resolve(xp.asarray(ix, dtype=xp.int64), self.width, self.config.address_mode_x)
        iy, inside_y = self._resolve(xp.asarray(iy, dtype=xp.int64), self.height, self.config.address_mode_y)
        values = storage[iy, ix]

        inside: Optional[Any] = None
        if inside_x is not None and inside_y is not None:
            inside = inside_x & inside_y
        elif inside_x is not None:
            inside = xp.broadcast_to(inside_x, xp.broadcast(ix, iy).shape)
        elif inside_y is not None:
            inside = xp.broadcast_to(inside_y, xp.broadcast(ix, iy).shape)
        if inside is not None:
            if self.channels > 1:
                inside = inside[..., None]
            values = xp.where(inside, values, xp.zeros((), dtype=values.dtype))
        return values

    def texel(self, ix, iy):
        """Fetch integer texels ``(ix, iy)`` through the address modes."""
        return self._convert(self._raw_texel(ix, iy))

    def fetch(self, x, y):
        """Sample at continuous coordinates ``(x, y)``."""
        xp = self.xp
        x = xp.asarray(x, dtype=xp.float32)
        y = xp.asarray(y, dtype=xp.float32)
        if self.config.normalized_coordinates:
            x = x * self.width
            y = y * self.height

        if self.config.filter_mode is FilterMode.POINT:
            return self.texel(xp.floor(x).astype(xp.int64), xp.floor(y).astype(xp.int64))

        x = x - 0.5
        y = y - 0.5
        x0 = xp.floor(x)
        y0 = xp.floor(y)
        fx = (x - x0).astype(xp.float32)
        fy = (y - y0).astype(xp.float32)
        x0 = x0.astype(xp.int64)
        y0 = y0.astype(xp.int64)
        if self.channels > 1:
            fx = fx[..., None]
            fy = fy[..., None]

        def corner(dx: int, dy: int):
            return self.texel(x0 + dx, y0 + dy).astype(xp.float32)

        return (
            corner(0, 0) * (1.0 - fx) * (1.0 - fy)
            + corner(1, 0) * fx * (1.0 - fy)
            + corner(0, 1) * (1.0 - fx) * fy
            + corner(1, 1) * fx * fy
        )
