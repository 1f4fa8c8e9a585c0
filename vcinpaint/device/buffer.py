"""Pitched 2-D device buffers with host transfer and cached samplers."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

from vcinpaint.device.backend import select_backend, to_device, to_host
from vcinpaint.device.errors import DeviceError, checked_call
from vcinpaint.device.sampler import AddressMode, FilterMode, ReadMode, Sampler, SamplerConfig
from vcinpaint.device.stream import Stream, on_stream

logger = logging.getLogger(__name__)

DEFAULT_PITCH_ALIGNMENT = 512


def _round_up(value: int, multiple: int) -> int:
    return -(-value // multiple) * multiple


class DeviceBuffer:
    """Exclusively owned ``height x width`` grid of elements on the device.

    Rows are stored with a byte stride (``pitch``) that is the packed row size
    rounded up to ``pitch_alignment``. Each element holds ``channels`` values
    of ``dtype``. The buffer also owns at most one cached :class:`Sampler`.
    Storage is released exactly once, by :meth:`close` or on leaving a
    ``with`` block; any use afterwards raises :class:`DeviceError`.

    Freshly allocated contents are undefined.
    """

    def __init__(
        self,
        height: int,
        width: int,
        dtype: Any = np.float32,
        channels: int = 1,
        backend: str = "auto",
        pitch_alignment: int = DEFAULT_PITCH_ALIGNMENT,
    ) -> None:
        if height <= 0 or width <= 0:
            raise ValueError(f"Buffer dimensions must be positive, got {height} x {width}.")
        if channels <= 0:
            raise ValueError("channels must be >= 1")
        if pitch_alignment <= 0:
            raise ValueError("pitch_alignment must be >= 1")

        self._storage = None
        self._cached_sampler: Optional[Sampler] = None
        self.xp = select_backend(backend)
        self._height = int(height)
        self._width = int(width)
        self._dtype = np.dtype(dtype)
        self._channels = int(channels)
        self.element_bytes = self._dtype.itemsize * self._channels

        row_bytes = self._width * self.element_bytes
        pitch_elements = -(-_round_up(row_bytes, pitch_alignment) // self.element_bytes)
        self._pitch = pitch_elements * self.element_bytes

        shape: Tuple[int, ...] = (self._height, pitch_elements)
        if self._channels > 1:
            shape += (self._channels,)
        with checked_call("pitched allocation"):
            self._storage = self.xp.empty(shape, dtype=self._dtype)

        if self._pitch != row_bytes:
            logger.warning(
                "Pitch does not match width. Width in bytes: %d, pitch in bytes: %d, width and height: %d x %d",
                row_bytes,
                self._pitch,
                self._width,
                self._height,
            )

    # ------------------------------------------------------------------ #
    @property
    def height(self) -> int:
        return self._height

    @property
    def width(self) -> int:
        return self._width

    @property
    def shape(self) -> Tuple[int, int]:
        return self._height, self._width

    @property
    def size(self) -> int:
        return self._height * self._width

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def pitch(self) -> int:
        """Row stride in bytes."""
        return self._pitch

    @property
    def row_bytes(self) -> int:
        return self._width * self.element_bytes

    @property
    def closed(self) -> bool:
        return self._storage is None

    def _host_shape(self, height: Optional[int] = None, width: Optional[int] = None) -> Tuple[int, ...]:
        shape: Tuple[int, ...] = (self._height if height is None else height, self._width if width is None else width)
        if self._channels > 1:
            shape += (self._channels,)
        return shape

    def _require_storage(self):
        if self._storage is None:
            logger.critical("DeviceBuffer used after release.")
            raise DeviceError("DeviceBuffer used after release.")
        return self._storage

    def device_view(self):
        """Device array over the logical ``height x width`` region (pitch padding excluded)."""
        return self._require_storage()[:, : self._width]

    def flat_view(self):
        """Device array over a flattened buffer (height must be 1)."""
        self._require_flat()
        return self.device_view()[0]

    def _require_flat(self) -> None:
        if self._height != 1:
            raise ValueError(f"Partial transfers need a flattened buffer (height 1), got height {self._height}.")

    def _byte_row(self):
        storage = self._require_storage()
        return storage.reshape(-1).view(self.xp.uint8)

    def _check_byte_range(self, start: int, length: int) -> None:
        if start < 0 or length < 0 or start + length > self.row_bytes:
            raise ValueError(
                f"Byte range [{start}, {start + length}) exceeds buffer row of {self.row_bytes} bytes."
            )

    # ------------------------------------------------------------------ #
    def upload(self, image: np.ndarray) -> None:
        """Copy a host image of the buffer's shape onto the device."""
        self.upload_async(None, image)

    def upload_async(self, stream: Optional[Stream], image: np.ndarray) -> None:
        if image is None:
            raise ValueError("upload requires host data.")
        host = np.asarray(image, dtype=self._dtype)
        if host.shape != self._host_shape():
            raise ValueError(f"Expected host image of shape {self._host_shape()}, got {host.shape}.")
        view = self.device_view()
        with checked_call("upload"), on_stream(stream):
            view[...] = to_device(self.xp, host)

    def upload_pitched(self, pitch: int, data: np.ndarray) -> None:
        self.upload_pitched_async(None, pitch, data)

    def upload_pitched_async(self, stream: Optional[Stream], pitch: int, data: np.ndarray) -> None:
        """Copy host rows laid out with a byte stride of ``pitch``."""
        if data is None:
            raise ValueError("upload requires host data.")
        if pitch < self.row_bytes:
            raise ValueError(f"Host pitch {pitch} is smaller than the row size {self.row_bytes}.")
        raw = np.ascontiguousarray(data).reshape(-1).view(np.uint8)
        needed = (self._height - 1) * pitch + self.row_bytes
        if raw.size < needed:
            raise ValueError(f"Pitched host data holds {raw.size} bytes, need {needed}.")
        rows = np.lib.stride_tricks.as_strided(raw, shape=(self._height, self.row_bytes), strides=(pitch, 1))
        packed = np.ascontiguousarray(rows).view(self._dtype).reshape(self._host_shape())
        self.upload_async(stream, packed)

    def upload_part_async(self, start: int, length: int, stream: Optional[Stream], data: np.ndarray) -> None:
        """Copy ``length`` bytes of host ``data`` to byte offset ``start`` of a flattened buffer."""
        self._require_flat()
        if data is None:
            raise ValueError("upload requires host data.")
        self._check_byte_range(start, length)
        raw = np.ascontiguousarray(data).reshape(-1).view(np.uint8)
        if raw.size < length:
            raise ValueError(f"Host data holds {raw.size} bytes, need {length}.")
        row = self._byte_row()
        with checked_call("partial upload"), on_stream(stream):
            row[start : start + length] = to_device(self.xp, raw[:length])

    # ------------------------------------------------------------------ #
    def download(self) -> np.ndarray:
        """Copy the buffer contents into a new host-contiguous array."""
        return self.download_async(None)

    def download_async(self, stream: Optional[Stream], out: Optional[np.ndarray] = None) -> np.ndarray:
        view = self.device_view()
        with checked_call("download"), on_stream(stream):
            host = to_host(self.xp, view, stream=stream.raw if stream is not None else None)
        if out is None:
            return host
        if out.shape != host.shape:
            raise ValueError(f"Expected output of shape {host.shape}, got {out.shape}.")
        out[...] = host
        return out

    def download_pitched(self, pitch: int) -> np.ndarray:
        return self.download_pitched_async(None, pitch)

    def download_pitched_async(
        self, stream: Optional[Stream], pitch: int, out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Copy rows into host bytes with a byte stride of ``pitch``; returns the byte array."""
        if pitch < self.row_bytes:
            raise ValueError(f"Host pitch {pitch} is smaller than the row size {self.row_bytes}.")
        needed = (self._height - 1) * pitch + self.row_bytes
        if out is None:
            out = np.zeros(self._height * pitch, dtype=np.uint8)
        raw = out.reshape(-1).view(np.uint8)
        if raw.size < needed:
            raise ValueError(f"Pitched host output holds {raw.size} bytes, need {needed}.")
        packed = self.download_async(stream).reshape(self._height, -1).view(np.uint8)
        for row in range(self._height):
            raw[row * pitch : row * pitch + self.row_bytes] = packed[row]
        return out

    def download_part_async(
        self, start: int, length: int, stream: Optional[Stream], out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Copy ``length`` bytes from byte offset ``start`` of a flattened buffer into ``out``."""
        self._require_flat()
        self._check_byte_range(start, length)
        if out is None:
            out = np.empty(length, dtype=np.uint8)
        raw = out.reshape(-1).view(np.uint8)
        if raw.size < length:
            raise ValueError(f"Host output holds {raw.size} bytes, need {length}.")
        row = self._byte_row()
        with checked_call("partial download"), on_stream(stream):
            raw[:length] = to_host(self.xp, row[start : start + length], stream=stream.raw if stream is not None else None)
        return out

    def download_rect_async(
        self,
        src_y: int,
        src_x: int,
        height: int,
        width: int,
        dest_y: int,
        dest_x: int,
        stream: Optional[Stream],
        image: np.ndarray,
    ) -> np.ndarray:
        """Copy a ``height x width`` sub-rectangle into ``image`` at ``(dest_y, dest_x)``."""
        if image is None:
            raise ValueError("download_rect_async requires an output image.")
        if src_y < 0 or src_x < 0 or src_y + height > self._height or src_x + width > self._width:
            raise ValueError("Source rectangle exceeds the buffer.")
        if dest_y < 0 or dest_x < 0 or dest_y + height > image.shape[0] or dest_x + width > image.shape[1]:
            raise ValueError("Destination rectangle exceeds the output image.")
        view = self.device_view()[src_y : src_y + height, src_x : src_x + width]
        with checked_call("rectangle download"), on_stream(stream):
            host = to_host(self.xp, view, stream=stream.raw if stream is not None else None)
        image[dest_y : dest_y + height, dest_x : dest_x + width] = host
        return image

    # ------------------------------------------------------------------ #
    def clear(self, value: Union[float, Sequence[float]], stream: Optional[Stream] = None) -> None:
        """Set every element to ``value`` (a scalar or one value per channel)."""
        view = self.device_view()
        with checked_call("clear"), on_stream(stream):
            view[...] = self.xp.asarray(value, dtype=self._dtype)

    def set_to(self, source: Union[Sampler, "DeviceBuffer"], stream: Optional[Stream] = None) -> None:
        """Write every element by sampling ``source`` at the element's texel centre.

        A :class:`DeviceBuffer` source is read through a temporary clamped,
        point-filtered sampler that is destroyed afterwards.
        """
        if isinstance(source, DeviceBuffer):
            sampler = source.create_sampler()
            try:
                self.set_to(sampler, stream)
            finally:
                sampler.destroy()
            return

        if source.xp is not self.xp:
            raise ValueError("Sampler and buffer live on different backends.")
        xp = self.xp
        view = self.device_view()
        with checked_call("set_to"), on_stream(stream):
            xs = xp.arange(self._width, dtype=xp.float32) + 0.5
            ys = xp.arange(self._height, dtype=xp.float32) + 0.5
            if source.config.normalized_coordinates:
                xs = xs / self._width
                ys = ys / self._height
            values = source.fetch(xs[None, :], ys[:, None])
            view[...] = values.astype(self._dtype)

    # ------------------------------------------------------------------ #
    def create_sampler(
        self,
        address_mode_x: AddressMode = AddressMode.CLAMP,
        address_mode_y: AddressMode = AddressMode.CLAMP,
        filter_mode: FilterMode = FilterMode.POINT,
        read_mode: ReadMode = ReadMode.ELEMENT_TYPE,
        normalized_coordinates: bool = False,
    ) -> Sampler:
        """Create an uncached sampler; the caller destroys it."""
        config = SamplerConfig(address_mode_x, address_mode_y, filter_mode, read_mode, normalized_coordinates)
        return Sampler(self.device_view(), config, self.xp)

    def get_cached_sampler(
        self,
        address_mode_x: AddressMode = AddressMode.CLAMP,
        address_mode_y: AddressMode = AddressMode.CLAMP,
        filter_mode: FilterMode = FilterMode.POINT,
        read_mode: ReadMode = ReadMode.ELEMENT_TYPE,
        normalized_coordinates: bool = False,
    ) -> Sampler:
        """Return the cached sampler if its configuration matches, rebuilding it otherwise."""
        config = SamplerConfig(address_mode_x, address_mode_y, filter_mode, read_mode, normalized_coordinates)
        if self._cached_sampler is not None:
            if self._cached_sampler.config == config:
                return self._cached_sampler
            self._cached_sampler.destroy()
            self._cached_sampler = None
        self._cached_sampler = Sampler(self.device_view(), config, self.xp)
        return self._cached_sampler

    # ------------------------------------------------------------------ #
    def close(self) -> None:
        """Destroy the cached sampler and release the allocation."""
        if self._cached_sampler is not None:
            self._cached_sampler.destroy()
            self._cached_sampler = None
        self._storage = None

    def __enter__(self) -> "DeviceBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self) -> None:  # pragma: no cover - destructor safety
        if getattr(self, "_storage", None) is not None:
            self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"pitch={self._pitch}"
        return (
            f"DeviceBuffer({self._height}x{self._width}, dtype={self._dtype.name}, "
            f"channels={self._channels}, {state})"
        )
