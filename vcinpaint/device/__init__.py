"""Device memory abstraction: pitched buffers, samplers and streams."""

from .backend import cupy_available, select_backend
from .buffer import DeviceBuffer
from .errors import DeviceError, checked_call
from .sampler import AddressMode, FilterMode, ReadMode, Sampler, SamplerConfig
from .stream import Stream

__all__ = [
    "AddressMode",
    "DeviceBuffer",
    "DeviceError",
    "FilterMode",
    "ReadMode",
    "Sampler",
    "SamplerConfig",
    "Stream",
    "checked_call",
    "cupy_available",
    "select_backend",
]
