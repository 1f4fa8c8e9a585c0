"""Array backend selection for device buffers and tile kernels."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

try:
    import cupy as cp
except Exception:  # pragma: no cover - optional dependency
    cp = None  # type: ignore[assignment]

BACKENDS = ("auto", "numpy", "cupy")


def cupy_available() -> bool:
    """Return True when CuPy is installed and sees at least one CUDA device."""
    if cp is None:
        return False
    try:
        return cp.cuda.runtime.getDeviceCount() > 0
    except cp.cuda.runtime.CUDARuntimeError:  # pragma: no cover - no driver
        return False


def select_backend(backend: str = "auto"):
    """Return the array module (``numpy`` or ``cupy``) used as the device."""
    backend = backend.lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend '{backend}'. Expected one of {list(BACKENDS)}")
    if backend == "cupy" or (backend == "auto" and cupy_available()):
        if cp is None:
            raise RuntimeError("CuPy requested but not installed.")
        return cp
    return np


def is_cupy(xp) -> bool:
    return cp is not None and xp is cp


def backend_name(xp) -> str:
    return "cupy" if is_cupy(xp) else "numpy"


def to_device(xp, array: Any):
    """Copy a host array onto the device backend (no copy for NumPy inputs on NumPy)."""
    return xp.asarray(array)


def to_host(xp, array: Any, stream: Optional[Any] = None) -> np.ndarray:
    """Copy a device array back to a NumPy array."""
    if is_cupy(xp):
        return cp.asnumpy(array, stream=stream)
    return np.array(array, copy=True)
