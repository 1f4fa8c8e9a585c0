"""Device failure handling."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class DeviceError(RuntimeError):
    """Unrecoverable failure of a device allocation, copy or kernel."""


@contextmanager
def checked_call(operation: str) -> Iterator[None]:
    """Surface backend failures of ``operation`` as :class:`DeviceError`.

    Allocation failures arrive as ``MemoryError`` (NumPy and CuPy's
    ``OutOfMemoryError``), driver and launch failures as ``RuntimeError``
    (CuPy's ``CUDARuntimeError``/``CUDADriverError``). Both are logged at
    CRITICAL on the spot and re-raised; the device state after such a failure
    is undefined, so nothing in this package tries to recover.
    """
    try:
        yield
    except DeviceError:
        raise
    except (MemoryError, RuntimeError) as exc:
        logger.critical("Device operation '%s' failed: %s", operation, exc)
        raise DeviceError(f"{operation} failed: {exc}") from exc
