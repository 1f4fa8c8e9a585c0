"""Execution streams carrying queued device work."""

from __future__ import annotations

from contextlib import nullcontext
from typing import Optional

from vcinpaint.device.backend import backend_name, is_cupy, select_backend
from vcinpaint.device.errors import checked_call


class Stream:
    """Ordered queue for device copies and kernels.

    On CuPy this wraps a non-blocking ``cupy.cuda.Stream``: work issued inside
    ``with stream:`` executes in issue order and asynchronously to the host
    until :meth:`synchronize`. On NumPy all work runs eagerly, so entering the
    stream and synchronising are no-ops.
    """

    def __init__(self, backend: str = "auto") -> None:
        self.xp = select_backend(backend)
        self.raw = None
        if is_cupy(self.xp):
            with checked_call("stream creation"):
                self.raw = self.xp.cuda.Stream(non_blocking=True)

    @property
    def backend(self) -> str:
        return backend_name(self.xp)

    def __enter__(self) -> "Stream":
        if self.raw is not None:
            self.raw.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.raw is not None:
            self.raw.__exit__(exc_type, exc, tb)

    def synchronize(self) -> None:
        """Block the host until all work queued on this stream has finished."""
        if self.raw is not None:
            with checked_call("stream synchronize"):
                self.raw.synchronize()


def on_stream(stream: Optional[Stream]):
    """Context that issues device work on ``stream`` (or the default stream)."""
    return stream if stream is not None else nullcontext()
