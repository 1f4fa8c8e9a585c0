"""Debug visualisation of depth buffers and active-block sets."""

from __future__ import annotations

from typing import Optional, Tuple, Union

import cv2
import numpy as np

from vcinpaint.device import DeviceBuffer

ArrayLike = Union[np.ndarray, DeviceBuffer]


def _to_host(image: ArrayLike) -> np.ndarray:
    if isinstance(image, DeviceBuffer):
        return image.download()
    return np.asarray(image)


def colorize_depth(
    depth: ArrayLike,
    min_depth: Optional[float] = None,
    max_depth: Optional[float] = None,
    colormap: int = cv2.COLORMAP_JET,
) -> np.ndarray:
    """Map a depth image (host array or device buffer) to BGR uint8; holes (<= 0) stay black.

    The range defaults to the minimum and maximum of the valid pixels.
    """
    d = _to_host(depth).astype(np.float32)
    if d.ndim == 3:
        d = d[..., 0]
    invalid = ~(d > 0.0)
    valid = d[~invalid]
    d0 = float(valid.min()) if min_depth is None and valid.size else float(min_depth or 0.0)
    d1 = float(valid.max()) if max_depth is None and valid.size else float(max_depth or 1.0)
    scale = 255.0 / max(1e-6, d1 - d0)
    u8 = ((np.clip(d, d0, d1) - d0) * scale).astype(np.uint8)
    bgr = cv2.applyColorMap(u8, colormap)
    bgr[invalid] = 0
    return bgr


def draw_active_blocks(
    image: np.ndarray,
    block_origins: np.ndarray,
    output_size: int,
    color: Tuple[int, int, int] = (0, 0, 255),
    thickness: int = 1,
) -> np.ndarray:
    """Outline the output region of every active tile (origins as ``(x, y)``) on a copy of ``image``."""
    out = np.ascontiguousarray(image).copy()
    if out.ndim == 2:
        out = cv2.cvtColor(out, cv2.COLOR_GRAY2BGR)
    height, width = out.shape[:2]
    for x0, y0 in np.asarray(block_origins, dtype=np.int64).reshape(-1, 2):
        x1 = min(int(x0) + output_size, width) - 1
        y1 = min(int(y0) + output_size, height) - 1
        cv2.rectangle(out, (int(x0), int(y0)), (x1, y1), color, thickness)
    return out
