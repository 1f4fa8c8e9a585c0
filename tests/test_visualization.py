import numpy as np

from vcinpaint.device import DeviceBuffer
from vcinpaint.utils import colorize_depth, draw_active_blocks


def test_colorize_depth_keeps_holes_black():
    depth = np.linspace(1.0, 4.0, 48, dtype=np.float32).reshape(6, 8)
    depth[2, 3] = 0.0
    bgr = colorize_depth(depth)

    assert bgr.shape == (6, 8, 3)
    assert bgr.dtype == np.uint8
    assert bgr[2, 3].tolist() == [0, 0, 0]
    assert bgr[0, 0].tolist() != bgr[-1, -1].tolist()


def test_colorize_depth_accepts_device_buffer():
    depth = np.full((4, 4), 2.0, dtype=np.float32)
    with DeviceBuffer(4, 4, backend="numpy") as buf:
        buf.upload(depth)
        from_buffer = colorize_depth(buf, 0.0, 4.0)
    assert np.array_equal(from_buffer, colorize_depth(depth, 0.0, 4.0))


def test_draw_active_blocks_outlines_output_regions():
    image = np.zeros((48, 48, 3), dtype=np.uint8)
    origins = np.array([[24, 0]], dtype=np.uint16)
    out = draw_active_blocks(image, origins, 24, color=(0, 0, 255))

    assert image.sum() == 0
    assert out[0, 24].tolist() == [0, 0, 255]
    assert out[23, 47].tolist() == [0, 0, 255]
    assert out[12, 12].tolist() == [0, 0, 0]
    assert out[30, 30].tolist() == [0, 0, 0]
