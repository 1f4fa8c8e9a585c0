import numpy as np
import pytest

from vcinpaint.device import AddressMode, DeviceBuffer, FilterMode, ReadMode


@pytest.fixture
def row_buffer():
    buf = DeviceBuffer(1, 4, dtype=np.float32, backend="numpy", pitch_alignment=4)
    buf.upload(np.array([[10.0, 20.0, 30.0, 40.0]], dtype=np.float32))
    yield buf
    buf.close()


@pytest.mark.parametrize(
    "mode, expected",
    [
        (AddressMode.CLAMP, [10.0, 10.0, 10.0, 40.0, 40.0]),
        (AddressMode.BORDER, [0.0, 0.0, 10.0, 40.0, 0.0]),
        (AddressMode.WRAP, [30.0, 40.0, 10.0, 40.0, 10.0]),
        (AddressMode.MIRROR, [20.0, 10.0, 10.0, 40.0, 40.0]),
    ],
)
def test_address_modes(row_buffer, mode, expected):
    sampler = row_buffer.create_sampler(address_mode_x=mode)
    xs = np.array([-2, -1, 0, 3, 4])
    values = sampler.texel(xs, np.zeros_like(xs))
    assert values.tolist() == expected


def test_linear_filter_interpolates_between_texel_centres(row_buffer):
    sampler = row_buffer.create_sampler(filter_mode=FilterMode.LINEAR)
    values = sampler.fetch(np.array([0.5, 1.0, 2.25]), np.array([0.5, 0.5, 0.5]))
    assert np.allclose(values, [10.0, 15.0, 27.5])


def test_normalized_coordinates_scale_by_size(row_buffer):
    sampler = row_buffer.create_sampler(normalized_coordinates=True)
    values = sampler.fetch(np.array([0.125, 0.625]), np.array([0.5, 0.5]))
    assert values.tolist() == [10.0, 30.0]


def test_normalized_float_read_mode_scales_integers():
    with DeviceBuffer(1, 2, dtype=np.uint16, backend="numpy") as buf:
        buf.upload(np.array([[0, 65535]], dtype=np.uint16))
        raw = buf.create_sampler().texel(np.array([0, 1]), np.array([0, 0]))
        scaled = buf.create_sampler(read_mode=ReadMode.NORMALIZED_FLOAT).texel(np.array([0, 1]), np.array([0, 0]))

    assert raw.dtype == np.uint16
    assert np.allclose(scaled, [0.0, 1.0])


def test_border_applies_to_every_channel():
    with DeviceBuffer(2, 2, channels=4, backend="numpy") as buf:
        buf.clear([1.0, 2.0, 3.0, 4.0])
        sampler = buf.create_sampler(address_mode_x=AddressMode.BORDER, address_mode_y=AddressMode.BORDER)
        values = sampler.texel(np.array([0, 2]), np.array([0, 0]))

    assert values.shape == (2, 4)
    assert values[0].tolist() == [1.0, 2.0, 3.0, 4.0]
    assert values[1].tolist() == [0.0, 0.0, 0.0, 0.0]
