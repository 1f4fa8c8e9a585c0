import numpy as np
import pytest

from vcinpaint.device import DeviceBuffer
from vcinpaint.inpaint.blocks import ActiveBlockList
from vcinpaint.inpaint.diffusion import (
    AXIAL_WEIGHT,
    DIAGONAL_WEIGHT,
    _max_change_flags,
    diffuse_depth_tiles,
    diffuse_rgba_tiles,
    edge_weights,
)
from vcinpaint.inpaint.tiles import TileGeometry


def _launch_depth(depth, use_weighting=False, edge=None, check=False, origins=((0, 0),)):
    geometry = TileGeometry()
    height, width = depth.shape
    coordinates = np.array(origins, dtype=np.uint16).reshape(-1, 2)
    buffers = [
        DeviceBuffer(height, width, backend="numpy"),
        DeviceBuffer(height, width, backend="numpy"),
        DeviceBuffer(1, 8, dtype=np.uint8, backend="numpy"),
        DeviceBuffer(1, 16, dtype=np.uint16, backend="numpy"),
        DeviceBuffer(height, width, backend="numpy"),
    ]
    source, working, flags, coords, edges = buffers
    try:
        source.upload(depth)
        working.upload(depth)
        flags.clear(255)
        ActiveBlockList(coordinates).upload(coords, None)
        edge_sampler = None
        if edge is not None:
            edges.upload(edge)
            edge_sampler = edges.get_cached_sampler()
        diffuse_depth_tiles(
            None,
            working,
            source.get_cached_sampler(),
            coords,
            len(coordinates),
            geometry,
            use_weighting=use_weighting,
            edge_strength_sampler=edge_sampler,
            check_convergence=check,
            max_change_buffer=flags if check else None,
            max_change_rate_threshold=0.01 if check else None,
        )
        return working.download(), flags.flat_view()[: len(coordinates)].copy()
    finally:
        for buf in buffers:
            buf.close()


def test_kernel_weights_sum_to_one():
    assert 4 * DIAGONAL_WEIGHT + 4 * AXIAL_WEIGHT == pytest.approx(1.0)


def test_edge_weights_fall_off_with_strength():
    weights = edge_weights(np.array([0.0, 0.1, -3.0], dtype=np.float32), 10.0, np)
    assert weights.dtype == np.float32
    assert np.allclose(weights, [1.0, 0.5, 1.0])


def test_single_hole_takes_neighbour_value():
    depth = np.full((24, 24), 8.0, dtype=np.float32)
    depth[12, 12] = 0.0
    out, _ = _launch_depth(depth)
    assert out[12, 12] == pytest.approx(8.0)
    mask = np.ones_like(depth, dtype=bool)
    mask[12, 12] = False
    assert np.array_equal(out[mask], depth[mask])


def test_launch_propagates_one_pixel_per_sub_iteration():
    depth = np.zeros((24, 24), dtype=np.float32)
    depth[:, 0] = 3.0
    out, flags = _launch_depth(depth, check=True)

    assert np.allclose(out[:, :5], 3.0)
    assert (out[:, 5:] == 0.0).all()
    # Column 4 went from 0 to 3 on the last sub-iteration.
    assert flags.tolist() == [1]


def test_settled_tile_is_not_flagged():
    depth = np.full((24, 24), 8.0, dtype=np.float32)
    depth[3:6, 3:6] = 0.0
    _, flags = _launch_depth(depth, check=True)
    assert flags.tolist() == [0]


def test_tile_not_reached_by_the_fill_stays_flagged():
    depth = np.zeros((24, 24), dtype=np.float32)
    out, flags = _launch_depth(depth, check=True)

    assert (out == 0.0).all()
    assert flags.tolist() == [1]


def test_negative_hole_that_fills_is_flagged():
    old = np.array([[[[-1.0], [3.0]]]], dtype=np.float32)
    new = np.array([[[[3.0], [3.0]]]], dtype=np.float32)
    mask = np.ones((1, 1, 2), dtype=bool)
    pending = np.zeros((1, 1, 2), dtype=bool)

    assert _max_change_flags(old, new, mask, pending, 0.01, np).tolist() == [True]
    assert _max_change_flags(new, new, mask, pending, 0.01, np).tolist() == [False]


def test_zero_colour_channel_does_not_keep_tile_flagged():
    old = np.array([[[[0.5, 0.0, 1.0, 1.0]]]], dtype=np.float32)
    mask = np.ones((1, 1, 1), dtype=bool)
    pending = np.zeros((1, 1, 1), dtype=bool)

    assert _max_change_flags(old, old.copy(), mask, pending, 0.01, np).tolist() == [False]


def test_zero_block_count_is_a_no_op():
    depth = np.zeros((24, 24), dtype=np.float32)
    depth[:, 0] = 3.0
    out, _ = _launch_depth(depth, origins=())
    assert np.array_equal(out, depth)


def test_weighting_requires_edge_sampler():
    depth = np.ones((24, 24), dtype=np.float32)
    with pytest.raises(ValueError):
        _launch_depth(depth, use_weighting=True)


def test_negative_depth_is_a_hole_only_when_weighted():
    depth = np.full((24, 24), 8.0, dtype=np.float32)
    depth[12, 12] = -1.0
    edge = np.zeros_like(depth)

    plain, _ = _launch_depth(depth)
    weighted, _ = _launch_depth(depth, use_weighting=True, edge=edge)

    assert plain[12, 12] == -1.0
    assert weighted[12, 12] == pytest.approx(8.0)


def test_strong_edges_suppress_their_side():
    depth = np.full((24, 24), 2.0, dtype=np.float32)
    depth[:, 13:] = 10.0
    depth[:, 12] = 0.0
    edge = np.zeros_like(depth)
    edge[:, 13:] = 1.0

    plain, _ = _launch_depth(depth)
    weighted, _ = _launch_depth(depth, use_weighting=True, edge=edge)

    assert np.allclose(plain[:, 12], 6.0, atol=1e-4)
    assert np.allclose(weighted[:, 12], 32.0 / 12.0, atol=1e-4)


def test_rgba_fills_every_channel_of_zero_alpha_pixels():
    rgba = np.zeros((24, 24, 4), dtype=np.float32)
    rgba[...] = [0.2, 0.4, 0.6, 1.0]
    rgba[10, 10] = 0.0
    geometry = TileGeometry()

    with DeviceBuffer(24, 24, channels=4, backend="numpy") as source, DeviceBuffer(
        24, 24, channels=4, backend="numpy"
    ) as working, DeviceBuffer(1, 2, dtype=np.uint16, backend="numpy") as coords:
        source.upload(rgba)
        working.upload(rgba)
        ActiveBlockList(np.zeros((1, 2), dtype=np.uint16)).upload(coords, None)
        diffuse_rgba_tiles(None, working, source.get_cached_sampler(), coords, 1, geometry)
        out = working.download()

    assert np.allclose(out[10, 10], [0.2, 0.4, 0.6, 1.0])
