import math

import numpy as np
import pytest

from orbslam_core.descriptors import KeyPoint
from orbslam_core.frame import GRID_COLS, GRID_ROWS, CameraCalibration, Frame

SCALES = [1.0, 1.2, 1.44, 1.728]
WIDTH, HEIGHT = 640, 480


@pytest.fixture
def camera():
    return CameraCalibration(fx=500.0, fy=500.0, cx=320.0, cy=240.0, bf=40.0, th_depth=35.0)


def _random_keys(rng, n, width=WIDTH, height=HEIGHT, octaves=1):
    xs = rng.uniform(0, width - 1, n)
    ys = rng.uniform(0, height - 1, n)
    levels = rng.integers(0, octaves, n)
    return [KeyPoint(float(x), float(y), octave=int(o)) for x, y, o in zip(xs, ys, levels)]


def _descs(rng, n):
    return rng.integers(0, 256, (n, 32), dtype=np.uint8)


def _mono(camera, keys, rng):
    return Frame.monocular(keys, _descs(rng, len(keys)), 1.0, camera, (WIDTH, HEIGHT), SCALES)


def _pose(angle, t):
    c, s = math.cos(angle), math.sin(angle)
    m = np.eye(4)
    m[:3, :3] = [[c, 0, s], [0, 1, 0], [-s, 0, c]]
    m[:3, 3] = t
    return m


def test_undistort_without_distortion_is_identity(camera):
    pts = np.array([[10.0, 20.0], [320.0, 240.0], [600.0, 470.0]])
    assert np.allclose(camera.undistort_points(pts), pts)


def test_undistort_inverts_radial_distortion():
    cam = CameraCalibration(500.0, 500.0, 320.0, 240.0, dist_coeffs=(-0.1, 0.01, 0.001, -0.001))
    k1, k2, p1, p2 = cam.dist_coeffs
    ideal = np.array([[400.0, 300.0], [250.0, 200.0]])
    x = (ideal[:, 0] - cam.cx) / cam.fx
    y = (ideal[:, 1] - cam.cy) / cam.fy
    r2 = x * x + y * y
    radial = 1 + k1 * r2 + k2 * r2 * r2
    xd = x * radial + 2 * p1 * x * y + p2 * (r2 + 2 * x * x)
    yd = y * radial + p1 * (r2 + 2 * y * y) + 2 * p2 * x * y
    distorted = np.column_stack([xd * cam.fx + cam.cx, yd * cam.fy + cam.cy])
    assert np.allclose(cam.undistort_points(distorted), ideal, atol=1e-3)


def test_image_bounds_without_distortion(camera):
    assert camera.image_bounds(WIDTH, HEIGHT) == (0.0, WIDTH, 0.0, HEIGHT)


def test_image_bounds_with_barrel_distortion_grow():
    cam = CameraCalibration(500.0, 500.0, 320.0, 240.0, dist_coeffs=(-0.2, 0.0, 0.0, 0.0))
    min_x, max_x, min_y, max_y = cam.image_bounds(WIDTH, HEIGHT)
    assert min_x < 0 and max_x > WIDTH
    assert min_y < 0 and max_y > HEIGHT


def test_monocular_frame_has_no_stereo(camera):
    rng = np.random.default_rng(1)
    frame = _mono(camera, _random_keys(rng, 30), rng)
    assert frame.n == 30
    assert frame.u_right == [-1.0] * 30
    assert frame.depth == [-1.0] * 30
    assert frame.map_points == [None] * 30
    assert frame.outliers == [False] * 30
    assert frame.keys_un == frame.keys


def test_frame_ids_increase(camera):
    rng = np.random.default_rng(2)
    first = _mono(camera, _random_keys(rng, 5), rng)
    second = _mono(camera, _random_keys(rng, 5), rng)
    assert second.id == first.id + 1


def test_pos_in_grid(camera):
    rng = np.random.default_rng(3)
    frame = _mono(camera, [], rng)
    assert frame.pos_in_grid(KeyPoint(0.0, 0.0)) == (0, 0)
    assert frame.pos_in_grid(KeyPoint(-20.0, 10.0)) is None
    assert frame.pos_in_grid(KeyPoint(float(WIDTH), float(HEIGHT))) is None
    cell = frame.pos_in_grid(KeyPoint(WIDTH - 6.0, HEIGHT - 6.0))
    assert cell is not None
    assert 0 <= cell[0] < GRID_COLS and 0 <= cell[1] < GRID_ROWS


def test_every_keypoint_is_in_its_grid_cell(camera):
    rng = np.random.default_rng(4)
    frame = _mono(camera, _random_keys(rng, 200), rng)
    for i, kp in enumerate(frame.keys_un):
        cell = frame.pos_in_grid(kp)
        if cell is not None:
            assert i in frame.grid[cell[0]][cell[1]]


def test_features_in_area_matches_all_nearby(camera):
    rng = np.random.default_rng(5)
    frame = _mono(camera, _random_keys(rng, 400), rng)
    x, y, r = 300.0, 200.0, 40.0
    found = set(frame.features_in_area(x, y, r))
    expected = {
        i
        for i, kp in enumerate(frame.keys_un)
        if abs(kp.x - x) < r and abs(kp.y - y) < r and frame.pos_in_grid(kp) is not None
    }
    assert found == expected
    assert found


def test_features_in_area_filters_levels(camera):
    rng = np.random.default_rng(6)
    frame = _mono(camera, _random_keys(rng, 400, octaves=4), rng)
    found = frame.features_in_area(320.0, 240.0, 200.0, 1, 2)
    assert found
    assert all(1 <= frame.keys_un[i].octave <= 2 for i in found)


def test_features_in_area_far_outside_is_empty(camera):
    rng = np.random.default_rng(7)
    frame = _mono(camera, _random_keys(rng, 50), rng)
    assert frame.features_in_area(5000.0, 240.0, 10.0) == []
    assert frame.features_in_area(-5000.0, 240.0, 10.0) == []


def test_set_pose_camera_centre(camera):
    rng = np.random.default_rng(8)
    frame = _mono(camera, [], rng)
    tcw = _pose(0.3, [0.5, -0.2, 1.0])
    frame.set_pose(tcw)
    assert np.allclose(frame.rcw @ frame.ow + frame.t_cw, 0.0)
    assert np.allclose(frame.rwc @ frame.rcw, np.eye(3))


def test_set_pose_rejects_bad_shape(camera):
    rng = np.random.default_rng(9)
    frame = _mono(camera, [], rng)
    with pytest.raises(ValueError):
        frame.set_pose(np.eye(3))


def test_rgbd_depth_and_right_coordinate(camera):
    rng = np.random.default_rng(10)
    depth = np.full((HEIGHT, WIDTH), 2.0)
    depth[:, :100] = 0.0
    keys = [KeyPoint(50.0, 60.0), KeyPoint(200.0, 100.0), KeyPoint(400.5, 300.5)]
    frame = Frame.rgbd(keys, _descs(rng, 3), depth, 0.0, camera, SCALES)
    assert frame.depth[0] == -1.0 and frame.u_right[0] == -1.0
    for i in (1, 2):
        assert frame.depth[i] == 2.0
        assert (frame.keys_un[i].x - frame.u_right[i]) * frame.depth[i] == pytest.approx(camera.bf)


def test_unproject_reprojects_to_keypoint(camera):
    rng = np.random.default_rng(11)
    depth = np.full((HEIGHT, WIDTH), 3.0)
    keys = [KeyPoint(123.0, 321.0), KeyPoint(500.0, 50.0)]
    frame = Frame.rgbd(keys, _descs(rng, 2), depth, 0.0, camera, SCALES)
    tcw = _pose(-0.4, [1.0, 0.5, -2.0])
    frame.set_pose(tcw)
    for i, kp in enumerate(keys):
        world = frame.unproject_stereo(i)
        pc = tcw[:3, :3] @ world + tcw[:3, 3]
        assert pc[2] == pytest.approx(3.0)
        assert camera.fx * pc[0] / pc[2] + camera.cx == pytest.approx(kp.x)
        assert camera.fy * pc[1] / pc[2] + camera.cy == pytest.approx(kp.y)


def test_unproject_without_depth_is_none(camera):
    rng = np.random.default_rng(12)
    frame = _mono(camera, _random_keys(rng, 3), rng)
    frame.set_pose(np.eye(4))
    assert frame.unproject_stereo(0) is None


def test_unproject_without_pose_raises(camera):
    rng = np.random.default_rng(13)
    frame = Frame.rgbd([KeyPoint(10.0, 10.0)], _descs(rng, 1), np.ones((HEIGHT, WIDTH)), 0.0, camera, SCALES)
    with pytest.raises(RuntimeError):
        frame.unproject_stereo(0)


def test_copy_is_independent(camera):
    rng = np.random.default_rng(14)
    frame = _mono(camera, _random_keys(rng, 10), rng)
    frame.set_pose(_pose(0.1, [0, 0, 1]))
    other = frame.copy()
    assert other.id == frame.id
    assert np.allclose(other.tcw, frame.tcw)
    other.map_points[0] = "point"
    other.grid[0][0].append(99)
    other.tcw[0, 3] = 42.0
    assert frame.map_points[0] is None
    assert 99 not in frame.grid[0][0]
    assert frame.tcw[0, 3] == 0.0


def _stereo_scene(seed, shift=4):
    rng = np.random.default_rng(seed)
    height, width = 60, 120
    left = rng.integers(0, 256, (height, width)).astype(float)
    right = np.zeros_like(left)
    right[:, : width - shift] = left[:, shift:]
    right += rng.integers(-3, 4, right.shape)
    keys = [KeyPoint(float(x), float(y)) for x, y in [(40, 20), (60, 30), (80, 40), (50, 45), (70, 15)]]
    right_keys = [kp.moved(kp.x - shift, kp.y) for kp in keys]
    descs = _descs(rng, len(keys))
    return keys, descs, right_keys, left, right


def test_stereo_matches_recover_disparity(camera):
    keys, descs, right_keys, left, right = _stereo_scene(15)
    frame = Frame.stereo(keys, descs, right_keys, descs.copy(), [left], [right], 0.0, camera, [1.0], 50, 100)
    matched = [i for i, d in enumerate(frame.depth) if d > 0]
    assert len(matched) >= 3
    for i in matched:
        assert frame.u_right[i] == pytest.approx(keys[i].x - 4, abs=0.5)
        assert frame.depth[i] * (keys[i].x - frame.u_right[i]) == pytest.approx(camera.bf)


def test_stereo_without_descriptor_match_has_no_depth(camera):
    keys, descs, right_keys, left, right = _stereo_scene(16)
    frame = Frame.stereo(keys, descs, right_keys, np.bitwise_not(descs), [left], [right], 0.0, camera, [1.0], 50, 100)
    assert frame.depth == [-1.0] * len(keys)
    assert frame.u_right == [-1.0] * len(keys)


def test_scale_factors_required(camera):
    with pytest.raises(ValueError):
        Frame.monocular([], np.zeros((0, 32), dtype=np.uint8), 0.0, camera, (WIDTH, HEIGHT), [])


def test_scale_information(camera):
    rng = np.random.default_rng(17)
    frame = _mono(camera, [], rng)
    assert frame.scale_levels == len(SCALES)
    assert frame.scale_factor == SCALES[1]
    assert frame.log_scale_factor == pytest.approx(math.log(SCALES[1]))
    assert all(a * b == pytest.approx(1.0) for a, b in zip(frame.level_sigma2, frame.inv_level_sigma2))