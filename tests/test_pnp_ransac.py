import random

import numpy as np
import pytest

from slamkit.pnp_ransac import Correspondence, PnPSolver

FX, FY, CX, CY = 500.0, 500.0, 320.0, 240.0


def _rotation(ax, ay, az):
    cx_, sx = np.cos(ax), np.sin(ax)
    cy_, sy = np.cos(ay), np.sin(ay)
    cz, sz = np.cos(az), np.sin(az)
    rx = np.array([[1, 0, 0], [0, cx_, -sx], [0, sx, cx_]])
    ry = np.array([[cy_, 0, sy], [0, 1, 0], [-sy, 0, cy_]])
    rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return rz @ ry @ rx


def _scene(n_inliers, n_outliers, seed=1, index_step=1):
    gen = np.random.default_rng(seed)
    rotation = _rotation(0.1, -0.2, 0.05)
    translation = np.array([0.3, -0.1, 0.5])
    points_c = np.column_stack([
        gen.uniform(-2, 2, n_inliers + n_outliers),
        gen.uniform(-1.5, 1.5, n_inliers + n_outliers),
        gen.uniform(4, 8, n_inliers + n_outliers),
    ])
    points_w = (points_c - translation) @ rotation
    u = CX + FX * points_c[:, 0] / points_c[:, 2]
    v = CY + FY * points_c[:, 1] / points_c[:, 2]
    u[n_inliers:] += 60.0
    v[n_inliers:] -= 45.0
    correspondences = [
        Correspondence(tuple(points_w[i]), (u[i], v[i]), 1.0, i * index_step)
        for i in range(n_inliers + n_outliers)
    ]
    return correspondences, rotation, translation


def test_find_recovers_pose_without_outliers():
    correspondences, rotation, translation = _scene(25, 0)
    solver = PnPSolver(correspondences, FX, FY, CX, CY, 25, random.Random(3))
    result = solver.find()
    assert result.pose is not None
    assert result.pose.shape == (4, 4)
    assert np.allclose(result.pose[:3, :3], rotation, atol=1e-3)
    assert np.allclose(result.pose[:3, 3], translation, atol=1e-3)
    assert result.n_inliers == 25
    assert all(result.inliers)


def test_find_rejects_outliers_and_maps_indices():
    correspondences, rotation, translation = _scene(30, 10, index_step=2)
    solver = PnPSolver(correspondences, FX, FY, CX, CY, 80, random.Random(7))
    result = solver.find()
    assert result.pose is not None
    assert np.allclose(result.pose[:3, :3], rotation, atol=1e-3)
    assert np.allclose(result.pose[:3, 3], translation, atol=1e-3)
    assert result.n_inliers == 30
    assert len(result.inliers) == 80
    expected = [False] * 80
    for i in range(30):
        expected[2 * i] = True
    assert result.inliers == expected
    assert sum(result.inliers) == result.n_inliers


def test_too_few_correspondences_gives_up():
    correspondences, _, _ = _scene(5, 0)
    solver = PnPSolver(correspondences, FX, FY, CX, CY, 5, random.Random(0))
    result = solver.find()
    assert result.pose is None
    assert result.no_more is True
    assert result.inliers == []
    assert result.n_inliers == 0


def test_min_inliers_equal_to_count_allows_single_iteration():
    correspondences, _, _ = _scene(10, 0)
    solver = PnPSolver(correspondences, FX, FY, CX, CY, 10, random.Random(0))
    solver.set_ransac_parameters(0.99, 10, 300, 4, 0.5, 5.991)
    assert solver.min_inliers == 10
    assert solver.max_iterations == 1


def test_parameters_adapt_to_epsilon():
    correspondences, _, _ = _scene(40, 0)
    solver = PnPSolver(correspondences, FX, FY, CX, CY, 40, random.Random(0))
    solver.set_ransac_parameters(0.99, 8, 300, 4, 0.5, 5.991)
    assert solver.min_inliers == 20
    assert 1 <= solver.max_iterations <= 300


def test_max_iterations_is_capped():
    correspondences, _, _ = _scene(40, 0)
    solver = PnPSolver(correspondences, FX, FY, CX, CY, 40, random.Random(0))
    solver.set_ransac_parameters(0.99, 4, 7, 4, 0.01, 5.991)
    assert solver.max_iterations == 7


def test_all_outliers_exhausts_budget():
    correspondences, _, _ = _scene(0, 12)
    shuffled = [
        Correspondence(c.point_3d, (c.point_2d[0] + 37.0 * i, c.point_2d[1] - 23.0 * i), 1.0, c.index)
        for i, c in enumerate(correspondences)
    ]
    solver = PnPSolver(shuffled, FX, FY, CX, CY, 12, random.Random(5))
    solver.set_ransac_parameters(0.99, 12, 20, 4, 0.9, 5.991)
    result = solver.find()
    assert result.no_more is True
    assert result.pose is None


def test_index_out_of_range_is_rejected():
    correspondences, _, _ = _scene(6, 0)
    with pytest.raises(ValueError):
        PnPSolver(correspondences, FX, FY, CX, CY, 3, random.Random(0))