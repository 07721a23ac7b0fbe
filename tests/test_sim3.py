import math
import random

import numpy as np
import pytest

from slamkit.sim3 import (
    Sim3,
    Sim3Match,
    Sim3Solver,
    compute_sim3,
    from_camera_to_image,
    project,
)

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def _rot_z(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def _rot_x(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


TRUE_R = _rot_z(0.3) @ _rot_x(-0.2)
TRUE_S = 1.5
TRUE_T = np.array([0.1, -0.2, 0.3])


def _scene(n=20, seed=3):
    gen = np.random.default_rng(seed)
    p2 = np.column_stack([
        gen.uniform(-1, 1, n), gen.uniform(-1, 1, n), gen.uniform(4, 8, n)
    ])
    p1 = TRUE_S * p2 @ TRUE_R.T + TRUE_T
    return p1, p2


def _matches(p1, p2, stride=1):
    return [
        Sim3Match(tuple(a), tuple(b), 1.0, 1.0, i * stride)
        for i, (a, b) in enumerate(zip(p1, p2))
    ]


def test_compute_sim3_recovers_transform():
    p1, p2 = _scene()
    sim = compute_sim3(p1, p2)
    assert np.allclose(sim.rotation, TRUE_R, atol=1e-8)
    assert sim.scale == pytest.approx(TRUE_S)
    assert np.allclose(sim.translation, TRUE_T, atol=1e-8)


def test_compute_sim3_fixed_scale_is_one():
    p1, p2 = _scene()
    sim = compute_sim3(p1, p2, fix_scale=True)
    assert sim.scale == 1.0
    assert np.allclose(sim.rotation @ sim.rotation.T, np.eye(3), atol=1e-8)


def test_compute_sim3_rigid_case_exact_with_fixed_scale():
    gen = np.random.default_rng(1)
    p2 = gen.normal(size=(6, 3))
    p1 = p2 @ TRUE_R.T + TRUE_T
    sim = compute_sim3(p1, p2, fix_scale=True)
    assert np.allclose(sim.rotation, TRUE_R, atol=1e-8)
    assert np.allclose(sim.translation, TRUE_T, atol=1e-8)


def test_compute_sim3_rejects_mismatched_sets():
    with pytest.raises(ValueError):
        compute_sim3(np.zeros((3, 3)), np.zeros((4, 3)))


def test_matrix_and_inverse_compose_to_identity():
    sim = Sim3(rotation=TRUE_R, translation=TRUE_T, scale=TRUE_S)
    assert np.allclose(sim.matrix @ sim.inverse_matrix, np.eye(4))


def test_from_camera_to_image_principal_point():
    pixels = from_camera_to_image([[0.0, 0.0, 3.0]], K)
    assert np.allclose(pixels, [[320.0, 240.0]])


def test_from_camera_to_image_scales_by_depth():
    pixels = from_camera_to_image([[1.0, 2.0, 2.0]], [[100, 0, 0], [0, 100, 0], [0, 0, 1]])
    assert np.allclose(pixels, [[50.0, 100.0]])


def test_project_with_identity_matches_direct_projection():
    p1, _ = _scene(5)
    assert np.allclose(project(p1, np.eye(4), K), from_camera_to_image(p1, K))


def test_project_consistent_with_transform():
    p1, p2 = _scene(5)
    sim = Sim3(rotation=TRUE_R, translation=TRUE_T, scale=TRUE_S)
    assert np.allclose(project(p2, sim.matrix, K), from_camera_to_image(p1, K))


def test_solver_finds_transform_on_clean_data():
    p1, p2 = _scene()
    solver = Sim3Solver(_matches(p1, p2), K, K, rng=random.Random(0))
    result = solver.find()
    assert result.transform is not None
    assert result.n_inliers == 20
    assert all(result.inliers)
    assert result.sim3.scale == pytest.approx(TRUE_S)
    assert np.allclose(result.sim3.rotation, TRUE_R, atol=1e-6)
    assert solver.best is result.sim3


def test_solver_flags_outliers_in_sparse_positions():
    p1, p2 = _scene()
    p1 = p1.copy()
    p1[:4] += np.array([1.0, 1.0, 0.0])
    solver = Sim3Solver(_matches(p1, p2, stride=2), K, K, n_matches=40,
                        rng=random.Random(5))
    result = solver.find()
    assert result.transform is not None
    assert len(result.inliers) == 40
    assert result.n_inliers == 16
    assert not any(result.inliers[2 * i] for i in range(4))
    assert all(result.inliers[2 * i] for i in range(4, 20))
    assert not any(result.inliers[1::2])


def test_solver_with_too_few_matches_gives_up():
    p1, p2 = _scene(5)
    solver = Sim3Solver(_matches(p1, p2), K, K, rng=random.Random(0))
    result = solver.iterate(5)
    assert result.transform is None
    assert result.no_more
    assert result.inliers == [False] * 5


def test_solver_min_inliers_above_count_gives_up():
    p1, p2 = _scene()
    solver = Sim3Solver(_matches(p1, p2), K, K, rng=random.Random(0))
    solver.set_ransac_parameters(0.99, 30, 300)
    result = solver.find()
    assert result.transform is None
    assert result.no_more


def test_solver_unrelated_points_exhausts_budget():
    _, p2 = _scene()
    gen = np.random.default_rng(9)
    p1 = np.column_stack([gen.uniform(-3, 3, 20), gen.uniform(-3, 3, 20), gen.uniform(4, 8, 20)])
    solver = Sim3Solver(_matches(p1, p2), K, K, rng=random.Random(2))
    result = solver.find()
    assert result.transform is None
    assert result.no_more
    assert result.n_inliers == 0


def test_solver_rejects_index_out_of_range():
    p1, p2 = _scene(4)
    with pytest.raises(ValueError):
        Sim3Solver(_matches(p1, p2, stride=3), K, K, n_matches=5)