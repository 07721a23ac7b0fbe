"""Similarity transform estimation between two sets of 3D points.

A closed-form solution based on unit quaternions gives the rotation, scale
and translation that map points seen by a second camera onto those seen by
a first one. A RANSAC solver uses it on minimal sets of three matches and
judges inliers by their reprojection error in both images.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field

import numpy as np

_CHI2_TWO_DOF = 9.210
_MIN_SET = 3


@dataclass(frozen=True)
class Sim3:
    """A similarity transform ``x1 = scale * rotation @ x2 + translation``."""

    rotation: np.ndarray
    translation: np.ndarray
    scale: float

    @property
    def matrix(self):
        """The 4x4 matrix mapping points of the second set onto the first."""
        out = np.eye(4)
        out[:3, :3] = self.scale * self.rotation
        out[:3, 3] = self.translation
        return out

    @property
    def inverse_matrix(self):
        """The 4x4 matrix mapping points of the first set onto the second."""
        out = np.eye(4)
        s_r_inv = self.rotation.T / self.scale
        out[:3, :3] = s_r_inv
        out[:3, 3] = -s_r_inv @ self.translation
        return out


@dataclass(frozen=True)
class Sim3Match:
    """A pair of matched points, each in its own camera's coordinates.

    ``sigma2_1`` and ``sigma2_2`` are the squared scale uncertainties of the
    keypoints in each image; ``index`` is the match's position in the first
    keyframe.
    """

    point1: tuple[float, float, float]
    point2: tuple[float, float, float]
    sigma2_1: float
    sigma2_2: float
    index: int


@dataclass
class Sim3Result:
    """Outcome of a RANSAC run.

    ``transform`` is the 4x4 matrix of ``sim3`` or ``None`` when no
    transform was accepted. ``inliers`` has one flag per match position.
    """

    transform: np.ndarray | None
    sim3: Sim3 | None = None
    inliers: list[bool] = field(default_factory=list)
    n_inliers: int = 0
    no_more: bool = False


def _as_points(points):
    arr = np.asarray(points, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError("points must have shape (n, 3)")
    return arr


def _rodrigues(vec):
    theta = float(np.linalg.norm(vec))
    if theta == 0.0 or not math.isfinite(theta):
        return np.eye(3)
    kx, ky, kz = vec / theta
    k = np.array([[0.0, -kz, ky], [kz, 0.0, -kx], [-ky, kx, 0.0]])
    return np.eye(3) + math.sin(theta) * k + (1.0 - math.cos(theta)) * (k @ k)


def compute_sim3(points1, points2, fix_scale=False):
    """Find the similarity transform taking ``points2`` onto ``points1``."""
    p1 = _as_points(points1)
    p2 = _as_points(points2)
    if p1.shape != p2.shape or p1.shape[0] == 0:
        raise ValueError("point sets must be non-empty and of equal size")

    o1 = p1.mean(axis=0)
    o2 = p2.mean(axis=0)
    pr1 = p1 - o1
    pr2 = p2 - o2

    m = pr2.T @ pr1
    n11 = m[0, 0] + m[1, 1] + m[2, 2]
    n12 = m[1, 2] - m[2, 1]
    n13 = m[2, 0] - m[0, 2]
    n14 = m[0, 1] - m[1, 0]
    n22 = m[0, 0] - m[1, 1] - m[2, 2]
    n23 = m[0, 1] + m[1, 0]
    n24 = m[2, 0] + m[0, 2]
    n33 = -m[0, 0] + m[1, 1] - m[2, 2]
    n34 = m[1, 2] + m[2, 1]
    n44 = -m[0, 0] - m[1, 1] + m[2, 2]
    n_mat = np.array([
        [n11, n12, n13, n14],
        [n12, n22, n23, n24],
        [n13, n23, n33, n34],
        [n14, n24, n34, n44],
    ])

    _, vectors = np.linalg.eigh(n_mat)
    quat = vectors[:, -1]
    imag = quat[1:]
    sin_half = float(np.linalg.norm(imag))
    if sin_half > 0.0:
        angle = math.atan2(sin_half, quat[0])
        rotation = _rodrigues(2.0 * angle * imag / sin_half)
    else:
        rotation = np.eye(3)

    p3 = pr2 @ rotation.T
    if fix_scale:
        scale = 1.0
    else:
        scale = float(np.sum(pr1 * p3) / np.sum(p3 ** 2))

    translation = o1 - scale * rotation @ o2
    return Sim3(rotation=rotation, translation=translation, scale=scale)


def from_camera_to_image(points, calibration):
    """Project camera-frame points to pixels with a pinhole calibration."""
    pc = _as_points(points)
    k = np.asarray(calibration, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / pc[:, 2]
        x = pc[:, 0] * inv_z
        y = pc[:, 1] * inv_z
    return np.column_stack([k[0, 0] * x + k[0, 2], k[1, 1] * y + k[1, 2]])


def project(points, transform, calibration):
    """Transform points with a 4x4 matrix and project them to pixels."""
    pts = _as_points(points)
    t = np.asarray(transform, dtype=float)
    pc = pts @ t[:3, :3].T + t[:3, 3]
    return from_camera_to_image(pc, calibration)


class Sim3Solver:
    """RANSAC estimation of the similarity transform between two keyframes."""

    def __init__(self, matches, calibration1, calibration2, n_matches=None,
                 fix_scale=False, rng=None):
        items = list(matches)
        self._indices = [m.index for m in items]
        if n_matches is None:
            n_matches = max(self._indices) + 1 if self._indices else 0
        if any(i < 0 or i >= n_matches for i in self._indices):
            raise ValueError("match index outside the range of matches")
        self._n_matches = n_matches
        self._n = len(items)
        self._fix_scale = fix_scale
        self._rng = rng if rng is not None else random.Random()

        self._x3d_c1 = np.array([m.point1 for m in items], dtype=float).reshape(-1, 3)
        self._x3d_c2 = np.array([m.point2 for m in items], dtype=float).reshape(-1, 3)
        self._max_error1 = np.array([_CHI2_TWO_DOF * m.sigma2_1 for m in items], dtype=float)
        self._max_error2 = np.array([_CHI2_TWO_DOF * m.sigma2_2 for m in items], dtype=float)

        self._k1 = np.asarray(calibration1, dtype=float)
        self._k2 = np.asarray(calibration2, dtype=float)
        self._p1_im1 = from_camera_to_image(self._x3d_c1, self._k1)
        self._p2_im2 = from_camera_to_image(self._x3d_c2, self._k2)

        self._n_best_inliers = 0
        self._best = None
        self.set_ransac_parameters()

    @property
    def best(self):
        """The best transform found so far, or ``None``."""
        return self._best

    @property
    def max_iterations(self):
        """The RANSAC iteration budget after adjustment."""
        return self._max_iterations

    def set_ransac_parameters(self, probability=0.99, min_inliers=6, max_iterations=300):
        """Set the RANSAC parameters and reset the iteration count."""
        self._probability = probability
        self._min_inliers = min_inliers
        n = self._n

        if min_inliers == n:
            n_iterations = 1
        else:
            epsilon = min_inliers / n if n else math.inf
            base = 1.0 - epsilon ** 3 if math.isfinite(epsilon) else -1.0
            if base <= 0.0 or base >= 1.0:
                n_iterations = 1
            elif probability >= 1.0:
                n_iterations = max_iterations
            else:
                n_iterations = math.ceil(math.log(1.0 - probability) / math.log(base))
        self._max_iterations = max(1, min(n_iterations, max_iterations))
        self._iterations = 0

    def find(self):
        """Run RANSAC for the whole iteration budget."""
        return self.iterate(self._max_iterations)

    def iterate(self, n_iterations):
        """Run up to ``n_iterations`` RANSAC iterations."""
        flags = [False] * self._n_matches
        if self._n < self._min_inliers or self._n < _MIN_SET:
            return Sim3Result(transform=None, inliers=flags, no_more=True)

        current = 0
        while self._iterations < self._max_iterations and current < n_iterations:
            current += 1
            self._iterations += 1

            available = list(range(self._n))
            sample = []
            for _ in range(_MIN_SET):
                pick = self._rng.randint(0, len(available) - 1)
                sample.append(available[pick])
                available[pick] = available[-1]
                available.pop()

            with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                sim3 = compute_sim3(self._x3d_c1[sample], self._x3d_c2[sample],
                                    self._fix_scale)
                inliers = self._check_inliers(sim3)
            n_inliers = int(inliers.sum())

            if n_inliers >= self._n_best_inliers:
                self._n_best_inliers = n_inliers
                self._best = sim3
                if n_inliers > self._min_inliers:
                    for index, is_inlier in zip(self._indices, inliers):
                        if is_inlier:
                            flags[index] = True
                    return Sim3Result(transform=sim3.matrix, sim3=sim3,
                                      inliers=flags, n_inliers=n_inliers)

        no_more = self._iterations >= self._max_iterations
        return Sim3Result(transform=None, inliers=flags, no_more=no_more)

    def _check_inliers(self, sim3):
        p2_im1 = project(self._x3d_c2, sim3.matrix, self._k1)
        p1_im2 = project(self._x3d_c1, sim3.inverse_matrix, self._k2)
        err1 = np.sum((self._p1_im1 - p2_im1) ** 2, axis=1)
        err2 = np.sum((p1_im2 - self._p2_im2) ** 2, axis=1)
        return (err1 < self._max_error1) & (err2 < self._max_error2)