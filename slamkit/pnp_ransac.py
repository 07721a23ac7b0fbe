"""RANSAC camera pose estimation from 2D-3D correspondences.

Minimal sets of points are solved with EPnP. The best hypothesis is refined
on all of its inliers, and inliers are judged by squared reprojection error
scaled by the keypoint's octave uncertainty.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field

import numpy as np

from slamkit.epnp import EPnP


@dataclass(frozen=True)
class Correspondence:
    """A world point matched to an undistorted keypoint of the frame.

    ``sigma2`` is the squared scale uncertainty of the keypoint's octave and
    ``index`` is the keypoint's position in the frame.
    """

    point_3d: tuple[float, float, float]
    point_2d: tuple[float, float]
    sigma2: float
    index: int


@dataclass
class RansacResult:
    """Outcome of a RANSAC run.

    ``pose`` is a 4x4 world-to-camera transform or ``None`` when no pose was
    found. ``inliers`` has one flag per frame keypoint when a pose is given
    and is empty otherwise. ``no_more`` is true once the iteration budget is
    spent or the problem cannot be solved.
    """

    pose: np.ndarray | None
    inliers: list[bool] = field(default_factory=list)
    n_inliers: int = 0
    no_more: bool = False


def _to_pose(rotation, translation):
    pose = np.eye(4, dtype=np.float32)
    pose[:3, :3] = np.asarray(rotation, dtype=np.float32)
    pose[:3, 3] = np.asarray(translation, dtype=np.float32).reshape(3)
    return pose


class PnPSolver:
    """RANSAC wrapper around EPnP for a set of frame correspondences."""

    def __init__(self, correspondences, fx, fy, cx, cy, n_matches=None, rng=None):
        items = list(correspondences)
        self._points_3d = np.array([c.point_3d for c in items], dtype=np.float32).reshape(-1, 3)
        self._points_2d = np.array([c.point_2d for c in items], dtype=np.float32).reshape(-1, 2)
        self._sigma2 = np.array([c.sigma2 for c in items], dtype=np.float32)
        self._indices = [c.index for c in items]
        if n_matches is None:
            n_matches = max(self._indices) + 1 if self._indices else 0
        if any(i < 0 or i >= n_matches for i in self._indices):
            raise ValueError("correspondence index outside the range of matches")
        self._n_matches = n_matches
        self._n = len(items)
        self._rng = rng if rng is not None else random.Random()
        self._epnp = EPnP(fx, fy, cx, cy)

        self._iterations = 0
        self._best_inliers = np.zeros(self._n, dtype=bool)
        self._n_best_inliers = 0
        self._best_pose = None
        self.set_ransac_parameters()

    @property
    def max_iterations(self):
        """The RANSAC iteration budget after adjustment."""
        return self._max_iterations

    @property
    def min_inliers(self):
        """The inlier count a hypothesis needs after adjustment."""
        return self._min_inliers

    def set_ransac_parameters(self, probability=0.99, min_inliers=8, max_iterations=300,
                              min_set=4, epsilon=0.4, th2=5.991):
        """Set the RANSAC parameters, adapting them to the number of matches."""
        self._probability = probability
        self._min_set = min_set
        n = self._n

        n_min_inliers = int(n * epsilon)
        n_min_inliers = max(n_min_inliers, min_inliers, min_set)
        self._min_inliers = n_min_inliers

        if n == 0:
            self._epsilon = math.inf
        else:
            self._epsilon = max(float(epsilon), n_min_inliers / n)

        if n_min_inliers == n:
            n_iterations = 1
        else:
            denominator_base = 1.0 - self._epsilon ** 3
            if denominator_base <= 0.0 or not math.isfinite(denominator_base):
                n_iterations = 1
            elif probability >= 1.0:
                n_iterations = max_iterations
            else:
                n_iterations = math.ceil(math.log(1.0 - probability) / math.log(denominator_base))
        self._max_iterations = max(1, min(n_iterations, max_iterations))

        self._max_error = self._sigma2 * np.float32(th2)

    def find(self):
        """Run RANSAC for the whole iteration budget."""
        return self.iterate(self._max_iterations)

    def iterate(self, n_iterations):
        """Run RANSAC iterations and return the pose found, if any."""
        if self._n < self._min_inliers:
            return RansacResult(pose=None, no_more=True)

        current = 0
        while self._iterations < self._max_iterations or current < n_iterations:
            current += 1
            self._iterations += 1

            available = list(range(self._n))
            sample = []
            for _ in range(self._min_set):
                pick = self._rng.randint(0, len(available) - 1)
                sample.append(available[pick])
                available[pick] = available[-1]
                available.pop()

            rotation, translation = self._solve(sample)
            inliers = self._check_inliers(rotation, translation)
            n_inliers = int(inliers.sum())

            if n_inliers >= self._min_inliers:
                if n_inliers > self._n_best_inliers:
                    self._best_inliers = inliers
                    self._n_best_inliers = n_inliers
                    self._best_pose = _to_pose(rotation, translation)

                refined = self._refine()
                if refined is not None:
                    pose, refined_inliers = refined
                    return RansacResult(
                        pose=pose,
                        inliers=self._frame_flags(refined_inliers),
                        n_inliers=int(refined_inliers.sum()),
                    )

        if self._iterations >= self._max_iterations:
            if self._n_best_inliers >= self._min_inliers and self._best_pose is not None:
                return RansacResult(
                    pose=self._best_pose.copy(),
                    inliers=self._frame_flags(self._best_inliers),
                    n_inliers=self._n_best_inliers,
                    no_more=True,
                )
            return RansacResult(pose=None, no_more=True)
        return RansacResult(pose=None)

    def _solve(self, indices):
        estimate = self._epnp.compute_pose(
            self._points_3d[indices].astype(float), self._points_2d[indices].astype(float)
        )
        return estimate.rotation, estimate.translation

    def _refine(self):
        indices = np.flatnonzero(self._best_inliers)
        if indices.size == 0:
            return None
        rotation, translation = self._solve(indices)
        inliers = self._check_inliers(rotation, translation)
        if int(inliers.sum()) > self._min_inliers:
            return _to_pose(rotation, translation), inliers
        return None

    def _check_inliers(self, rotation, translation):
        r = np.asarray(rotation, dtype=float)
        t = np.asarray(translation, dtype=float).reshape(3)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            pc = self._points_3d.astype(float) @ r.T + t
            xc = pc[:, 0].astype(np.float32)
            yc = pc[:, 1].astype(np.float32)
            inv_zc = (1.0 / pc[:, 2]).astype(np.float32)
            ue = self._epnp.uc + self._epnp.fu * xc * inv_zc
            ve = self._epnp.vc + self._epnp.fv * yc * inv_zc
            dist_x = (self._points_2d[:, 0] - ue).astype(np.float32)
            dist_y = (self._points_2d[:, 1] - ve).astype(np.float32)
            error2 = dist_x * dist_x + dist_y * dist_y
            return error2 < self._max_error

    def _frame_flags(self, inliers):
        flags = [False] * self._n_matches
        for index, is_inlier in zip(self._indices, inliers):
            if is_inlier:
                flags[index] = True
        return flags