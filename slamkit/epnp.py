"""Efficient Perspective-n-Point camera pose estimation.

The pose is expressed with four virtual control points whose camera
coordinates are recovered from the null space of a linear system, refined
with a few Gauss-Newton steps, and converted to a rotation and translation.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))
_GAUSS_NEWTON_ITERATIONS = 5


@dataclass(frozen=True)
class PoseEstimate:
    """A camera pose (world to camera) and its mean reprojection error."""

    rotation: np.ndarray
    translation: np.ndarray
    error: float


def qr_solve(a, b):
    """Solve ``a @ x = b`` in the least-squares sense with Householder QR.

    Raises ``numpy.linalg.LinAlgError`` when a column of ``a`` is zero.
    """
    a_mat = np.array(a, dtype=float)
    rhs = np.array(b, dtype=float).reshape(-1)
    if a_mat.ndim != 2:
        raise ValueError("matrix must be two-dimensional")
    nr, nc = a_mat.shape
    if rhs.shape[0] != nr:
        raise ValueError("right-hand side length does not match matrix rows")
    if nc == 0 or nr < nc:
        raise ValueError("matrix must have at least as many rows as columns")

    diag_a1 = np.zeros(nc)
    diag_a2 = np.zeros(nc)

    for k in range(nc):
        # The scale is taken over rows k .. nr-2 (at least row k).
        stop = max(nr - 1, k + 1)
        eta = np.max(np.abs(a_mat[k:stop, k]))
        if eta == 0:
            raise np.linalg.LinAlgError("matrix is singular")
        a_mat[k:, k] /= eta
        sigma = np.sqrt(np.sum(a_mat[k:, k] ** 2))
        if a_mat[k, k] < 0:
            sigma = -sigma
        a_mat[k, k] += sigma
        diag_a1[k] = sigma * a_mat[k, k]
        diag_a2[k] = -eta * sigma
        if k + 1 < nc:
            column = a_mat[k:, k]
            tau = column @ a_mat[k:, k + 1:] / diag_a1[k]
            a_mat[k:, k + 1:] -= np.outer(column, tau)

    for j in range(nc):
        column = a_mat[j:, j]
        tau = (column @ rhs[j:]) / diag_a1[j]
        rhs[j:] -= tau * column

    x = np.zeros(nc)
    x[nc - 1] = rhs[nc - 1] / diag_a2[nc - 1]
    for i in range(nc - 2, -1, -1):
        total = a_mat[i, i + 1:] @ x[i + 1:]
        x[i] = (rhs[i] - total) / diag_a2[i]
    return x


def mat_to_quat(rotation):
    """Convert a rotation matrix to a quaternion ``(x, y, z, w)``."""
    r = np.asarray(rotation, dtype=float)
    tr = r[0, 0] + r[1, 1] + r[2, 2]
    if tr > 0.0:
        q = [r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], tr + 1.0]
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = [1.0 + r[0, 0] - r[1, 1] - r[2, 2], r[1, 0] + r[0, 1],
             r[2, 0] + r[0, 2], r[1, 2] - r[2, 1]]
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = [r[1, 0] + r[0, 1], 1.0 + r[1, 1] - r[0, 0] - r[2, 2],
             r[2, 1] + r[1, 2], r[2, 0] - r[0, 2]]
        n4 = q[1]
    else:
        q = [r[2, 0] + r[0, 2], r[2, 1] + r[1, 2],
             1.0 + r[2, 2] - r[0, 0] - r[1, 1], r[0, 1] - r[1, 0]]
        n4 = q[2]
    return np.array(q) * (0.5 / np.sqrt(n4))


def relative_error(rotation_true, translation_true, rotation_est, translation_est):
    """Return ``(rotation_error, translation_error)`` relative to the true pose."""
    q_true = mat_to_quat(rotation_true)
    q_est = mat_to_quat(rotation_est)
    q_norm = np.linalg.norm(q_true)
    rot_err = min(np.linalg.norm(q_true - q_est), np.linalg.norm(q_true + q_est)) / q_norm

    t_true = np.asarray(translation_true, dtype=float).reshape(3)
    t_est = np.asarray(translation_est, dtype=float).reshape(3)
    transl_err = np.linalg.norm(t_true - t_est) / np.linalg.norm(t_true)
    return float(rot_err), float(transl_err)


def _as_points(points_3d, points_2d):
    pws = np.asarray(points_3d, dtype=float)
    us = np.asarray(points_2d, dtype=float)
    if pws.ndim != 2 or pws.shape[1] != 3:
        raise ValueError("points_3d must have shape (n, 3)")
    if us.ndim != 2 or us.shape[1] != 2:
        raise ValueError("points_2d must have shape (n, 2)")
    if pws.shape[0] != us.shape[0]:
        raise ValueError("points_3d and points_2d must have the same length")
    if pws.shape[0] == 0:
        raise ValueError("at least one correspondence is required")
    return pws, us


def _choose_control_points(pws):
    n = pws.shape[0]
    cws = np.zeros((4, 3))
    cws[0] = pws.mean(axis=0)
    pw0 = pws - cws[0]
    u, dc, _ = np.linalg.svd(pw0.T @ pw0)
    for i in range(1, 4):
        k = np.sqrt(dc[i - 1] / n)
        cws[i] = cws[0] + k * u[:, i - 1]
    return cws


def _barycentric_coordinates(pws, cws):
    cc = (cws[1:] - cws[0]).T
    cc_inv = np.linalg.pinv(cc)
    alphas = np.empty((pws.shape[0], 4))
    alphas[:, 1:] = (pws - cws[0]) @ cc_inv.T
    alphas[:, 0] = 1.0 - alphas[:, 1:].sum(axis=1)
    return alphas


def _compute_l_6x10(ut):
    vs = [ut[11 - i].reshape(4, 3) for i in range(4)]
    dv = np.array([[v[a] - v[b] for a, b in _PAIRS] for v in vs])

    def d(i, j):
        return np.einsum("ij,ij->i", dv[i], dv[j])

    return np.column_stack([
        d(0, 0), 2.0 * d(0, 1), d(1, 1), 2.0 * d(0, 2), 2.0 * d(1, 2),
        d(2, 2), 2.0 * d(0, 3), 2.0 * d(1, 3), 2.0 * d(2, 3), d(3, 3),
    ])


def _compute_rho(cws):
    return np.array([np.sum((cws[a] - cws[b]) ** 2) for a, b in _PAIRS])


def _betas_approx_1(l_6x10, rho):
    b4 = np.linalg.lstsq(l_6x10[:, [0, 1, 3, 6]], rho, rcond=None)[0]
    if b4[0] < 0:
        b0 = np.sqrt(-b4[0])
        return np.array([b0, -b4[1] / b0, -b4[2] / b0, -b4[3] / b0])
    b0 = np.sqrt(b4[0])
    return np.array([b0, b4[1] / b0, b4[2] / b0, b4[3] / b0])


def _betas_approx_2(l_6x10, rho):
    b3 = np.linalg.lstsq(l_6x10[:, :3], rho, rcond=None)[0]
    if b3[0] < 0:
        b0 = np.sqrt(-b3[0])
        b1 = np.sqrt(-b3[2]) if b3[2] < 0 else 0.0
    else:
        b0 = np.sqrt(b3[0])
        b1 = np.sqrt(b3[2]) if b3[2] > 0 else 0.0
    if b3[1] < 0:
        b0 = -b0
    return np.array([b0, b1, 0.0, 0.0])


def _betas_approx_3(l_6x10, rho):
    b5 = np.linalg.lstsq(l_6x10[:, :5], rho, rcond=None)[0]
    if b5[0] < 0:
        b0 = np.sqrt(-b5[0])
        b1 = np.sqrt(-b5[2]) if b5[2] < 0 else 0.0
    else:
        b0 = np.sqrt(b5[0])
        b1 = np.sqrt(b5[2]) if b5[2] > 0 else 0.0
    if b5[1] < 0:
        b0 = -b0
    return np.array([b0, b1, b5[3] / b0, 0.0])


def _gauss_newton(l_6x10, rho, betas):
    betas = np.array(betas, dtype=float)
    cols = l_6x10.T
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        b0, b1, b2, b3 = betas
        a = np.column_stack([
            2 * cols[0] * b0 + cols[1] * b1 + cols[3] * b2 + cols[6] * b3,
            cols[1] * b0 + 2 * cols[2] * b1 + cols[4] * b2 + cols[7] * b3,
            cols[3] * b0 + cols[4] * b1 + 2 * cols[5] * b2 + cols[8] * b3,
            cols[6] * b0 + cols[7] * b1 + cols[8] * b2 + 2 * cols[9] * b3,
        ])
        products = np.array([
            b0 * b0, b0 * b1, b1 * b1, b0 * b2, b1 * b2,
            b2 * b2, b0 * b3, b1 * b3, b2 * b3, b3 * b3,
        ])
        residual = rho - l_6x10 @ products
        try:
            step = qr_solve(a, residual)
        except np.linalg.LinAlgError:
            break
        betas += step
    return betas


class EPnP:
    """Pose solver for a pinhole camera with the given intrinsics."""

    def __init__(self, fu, fv, uc, vc):
        self.fu = float(fu)
        self.fv = float(fv)
        self.uc = float(uc)
        self.vc = float(vc)

    def compute_pose(self, points_3d, points_2d):
        """Estimate the camera pose from 3D world points and their image points."""
        pws, us = _as_points(points_3d, points_2d)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            cws = _choose_control_points(pws)
            alphas = _barycentric_coordinates(pws, cws)
            m = self._build_m(alphas, us)
            u, _, _ = np.linalg.svd(m.T @ m)
            ut = u.T

            l_6x10 = _compute_l_6x10(ut)
            rho = _compute_rho(cws)

            candidates = []
            for approx in (_betas_approx_1, _betas_approx_2, _betas_approx_3):
                betas = _gauss_newton(l_6x10, rho, approx(l_6x10, rho))
                candidates.append(self._compute_r_and_t(ut, betas, pws, us, alphas))

        best = 0
        if candidates[1][2] < candidates[0][2]:
            best = 1
        if candidates[2][2] < candidates[best][2]:
            best = 2
        rotation, translation, error = candidates[best]
        return PoseEstimate(rotation=rotation, translation=translation, error=float(error))

    def reprojection_error(self, rotation, translation, points_3d, points_2d):
        """Mean pixel distance between observed and reprojected points."""
        pws, us = _as_points(points_3d, points_2d)
        r = np.asarray(rotation, dtype=float).reshape(3, 3)
        t = np.asarray(translation, dtype=float).reshape(3)
        pc = pws @ r.T + t
        inv_z = 1.0 / pc[:, 2]
        ue = self.uc + self.fu * pc[:, 0] * inv_z
        ve = self.vc + self.fv * pc[:, 1] * inv_z
        dist = np.sqrt((us[:, 0] - ue) ** 2 + (us[:, 1] - ve) ** 2)
        return float(dist.mean())

    def _build_m(self, alphas, us):
        n = alphas.shape[0]
        m = np.zeros((2 * n, 12))
        m[0::2, 0::3] = alphas * self.fu
        m[0::2, 2::3] = alphas * (self.uc - us[:, 0])[:, None]
        m[1::2, 1::3] = alphas * self.fv
        m[1::2, 2::3] = alphas * (self.vc - us[:, 1])[:, None]
        return m

    def _compute_r_and_t(self, ut, betas, pws, us, alphas):
        ccs = sum(betas[i] * ut[11 - i].reshape(4, 3) for i in range(4))
        pcs = alphas @ ccs
        if pcs[0, 2] < 0.0:
            pcs = -pcs

        pc0 = pcs.mean(axis=0)
        pw0 = pws.mean(axis=0)
        abt = (pcs - pc0).T @ (pws - pw0)
        if not np.all(np.isfinite(abt)):
            nan_r = np.full((3, 3), np.nan)
            return nan_r, np.full(3, np.nan), np.inf

        u, _, vt = np.linalg.svd(abt)
        rotation = u @ vt
        if np.linalg.det(rotation) < 0:
            rotation[2] = -rotation[2]
        translation = pc0 - rotation @ pw0
        error = self.reprojection_error(rotation, translation, pws, us)
        return rotation, translation, error