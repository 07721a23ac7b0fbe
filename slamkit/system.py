"""Trajectory export and the request flags shared by the system's threads.

Frame poses are stored relative to a reference keyframe, which bundle
adjustment and loop closing may move or cull. Exporting a trajectory walks
the spanning tree from culled keyframes to a live ancestor. It then chains
the relative poses, expressing everything with the first keyframe at the
origin.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from slamkit.camera_settings import Sensor


def _as_pose(matrix):
    pose = np.asarray(matrix, dtype=float)
    if pose.shape != (4, 4):
        raise ValueError("a pose must be a 4x4 matrix")
    return pose


def _invert_pose(pose):
    rotation = pose[:3, :3]
    translation = pose[:3, 3]
    inverse = np.eye(4)
    inverse[:3, :3] = rotation.T
    inverse[:3, 3] = -rotation.T @ translation
    return inverse


@dataclass(eq=False)
class KeyFrameRecord:
    """A keyframe's id, timestamp and world-to-camera pose.

    A culled keyframe is marked ``bad``; it keeps its spanning-tree
    ``parent`` and ``tcp``, its pose relative to that parent.
    """

    id: int
    timestamp: float
    pose: np.ndarray
    bad: bool = False
    parent: KeyFrameRecord | None = None
    tcp: np.ndarray | None = None

    def __post_init__(self):
        self.pose = _as_pose(self.pose)
        if self.tcp is not None:
            self.tcp = _as_pose(self.tcp)

    @property
    def pose_inverse(self):
        """The camera-to-world transform."""
        return _invert_pose(self.pose)

    @property
    def rotation(self):
        """The world-to-camera rotation."""
        return self.pose[:3, :3].copy()

    @property
    def camera_center(self):
        """The camera centre in world coordinates."""
        return -self.pose[:3, :3].T @ self.pose[:3, 3]


@dataclass(eq=False)
class FrameRecord:
    """A tracked frame: its pose relative to its reference keyframe."""

    relative_pose: np.ndarray
    reference: KeyFrameRecord
    timestamp: float
    lost: bool = False

    def __post_init__(self):
        self.relative_pose = _as_pose(self.relative_pose)


def rotation_to_quaternion(rotation):
    """Convert a rotation matrix to a quaternion ``[x, y, z, w]``."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    if trace > 0.0:
        s = np.sqrt(trace + 1.0)
        w = 0.5 * s
        s = 0.5 / s
        x = (r[2, 1] - r[1, 2]) * s
        y = (r[0, 2] - r[2, 0]) * s
        z = (r[1, 0] - r[0, 1]) * s
        return np.array([x, y, z, w])

    i = 0
    if r[1, 1] > r[0, 0]:
        i = 1
    if r[2, 2] > r[i, i]:
        i = 2
    j = (i + 1) % 3
    k = (j + 1) % 3
    s = np.sqrt(r[i, i] - r[j, j] - r[k, k] + 1.0)
    q = np.zeros(4)
    q[i] = 0.5 * s
    s = 0.5 / s
    q[3] = (r[k, j] - r[j, k]) * s
    q[j] = (r[j, i] + r[i, j]) * s
    q[k] = (r[k, i] + r[i, k]) * s
    return q


def _sorted_keyframes(keyframes):
    ordered = sorted(keyframes, key=lambda kf: kf.id)
    if not ordered:
        raise ValueError("at least one keyframe is required")
    return ordered


def _frame_world_poses(keyframes, frames, skip_lost):
    """Yield ``(frame, Rwc, twc)`` for each frame, first keyframe at origin."""
    two = _sorted_keyframes(keyframes)[0].pose_inverse
    for frame in frames:
        if skip_lost and frame.lost:
            continue
        keyframe = frame.reference
        trw = np.eye(4)
        while keyframe.bad:
            if keyframe.parent is None or keyframe.tcp is None:
                raise ValueError(f"culled keyframe {keyframe.id} has no parent")
            trw = trw @ keyframe.tcp
            keyframe = keyframe.parent
        trw = trw @ keyframe.pose @ two
        tcw = frame.relative_pose @ trw
        rwc = tcw[:3, :3].T
        twc = -rwc @ tcw[:3, 3]
        yield frame, rwc, twc


def _check_not_monocular(sensor, what):
    if Sensor(sensor) is Sensor.MONOCULAR:
        raise ValueError(f"{what} cannot be used for monocular")


def save_trajectory_tum(path, keyframes, frames, sensor):
    """Write every tracked frame's pose in TUM format.

    Each line holds ``timestamp tx ty tz qx qy qz qw``. Lost frames are
    left out. Monocular trajectories are refused.
    """
    _check_not_monocular(sensor, "save_trajectory_tum")
    rows = list(_frame_world_poses(keyframes, frames, skip_lost=True))
    with open(path, "w", encoding="utf-8") as out:
        for frame, rwc, twc in rows:
            q = rotation_to_quaternion(rwc)
            values = " ".join(f"{v:.9f}" for v in (*twc, *q))
            out.write(f"{frame.timestamp:.6f} {values}\n")


def save_keyframe_trajectory_tum(path, keyframes):
    """Write every live keyframe's pose in TUM format, ordered by id."""
    ordered = sorted(keyframes, key=lambda kf: kf.id)
    with open(path, "w", encoding="utf-8") as out:
        for keyframe in ordered:
            if keyframe.bad:
                continue
            q = rotation_to_quaternion(keyframe.rotation.T)
            t = keyframe.camera_center
            values = " ".join(f"{v:.7f}" for v in (*t, *q))
            out.write(f"{keyframe.timestamp:.6f} {values}\n")


def save_trajectory_kitti(path, keyframes, frames, sensor):
    """Write every frame's pose in KITTI format: a row-major 3x4 matrix."""
    _check_not_monocular(sensor, "save_trajectory_kitti")
    rows = list(_frame_world_poses(keyframes, frames, skip_lost=False))
    with open(path, "w", encoding="utf-8") as out:
        for _, rwc, twc in rows:
            matrix = np.column_stack([rwc, twc])
            out.write(" ".join(f"{v:.9f}" for v in matrix.reshape(-1)) + "\n")


class ModeChange(NamedTuple):
    """Pending localization-mode switches."""

    activate: bool
    deactivate: bool


class SystemRequests:
    """Thread-safe requests for a mode change or a reset of tracking."""

    def __init__(self):
        self._mode_lock = threading.Lock()
        self._reset_lock = threading.Lock()
        self._activate = False
        self._deactivate = False
        self._reset = False

    def activate_localization_mode(self):
        """Ask tracking to stop mapping and only localize."""
        with self._mode_lock:
            self._activate = True

    def deactivate_localization_mode(self):
        """Ask tracking to resume mapping."""
        with self._mode_lock:
            self._deactivate = True

    def request_reset(self):
        """Ask tracking to reset on its next frame."""
        with self._reset_lock:
            self._reset = True

    def take_mode_change(self):
        """Return the pending mode switches and clear them."""
        with self._mode_lock:
            change = ModeChange(self._activate, self._deactivate)
            self._activate = False
            self._deactivate = False
            return change

    def take_reset(self):
        """Return whether a reset was pending and clear it."""
        with self._reset_lock:
            pending = self._reset
            self._reset = False
            return pending


class ChangeMonitor:
    """Reports when the map's big-change index has advanced."""

    def __init__(self):
        self._last = 0

    def changed(self, current_index):
        """Whether ``current_index`` is newer than any seen before."""
        if self._last < current_index:
            self._last = current_index
            return True
        return False