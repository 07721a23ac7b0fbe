# slamkit

Geometric building blocks for feature-based visual SLAM, built on numpy.

## What is inside

- `slamkit.epnp` – the EPnP camera pose solver. `EPnP(fu, fv, uc, vc)`
  estimates a world-to-camera pose from 3D points and their pixels with
  `compute_pose`, returning a `PoseEstimate` (rotation, translation, mean
  reprojection error). Also `reprojection_error`, a Householder `qr_solve`,
  `mat_to_quat` and `relative_error`.
- `slamkit.pnp_ransac` – `PnPSolver`, a RANSAC loop around EPnP over
  `Correspondence` records. `set_ransac_parameters` adapts the inlier
  threshold and iteration budget to the number of matches; `iterate(n)` and
  `find()` return a `RansacResult` with a 4x4 pose, per-keypoint inlier flags
  and a `no_more` flag. A `random.Random` can be passed for repeatable runs.
- `slamkit.sim3` – closed-form similarity estimation (`compute_sim3`, giving a
  `Sim3` with `matrix` and `inverse_matrix`), pinhole projection helpers
  (`project`, `from_camera_to_image`) and `Sim3Solver`, a RANSAC solver over
  `Sim3Match` pairs that returns a `Sim3Result`.
- `slamkit.camera_settings` – `Sensor`, `OrbSettings` and `CameraSettings`,
  read from a plain mapping of settings keys (`Camera.fx`, `Camera.k1`,
  `ThDepth`, `DepthMapFactor`, `ORBextractor.nFeatures`, ...) with
  `CameraSettings.from_mapping`; `calibration_matrix()` gives the 3x3 `K`.
  `to_gray` converts 3- or 4-channel images in RGB or BGR order to grayscale.
- `slamkit.tracking_state` – `TrackingState`, `TrackingStrategy` and the
  rules tracking applies: `initial_strategy`, `local_map_tracking_ok`,
  `motion_search_radius` and `local_search_radius`.
- `slamkit.local_map` – `KeyFrameNode`, `MapPointNode` and the local map
  selection: `update_local_keyframes` (covisible keyframes, their best
  neighbours, children and parents, returned as a `LocalMap` with its
  reference keyframe) and `update_local_points`.
- `slamkit.trajectory_log` – `TrajectoryLog`, an ordered log of frame poses
  relative to their reference keyframes; `record_lost` repeats the last entry.
- `slamkit.system` – `KeyFrameRecord`, `FrameRecord`, trajectory export in
  TUM and KITTI formats (`save_trajectory_tum`, `save_keyframe_trajectory_tum`,
  `save_trajectory_kitti`), `rotation_to_quaternion`, the thread-safe
  `SystemRequests` for mode changes and resets, and `ChangeMonitor`.
- `slamkit.viewer_control` – `ViewerSettings.from_mapping` and
  `ViewerControl`, the thread-safe stop/finish handshake for a viewer loop.

## Installation

```
pip install .
```

## Example: camera pose from 2D–3D matches

```python
import numpy as np
from slamkit.epnp import EPnP

solver = EPnP(fu=500.0, fv=500.0, uc=320.0, vc=240.0)
points_3d = np.random.default_rng(0).uniform(-1, 1, (20, 3)) + [0, 0, 5]
points_2d = points_3d[:, :2] / points_3d[:, 2:] * 500.0 + [320.0, 240.0]

estimate = solver.compute_pose(points_3d, points_2d)
print(estimate.rotation, estimate.translation, estimate.error)
```

## Example: exporting a trajectory

```python
import numpy as np
from slamkit.camera_settings import Sensor
from slamkit.system import KeyFrameRecord, save_trajectory_tum
from slamkit.trajectory_log import TrajectoryLog

origin = KeyFrameRecord(id=0, timestamp=0.0, pose=np.eye(4))
log = TrajectoryLog()
log.record(np.eye(4), origin, timestamp=0.0)
log.record_lost()  # a frame without a pose, marked lost

save_trajectory_tum("trajectory.txt", [origin], log, Sensor.STEREO)
```

Lost frames are left out of the TUM export; the KITTI export writes every
frame. Both refuse monocular trajectories with `ValueError`.

## What this package does not do

slamkit provides solvers, settings, decision rules and bookkeeping. It does
not extract or match ORB features, optimise poses or maps, detect loops,
run mapping threads, or draw a map viewer window, and it has no command-line
program. Keyframe-insertion rules are not included. The caller supplies
correspondences, keyframes and map points and drives the tracking loop.

## Running the tests

```
pip install .[test]
pytest
```