"""Camera calibration and feature extraction settings used by tracking."""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace

import numpy as np

_DEFAULT_FPS = 30.0
_RGB_WEIGHTS = np.array([0.299, 0.587, 0.114])


class Sensor(enum.Enum):
    """Kind of camera input."""

    MONOCULAR = 0
    STEREO = 1
    RGBD = 2


@dataclass(frozen=True)
class OrbSettings:
    """Parameters of the ORB feature extractor."""

    n_features: int
    scale_factor: float
    n_levels: int
    ini_th_fast: int
    min_th_fast: int


@dataclass(frozen=True)
class CameraSettings:
    """Intrinsics, distortion and tracking parameters read from settings."""

    sensor: Sensor
    fx: float
    fy: float
    cx: float
    cy: float
    dist_coef: tuple[float, ...]
    bf: float
    fps: float
    rgb: bool
    orb: OrbSettings
    th_depth: float | None = None
    depth_map_factor: float = 1.0

    @property
    def min_frames(self):
        """Minimum frames between keyframe insertions."""
        return 0

    @property
    def max_frames(self):
        """Maximum frames between keyframe insertions and after relocalisation."""
        return int(self.fps)

    @property
    def initial_orb(self):
        """Extractor settings for monocular initialisation (twice the features)."""
        return replace(self.orb, n_features=2 * self.orb.n_features)

    @classmethod
    def from_mapping(cls, settings, sensor):
        """Read settings from a mapping; missing entries count as zero."""
        sensor = Sensor(sensor)

        def value(key):
            return float(settings.get(key, 0) or 0)

        fx = value("Camera.fx")
        dist = [value("Camera.k1"), value("Camera.k2"), value("Camera.p1"), value("Camera.p2")]
        k3 = value("Camera.k3")
        if k3 != 0:
            dist.append(k3)
        bf = value("Camera.bf")
        fps = value("Camera.fps")
        if fps == 0:
            fps = _DEFAULT_FPS

        orb = OrbSettings(
            n_features=int(value("ORBextractor.nFeatures")),
            scale_factor=value("ORBextractor.scaleFactor"),
            n_levels=int(value("ORBextractor.nLevels")),
            ini_th_fast=int(value("ORBextractor.iniThFAST")),
            min_th_fast=int(value("ORBextractor.minThFAST")),
        )

        th_depth = None
        if sensor in (Sensor.STEREO, Sensor.RGBD):
            th_depth = bf * value("ThDepth") / fx

        depth_map_factor = 1.0
        if sensor is Sensor.RGBD:
            factor = value("DepthMapFactor")
            depth_map_factor = 1.0 if abs(factor) < 1e-5 else 1.0 / factor

        return cls(
            sensor=sensor,
            fx=fx,
            fy=value("Camera.fy"),
            cx=value("Camera.cx"),
            cy=value("Camera.cy"),
            dist_coef=tuple(dist),
            bf=bf,
            fps=fps,
            rgb=bool(int(value("Camera.RGB"))),
            orb=orb,
            th_depth=th_depth,
            depth_map_factor=depth_map_factor,
        )

    def calibration_matrix(self):
        """The 3x3 pinhole calibration matrix."""
        k = np.eye(3, dtype=np.float32)
        k[0, 0] = self.fx
        k[1, 1] = self.fy
        k[0, 2] = self.cx
        k[1, 2] = self.cy
        return k


def to_gray(image, rgb):
    """Convert a 3- or 4-channel image to grayscale; others pass through.

    ``rgb`` tells whether channels are in RGB order rather than BGR. An alpha
    channel is ignored.
    """
    arr = np.asarray(image)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        return arr
    colour = arr[..., :3].astype(float)
    weights = _RGB_WEIGHTS if rgb else _RGB_WEIGHTS[::-1]
    gray = colour @ weights
    if np.issubdtype(arr.dtype, np.integer):
        info = np.iinfo(arr.dtype)
        gray = np.clip(np.rint(gray), info.min, info.max)
    return gray.astype(arr.dtype)