"""Tracking states and the decisions tracking makes about each frame.

These helpers hold the rules that choose how a new frame's pose is first
estimated, whether local-map tracking succeeded, and how wide the
projection searches are.
"""

from __future__ import annotations

import enum

from slamkit.camera_settings import Sensor

_RECENT_RELOCALISATION_FRAMES = 2
_MIN_INLIERS_AFTER_RELOCALISATION = 50
_MIN_INLIERS = 30

_MOTION_RADIUS_STEREO = 7
_MOTION_RADIUS = 15
_LOCAL_RADIUS = 1
_LOCAL_RADIUS_RGBD = 3
_LOCAL_RADIUS_AFTER_RELOCALISATION = 5


class TrackingState(enum.Enum):
    """State of the tracker after the last processed frame."""

    NO_IMAGES_YET = 0
    NOT_INITIALIZED = 1
    OK = 2
    LOST = 3


class TrackingStrategy(enum.Enum):
    """How the first pose estimate of a frame is obtained."""

    INITIALIZE = "initialize"
    REFERENCE_KEYFRAME = "reference_keyframe"
    MOTION_MODEL = "motion_model"
    MOTION_MODEL_OR_REFERENCE = "motion_model_or_reference"
    RELOCALIZATION = "relocalization"
    MOTION_MODEL_AND_RELOCALIZATION = "motion_model_and_relocalization"


def _recently_relocalised(frame_id, last_reloc_frame_id, window):
    return frame_id < last_reloc_frame_id + window


def initial_strategy(state, only_tracking, has_velocity, frame_id,
                     last_reloc_frame_id, visual_odometry):
    """Choose how to estimate the pose of the incoming frame.

    With mapping active, a tracked frame uses the motion model (falling
    back to the reference keyframe) unless there is no velocity or a
    relocalisation just happened; a lost frame relocalises. In
    localization-only mode a frame tracked mostly with visual odometry
    points tries both the motion model and relocalisation.
    """
    state = TrackingState(state)
    if state in (TrackingState.NO_IMAGES_YET, TrackingState.NOT_INITIALIZED):
        return TrackingStrategy.INITIALIZE

    if not only_tracking:
        if state is not TrackingState.OK:
            return TrackingStrategy.RELOCALIZATION
        if not has_velocity or _recently_relocalised(
                frame_id, last_reloc_frame_id, _RECENT_RELOCALISATION_FRAMES):
            return TrackingStrategy.REFERENCE_KEYFRAME
        return TrackingStrategy.MOTION_MODEL_OR_REFERENCE

    if state is TrackingState.LOST:
        return TrackingStrategy.RELOCALIZATION
    if not visual_odometry:
        if has_velocity:
            return TrackingStrategy.MOTION_MODEL
        return TrackingStrategy.REFERENCE_KEYFRAME
    if has_velocity:
        return TrackingStrategy.MOTION_MODEL_AND_RELOCALIZATION
    return TrackingStrategy.RELOCALIZATION


def local_map_tracking_ok(frame_id, last_reloc_frame_id, max_frames, matches_inliers):
    """Whether local-map tracking found enough inliers.

    The requirement is stricter for the ``max_frames`` frames following a
    relocalisation.
    """
    if (_recently_relocalised(frame_id, last_reloc_frame_id, max_frames)
            and matches_inliers < _MIN_INLIERS_AFTER_RELOCALISATION):
        return False
    return matches_inliers >= _MIN_INLIERS


def motion_search_radius(sensor):
    """Search window when projecting the last frame's points (doubled on retry)."""
    if Sensor(sensor) is Sensor.STEREO:
        return _MOTION_RADIUS_STEREO
    return _MOTION_RADIUS


def local_search_radius(sensor, frame_id, last_reloc_frame_id):
    """Search window when projecting local map points into the frame."""
    if _recently_relocalised(frame_id, last_reloc_frame_id, _RECENT_RELOCALISATION_FRAMES):
        return _LOCAL_RADIUS_AFTER_RELOCALISATION
    if Sensor(sensor) is Sensor.RGBD:
        return _LOCAL_RADIUS_RGBD
    return _LOCAL_RADIUS