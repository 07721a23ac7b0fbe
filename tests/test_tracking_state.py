import pytest

from slamkit.camera_settings import Sensor
from slamkit.tracking_state import (
    TrackingState,
    TrackingStrategy,
    initial_strategy,
    local_map_tracking_ok,
    local_search_radius,
    motion_search_radius,
)


@pytest.mark.parametrize("state", [TrackingState.NO_IMAGES_YET, TrackingState.NOT_INITIALIZED])
@pytest.mark.parametrize("only_tracking", [False, True])
def test_uninitialised_states_initialize(state, only_tracking):
    result = initial_strategy(state, only_tracking, True, 100, 0, False)
    assert result is TrackingStrategy.INITIALIZE


def test_mapping_ok_with_velocity_uses_motion_model():
    result = initial_strategy(TrackingState.OK, False, True, 100, 0, False)
    assert result is TrackingStrategy.MOTION_MODEL_OR_REFERENCE


def test_mapping_ok_without_velocity_uses_reference():
    result = initial_strategy(TrackingState.OK, False, False, 100, 0, False)
    assert result is TrackingStrategy.REFERENCE_KEYFRAME


def test_mapping_recent_relocalisation_uses_reference():
    assert initial_strategy(TrackingState.OK, False, True, 11, 10, False) is \
        TrackingStrategy.REFERENCE_KEYFRAME
    assert initial_strategy(TrackingState.OK, False, True, 12, 10, False) is \
        TrackingStrategy.MOTION_MODEL_OR_REFERENCE


def test_mapping_lost_relocalises():
    result = initial_strategy(TrackingState.LOST, False, True, 100, 0, False)
    assert result is TrackingStrategy.RELOCALIZATION


def test_localization_lost_relocalises():
    result = initial_strategy(TrackingState.LOST, True, True, 100, 0, True)
    assert result is TrackingStrategy.RELOCALIZATION


def test_localization_without_vo():
    assert initial_strategy(TrackingState.OK, True, True, 100, 0, False) is \
        TrackingStrategy.MOTION_MODEL
    assert initial_strategy(TrackingState.OK, True, False, 100, 0, False) is \
        TrackingStrategy.REFERENCE_KEYFRAME


def test_localization_with_vo():
    assert initial_strategy(TrackingState.OK, True, True, 100, 0, True) is \
        TrackingStrategy.MOTION_MODEL_AND_RELOCALIZATION
    assert initial_strategy(TrackingState.OK, True, False, 100, 0, True) is \
        TrackingStrategy.RELOCALIZATION


def test_state_accepts_raw_value():
    result = initial_strategy(TrackingState.LOST.value, False, True, 100, 0, False)
    assert result is TrackingStrategy.RELOCALIZATION


def test_local_map_ok_boundaries_without_recent_relocalisation():
    assert local_map_tracking_ok(1000, 0, 30, 30)
    assert not local_map_tracking_ok(1000, 0, 30, 29)


def test_local_map_stricter_after_relocalisation():
    assert not local_map_tracking_ok(10, 5, 30, 49)
    assert local_map_tracking_ok(10, 5, 30, 50)
    # Outside the window the normal limit applies again.
    assert local_map_tracking_ok(35, 5, 30, 49)


def test_motion_search_radius_values():
    assert motion_search_radius(Sensor.MONOCULAR) == 15
    assert motion_search_radius(Sensor.STEREO) == 7
    assert motion_search_radius(Sensor.RGBD) == motion_search_radius(Sensor.MONOCULAR)


def test_local_search_radius_ordering():
    mono = local_search_radius(Sensor.MONOCULAR, 100, 0)
    rgbd = local_search_radius(Sensor.RGBD, 100, 0)
    recent = local_search_radius(Sensor.MONOCULAR, 1, 0)
    assert mono < rgbd < recent
    assert local_search_radius(Sensor.STEREO, 100, 0) == mono
    assert recent == 5
    assert local_search_radius(Sensor.RGBD, 1, 0) == recent


def test_invalid_sensor_raises():
    with pytest.raises(ValueError):
        motion_search_radius(42)