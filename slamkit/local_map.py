"""Selection of the local map: the keyframes and points tracked against.

The local keyframes are those sharing map points with the current frame,
extended by some covisible neighbours, spanning-tree children and parents.
The local map points are those seen by the local keyframes.
"""

from __future__ import annotations

from dataclasses import dataclass, field

_MAX_LOCAL_KEYFRAMES = 80
_NEIGHBOURS_CONSIDERED = 10


@dataclass(eq=False)
class KeyFrameNode:
    """A keyframe in the covisibility graph and spanning tree."""

    id: int
    bad: bool = False
    map_points: list = field(default_factory=list)
    connections: dict = field(default_factory=dict)
    children: set = field(default_factory=set)
    parent: KeyFrameNode | None = None
    track_reference_for_frame: int | None = None

    def best_covisibles(self, n):
        """The ``n`` connected keyframes sharing the most points, best first."""
        ordered = sorted(self.connections.items(), key=lambda item: (-item[1], item[0].id))
        return [keyframe for keyframe, _ in ordered[:n]]


@dataclass(eq=False)
class MapPointNode:
    """A map point and the keyframes observing it (keyframe to keypoint index)."""

    id: int
    bad: bool = False
    observations: dict = field(default_factory=dict)
    track_reference_for_frame: int | None = None


@dataclass
class LocalMap:
    """Local keyframes and the one sharing most points with the frame."""

    keyframes: list
    reference: KeyFrameNode | None


def update_local_keyframes(frame_points, frame_id):
    """Select the local keyframes for the frame with the given map points.

    Bad points in ``frame_points`` are replaced by ``None``. Returns
    ``None`` when no keyframe observes any of the frame's points. Selected
    keyframes are marked with ``frame_id``.
    """
    counter = {}
    for i, point in enumerate(frame_points):
        if point is None:
            continue
        if point.bad:
            frame_points[i] = None
            continue
        for keyframe in point.observations:
            counter[keyframe] = counter.get(keyframe, 0) + 1

    if not counter:
        return None

    best_count = 0
    best = None
    local = []
    for keyframe, count in counter.items():
        if keyframe.bad:
            continue
        if count > best_count:
            best_count = count
            best = keyframe
        local.append(keyframe)
        keyframe.track_reference_for_frame = frame_id

    def take(keyframe):
        local.append(keyframe)
        keyframe.track_reference_for_frame = frame_id

    for keyframe in list(local):
        if len(local) > _MAX_LOCAL_KEYFRAMES:
            break

        for neighbour in keyframe.best_covisibles(_NEIGHBOURS_CONSIDERED):
            if not neighbour.bad and neighbour.track_reference_for_frame != frame_id:
                take(neighbour)
                break

        for child in sorted(keyframe.children, key=lambda kf: kf.id):
            if not child.bad and child.track_reference_for_frame != frame_id:
                take(child)
                break

        parent = keyframe.parent
        if parent is not None and parent.track_reference_for_frame != frame_id:
            take(parent)
            break

    return LocalMap(keyframes=local, reference=best)


def update_local_points(keyframes, frame_id):
    """Collect the distinct good map points seen by ``keyframes``.

    Each collected point is marked with ``frame_id``; points already marked
    are skipped.
    """
    points = []
    for keyframe in keyframes:
        for point in list(keyframe.map_points):
            if point is None or point.track_reference_for_frame == frame_id:
                continue
            if not point.bad:
                points.append(point)
                point.track_reference_for_frame = frame_id
    return points