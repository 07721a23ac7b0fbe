"""Per-frame record of poses relative to reference keyframes."""

from __future__ import annotations

import numpy as np

from slamkit.system import FrameRecord


class TrajectoryLog:
    """Ordered log of every processed frame, used to export trajectories.

    Each entry is a :class:`FrameRecord`. A frame without a pose repeats the
    previous entry's pose, reference and timestamp with its own lost flag.
    """

    def __init__(self):
        self._records = []

    def record(self, relative_pose, reference, timestamp, lost=False):
        """Append a frame with its pose relative to ``reference``."""
        entry = FrameRecord(
            relative_pose=np.array(relative_pose, dtype=float),
            reference=reference,
            timestamp=float(timestamp),
            lost=bool(lost),
        )
        self._records.append(entry)
        return entry

    def record_lost(self, lost=True):
        """Append a frame that has no pose by repeating the last entry."""
        if not self._records:
            raise IndexError("no earlier frame to repeat")
        last = self._records[-1]
        return self.record(last.relative_pose, last.reference, last.timestamp, lost)

    def clear(self):
        """Forget every recorded frame."""
        self._records.clear()

    def __iter__(self):
        return iter(list(self._records))

    def __len__(self):
        return len(self._records)