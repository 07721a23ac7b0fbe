"""Settings and stop/finish handshake for the map viewer loop."""

from __future__ import annotations

import threading
from dataclasses import dataclass

_DEFAULT_FPS = 30.0
_DEFAULT_WIDTH = 640
_DEFAULT_HEIGHT = 480


@dataclass(frozen=True)
class ViewerSettings:
    """Viewer refresh rate, image size and initial viewpoint."""

    fps: float = _DEFAULT_FPS
    image_width: float = _DEFAULT_WIDTH
    image_height: float = _DEFAULT_HEIGHT
    viewpoint_x: float = 0.0
    viewpoint_y: float = 0.0
    viewpoint_z: float = 0.0
    viewpoint_f: float = 0.0

    @property
    def frame_period_ms(self):
        """Time between refreshes in milliseconds."""
        return 1e3 / self.fps

    @classmethod
    def from_mapping(cls, settings):
        """Read viewer settings; missing entries count as zero."""

        def value(key):
            return float(settings.get(key, 0) or 0)

        fps = value("Camera.fps")
        if fps < 1:
            fps = _DEFAULT_FPS
        width = value("Camera.width")
        height = value("Camera.height")
        if width < 1 or height < 1:
            width, height = _DEFAULT_WIDTH, _DEFAULT_HEIGHT
        return cls(
            fps=fps,
            image_width=width,
            image_height=height,
            viewpoint_x=value("Viewer.ViewpointX"),
            viewpoint_y=value("Viewer.ViewpointY"),
            viewpoint_z=value("Viewer.ViewpointZ"),
            viewpoint_f=value("Viewer.ViewpointF"),
        )


class ViewerControl:
    """Thread-safe flags coordinating a viewer loop with its owner."""

    def __init__(self, settings=None):
        self.settings = settings if settings is not None else ViewerSettings()
        self._finish_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._finish_requested = False
        self._finished = True
        self._stopped = True
        self._stop_requested = False

    def request_finish(self):
        """Ask the loop to end."""
        with self._finish_lock:
            self._finish_requested = True

    def check_finish(self):
        """Whether an end has been requested."""
        with self._finish_lock:
            return self._finish_requested

    def set_finish(self):
        """Mark the loop as ended."""
        with self._finish_lock:
            self._finished = True

    def is_finished(self):
        """Whether the loop has ended."""
        with self._finish_lock:
            return self._finished

    def request_stop(self):
        """Ask a running loop to pause."""
        with self._stop_lock:
            if not self._stopped:
                self._stop_requested = True

    def is_stopped(self):
        """Whether the loop is paused."""
        with self._stop_lock:
            return self._stopped

    def stop(self):
        """Pause if a pause was requested and no end is pending."""
        with self._stop_lock, self._finish_lock:
            if self._finish_requested:
                return False
            if self._stop_requested:
                self._stopped = True
                self._stop_requested = False
                return True
            return False

    def release(self):
        """Resume a paused loop."""
        with self._stop_lock:
            self._stopped = False