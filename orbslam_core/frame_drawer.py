"""Overlay of the tracking state on the current frame: matched features,
initialisation correspondences and a status line."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import IntEnum

from .descriptors import KeyPoint

# Half size of the square drawn around a tracked feature.
_BOX_HALF = 5.0


class TrackingState(IntEnum):
    SYSTEM_NOT_READY = -1
    NO_IMAGES_YET = 0
    NOT_INITIALIZED = 1
    OK = 2
    LOST = 3


def status_text(state, only_tracking, keyframes, map_points, tracked, tracked_vo) -> str:
    """The status line shown under the frame for a given tracking state."""
    state = TrackingState(state)
    if state is TrackingState.NO_IMAGES_YET:
        return " WAITING FOR IMAGES"
    if state is TrackingState.NOT_INITIALIZED:
        return " TRYING TO INITIALIZE "
    if state is TrackingState.OK:
        prefix = "LOCALIZATION | " if only_tracking else "SLAM MODE |  "
        text = f"{prefix}KFs: {keyframes}, MPs: {map_points}, Matches: {tracked}"
        if tracked_vo > 0:
            text += f", + VO matches: {tracked_vo}"
        return text
    if state is TrackingState.LOST:
        return " TRACK LOST. TRYING TO RELOCALIZE "
    return " LOADING ORB VOCABULARY. PLEASE WAIT..."


@dataclass
class FrameOverlay:
    """What to draw over a frame.

    ``match_lines`` join reference and current keypoints during initialisation;
    ``map_boxes`` and ``vo_boxes`` are (x1, y1, x2, y2) squares around features
    matched to map points and to visual-odometry points respectively.
    """

    state: TrackingState
    text: str
    match_lines: list[tuple[tuple[float, float], tuple[float, float]]] = field(default_factory=list)
    map_boxes: list[tuple[float, float, float, float]] = field(default_factory=list)
    vo_boxes: list[tuple[float, float, float, float]] = field(default_factory=list)
    tracked: int = 0
    tracked_vo: int = 0


def _box(kp: KeyPoint) -> tuple[float, float, float, float]:
    return (kp.x - _BOX_HALF, kp.y - _BOX_HALF, kp.x + _BOX_HALF, kp.y + _BOX_HALF)


class FrameDrawer:
    """Keeps the last tracking result and turns it into a drawable overlay."""

    def __init__(self):
        self._lock = threading.Lock()
        self.state = TrackingState.SYSTEM_NOT_READY
        self.current_keys: list[KeyPoint] = []
        self.initial_keys: list[KeyPoint] = []
        self.initial_matches: list[int] = []
        self.is_map: list[bool] = []
        self.is_vo: list[bool] = []
        self.only_tracking = False
        self.tracked = 0
        self.tracked_vo = 0

    def update(self, state, current_keys, observations=None, outliers=None,
               only_tracking=False, initial_keys=None, initial_matches=None) -> None:
        """Record the result of tracking one frame.

        ``observations[i]`` is the number of keyframes observing the map point
        matched to keypoint ``i``, or None when it has no map point.
        """
        state = TrackingState(state)
        keys = list(current_keys)
        n = len(keys)
        is_map = [False] * n
        is_vo = [False] * n
        with self._lock:
            self.current_keys = keys
            self.only_tracking = bool(only_tracking)
            if state is TrackingState.NOT_INITIALIZED:
                self.initial_keys = list(initial_keys or [])
                self.initial_matches = [int(m) for m in (initial_matches or [])]
            elif state is TrackingState.OK:
                obs = list(observations) if observations is not None else [None] * n
                outs = list(outliers) if outliers is not None else [False] * n
                if len(obs) != n or len(outs) != n:
                    raise ValueError("observations and outliers must match the keypoints")
                for i, (count, outlier) in enumerate(zip(obs, outs)):
                    if count is None or outlier:
                        continue
                    if count > 0:
                        is_map[i] = True
                    else:
                        is_vo[i] = True
            self.is_map = is_map
            self.is_vo = is_vo
            self.state = state

    def draw(self, keyframes_in_map=0, map_points_in_map=0) -> FrameOverlay:
        """Build the overlay for the last recorded frame."""
        with self._lock:
            state = self.state
            if self.state is TrackingState.SYSTEM_NOT_READY:
                self.state = TrackingState.NO_IMAGES_YET
            keys = list(self.current_keys)
            initial_keys = list(self.initial_keys)
            matches = list(self.initial_matches)
            is_map = list(self.is_map)
            is_vo = list(self.is_vo)
            only_tracking = self.only_tracking

        overlay = FrameOverlay(state=state, text="")
        if state is TrackingState.NOT_INITIALIZED:
            overlay.match_lines = [
                (initial_keys[i].pt, keys[m].pt)
                for i, m in enumerate(matches)
                if m >= 0
            ]
        elif state is TrackingState.OK:
            self.tracked = 0
            self.tracked_vo = 0
            for kp, on_map, on_vo in zip(keys, is_map, is_vo):
                if on_map:
                    overlay.map_boxes.append(_box(kp))
                    self.tracked += 1
                elif on_vo:
                    overlay.vo_boxes.append(_box(kp))
                    self.tracked_vo += 1

        overlay.tracked = self.tracked
        overlay.tracked_vo = self.tracked_vo
        overlay.text = status_text(
            state, only_tracking, keyframes_in_map, map_points_in_map,
            self.tracked, self.tracked_vo,
        )
        return overlay