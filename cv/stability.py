# cv/stability.py
"""Debounced "face stable and centered" signal."""
from __future__ import annotations

import math
from typing import Tuple

from cv.types import StabilityPhase, StabilityState


def is_centered(anchor: Tuple[float, float], frame_width: float, frame_height: float, threshold: float) -> bool:
    """True when the anchor lies within `threshold` * frame_width of the frame center.

    The distance is normalized by frame width so the same threshold works at
    any capture resolution.
    """
    if frame_width <= 0 or frame_height <= 0:
        return False
    cx = frame_width / 2.0
    cy = frame_height / 2.0
    dist = math.hypot(float(anchor[0]) - cx, float(anchor[1]) - cy)
    if not math.isfinite(dist):
        return False
    return (dist / float(frame_width)) < float(threshold)


class StabilityTracker:
    """NO_FACE -> OFF_CENTER <-> CENTERING(n) -> STABLE.

    One input per detection cycle. Any no-face or off-center cycle drops the
    state immediately and zeroes the counter; `required_frames` consecutive
    centered cycles reach STABLE.
    """

    def __init__(self, required_frames: int = 15):
        if int(required_frames) < 1:
            raise ValueError("required_frames must be >= 1")
        self.required_frames = int(required_frames)
        self._state = StabilityState()

    @property
    def state(self) -> StabilityState:
        return self._state

    def update(self, detected: bool, centered: bool = False) -> StabilityState:
        if not detected:
            self._state = StabilityState(StabilityPhase.NO_FACE, 0)
        elif not centered:
            self._state = StabilityState(StabilityPhase.OFF_CENTER, 0)
        else:
            n = min(self._state.count + 1, self.required_frames)
            if n >= self.required_frames:
                self._state = StabilityState(StabilityPhase.STABLE, n)
            else:
                self._state = StabilityState(StabilityPhase.CENTERING, n)
        return self._state

    def reset(self) -> None:
        self._state = StabilityState()
