# cv/smoothing.py
"""Exponential smoothing over landmark streams."""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from cv.types import LandmarkSet

logger = logging.getLogger(__name__)


class LandmarkSmoother:
    """smoothed[i] = alpha * smoothed_prev[i] + (1 - alpha) * raw[i], per (x, y, z).

    The first update after construction or `reset()` returns the raw set
    unchanged, so smoothing never blends against history from before a
    tracking gap.
    """

    def __init__(self, alpha: float = 0.7):
        alpha = float(alpha)
        if not (0.0 <= alpha < 1.0):
            raise ValueError("alpha must be in [0, 1)")
        self.alpha = alpha
        self._state: Optional[np.ndarray] = None

    @property
    def has_state(self) -> bool:
        return self._state is not None

    def reset(self) -> None:
        self._state = None

    def update(self, raw: LandmarkSet) -> LandmarkSet:
        pts = raw.points
        if self._state is None:
            self._state = pts.copy()
            return raw
        if self._state.shape != pts.shape:
            # Different extractor layout; indices no longer line up.
            logger.debug("Landmark count changed %s -> %s, reseeding", self._state.shape, pts.shape)
            self._state = pts.copy()
            return raw
        self._state = self.alpha * self._state + (1.0 - self.alpha) * pts
        return LandmarkSet(self._state)
