# cv/pose.py
"""Overlay transform (anchor, scale, roll) from smoothed eye landmarks."""
from __future__ import annotations

import math

import numpy as np

from cv.errors import DegeneratePose
from cv.types import LandmarkSet, Pose


class PoseEstimator:
    """Place an eyewear overlay between the eyes.

    anchor   = midpoint of the two eye points (x, y, z)
    scale    = |right - left| * scale_k
    rotation = atan2(dy, dx), in-plane roll only. Pitch and yaw are not
               estimated.
    """

    def __init__(self, scale_k: float, left_eye_index: int, right_eye_index: int, min_eye_distance: float = 1e-9):
        if not (float(scale_k) > 0.0):
            raise ValueError("scale_k must be > 0")
        if int(left_eye_index) == int(right_eye_index):
            raise ValueError("left and right eye indices must differ")
        self.scale_k = float(scale_k)
        self.left_eye_index = int(left_eye_index)
        self.right_eye_index = int(right_eye_index)
        self.min_eye_distance = float(min_eye_distance)

    def estimate(self, landmarks: LandmarkSet) -> Pose:
        n = len(landmarks)
        if self.left_eye_index >= n or self.right_eye_index >= n:
            raise DegeneratePose(
                f"eye indices ({self.left_eye_index}, {self.right_eye_index}) outside landmark set of size {n}"
            )
        pts = landmarks.points
        left = pts[self.left_eye_index]
        right = pts[self.right_eye_index]
        if not (np.all(np.isfinite(left)) and np.all(np.isfinite(right))):
            raise DegeneratePose("non-finite eye coordinates")

        delta = right - left
        eye_distance = float(np.sqrt(np.sum(delta * delta)))
        if not math.isfinite(eye_distance) or eye_distance <= self.min_eye_distance:
            raise DegeneratePose(f"eye distance too small: {eye_distance!r}")

        mid = (left + right) / 2.0
        rotation = math.atan2(float(delta[1]), float(delta[0]))
        return Pose(
            anchor=(float(mid[0]), float(mid[1]), float(mid[2])),
            scale=eye_distance * self.scale_k,
            rotation_radians=rotation,
        )

    def eye_anchor(self, landmarks: LandmarkSet):
        """2D eye midpoint, or None when the eye indices are not present."""
        n = len(landmarks)
        if self.left_eye_index >= n or self.right_eye_index >= n:
            return None
        pts = landmarks.points
        mid = (pts[self.left_eye_index] + pts[self.right_eye_index]) / 2.0
        return (float(mid[0]), float(mid[1]))
