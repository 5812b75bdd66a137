# cv/types.py
# -*- coding: utf-8 -*-
"""Value types shared by the tracking pipeline.

All x/y coordinates are in pixel space of the analyzed frame. Detector
adapters convert normalized model output at the capability boundary, so
nothing downstream needs to know the frame size to interpret a point.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Frame:
    width: int
    height: int
    timestamp: float
    image: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ValueError(f"frame size must be positive, got {self.width}x{self.height}")

    @classmethod
    def from_image(cls, image: np.ndarray, timestamp: float) -> "Frame":
        h, w = image.shape[:2]
        return cls(width=int(w), height=int(h), timestamp=float(timestamp), image=image)


@dataclass(frozen=True)
class BoundingBox:
    x_min: float
    y_min: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.width) and math.isfinite(self.height)) or self.width <= 0 or self.height <= 0:
            raise ValueError(f"bounding box size must be positive, got {self.width}x{self.height}")

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x_min + self.width / 2.0, self.y_min + self.height / 2.0)

    @property
    def aspect_ratio(self) -> float:
        """height / width"""
        return float(self.height) / float(self.width)

    def to_list(self) -> list:
        return [float(self.x_min), float(self.y_min), float(self.width), float(self.height)]


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    z: float = 0.0


class LandmarkSet:
    """Ordered, fixed-size keypoint sequence backed by an (N, 3) float array.

    Index i refers to the same anatomical point in every set produced by the
    same extractor.
    """

    __slots__ = ("_pts",)

    def __init__(self, points: Any):
        pts = np.array(points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] not in (2, 3):
            raise ValueError(f"expected an (N, 2) or (N, 3) array, got shape {pts.shape}")
        if pts.shape[1] == 2:
            pts = np.hstack([pts, np.zeros((pts.shape[0], 1), dtype=np.float64)])
        pts.setflags(write=False)
        self._pts = pts

    @classmethod
    def from_keypoints(cls, keypoints: Iterable[Keypoint]) -> "LandmarkSet":
        return cls([(k.x, k.y, k.z) for k in keypoints])

    @property
    def points(self) -> np.ndarray:
        """Read-only (N, 3) view."""
        return self._pts

    def __len__(self) -> int:
        return int(self._pts.shape[0])

    def __getitem__(self, idx: int) -> Keypoint:
        x, y, z = self._pts[idx]
        return Keypoint(float(x), float(y), float(z))

    def __iter__(self) -> Iterator[Keypoint]:
        for i in range(len(self)):
            yield self[i]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LandmarkSet):
            return NotImplemented
        return self._pts.shape == other._pts.shape and bool(np.array_equal(self._pts, other._pts))

    def __repr__(self) -> str:
        return f"LandmarkSet(n={len(self)})"

    def centroid(self) -> Tuple[float, float]:
        if len(self) == 0:
            return (0.0, 0.0)
        return (float(self._pts[:, 0].mean()), float(self._pts[:, 1].mean()))

    def bounding_box(self) -> Optional[BoundingBox]:
        if len(self) == 0:
            return None
        xs = self._pts[:, 0]
        ys = self._pts[:, 1]
        x1, y1 = float(xs.min()), float(ys.min())
        w = float(xs.max()) - x1
        h = float(ys.max()) - y1
        if not (0 < w < math.inf and 0 < h < math.inf):
            return None
        return BoundingBox(x1, y1, w, h)


class FaceShape(str, enum.Enum):
    ROUND = "round"
    SQUARE = "square"
    HEART = "heart"
    OBLONG = "oblong"
    OVAL = "oval"


class StabilityPhase(str, enum.Enum):
    NO_FACE = "no_face"
    OFF_CENTER = "off_center"
    CENTERING = "centering"
    STABLE = "stable"


@dataclass(frozen=True)
class StabilityState:
    phase: StabilityPhase = StabilityPhase.NO_FACE
    count: int = 0

    @property
    def is_stable(self) -> bool:
        return self.phase is StabilityPhase.STABLE


@dataclass(frozen=True)
class Pose:
    anchor: Tuple[float, float, float]
    scale: float
    rotation_radians: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anchor": [float(v) for v in self.anchor],
            "scale": float(self.scale),
            "rotation_radians": float(self.rotation_radians),
        }


@dataclass(frozen=True)
class TrackingEvent:
    """Per-cycle output delivered to subscribers."""

    timestamp: float
    face_detected: bool
    centered: bool
    stability: StabilityState
    shape: Optional[FaceShape] = None
    pose: Optional[Pose] = None
    # Status notice for this cycle (NO_FACE_DETECTED, DEGENERATE_POSE), if any
    notice: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "tracking",
            "ts": float(self.timestamp),
            "face_detected": bool(self.face_detected),
            "centered": bool(self.centered),
            "state": self.stability.phase.value,
            "count": int(self.stability.count),
            "shape": self.shape.value if self.shape is not None else None,
            "pose": self.pose.to_dict() if self.pose is not None else None,
            "notice": getattr(self.notice, "value", self.notice),
        }


def as_landmark_set(value: Any) -> Optional[LandmarkSet]:
    """Accept a LandmarkSet, a keypoint sequence or an array.

    None and empty input (zero faces) both mean no face.
    """
    if value is None:
        return None
    if isinstance(value, LandmarkSet):
        return value if len(value) else None
    if isinstance(value, (Sequence, np.ndarray)) and len(value) == 0:
        return None
    if isinstance(value, Sequence) and value and isinstance(value[0], Keypoint):
        return LandmarkSet.from_keypoints(value)
    return LandmarkSet(value)
