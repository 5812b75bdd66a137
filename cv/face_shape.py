# cv/face_shape.py
"""Face-shape category from the detected bounding box aspect ratio."""
from __future__ import annotations

import math
from typing import Dict, List

from cv.types import BoundingBox, FaceShape

# Boundaries of the height/width partition:
#   (0, 1.2) round | [1.2, 1.3] square | (1.3, 1.5] heart | (1.5, inf) oblong
ROUND_MAX = 1.2
SQUARE_MAX = 1.3
HEART_MAX = 1.5

RECOMMENDED_STYLES: Dict[FaceShape, List[str]] = {
    FaceShape.ROUND: ["rectangular", "square", "aviator"],
    FaceShape.SQUARE: ["round", "aviator", "oversize"],
    FaceShape.HEART: ["aviator", "butterfly", "round"],
    FaceShape.OBLONG: ["oversize", "butterfly", "browline"],
    FaceShape.OVAL: ["rectangular", "aviator", "round"],
}


def classify_ratio(ratio: float) -> FaceShape:
    ratio = float(ratio)
    if not math.isfinite(ratio) or ratio <= 0:
        raise ValueError(f"aspect ratio must be a positive finite number, got {ratio!r}")
    if ratio > HEART_MAX:
        return FaceShape.OBLONG
    if ratio < ROUND_MAX:
        return FaceShape.ROUND
    if ratio <= SQUARE_MAX:
        return FaceShape.SQUARE
    if ratio <= HEART_MAX:
        return FaceShape.HEART
    # Unreachable for finite positive ratios; kept so the mapping stays total.
    return FaceShape.OVAL


def classify(box: BoundingBox) -> FaceShape:
    if not (box.width > 0 and box.height > 0):
        raise ValueError(f"bounding box must have positive size, got {box.width}x{box.height}")
    return classify_ratio(box.aspect_ratio)


def recommended_styles(shape: FaceShape) -> List[str]:
    """Frame styles that suit the given face shape."""
    return list(RECOMMENDED_STYLES.get(shape, RECOMMENDED_STYLES[FaceShape.OVAL]))
