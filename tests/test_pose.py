import math

import numpy as np
import pytest

from cv.errors import DegeneratePose, ErrorKind
from cv.pose import PoseEstimator
from cv.types import LandmarkSet


def _landmarks(left, right, n=4, li=0, ri=1):
    pts = np.zeros((n, 3), dtype=np.float64)
    pts[:, 0] = np.arange(n) * 100.0
    pts[li] = left
    pts[ri] = right
    return LandmarkSet(pts)


def test_unit_eye_distance_gives_scale_k():
    est = PoseEstimator(scale_k=8.0, left_eye_index=0, right_eye_index=1)
    pose = est.estimate(_landmarks((0, 0, 0), (1, 0, 0)))
    assert pose.rotation_radians == 0.0
    assert pose.anchor == (0.5, 0.0, 0.0)
    assert pose.scale == pytest.approx(8.0)


def test_roll_angle_and_anchor():
    est = PoseEstimator(scale_k=2.0, left_eye_index=2, right_eye_index=3)
    pose = est.estimate(_landmarks((100, 100, 4), (200, 200, 8), li=2, ri=3))
    assert pose.rotation_radians == pytest.approx(math.pi / 4)
    assert pose.anchor == pytest.approx((150.0, 150.0, 6.0))
    assert pose.scale == pytest.approx(2.0 * math.sqrt(100 ** 2 + 100 ** 2 + 4 ** 2))


def test_identical_eyes_raise_degenerate_pose():
    est = PoseEstimator(scale_k=8.0, left_eye_index=0, right_eye_index=1)
    with pytest.raises(DegeneratePose) as ei:
        est.estimate(_landmarks((5, 5, 0), (5, 5, 0)))
    assert ei.value.kind == ErrorKind.DEGENERATE_POSE


def test_missing_indices_raise_degenerate_pose():
    est = PoseEstimator(scale_k=8.0, left_eye_index=468, right_eye_index=473)
    with pytest.raises(DegeneratePose):
        est.estimate(_landmarks((0, 0, 0), (1, 0, 0)))
    assert est.eye_anchor(_landmarks((0, 0, 0), (1, 0, 0))) is None


def test_non_finite_eyes_raise_degenerate_pose():
    est = PoseEstimator(scale_k=8.0, left_eye_index=0, right_eye_index=1)
    with pytest.raises(DegeneratePose):
        est.estimate(_landmarks((float("nan"), 0, 0), (1, 0, 0)))


def test_constructor_validation():
    with pytest.raises(ValueError):
        PoseEstimator(scale_k=0.0, left_eye_index=0, right_eye_index=1)
    with pytest.raises(ValueError):
        PoseEstimator(scale_k=1.0, left_eye_index=3, right_eye_index=3)
