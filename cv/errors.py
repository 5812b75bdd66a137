# cv/errors.py
"""Error kinds raised and reported by the tracking pipeline."""
from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    MODEL_UNAVAILABLE = "model_unavailable"
    DETECTION_TRANSIENT = "detection_transient"
    NO_FACE_DETECTED = "no_face_detected"
    DEGENERATE_POSE = "degenerate_pose"


class TrackingError(Exception):
    kind: ErrorKind = ErrorKind.DETECTION_TRANSIENT


class ModelUnavailable(TrackingError):
    """A detection model could not be initialized. Fatal to the session."""

    kind = ErrorKind.MODEL_UNAVAILABLE


class DetectionError(TrackingError):
    """A single detection call failed or timed out; retried after a backoff."""

    kind = ErrorKind.DETECTION_TRANSIENT

    def __init__(self, message: str, capability: str = ""):
        super().__init__(message)
        self.capability = capability


DetectionTransientError = DetectionError


class DegeneratePose(TrackingError, ValueError):
    """Landmarks do not define a usable overlay transform (e.g. zero eye distance)."""

    kind = ErrorKind.DEGENERATE_POSE
