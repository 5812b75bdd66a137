"""
Centralized configuration helpers.

Tunables can be overridden from a local `.env` file or the process
environment. Example:
    TRYON_DETECTION_INTERVAL_MS=100
    TRYON_REQUIRED_CENTERED_FRAMES=15
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv


# Load environment variables from .env if present.
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def env_int(name: str, default: int = 0, min_value: Optional[int] = None, max_value: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = int(str(raw).strip())
    except Exception:
        return default
    if min_value is not None:
        val = max(min_value, val)
    if max_value is not None:
        val = min(max_value, val)
    return val


def env_float(name: str, default: float = 0.0, min_value: Optional[float] = None, max_value: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = float(str(raw).strip())
    except Exception:
        return default
    if min_value is not None:
        val = max(min_value, val)
    if max_value is not None:
        val = min(max_value, val)
    return val


# MediaPipe FaceMesh iris centers (refine_landmarks=True). 468 is the subject's
# right eye, which appears on the left of a non-mirrored frame.
LEFT_IRIS_CENTER = 468
RIGHT_IRIS_CENTER = 473


@dataclass
class TrackingConfig:
    # Scheduling
    detection_interval_ms: float = 100.0
    detection_timeout_ms: float = 2000.0
    retry_backoff_ms: float = 1000.0
    max_consecutive_failures: int = 3

    # Stability debounce
    required_centered_frames: int = 15
    # Fraction of frame width
    center_threshold: float = 0.12

    # Landmark smoothing (weight on history)
    smoothing_alpha: float = 0.7

    # Pose. scale_k maps inter-eye distance (pixels) to overlay scale; the
    # default matches a factor of 8 on normalized coordinates at 640px width.
    scale_k: float = 8.0 / 640.0
    left_eye_index: int = LEFT_IRIS_CENTER
    right_eye_index: int = RIGHT_IRIS_CENTER

    # Detector settings
    min_det_conf: float = 0.5
    min_trk_conf: float = 0.5
    refine_landmarks: bool = True
    # 0=short range (selfie distance), 1=full range
    face_model_selection: int = 0

    @property
    def detection_interval_sec(self) -> float:
        return self.detection_interval_ms / 1000.0

    @property
    def detection_timeout_sec(self) -> float:
        return self.detection_timeout_ms / 1000.0

    @property
    def retry_backoff_sec(self) -> float:
        return self.retry_backoff_ms / 1000.0

    def validate(self) -> "TrackingConfig":
        """Raise ValueError if any value is outside its usable range."""
        if self.detection_interval_ms < 0:
            raise ValueError("detection_interval_ms must be >= 0")
        if self.detection_timeout_ms <= 0:
            raise ValueError("detection_timeout_ms must be > 0")
        if self.retry_backoff_ms < 0:
            raise ValueError("retry_backoff_ms must be >= 0")
        if self.max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1")
        if self.required_centered_frames < 1:
            raise ValueError("required_centered_frames must be >= 1")
        if not (0.0 < self.center_threshold <= 1.0):
            raise ValueError("center_threshold must be in (0, 1]")
        if not (0.0 <= self.smoothing_alpha < 1.0):
            raise ValueError("smoothing_alpha must be in [0, 1)")
        if not (self.scale_k > 0.0):
            raise ValueError("scale_k must be > 0")
        if self.left_eye_index < 0 or self.right_eye_index < 0:
            raise ValueError("eye indices must be non-negative")
        if self.left_eye_index == self.right_eye_index:
            raise ValueError("left_eye_index and right_eye_index must differ")
        return self


def load_tracking_config() -> TrackingConfig:
    defaults = TrackingConfig()
    cfg = TrackingConfig(
        detection_interval_ms=env_float("TRYON_DETECTION_INTERVAL_MS", defaults.detection_interval_ms, min_value=0.0),
        detection_timeout_ms=env_float("TRYON_DETECTION_TIMEOUT_MS", defaults.detection_timeout_ms, min_value=1.0),
        retry_backoff_ms=env_float("TRYON_RETRY_BACKOFF_MS", defaults.retry_backoff_ms, min_value=0.0),
        max_consecutive_failures=env_int("TRYON_MAX_CONSECUTIVE_FAILURES", defaults.max_consecutive_failures, min_value=1),
        required_centered_frames=env_int("TRYON_REQUIRED_CENTERED_FRAMES", defaults.required_centered_frames, min_value=1),
        center_threshold=env_float("TRYON_CENTER_THRESHOLD", defaults.center_threshold, min_value=0.01, max_value=1.0),
        smoothing_alpha=env_float("TRYON_SMOOTHING_ALPHA", defaults.smoothing_alpha, min_value=0.0, max_value=0.99),
        scale_k=env_float("TRYON_SCALE_K", defaults.scale_k, min_value=1e-6),
        left_eye_index=env_int("TRYON_LEFT_EYE_INDEX", defaults.left_eye_index, min_value=0),
        right_eye_index=env_int("TRYON_RIGHT_EYE_INDEX", defaults.right_eye_index, min_value=0),
        min_det_conf=env_float("TRYON_MIN_DET_CONF", defaults.min_det_conf, min_value=0.0, max_value=1.0),
        min_trk_conf=env_float("TRYON_MIN_TRK_CONF", defaults.min_trk_conf, min_value=0.0, max_value=1.0),
        refine_landmarks=env_bool("TRYON_REFINE_LANDMARKS", default=defaults.refine_landmarks),
        face_model_selection=env_int("TRYON_FACE_MODEL_SELECTION", defaults.face_model_selection, min_value=0, max_value=1),
    )
    return cfg.validate()
