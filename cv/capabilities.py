# cv/capabilities.py
# -*- coding: utf-8 -*-
"""Detection capabilities: face bounding box and dense face landmarks.

The pipeline only depends on the `FaceLocator` / `LandmarkExtractor`
protocols. The MediaPipe implementations below run the blocking graph in a
worker thread and convert normalized output to pixel coordinates
(z is scaled by frame width, as MediaPipe documents it on the x scale).
"""
from __future__ import annotations

import asyncio
import logging
import math
import threading
from typing import Optional, Protocol

try:
    import cv2  # type: ignore
except Exception:  # pragma: no cover
    cv2 = None
try:
    import mediapipe as mp  # type: ignore
except Exception:  # pragma: no cover
    mp = None
import numpy as np

from config import TrackingConfig
from cv.errors import DetectionError, ModelUnavailable
from cv.types import BoundingBox, Frame, LandmarkSet

logger = logging.getLogger(__name__)


class FaceLocator(Protocol):
    async def locate(self, frame: Frame) -> Optional[BoundingBox]: ...

    def close(self) -> None: ...


class LandmarkExtractor(Protocol):
    async def extract(self, frame: Frame) -> Optional[LandmarkSet]: ...

    def close(self) -> None: ...


def _require_backend(name: str) -> None:
    if cv2 is None:
        raise ModelUnavailable(f"{name}: OpenCV (cv2) is not available")
    if mp is None:
        raise ModelUnavailable(f"{name}: MediaPipe is not installed")


def _frame_rgb(frame: Frame, capability: str) -> np.ndarray:
    if frame.image is None:
        raise DetectionError("frame carries no image data", capability=capability)
    return cv2.cvtColor(frame.image, cv2.COLOR_BGR2RGB)


class _MediaPipeModel:
    """Serializes `process()` calls on one MediaPipe graph.

    `close()` waits at most `close_timeout` seconds for a running call; if the
    call is still stuck, the graph is closed by that call when it returns.
    """

    name = "mediapipe"
    close_timeout = 1.0

    def __init__(self, model):
        self._model = model
        self._lock = threading.Lock()
        self._close_pending = False

    def _process(self, rgb: np.ndarray):
        with self._lock:
            if self._model is None:
                raise DetectionError(f"{self.name} closed", capability=self.name)
            try:
                return self._model.process(rgb)
            finally:
                if self._close_pending:
                    self._close_model()

    def _close_model(self) -> None:
        try:
            if self._model is not None:
                self._model.close()
        except Exception:
            logger.debug("%s close failed", self.name, exc_info=True)
        self._model = None
        self._close_pending = False

    def close(self) -> None:
        if not self._lock.acquire(timeout=self.close_timeout):
            logger.warning("%s is busy; closing after the running call returns", self.name)
            self._close_pending = True
            # The call may have returned between the timeout and the flag.
            if not self._lock.acquire(blocking=False):
                return
        try:
            self._close_model()
        finally:
            self._lock.release()


class MediaPipeFaceLocator(_MediaPipeModel):
    """Single-face bounding box via MediaPipe Face Detection."""

    name = "face_locator"

    def __init__(self, cfg: Optional[TrackingConfig] = None):
        cfg = cfg or TrackingConfig()
        _require_backend(self.name)
        try:
            detector = mp.solutions.face_detection.FaceDetection(
                model_selection=int(cfg.face_model_selection),
                min_detection_confidence=float(cfg.min_det_conf),
            )
        except Exception as exc:
            raise ModelUnavailable(f"{self.name}: failed to create face detector: {exc}") from exc
        super().__init__(detector)

    def _locate_sync(self, frame: Frame) -> Optional[BoundingBox]:
        res = self._process(_frame_rgb(frame, self.name))
        detections = getattr(res, "detections", None) if res is not None else None
        if not detections:
            return None
        rel = detections[0].location_data.relative_bounding_box
        W, H = float(frame.width), float(frame.height)
        w = float(rel.width) * W
        h = float(rel.height) * H
        if not (0 < w < math.inf and 0 < h < math.inf):
            return None
        return BoundingBox(float(rel.xmin) * W, float(rel.ymin) * H, w, h)

    async def locate(self, frame: Frame) -> Optional[BoundingBox]:
        return await asyncio.to_thread(self._locate_sync, frame)


class MediaPipeLandmarkExtractor(_MediaPipeModel):
    """Single-face dense landmarks via MediaPipe FaceMesh (468/478 points)."""

    name = "landmark_extractor"

    def __init__(self, cfg: Optional[TrackingConfig] = None):
        cfg = cfg or TrackingConfig()
        _require_backend(self.name)
        try:
            mesh = mp.solutions.face_mesh.FaceMesh(
                max_num_faces=1,
                refine_landmarks=bool(cfg.refine_landmarks),
                min_detection_confidence=float(cfg.min_det_conf),
                min_tracking_confidence=float(cfg.min_trk_conf),
            )
        except Exception as exc:
            raise ModelUnavailable(f"{self.name}: failed to create face mesh: {exc}") from exc
        super().__init__(mesh)

    def _extract_sync(self, frame: Frame) -> Optional[LandmarkSet]:
        res = self._process(_frame_rgb(frame, self.name))
        faces = getattr(res, "multi_face_landmarks", None) if res is not None else None
        if not faces:
            return None
        fl = faces[0]
        W, H = float(frame.width), float(frame.height)
        pts = np.zeros((len(fl.landmark), 3), dtype=np.float64)
        for i, lm in enumerate(fl.landmark):
            pts[i, 0] = lm.x * W
            pts[i, 1] = lm.y * H
            pts[i, 2] = lm.z * W
        return LandmarkSet(pts)

    async def extract(self, frame: Frame) -> Optional[LandmarkSet]:
        return await asyncio.to_thread(self._extract_sync, frame)
