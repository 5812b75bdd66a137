# cv/camera.py
# -*- coding: utf-8 -*-
"""Frame sources: live camera with a drop-old capture queue, and video files."""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Dict, List, Optional, Protocol

try:
    import cv2  # type: ignore
except Exception:  # pragma: no cover
    cv2 = None

from cv.types import Frame

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def next_frame(self) -> Optional[Frame]: ...


class CameraFrameSource:
    """
    Pull-based frame source backed by a capture thread that keeps only the
    newest frames. When detection is slower than the camera, old frames are
    dropped instead of building a backlog.

    Usage:
        cap = open_camera(0)
        source = CameraFrameSource(cap)
        source.start()
        frame = source.next_frame()   # None when nothing new arrived
        source.stop()
    """

    def __init__(self, cap, maxsize: int = 1, drop_old: bool = True, clock=time.monotonic):
        """
        Args:
            cap: an opened cv2.VideoCapture (or anything with read()/release())
            maxsize: Maximum frames to buffer (1 recommended for real-time)
            drop_old: If True, drop oldest frame when full; if False, drop new frame
        """
        self._cap = cap
        self._maxsize = max(1, int(maxsize))
        self._drop_old = drop_old
        self._clock = clock
        self._queue: queue.Queue = queue.Queue(maxsize=self._maxsize)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._frames_captured = 0
        self._frames_dropped = 0
        self._read_errors = 0
        self._lock = threading.Lock()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._frames_captured = 0
        self._frames_dropped = 0
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()

    def _capture_loop(self) -> None:
        while not self._stop_event.is_set() and self._cap is not None:
            try:
                ok, image = self._cap.read()
            except Exception:
                self._read_errors += 1
                logger.debug("camera read raised", exc_info=True)
                time.sleep(0.01)
                continue
            if not ok or image is None:
                time.sleep(0.01)
                continue
            self._put((image, self._clock()))

    def _put(self, item) -> None:
        self._frames_captured += 1
        with self._lock:
            if self._queue.full():
                if not self._drop_old:
                    self._frames_dropped += 1
                    return
                try:
                    self._queue.get_nowait()
                    self._frames_dropped += 1
                except queue.Empty:
                    pass
            try:
                self._queue.put_nowait(item)
            except queue.Full:
                self._frames_dropped += 1

    def next_frame(self) -> Optional[Frame]:
        try:
            image, ts = self._queue.get_nowait()
        except queue.Empty:
            return None
        return Frame.from_image(image, ts)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None

    def release(self) -> None:
        self.stop()
        if self._cap is not None:
            try:
                self._cap.release()
            except Exception:
                logger.debug("camera release failed", exc_info=True)
            self._cap = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stats(self) -> Dict[str, float]:
        return {
            "frames_captured": self._frames_captured,
            "frames_dropped": self._frames_dropped,
            "drop_rate": self._frames_dropped / max(1, self._frames_captured),
            "read_errors": self._read_errors,
            "queue_size": self._queue.qsize(),
        }


class VideoFileFrameSource:
    """Read frames sequentially from a clip; timestamps follow the clip's FPS."""

    def __init__(self, path: str, loop: bool = False):
        if cv2 is None:
            raise RuntimeError("OpenCV (cv2) is not available.")
        self.path = str(path)
        self.loop = loop
        self._cap = cv2.VideoCapture(self.path)
        if not self._cap.isOpened():
            raise RuntimeError(f"Could not open video: {self.path}")
        fps = float(self._cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self.fps = fps if fps > 0 else 30.0
        self._index = 0
        self.finished = False

    def next_frame(self) -> Optional[Frame]:
        if self._cap is None or self.finished:
            return None
        ok, image = self._cap.read()
        if not ok or image is None:
            if not self.loop:
                self.finished = True
                return None
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok, image = self._cap.read()
            if not ok or image is None:
                self.finished = True
                return None
        ts = self._index / self.fps
        self._index += 1
        return Frame.from_image(image, ts)

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


def open_camera(index: int = 0, width: int = 1280, height: int = 720, backend: Optional[int] = None):
    """Open and configure a camera, returning the cv2.VideoCapture instance."""
    if cv2 is None:
        raise RuntimeError("OpenCV (cv2) is not available.")
    cap = cv2.VideoCapture(index) if backend is None else cv2.VideoCapture(index, backend)
    if not cap.isOpened():
        return cap
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
    cap.set(cv2.CAP_PROP_FPS, 30)
    return cap


def list_cameras(max_index: int = 8, backend: Optional[int] = None, timeout: float = 1.0) -> List[Dict]:
    """Probe camera indices and return those that produce frames."""
    if cv2 is None:
        return []
    found: List[Dict] = []
    for idx in range(max_index):
        cap = None
        try:
            cap = cv2.VideoCapture(idx) if backend is None else cv2.VideoCapture(idx, backend)
            if not cap.isOpened():
                continue
            t0 = time.time()
            while time.time() - t0 < timeout:
                ret, image = cap.read()
                if ret and image is not None:
                    h, w = image.shape[:2]
                    found.append({"index": idx, "width": int(w), "height": int(h)})
                    break
                time.sleep(0.05)
        except Exception:
            logger.debug("probing camera %d failed", idx, exc_info=True)
        finally:
            if cap is not None:
                try:
                    cap.release()
                except Exception:
                    pass
    return found
