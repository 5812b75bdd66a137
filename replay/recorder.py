import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import cv2

from cv.errors import ErrorKind
from cv.types import TrackingEvent

logger = logging.getLogger(__name__)


class EventRecorder:
    """
    Lightweight recorder for tracking events, error notices and preview video.

    Example:
        rec = EventRecorder(event_path="out/tracking.jsonl",
                            error_path="out/errors.jsonl",
                            video_path="out/preview.mp4")
        rec.open(frame_width=1280, frame_height=720, fps=10)
        session.subscribe(rec.log_event)
        session.on_tracking_error(rec.log_error)
        rec.write_frame(frame)
        rec.close()
    """

    def __init__(
        self,
        event_path: Optional[str] = None,
        error_path: Optional[str] = None,
        video_path: Optional[str] = None,
    ):
        self.event_path = Path(event_path) if event_path else None
        self.error_path = Path(error_path) if error_path else None
        self.video_path = Path(video_path) if video_path else None

        self._video_writer: Optional[cv2.VideoWriter] = None
        self._event_fh = None
        self._error_fh = None
        self.events_written = 0

    def open(self, frame_width: int = 0, frame_height: int = 0, fps: float = 10.0) -> None:
        """Initialize file handles and video writer; call once before logging."""
        if self.video_path and frame_width > 0 and frame_height > 0:
            self._ensure_parent(self.video_path)
            fourcc = cv2.VideoWriter_fourcc(*"mp4v")
            self._video_writer = cv2.VideoWriter(
                str(self.video_path), fourcc, fps, (frame_width, frame_height)
            )
            if not self._video_writer.isOpened():
                raise RuntimeError(f"Failed to open video writer for {self.video_path}")
        if self.event_path:
            self._ensure_parent(self.event_path)
            self._event_fh = self.event_path.open("a", encoding="utf-8")
        if self.error_path:
            self._ensure_parent(self.error_path)
            self._error_fh = self.error_path.open("a", encoding="utf-8")

    def write_frame(self, frame) -> None:
        """Write one video frame; ignored if video writer not configured."""
        if self._video_writer is not None:
            self._video_writer.write(frame)

    def log_event(self, ev: TrackingEvent) -> None:
        if self._event_fh is not None:
            self._write_json_line(self._event_fh, ev.to_dict())
            self.events_written += 1

    def log_error(self, kind: ErrorKind, exc: Exception) -> None:
        if self._error_fh is not None:
            self._write_json_line(self._error_fh, {"type": "error", "kind": kind.value, "error": str(exc)})

    def close(self) -> None:
        """Release all resources."""
        if self._video_writer is not None:
            self._video_writer.release()
            self._video_writer = None
        for fh in (self._event_fh, self._error_fh):
            try:
                if fh is not None:
                    fh.flush()
                    fh.close()
            except Exception:
                logger.warning("Closing recorder file failed", exc_info=True)
        self._event_fh = None
        self._error_fh = None

    def __enter__(self) -> "EventRecorder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---- helpers ----
    @staticmethod
    def _write_json_line(fh, obj: Dict) -> None:
        fh.write(json.dumps(obj, ensure_ascii=False) + "\n")
        fh.flush()

    @staticmethod
    def _ensure_parent(path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)


def load_events_jsonl(path: str) -> List[Dict[str, Any]]:
    """Read recorded tracking events; malformed lines are skipped."""
    out: List[Dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict) and obj.get("type") == "tracking":
                out.append(obj)
    return out
