#!/usr/bin/env python3
# tools/live_tryon.py
# -*- coding: utf-8 -*-
"""
Run the try-on tracking pipeline on a webcam or a video file.

Usage:
    python tools/live_tryon.py --webcam 0 --show
    python tools/live_tryon.py --video samples/face.mp4 --record out/run1 --plot
    python tools/live_tryon.py --list-cams

Keys in the debug window: `s` classifies the face shape, `Esc` quits.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import platform
import sys
import time
from pathlib import Path
from typing import Optional

import cv2

# Ensure project root is in path
PROJ_ROOT = Path(__file__).resolve().parents[1]
if str(PROJ_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJ_ROOT))

from config import load_tracking_config
from cv.camera import CameraFrameSource, VideoFileFrameSource, list_cameras, open_camera
from cv.errors import ErrorKind, ModelUnavailable
from cv.face_shape import recommended_styles
from cv.session import TrackingSession
from cv.types import Frame, TrackingEvent
from replay.recorder import EventRecorder, load_events_jsonl
from sync.event_poster import EventPoster
from viz.visualizer import draw_overlay, plot_stability_timeline

logger = logging.getLogger("live_tryon")


class _LastFrameSource:
    """Pass-through frame source that remembers the last frame handed out."""

    def __init__(self, inner):
        self.inner = inner
        self.last: Optional[Frame] = None

    def next_frame(self) -> Optional[Frame]:
        frame = self.inner.next_frame()
        if frame is not None:
            self.last = frame
        return frame


def _camera_backend() -> int:
    current_os = platform.system()
    if current_os == "Windows":
        return cv2.CAP_DSHOW
    if current_os == "Linux":
        return cv2.CAP_V4L2
    return cv2.CAP_ANY


def _on_event(ev: TrackingEvent) -> None:
    if ev.shape is not None:
        styles = ", ".join(recommended_styles(ev.shape))
        print(f"Face shape: {ev.shape.value} -> try {styles}")


def _on_error(kind: ErrorKind, exc: Exception) -> None:
    print(f"[tracking error] {kind.value}: {exc}")


async def _run(args) -> int:
    cfg = load_tracking_config()

    video_source = None
    camera_source = None
    if args.video:
        video_source = VideoFileFrameSource(args.video, loop=args.loop)
        inner = video_source
    else:
        backend = _camera_backend()
        logger.info("Starting camera on %s (backend=%s) ...", platform.system(), backend)
        cap = open_camera(index=args.webcam, width=args.width, height=args.height, backend=backend)
        if not cap.isOpened():
            print(f"Could not open camera index={args.webcam}. Check connections or try --webcam 1")
            return 1
        camera_source = CameraFrameSource(cap)
        camera_source.start()
        inner = camera_source
    source = _LastFrameSource(inner)

    try:
        session = TrackingSession.with_mediapipe(source, cfg, use_locator=not args.no_locator)
    except ModelUnavailable as exc:
        print(f"Detection models unavailable: {exc}")
        if camera_source is not None:
            camera_source.release()
        if video_source is not None:
            video_source.release()
        return 2

    recorder = None
    if args.record:
        out_dir = Path(args.record)
        recorder = EventRecorder(
            event_path=str(out_dir / "tracking.jsonl"),
            error_path=str(out_dir / "errors.jsonl"),
            video_path=str(out_dir / "preview.mp4") if args.record_video else None,
        )
        recorder.open(frame_width=args.width, frame_height=args.height, fps=1000.0 / max(1.0, cfg.detection_interval_ms))
        session.subscribe(recorder.log_event)
        session.on_tracking_error(recorder.log_error)

    poster = EventPoster(args.push_url) if args.push_url else None
    if poster:
        poster.start()
        session.subscribe(poster.send_event)
        session.on_tracking_error(poster.send_error)

    session.subscribe(_on_event)
    session.on_tracking_error(_on_error)

    t0 = time.time()
    exit_code = 0
    try:
        await session.start()
        while session.running:
            if video_source is not None and video_source.finished:
                break
            if args.show and source.last is not None and source.last.image is not None:
                view = source.last.image.copy()
                draw_overlay(
                    view, session.latest_event,
                    eye_indices=(cfg.left_eye_index, cfg.right_eye_index),
                    center_threshold=cfg.center_threshold,
                    scale_k=cfg.scale_k,
                )
                if recorder is not None:
                    recorder.write_frame(cv2.resize(view, (args.width, args.height)))
                cv2.imshow("TryOn", view)
                key = cv2.waitKey(1) & 0xFF
                if key == 27:
                    break
                if key == ord("s"):
                    session.request_face_shape()
            await asyncio.sleep(0.01)
        if session.error is not None:
            exit_code = 3
    finally:
        stats = session.stats()
        await session.aclose()
        if camera_source is not None:
            camera_source.release()
        if video_source is not None:
            video_source.release()
        if poster:
            poster.stop()
        if recorder is not None:
            recorder.close()
        if args.show:
            cv2.destroyAllWindows()
        dur = max(1e-6, time.time() - t0)
        cycles = stats["scheduler"]["cycles"]
        print(f"Cycles={cycles}, rate={cycles / dur:.2f}/s, dropped={stats['scheduler']['dropped']}")

    if args.record and args.plot:
        events_path = Path(args.record) / "tracking.jsonl"
        if events_path.exists():
            out_png = Path(args.record) / "stability.png"
            plot_stability_timeline(load_events_jsonl(str(events_path)), str(out_png))
            print(f"Timeline written to {out_png}")
    return exit_code


def main(argv=None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--webcam", type=int, default=0, help="Webcam index (default 0)")
    ap.add_argument("--video", type=str, default=None, help="Use a video file instead of a webcam")
    ap.add_argument("--loop", action="store_true", help="Loop the video file")
    ap.add_argument("--width", type=int, default=1280)
    ap.add_argument("--height", type=int, default=720)
    ap.add_argument("--show", action="store_true", help="Show debug window")
    ap.add_argument("--no-locator", action="store_true", help="Use landmark boxes only (skip face detection)")
    ap.add_argument("--list-cams", action="store_true", help="List available cameras and exit")
    ap.add_argument("--record", type=str, default=None, help="Directory for tracking.jsonl / errors.jsonl")
    ap.add_argument("--record-video", action="store_true", help="Also record the annotated preview (needs --show)")
    ap.add_argument("--plot", action="store_true", help="Plot a stability timeline after recording")
    ap.add_argument("--push-url", type=str, default=None, help="Optional HTTP push URL for events")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.list_cams:
        cams = list_cameras(max_index=12, backend=_camera_backend(), timeout=0.8)
        if not cams:
            print("No cameras found (tried indices 0-11)")
        else:
            print("Found cameras:")
            for c in cams:
                print(f"  index={c['index']}, resolution={c['width']}x{c['height']}")
        return 0

    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("Interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
