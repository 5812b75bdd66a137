# cv/session.py
# -*- coding: utf-8 -*-
"""Tracking session: owns detectors, stability/smoothing state and the loop."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from config import TrackingConfig
from cv.errors import DegeneratePose, ErrorKind, ModelUnavailable, TrackingError
from cv.face_shape import classify
from cv.pose import PoseEstimator
from cv.scheduler import CancellationToken, DetectionResult, DetectionScheduler, RetryPolicy
from cv.smoothing import LandmarkSmoother
from cv.stability import StabilityTracker, is_centered
from cv.types import BoundingBox, FaceShape, StabilityState, TrackingEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[TrackingEvent], Any]
ErrorCallback = Callable[[ErrorKind, Exception], Any]


class TrackingSession:
    """
    Single owner of one face-tracking session.

    Usage:
        session = TrackingSession(source, extractor=MediaPipeLandmarkExtractor(cfg), cfg=cfg)
        session.subscribe(lambda ev: renderer.apply(ev.pose))
        session.on_tracking_error(lambda kind, exc: ui.show_error(kind))
        await session.start()
        ...
        await session.aclose()

    State (stability counter, smoothed landmarks) is mutated only from the
    detection callback; everything handed out is an immutable value.
    """

    def __init__(self, frame_source, locator=None, extractor=None, cfg: Optional[TrackingConfig] = None, clock=None):
        self.cfg = (cfg or TrackingConfig()).validate()
        if locator is None and extractor is None:
            raise ValueError("a tracking session needs a face locator, a landmark extractor, or both")
        self.frame_source = frame_source
        self.locator = locator
        self.extractor = extractor
        self._clock = clock

        self.tracker = StabilityTracker(self.cfg.required_centered_frames)
        self.smoother = LandmarkSmoother(self.cfg.smoothing_alpha)
        self.pose_estimator = PoseEstimator(
            scale_k=self.cfg.scale_k,
            left_eye_index=self.cfg.left_eye_index,
            right_eye_index=self.cfg.right_eye_index,
        )

        self._subscribers: List[EventCallback] = []
        self._error_handlers: List[ErrorCallback] = []
        self._task: Optional[asyncio.Task] = None
        self._latest_box: Optional[BoundingBox] = None
        self._latest_event: Optional[TrackingEvent] = None
        self._shape_requested = False
        self._closed = False
        self.error: Optional[TrackingError] = None
        self.scheduler = self._build_scheduler()

    @classmethod
    def with_mediapipe(cls, frame_source, cfg: Optional[TrackingConfig] = None, use_locator: bool = True) -> "TrackingSession":
        """Build a session backed by MediaPipe models; raises ModelUnavailable."""
        from cv.capabilities import MediaPipeFaceLocator, MediaPipeLandmarkExtractor

        cfg = cfg or TrackingConfig()
        locator = MediaPipeFaceLocator(cfg) if use_locator else None
        try:
            extractor = MediaPipeLandmarkExtractor(cfg)
        except ModelUnavailable:
            if locator is not None:
                locator.close()
            raise
        return cls(frame_source, locator=locator, extractor=extractor, cfg=cfg)

    def _build_scheduler(self) -> DetectionScheduler:
        kwargs: Dict[str, Any] = {}
        if self._clock is not None:
            kwargs["clock"] = self._clock
        return DetectionScheduler(
            self.frame_source,
            locator=self.locator,
            extractor=self.extractor,
            interval_sec=self.cfg.detection_interval_sec,
            timeout_sec=self.cfg.detection_timeout_sec,
            retry_policy=RetryPolicy(
                backoff_sec=self.cfg.retry_backoff_sec,
                max_consecutive_failures=self.cfg.max_consecutive_failures,
            ),
            on_result=self._apply,
            on_error=self._report_error,
            token=CancellationToken(),
            **kwargs,
        )

    # ---- subscriptions ----
    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a per-cycle event callback; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def on_tracking_error(self, callback: ErrorCallback) -> None:
        self._error_handlers.append(callback)

    # ---- lifecycle ----
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._closed:
            raise RuntimeError("session is closed")
        if self.running:
            logger.warning("Tracking session already running")
            return
        if self.scheduler.token.cancelled:
            self.scheduler.rearm()
        self.error = None
        logger.info(
            "Starting tracking session (locator=%s, extractor=%s)",
            type(self.locator).__name__ if self.locator is not None else None,
            type(self.extractor).__name__ if self.extractor is not None else None,
        )
        self._task = asyncio.create_task(self._run_loop())

    async def _run_loop(self) -> None:
        try:
            await self.scheduler.run()
        except ModelUnavailable as exc:
            self._fail(exc)
        except Exception as exc:
            logger.exception("Tracking loop crashed")
            err = TrackingError(f"tracking loop crashed: {exc}")
            err.__cause__ = exc
            self._fail(err)

    async def step(self) -> Optional[TrackingEvent]:
        """Drive one scheduler tick from the caller; returns the event it produced."""
        if self._closed:
            raise RuntimeError("session is closed")
        if self.scheduler.token.cancelled and self.error is None:
            self.scheduler.rearm()
        try:
            result = await self.scheduler.tick()
        except ModelUnavailable as exc:
            self._fail(exc)
            raise
        if result is None:
            return None
        return self._latest_event

    async def stop(self) -> None:
        """Stop scheduling, abandon any in-flight detection and release state."""
        self.scheduler.token.cancel()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._release_state()
        logger.info("Tracking session stopped")

    async def aclose(self) -> None:
        await self.stop()
        if self._closed:
            return
        self._closed = True
        for cap in (self.locator, self.extractor):
            close = getattr(cap, "close", None)
            if close is None:
                continue
            try:
                await asyncio.to_thread(close)
            except Exception:
                logger.warning("Closing %s failed", type(cap).__name__, exc_info=True)

    async def __aenter__(self) -> "TrackingSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _release_state(self) -> None:
        self.tracker.reset()
        self.smoother.reset()
        self._latest_box = None
        self._latest_event = None
        self._shape_requested = False

    def _fail(self, exc: TrackingError) -> None:
        self.error = exc
        logger.error("Tracking session failed: %s", exc)
        self.scheduler.token.cancel()
        self._release_state()
        self._report_error(exc)

    # ---- face shape ----
    def request_face_shape(self) -> None:
        """Attach a face-shape classification to the next event with a detected face."""
        self._shape_requested = True

    def latest_face_shape(self) -> Optional[FaceShape]:
        """Classify the most recent detection, or None when no face is tracked."""
        if self._latest_box is None:
            return None
        return classify(self._latest_box)

    # ---- per-cycle application ----
    @property
    def stability(self) -> StabilityState:
        return self.tracker.state

    @property
    def latest_event(self) -> Optional[TrackingEvent]:
        return self._latest_event

    def _apply(self, result: DetectionResult) -> TrackingEvent:
        frame = result.frame
        landmarks = result.landmarks
        box = result.box

        if self.extractor is not None:
            detected = landmarks is not None
        else:
            detected = box is not None
        if detected and box is None and landmarks is not None:
            box = landmarks.bounding_box()
        self._latest_box = box if detected else None

        anchor = None
        if landmarks is not None:
            anchor = self.pose_estimator.eye_anchor(landmarks) or landmarks.centroid()
        elif box is not None:
            anchor = box.center
        centered = bool(detected and anchor is not None and is_centered(
            anchor, frame.width, frame.height, self.cfg.center_threshold
        ))

        prev = self.tracker.state
        state = self.tracker.update(detected, centered)
        if prev.phase is not state.phase:
            logger.info("Tracking %s -> %s", prev.phase.value, state.phase.value)
        if not state.is_stable and self.smoother.has_state:
            self.smoother.reset()

        pose = None
        notice = None
        if not detected:
            notice = ErrorKind.NO_FACE_DETECTED
        elif state.is_stable and landmarks is not None:
            smoothed = self.smoother.update(landmarks)
            try:
                pose = self.pose_estimator.estimate(smoothed)
            except DegeneratePose as exc:
                # Overlay is hidden for this cycle.
                logger.debug("Skipping pose: %s", exc)
                notice = ErrorKind.DEGENERATE_POSE

        shape = None
        if self._shape_requested and self._latest_box is not None:
            shape = classify(self._latest_box)
            self._shape_requested = False
            logger.info("Face shape: %s (ratio=%.3f)", shape.value, self._latest_box.aspect_ratio)

        event = TrackingEvent(
            timestamp=frame.timestamp,
            face_detected=detected,
            centered=centered,
            stability=state,
            shape=shape,
            pose=pose,
            notice=notice,
        )
        self._latest_event = event
        self._publish(event)
        return event

    def _publish(self, event: TrackingEvent) -> None:
        for cb in list(self._subscribers):
            try:
                cb(event)
            except Exception:
                logger.exception("Tracking event subscriber failed")

    def _report_error(self, exc: Exception) -> None:
        kind = getattr(exc, "kind", ErrorKind.DETECTION_TRANSIENT)
        for cb in list(self._error_handlers):
            try:
                cb(kind, exc)
            except Exception:
                logger.exception("Tracking error handler failed")

    def stats(self) -> Dict[str, Any]:
        st = self.tracker.state
        return {
            "running": self.running,
            "state": st.phase.value,
            "count": st.count,
            "smoothing": self.smoother.has_state,
            "error": str(self.error) if self.error is not None else None,
            "scheduler": self.scheduler.stats(),
        }
