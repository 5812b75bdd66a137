# cv/scheduler.py
# -*- coding: utf-8 -*-
"""Bounded-rate detection loop over a frame source.

At most one call per capability is ever in flight, calls arriving faster than
the configured interval are dropped (never queued), and a failing capability
is retried after a fixed backoff instead of immediately.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from cv.errors import DetectionError, ModelUnavailable
from cv.types import BoundingBox, Frame, LandmarkSet, as_landmark_set

logger = logging.getLogger(__name__)


class CancellationToken:
    """Checked by the scheduler at every iteration boundary and after every await."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class RetryPolicy:
    backoff_sec: float = 1.0
    # Consecutive failed cycles before the error is reported to the owner
    max_consecutive_failures: int = 3

    def should_report(self, consecutive_failures: int) -> bool:
        """Report once per failure streak, when it reaches the limit."""
        return consecutive_failures == max(1, int(self.max_consecutive_failures))


@dataclass(frozen=True)
class DetectionResult:
    frame: Frame
    box: Optional[BoundingBox]
    landmarks: Optional[LandmarkSet]


class DetectionScheduler:
    """
    Drives FaceLocator / LandmarkExtractor calls for frames pulled from a
    FrameSource.

    Usage:
        sched = DetectionScheduler(source, extractor=ext, on_result=apply)
        task = asyncio.create_task(sched.run())
        ...
        sched.token.cancel()
    """

    def __init__(
        self,
        frame_source,
        locator=None,
        extractor=None,
        *,
        interval_sec: float = 0.1,
        timeout_sec: float = 2.0,
        retry_policy: Optional[RetryPolicy] = None,
        on_result: Optional[Callable[[DetectionResult], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
        token: Optional[CancellationToken] = None,
        clock: Callable[[], float] = time.monotonic,
        idle_poll_sec: float = 0.005,
    ):
        if locator is None and extractor is None:
            raise ValueError("at least one of locator / extractor is required")
        self.frame_source = frame_source
        self.locator = locator
        self.extractor = extractor
        self.interval_sec = max(0.0, float(interval_sec))
        self.timeout_sec = float(timeout_sec)
        self.retry_policy = retry_policy or RetryPolicy()
        self.on_result = on_result
        self.on_error = on_error
        self.token = token or CancellationToken()
        self._clock = clock
        self.idle_poll_sec = max(0.0, float(idle_poll_sec))

        self._in_flight: Dict[str, bool] = {"locate": False, "extract": False}
        self._last_call: Optional[float] = None
        self._retry_at: Optional[float] = None
        self._consecutive_failures = 0

        self._cycles = 0
        self._dropped = 0
        self._deferred = 0
        self._failures = 0
        self._discarded = 0

    @property
    def busy(self) -> bool:
        return any(self._in_flight.values())

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def rearm(self, token: Optional[CancellationToken] = None) -> None:
        """Start over with a fresh token. Calls still in flight stay guarded."""
        self.token = token or CancellationToken()
        self._last_call = None
        self._retry_at = None
        self._consecutive_failures = 0

    def next_delay(self) -> float:
        """Seconds until the next call is permitted (0 if it already is)."""
        now = self._clock()
        due = now
        if self._last_call is not None:
            due = max(due, self._last_call + self.interval_sec)
        if self._retry_at is not None:
            due = max(due, self._retry_at)
        return max(0.0, due - now)

    async def tick(self) -> Optional[DetectionResult]:
        """Run one detection cycle if permitted; return the applied result.

        Returns None when the tick was a no-op (cancelled, busy, throttled,
        backing off, no frame), when the cycle failed transiently, or when
        its result was discarded after cancellation.
        """
        token = self.token
        if token.cancelled:
            return None
        if self.busy:
            self._dropped += 1
            return None
        now = self._clock()
        if self._retry_at is not None and now < self._retry_at:
            self._deferred += 1
            return None
        if self._last_call is not None and (now - self._last_call) < self.interval_sec:
            self._dropped += 1
            return None

        frame = self.frame_source.next_frame()
        if frame is None:
            return None
        self._last_call = now
        self._retry_at = None

        try:
            box = None
            landmarks = None
            if self.locator is not None:
                box = self._to_box(await self._call("locate", self.locator.locate, frame))
                if token.cancelled:
                    self._discarded += 1
                    return None
            if self.extractor is not None:
                landmarks = self._to_landmarks(await self._call("extract", self.extractor.extract, frame))
        except ModelUnavailable:
            logger.error("Detection model unavailable; stopping scheduler", exc_info=True)
            token.cancel()
            raise
        except DetectionError as exc:
            if token.cancelled:
                self._discarded += 1
                return None
            self._handle_failure(exc)
            return None

        if token.cancelled:
            self._discarded += 1
            return None

        if self._consecutive_failures:
            logger.info("Detection recovered after %d failed cycle(s)", self._consecutive_failures)
        self._consecutive_failures = 0
        self._cycles += 1
        result = DetectionResult(frame=frame, box=box, landmarks=landmarks)
        if self.on_result is not None:
            self.on_result(result)
        return result

    async def _call(self, key: str, fn: Callable[[Frame], Awaitable[Any]], frame: Frame) -> Any:
        # The guard is released by the task itself, not by this await: a timed
        # out call may still be running in a worker thread.
        self._in_flight[key] = True
        try:
            task = asyncio.ensure_future(fn(frame))
        except Exception as exc:
            self._in_flight[key] = False
            raise DetectionError(f"{key} failed: {exc}", capability=key) from exc
        task.add_done_callback(functools.partial(self._call_finished, key))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_sec)
        except (ModelUnavailable, DetectionError):
            raise
        except asyncio.TimeoutError as exc:
            raise DetectionError(f"{key} timed out after {self.timeout_sec:.2f}s", capability=key) from exc
        except Exception as exc:
            raise DetectionError(f"{key} failed: {exc}", capability=key) from exc

    def _call_finished(self, key: str, task: "asyncio.Future") -> None:
        self._in_flight[key] = False
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("%s call finished with %r", key, exc)

    @staticmethod
    def _to_box(value: Any) -> Optional[BoundingBox]:
        if value is None or isinstance(value, BoundingBox):
            return value
        raise DetectionError(f"locate returned {type(value).__name__}, expected a BoundingBox", capability="locate")

    @staticmethod
    def _to_landmarks(value: Any) -> Optional[LandmarkSet]:
        try:
            return as_landmark_set(value)
        except (TypeError, ValueError) as exc:
            raise DetectionError(f"extract returned malformed landmarks: {exc}", capability="extract") from exc

    def _handle_failure(self, exc: DetectionError) -> None:
        self._failures += 1
        self._consecutive_failures += 1
        backoff = max(0.0, float(self.retry_policy.backoff_sec))
        self._retry_at = self._clock() + backoff
        logger.warning(
            "Detection cycle failed (%d in a row): %s; retrying in %.2fs",
            self._consecutive_failures, exc, backoff,
        )
        if self.on_error is not None and self.retry_policy.should_report(self._consecutive_failures):
            self.on_error(exc)

    async def run(self) -> None:
        """Tick until cancelled, sleeping until the next permitted call in between."""
        logger.info("Detection loop started (interval=%.3fs)", self.interval_sec)
        try:
            while not self.token.cancelled:
                await self.tick()
                if self.token.cancelled:
                    break
                delay = self.next_delay()
                await asyncio.sleep(delay if delay > 0 else self.idle_poll_sec)
        finally:
            logger.info("Detection loop stopped")

    def stats(self) -> Dict[str, Any]:
        return {
            "cycles": self._cycles,
            "dropped": self._dropped,
            "deferred": self._deferred,
            "failures": self._failures,
            "consecutive_failures": self._consecutive_failures,
            "discarded": self._discarded,
            "busy": self.busy,
        }
