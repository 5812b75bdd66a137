import asyncio

import pytest

from config import TrackingConfig
from cv.errors import ErrorKind, ModelUnavailable
from cv.session import TrackingSession
from cv.types import BoundingBox, FaceShape, Frame, StabilityPhase

# eyes at indices 0/1, centered on a 640x480 frame; box 80x140 (ratio 1.75)
FACE = [(300.0, 240.0), (340.0, 240.0), (280.0, 180.0), (360.0, 320.0)]
SAME_EYES = [(320.0, 240.0), (320.0, 240.0), (280.0, 180.0), (360.0, 320.0)]


class StepClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


class FakeSource:
    def __init__(self):
        self.n = 0

    def next_frame(self):
        frame = Frame(width=640, height=480, timestamp=float(self.n))
        self.n += 1
        return frame


class ScriptedExtractor:
    """Returns script[i] for the i-th call (last entry repeats)."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0
        self.closed = False

    async def extract(self, frame):
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


def _cfg(**kw):
    base = dict(
        required_centered_frames=5,
        left_eye_index=0,
        right_eye_index=1,
        scale_k=0.0125,
        retry_backoff_ms=0.0,
    )
    base.update(kw)
    return TrackingConfig(**base)


def _drive(session, clock, steps):
    async def main():
        out = []
        for _ in range(steps):
            # 0.25s is exact in binary and larger than the 100ms interval
            clock.t += 0.25
            out.append(await session.step())
        return out

    return asyncio.run(main())


def test_stable_exactly_after_required_centered_frames():
    clock = StepClock()
    ext = ScriptedExtractor([None] * 10 + [FACE])
    session = TrackingSession(FakeSource(), extractor=ext, cfg=_cfg(), clock=clock)
    events = []
    session.subscribe(events.append)

    returned = _drive(session, clock, 40)

    assert returned == events
    assert len(events) == 40
    for ev in events[:10]:
        assert not ev.face_detected
        assert ev.stability.phase == StabilityPhase.NO_FACE
        assert ev.notice == ErrorKind.NO_FACE_DETECTED
        assert ev.pose is None
    for i, ev in enumerate(events[10:14]):
        assert ev.centered
        assert ev.stability.phase == StabilityPhase.CENTERING
        assert ev.stability.count == i + 1
        assert ev.pose is None
    for ev in events[14:]:
        assert ev.stability.phase == StabilityPhase.STABLE
        assert ev.pose is not None
        assert ev.pose.anchor == pytest.approx((320.0, 240.0, 0.0))
        assert ev.pose.scale == pytest.approx(0.5)
        assert ev.pose.rotation_radians == 0.0


def test_face_loss_resets_stability_and_smoothing():
    clock = StepClock()
    ext = ScriptedExtractor([FACE] * 6 + [None] + [FACE])
    session = TrackingSession(FakeSource(), extractor=ext, cfg=_cfg(), clock=clock)

    events = _drive(session, clock, 6)
    assert events[-1].stability.is_stable
    assert session.smoother.has_state
    assert session.latest_face_shape() == FaceShape.OBLONG

    lost = _drive(session, clock, 1)[0]
    assert lost.stability.phase == StabilityPhase.NO_FACE
    assert lost.pose is None
    assert not session.smoother.has_state
    assert session.latest_face_shape() is None

    back = _drive(session, clock, 1)[0]
    assert back.stability.phase == StabilityPhase.CENTERING
    assert back.stability.count == 1


def test_off_center_face_never_stabilizes():
    off = [(x + 200.0, y) for x, y in FACE]
    clock = StepClock()
    session = TrackingSession(FakeSource(), extractor=ScriptedExtractor([off]), cfg=_cfg(), clock=clock)
    events = _drive(session, clock, 10)
    assert all(ev.face_detected and not ev.centered for ev in events)
    assert all(ev.stability.phase == StabilityPhase.OFF_CENTER for ev in events)
    assert all(ev.pose is None for ev in events)


def test_degenerate_eyes_hide_overlay():
    clock = StepClock()
    session = TrackingSession(
        FakeSource(), extractor=ScriptedExtractor([SAME_EYES]), cfg=_cfg(required_centered_frames=2), clock=clock,
    )
    events = _drive(session, clock, 3)
    assert events[-1].stability.is_stable
    assert events[-1].pose is None
    assert events[-1].notice == ErrorKind.DEGENERATE_POSE


def test_face_shape_attached_once_on_request():
    clock = StepClock()
    session = TrackingSession(FakeSource(), extractor=ScriptedExtractor([None, FACE]), cfg=_cfg(), clock=clock)
    assert session.latest_face_shape() is None
    session.request_face_shape()
    events = _drive(session, clock, 3)
    # Request stays pending through the no-face cycle.
    assert events[0].shape is None
    assert events[1].shape == FaceShape.OBLONG
    assert events[2].shape is None


def test_locator_only_session_uses_box_center():
    class BoxLocator:
        async def locate(self, frame):
            return BoundingBox(270, 170, 100, 140)

    clock = StepClock()
    session = TrackingSession(FakeSource(), locator=BoxLocator(), cfg=_cfg(required_centered_frames=2), clock=clock)
    events = _drive(session, clock, 3)
    assert all(ev.face_detected and ev.centered for ev in events)
    assert events[-1].stability.is_stable
    # No landmarks, no overlay transform.
    assert events[-1].pose is None
    assert session.latest_face_shape() == FaceShape.HEART


def test_transient_failures_reported_after_streak():
    clock = StepClock()
    boom = RuntimeError("camera hiccup")
    ext = ScriptedExtractor([boom, boom, boom, boom, FACE])
    session = TrackingSession(FakeSource(), extractor=ext, cfg=_cfg(max_consecutive_failures=3), clock=clock)
    reported = []
    session.on_tracking_error(lambda kind, exc: reported.append(kind))

    events = _drive(session, clock, 5)
    assert events[:4] == [None] * 4
    assert events[4] is not None
    assert reported == [ErrorKind.DETECTION_TRANSIENT]
    assert session.error is None


def test_model_unavailable_is_fatal():
    clock = StepClock()
    ext = ScriptedExtractor([ModelUnavailable("face mesh missing")])
    session = TrackingSession(FakeSource(), extractor=ext, cfg=_cfg(), clock=clock)
    reported = []
    session.on_tracking_error(lambda kind, exc: reported.append(kind))

    with pytest.raises(ModelUnavailable):
        _drive(session, clock, 1)
    assert isinstance(session.error, ModelUnavailable)
    assert reported == [ErrorKind.MODEL_UNAVAILABLE]
    # No further detection once failed.
    assert _drive(session, clock, 3) == [None] * 3
    assert ext.calls == 1


def test_subscriber_errors_do_not_break_the_loop():
    clock = StepClock()
    session = TrackingSession(FakeSource(), extractor=ScriptedExtractor([FACE]), cfg=_cfg(), clock=clock)
    seen = []

    def bad(ev):
        raise RuntimeError("renderer failed")

    session.subscribe(bad)
    unsubscribe = session.subscribe(seen.append)
    _drive(session, clock, 2)
    assert len(seen) == 2
    unsubscribe()
    _drive(session, clock, 1)
    assert len(seen) == 2


def test_start_stop_and_close():
    ext = ScriptedExtractor([FACE])
    session = TrackingSession(FakeSource(), extractor=ext, cfg=_cfg(detection_interval_ms=5.0))
    events = []
    session.subscribe(events.append)

    async def main():
        await session.start()
        assert session.running
        await asyncio.sleep(0.2)
        await session.stop()
        assert not session.running
        assert session.stability.phase == StabilityPhase.NO_FACE
        assert session.latest_event is None
        n = len(events)
        await asyncio.sleep(0.05)
        assert len(events) == n
        await session.aclose()
        with pytest.raises(RuntimeError):
            await session.start()

    asyncio.run(main())
    assert len(events) > 0
    assert ext.closed


def test_fatal_error_stops_background_loop():
    ext = ScriptedExtractor([ModelUnavailable("no model")])
    session = TrackingSession(FakeSource(), extractor=ext, cfg=_cfg(detection_interval_ms=5.0))
    reported = []
    session.on_tracking_error(lambda kind, exc: reported.append(kind))

    async def main():
        await session.start()
        await asyncio.sleep(0.1)
        assert not session.running
        await session.aclose()

    asyncio.run(main())
    assert reported == [ErrorKind.MODEL_UNAVAILABLE]
    assert session.stats()["error"] == "no model"


def test_requires_a_capability():
    with pytest.raises(ValueError):
        TrackingSession(FakeSource())


def test_empty_extractor_result_keeps_loop_alive():
    ext = ScriptedExtractor([[]])
    session = TrackingSession(FakeSource(), extractor=ext, cfg=_cfg(detection_interval_ms=5.0))
    events = []
    reported = []
    session.subscribe(events.append)
    session.on_tracking_error(lambda kind, exc: reported.append(kind))

    async def main():
        await session.start()
        await asyncio.sleep(0.1)
        assert session.running
        await session.aclose()

    asyncio.run(main())
    assert events
    assert all(not ev.face_detected for ev in events)
    assert all(ev.notice == ErrorKind.NO_FACE_DETECTED for ev in events)
    assert reported == []
    assert session.error is None


def test_unexpected_loop_error_is_reported():
    class BrokenSource:
        def next_frame(self):
            raise RuntimeError("capture device gone")

    session = TrackingSession(BrokenSource(), extractor=ScriptedExtractor([FACE]), cfg=_cfg(detection_interval_ms=5.0))
    reported = []
    session.on_tracking_error(lambda kind, exc: reported.append(exc))

    async def main():
        await session.start()
        await asyncio.sleep(0.05)
        assert not session.running
        await session.aclose()

    asyncio.run(main())
    assert session.error is not None
    assert "capture device gone" in str(session.error)
    assert reported == [session.error]


def test_flat_landmarks_give_no_face_box():
    # Eyes only: zero-height extent, so no box to classify.
    eyes_only = [(300.0, 240.0), (340.0, 240.0)]
    clock = StepClock()
    session = TrackingSession(FakeSource(), extractor=ScriptedExtractor([eyes_only]), cfg=_cfg(), clock=clock)
    session.request_face_shape()
    events = _drive(session, clock, 2)
    assert all(ev.face_detected and ev.centered for ev in events)
    assert all(ev.shape is None for ev in events)
    assert session.latest_face_shape() is None
