import numpy as np

from cv.types import LandmarkSet, Pose, StabilityPhase, StabilityState, TrackingEvent
from viz.visualizer import draw_overlay, plot_stability_timeline


def test_draw_overlay_marks_pose_and_landmarks():
    img = np.zeros((480, 640, 3), dtype=np.uint8)
    ev = TrackingEvent(
        1.0, True, True, StabilityState(StabilityPhase.STABLE, 15),
        pose=Pose(anchor=(320.0, 240.0, 0.0), scale=0.5, rotation_radians=0.0),
    )
    lm = LandmarkSet([(300.0, 240.0), (340.0, 240.0), (100.0, 100.0)])
    out = draw_overlay(img, ev, landmarks=lm, eye_indices=(0, 1), center_threshold=0.12, scale_k=0.0125)
    assert out is img
    assert img[240, 320].any()
    assert img[100, 100].any()


def test_draw_overlay_without_event():
    img = np.zeros((120, 160, 3), dtype=np.uint8)
    draw_overlay(img, None)
    assert not img.any()


def test_plot_timeline(tmp_path):
    events = [
        {"type": "tracking", "ts": float(i), "state": s, "count": i, "pose": None}
        for i, s in enumerate(["no_face", "centering", "centering", "stable"])
    ]
    events[-1]["pose"] = {"anchor": [320.0, 240.0, 0.0], "scale": 0.5, "rotation_radians": 0.0}
    out = tmp_path / "timeline.png"
    plot_stability_timeline(events, str(out))
    assert out.exists() and out.stat().st_size > 0

    empty = tmp_path / "empty.png"
    plot_stability_timeline([], str(empty))
    assert empty.exists()
