import math
from typing import Any, Dict, List, Optional, Sequence

import cv2
import numpy as np

from cv.types import LandmarkSet, StabilityPhase, TrackingEvent

PHASE_COLORS = {
    StabilityPhase.NO_FACE.value: "#7f7f7f",
    StabilityPhase.OFF_CENTER.value: "#d62728",
    StabilityPhase.CENTERING.value: "#ff7f0e",
    StabilityPhase.STABLE.value: "#2ca02c",
}
PHASE_LEVELS = [
    StabilityPhase.NO_FACE.value,
    StabilityPhase.OFF_CENTER.value,
    StabilityPhase.CENTERING.value,
    StabilityPhase.STABLE.value,
]


def draw_overlay(frame_bgr: np.ndarray, event: Optional[TrackingEvent],
                 landmarks: Optional[LandmarkSet] = None,
                 eye_indices: Sequence[int] = (), center_threshold: Optional[float] = None,
                 scale_k: float = 8.0 / 640.0) -> np.ndarray:
    """Draw landmarks, pose anchor/roll and stability text on the frame in place."""
    h, w = frame_bgr.shape[:2]
    if center_threshold is not None and center_threshold > 0:
        cv2.circle(frame_bgr, (w // 2, h // 2), int(center_threshold * w), (255, 255, 255), 1)

    if landmarks is not None and len(landmarks):
        for (x, y, _z) in landmarks.points.astype(int):
            cv2.circle(frame_bgr, (int(x), int(y)), 1, (0, 255, 255), -1)
        for idx in eye_indices:
            if 0 <= idx < len(landmarks):
                kp = landmarks[idx]
                cv2.circle(frame_bgr, (int(kp.x), int(kp.y)), 3, (0, 0, 255), -1)

    if event is None:
        return frame_bgr

    stable = event.stability.phase is StabilityPhase.STABLE
    color = (0, 255, 0) if stable else (0, 165, 255) if event.face_detected else (128, 128, 128)
    txt = f"{event.stability.phase.value} {event.stability.count}"
    if event.shape is not None:
        txt += f" shape={event.shape.value}"
    cv2.putText(frame_bgr, txt, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)

    if event.pose is not None:
        ax, ay, _ = event.pose.anchor
        # Bar spans the eye distance recovered from the overlay scale.
        half = max(4.0, event.pose.scale / scale_k / 2.0)
        dx = math.cos(event.pose.rotation_radians) * half
        dy = math.sin(event.pose.rotation_radians) * half
        p0 = (int(ax - dx), int(ay - dy))
        p1 = (int(ax + dx), int(ay + dy))
        cv2.line(frame_bgr, p0, p1, (255, 0, 255), 2)
        cv2.circle(frame_bgr, (int(ax), int(ay)), 5, (255, 0, 255), 2)
    return frame_bgr


def plot_stability_timeline(events: List[Dict[str, Any]], out_png: str, title: str = "Tracking stability") -> None:
    """Plot recorded stability phases (and pose scale when present) over time."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    if not events:
        fig, ax = plt.subplots(figsize=(8, 2))
        ax.text(0.5, 0.5, "No events", ha="center", va="center")
        ax.set_axis_off()
        fig.savefig(out_png, bbox_inches="tight")
        plt.close(fig)
        return

    ts = [float(e.get("ts", 0.0)) for e in events]
    levels = [PHASE_LEVELS.index(e.get("state")) if e.get("state") in PHASE_LEVELS else 0 for e in events]
    colors = [PHASE_COLORS.get(e.get("state"), "#7f7f7f") for e in events]

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 4), sharex=True)
    ax1.step(ts, levels, where="post", color="#444444", linewidth=1)
    ax1.scatter(ts, levels, c=colors, s=10)
    ax1.set_yticks(range(len(PHASE_LEVELS)))
    ax1.set_yticklabels(PHASE_LEVELS)
    ax1.set_title(title)

    scale_ts = [t for t, e in zip(ts, events) if e.get("pose")]
    scales = [float(e["pose"]["scale"]) for e in events if e.get("pose")]
    ax2.plot(scale_ts, scales, color="#1f77b4", linewidth=1)
    ax2.set_ylabel("pose scale")
    ax2.set_xlabel("time (s)")

    fig.tight_layout()
    fig.savefig(out_png, bbox_inches="tight")
    plt.close(fig)
