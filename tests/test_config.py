import pytest

from config import TrackingConfig, load_tracking_config


def test_defaults_are_valid():
    cfg = TrackingConfig().validate()
    assert cfg.required_centered_frames == 15
    assert cfg.center_threshold == pytest.approx(0.12)
    assert cfg.smoothing_alpha == pytest.approx(0.7)
    assert cfg.detection_interval_sec == pytest.approx(0.1)
    assert cfg.retry_backoff_sec == pytest.approx(1.0)
    assert cfg.left_eye_index != cfg.right_eye_index


@pytest.mark.parametrize("field,value", [
    ("required_centered_frames", 0),
    ("center_threshold", 0.0),
    ("smoothing_alpha", 1.0),
    ("scale_k", 0.0),
    ("detection_timeout_ms", 0.0),
    ("max_consecutive_failures", 0),
    ("right_eye_index", 468),
])
def test_validate_rejects_out_of_range(field, value):
    cfg = TrackingConfig(**{field: value})
    with pytest.raises(ValueError):
        cfg.validate()


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TRYON_REQUIRED_CENTERED_FRAMES", "20")
    monkeypatch.setenv("TRYON_CENTER_THRESHOLD", "0.2")
    monkeypatch.setenv("TRYON_REFINE_LANDMARKS", "off")
    monkeypatch.setenv("TRYON_DETECTION_INTERVAL_MS", "not-a-number")
    cfg = load_tracking_config()
    assert cfg.required_centered_frames == 20
    assert cfg.center_threshold == pytest.approx(0.2)
    assert cfg.refine_landmarks is False
    assert cfg.detection_interval_ms == pytest.approx(100.0)


def test_env_values_are_clamped(monkeypatch):
    monkeypatch.setenv("TRYON_SMOOTHING_ALPHA", "1.5")
    monkeypatch.setenv("TRYON_REQUIRED_CENTERED_FRAMES", "-3")
    cfg = load_tracking_config()
    assert cfg.smoothing_alpha == pytest.approx(0.99)
    assert cfg.required_centered_frames == 1
