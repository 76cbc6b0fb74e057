"""Unit tests for settings and segment models."""
import pytest
import numpy as np
from hapticsync.audio.models import Segment, SegmentState, SyncSettings
from hapticsync.core.config import settings


def test_sync_settings_defaults_from_config():
    """Test that session settings start from the application defaults."""
    sync_settings = SyncSettings.from_settings(settings)

    assert sync_settings.enabled == settings.sync_enabled
    assert sync_settings.sensitivity == settings.sync_sensitivity
    assert sync_settings.latency_offset_ms == settings.sync_latency_offset_ms


def test_sync_settings_reject_non_positive_sensitivity():
    """Test that sensitivity must be positive."""
    with pytest.raises(ValueError):
        SyncSettings(sensitivity=0.0)


def test_sync_settings_reject_inverted_clamp():
    """Test that the clamp must satisfy 0 <= min <= max <= 1."""
    with pytest.raises(ValueError):
        SyncSettings(min_intensity=0.8, max_intensity=0.2)
    with pytest.raises(ValueError):
        SyncSettings(max_intensity=1.5)


def test_sync_settings_reject_wrong_types():
    """Test that settings values must have the right JSON types."""
    with pytest.raises(TypeError):
        SyncSettings(latency_offset_ms="100")
    with pytest.raises(TypeError):
        SyncSettings(latency_offset_ms=None)
    with pytest.raises(TypeError):
        SyncSettings(enabled="false")
    with pytest.raises(TypeError):
        SyncSettings(sensitivity=True)
    with pytest.raises(ValueError):
        SyncSettings(latency_offset_ms=12.5)
    with pytest.raises(ValueError):
        SyncSettings(max_intensity=float("nan"))


def test_sync_settings_normalize_numbers():
    """Test that ints and whole floats are stored with the field's type."""
    sync_settings = SyncSettings(sensitivity=2, min_intensity=0, latency_offset_ms=150.0)

    assert sync_settings.sensitivity == 2.0
    assert isinstance(sync_settings.sensitivity, float)
    assert isinstance(sync_settings.min_intensity, float)
    assert sync_settings.latency_offset_ms == 150
    assert isinstance(sync_settings.latency_offset_ms, int)


def make_segment(n_frames=4, start=10.0, end=12.5, hop=0.5):
    segment = Segment(index=1, start_time=start, end_time=end, hop_seconds=hop)
    segment.intensities = np.linspace(0.0, 1.0, n_frames, dtype=np.float32)
    segment.mark(SegmentState.READY)
    return segment


def test_segment_frame_index_rounds_to_nearest():
    """Test that a time maps to the nearest frame."""
    segment = make_segment()

    assert segment.frame_index_at(10.0) == 0
    assert segment.frame_index_at(10.2) == 0
    assert segment.frame_index_at(10.25) == 1
    assert segment.frame_index_at(10.49) == 1
    assert segment.frame_index_at(11.2) == 2
    assert segment.frame_index_at(11.3) == 3
    assert segment.frame_index_at(11.99) == 3


def test_segment_tail_maps_to_last_frame():
    """Test that the tail past the last full frame uses the last frame."""
    segment = make_segment()
    assert segment.frame_index_at(12.3) == 3


def test_segment_without_frames_has_no_index():
    """Test that an unanalyzed segment cannot be queried."""
    segment = Segment(index=0, start_time=0.0, end_time=1.0, hop_seconds=0.01)
    with pytest.raises(LookupError):
        segment.frame_index_at(0.5)


def test_segment_covers_half_open_range():
    """Test that start is inclusive and end is exclusive."""
    segment = make_segment()

    assert segment.covers(10.0)
    assert segment.covers(12.49)
    assert not segment.covers(12.5)
    assert not segment.covers(9.99)


def test_segment_rejects_inverted_bounds():
    """Test that a segment cannot end before it starts."""
    with pytest.raises(ValueError):
        Segment(index=0, start_time=5.0, end_time=4.0, hop_seconds=0.01)


def test_segment_mark_and_release():
    """Test state transitions and releasing decoded samples."""
    segment = Segment(index=0, start_time=0.0, end_time=1.0, hop_seconds=0.01)
    segment.samples = np.zeros(10, dtype=np.float32)

    segment.mark(SegmentState.FAILED, "fetch failed")
    segment.release_samples()

    assert segment.state == SegmentState.FAILED
    assert segment.error == "fetch failed"
    assert segment.samples is None
    assert not segment.is_ready
