"""
Tests for frame -> event detectors.
"""

from rollmetrics.detectors import FrameFeatures, detect_events, estimate_intensity
from rollmetrics.kpi import compute_avg_intensity


class TestDetectors:

    def test_intensity_sample_clamped(self):
        assert estimate_intensity(FrameFeatures(ts=5.0, bbox_area_pct=1.7)).value == 1.0
        assert estimate_intensity(FrameFeatures(ts=5.0, bbox_area_pct=0.25)).kind == "intensity_sample"
        assert estimate_intensity(FrameFeatures(ts=5.0)) is None

    def test_detect_events_only_emits_intensity(self):
        assert detect_events(FrameFeatures(ts=1.0, has_pose=True)) == []
        frames = [FrameFeatures(ts=float(i), bbox_area_pct=0.1 * i) for i in range(1, 4)]
        events = [e for f in frames for e in detect_events(f)]
        assert [e.kind for e in events] == ["intensity_sample"] * 3
        assert compute_avg_intensity(events) == 20
