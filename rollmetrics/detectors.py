"""
Frame -> RawEvent detectors for the event-driven KPI path.

Only intensity is derived today. Position, transition, submission and escape
classification need a grappling model that does not exist yet; those detectors
emit nothing and every consumer must cope with an empty event stream.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .types import RawEvent


@dataclass(frozen=True)
class FrameFeatures:
    ts: float
    bbox_area_pct: Optional[float] = None
    has_pose: Optional[bool] = None


def estimate_intensity(frame: FrameFeatures) -> Optional[RawEvent]:
    """Bbox area as a 0..1 intensity sample; the report averages these."""
    if frame.bbox_area_pct is None:
        return None
    value = max(0.0, min(1.0, frame.bbox_area_pct))
    return RawEvent(ts=frame.ts, kind="intensity_sample", value=value)


def placeholder_position_detector(frame: FrameFeatures) -> list[RawEvent]:
    return []


def detect_transitions(frame: FrameFeatures) -> list[RawEvent]:
    return []


def detect_submissions(frame: FrameFeatures) -> list[RawEvent]:
    return []


def detect_escapes(frame: FrameFeatures) -> list[RawEvent]:
    return []


def detect_events(frame: FrameFeatures) -> list[RawEvent]:
    """Run every detector on one frame, in a stable order."""
    events: list[RawEvent] = []
    sample = estimate_intensity(frame)
    if sample is not None:
        events.append(sample)
    for detector in (placeholder_position_detector, detect_transitions, detect_submissions, detect_escapes):
        events.extend(detector(frame))
    return events
