"""
Session metrics engine: live KPIs from per-frame pose signals and a stored
per-session report, from either the frame accumulator or a raw event log.
"""
from .report import build_report_from_events, build_session_report
from .store import SessionStore
from .tracker import SessionTracker
from .types import FrameUpdatePayload, RawEvent, SessionRecord

__all__ = [
    "FrameUpdatePayload",
    "RawEvent",
    "SessionRecord",
    "SessionStore",
    "SessionTracker",
    "build_report_from_events",
    "build_session_report",
]
