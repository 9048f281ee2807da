"""
Session orchestration: owns at most one active tracker per user and the list of
finalized records handed to persistence.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .config import HISTORY_LIMIT, LOW_QUALITY_SESSION_MS, MIN_DETECTION_RATE, MIN_VALID_SESSION_SEC
from .tracker import SessionTracker
from .types import FrameUpdatePayload, GrapplingKPIs, SessionRecord

logger = logging.getLogger(__name__)


def classify_quality(duration_ms: float, detection_rate: Optional[float]) -> str:
    """Stored quality label: too short to keep, usable but weak, or good."""
    if duration_ms < MIN_VALID_SESSION_SEC * 1000:
        return "discard"
    if duration_ms < LOW_QUALITY_SESSION_MS:
        return "low"
    if detection_rate is not None and detection_rate < MIN_DETECTION_RATE:
        return "low"
    return "good"


def record_quality(rec: SessionRecord) -> Optional[str]:
    if rec.end_ts is None:
        return None
    return classify_quality(rec.end_ts - rec.start_ts, rec.detection_rate)


class SessionStore:
    """
    Glue between the UI frame loop and SessionTracker. Starting while a session
    is active is a no-op; frame updates without an active session are dropped.
    """

    def __init__(
        self,
        history_limit: int = HISTORY_LIMIT,
        clock: Optional[Callable[[], float]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.history_limit = history_limit
        self._clock = clock
        self._id_factory = id_factory
        self.active: Optional[SessionTracker] = None
        # Newest first.
        self.history: list[SessionRecord] = []

    def start_session(self, user_id: str, model_complexity: int = 1, mirror_used: bool = False) -> SessionTracker:
        if self.active is not None:
            logger.info("store: session %s already active; start ignored", self.active.rec.session_id)
            return self.active
        self.active = SessionTracker(
            user_id,
            model_complexity,
            mirror_used,
            clock=self._clock,
            id_factory=self._id_factory,
        )
        return self.active

    def update_frame(self, payload: FrameUpdatePayload) -> bool:
        if self.active is None:
            return False
        self.active.update_frame(payload)
        return True

    def interrupt(self) -> bool:
        if self.active is None:
            return False
        self.active.interrupt()
        return True

    def end_session(self) -> Optional[SessionRecord]:
        tracker = self.active
        if tracker is None:
            return None
        rec = tracker.finalize(history=self.history)
        self.active = None
        self.history = [rec] + self.history[: max(0, self.history_limit - 1)]
        logger.info(
            "store: session %s stored (quality=%s history=%s)",
            rec.session_id, record_quality(rec), len(self.history),
        )
        return rec

    def discard_session(self) -> None:
        """Drop the active tracker without a report or stored record."""
        if self.active is not None:
            logger.info("store: session %s discarded", self.active.rec.session_id)
        self.active = None

    def live_kpis(self) -> Optional[GrapplingKPIs]:
        if self.active is None:
            return None
        return self.active.current_kpis()

    def clear_history(self) -> None:
        self.history = []
