"""
Live session tracking: folds one FrameUpdatePayload per video frame into a
SessionRecord, exposes live KPIs, and finalizes into a stored report.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .clock import new_session_id, wall_clock_ms
from .config import (
    ACTIVE_CONTROL,
    ACTIVE_CONTROL_CONFIDENCE,
    FORM_WEIGHTS,
    INTENSITY_ALPHA,
    INTENSITY_SCALE,
    MIN_DETECTION_RATE,
    MIN_SEGMENT_MS,
    MIN_VALID_SESSION_SEC,
    SEGMENT_MS,
    SYMMETRY_VAR_CAP,
)
from .report import build_session_report
from .stats import RangeStat, round_half_up, variance
from .types import (
    FrameUpdatePayload,
    GrapplingKPIs,
    PositionSpan,
    SegmentSummary,
    SessionQualityFlags,
    SessionRecord,
)

logger = logging.getLogger(__name__)

MODEL_COMPLEXITIES = (0, 1, 2)


def form_consistency_score(
    shoulder_sym: RangeStat,
    knee_sym: RangeStat,
    posture_issues: int,
    detection_rate: float,
    duration_sec: Optional[float],
) -> int:
    """
    0..100 heuristic: symmetry steadiness, detection coverage, posture issue rate.
    """
    sym_var = variance(shoulder_sym) + variance(knee_sym)
    posture_penalty = min(1.0, posture_issues / max(10.0, duration_sec or 1.0))
    w_sym, w_detect, w_posture = FORM_WEIGHTS
    raw = (
        w_sym * (1.0 - min(1.0, sym_var / SYMMETRY_VAR_CAP))
        + w_detect * detection_rate
        + w_posture * (1.0 - posture_penalty)
    )
    return round_half_up(raw * 100.0)


class SessionTracker:
    """
    Accumulates one training session. Active until finalize(); afterwards every
    mutating call is a logged no-op and the record stays as finalized.

    clock() must return milliseconds and id_factory() a unique session id; both
    default to the wall clock and uuid4.
    """

    def __init__(
        self,
        user_id: str,
        model_complexity: int = 1,
        mirror_used: bool = False,
        clock: Optional[Callable[[], float]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        if model_complexity not in MODEL_COMPLEXITIES:
            raise ValueError(f"model_complexity must be one of {MODEL_COMPLEXITIES}, got {model_complexity!r}")
        self._clock = clock or wall_clock_ms
        session_id = (id_factory or new_session_id)()
        self.rec = SessionRecord(
            session_id=session_id,
            user_id=user_id,
            start_ts=self._clock(),
            model_complexity=model_complexity,
            mirror_used=bool(mirror_used),
        )
        logger.info(
            "session: started %s (user=%s model_complexity=%s mirror=%s)",
            session_id, user_id, model_complexity, mirror_used,
        )

    @property
    def finalized(self) -> bool:
        return self.rec.finalized

    def _start_segment(self, now: float) -> None:
        self.rec.seg_active = SegmentSummary(t_start=now, t_end=now)

    def _roll_segment(self, now: float) -> None:
        seg = self.rec.seg_active
        if seg is None:
            self._start_segment(now)
            return
        seg.t_end = now
        if seg.duration_ms >= SEGMENT_MS:
            self.rec.segments.append(seg)
            self._start_segment(now)

    def update_frame(self, p: FrameUpdatePayload) -> None:
        rec = self.rec
        if rec.finalized:
            logger.warning("session %s: update_frame after finalize ignored", rec.session_id)
            return
        now = self._clock()
        self._roll_segment(now)
        rec.frame_count += 1
        if p.fps is not None:
            rec.fps_sum += p.fps
            rec.fps_sum_sq += p.fps * p.fps
        if not p.has_pose:
            return
        rec.detection_frames += 1

        g = rec.grappling
        # Reaction proxy: session start -> first detected pose.
        if rec.first_pose_ts is None:
            rec.first_pose_ts = now
            if g is not None:
                g.reaction_time_ms = now - rec.start_ts

        if p.bbox_area_pct is not None:
            prev = rec.last_bbox_area_pct if rec.last_bbox_area_pct is not None else p.bbox_area_pct
            delta = abs(p.bbox_area_pct - prev)
            rec.last_bbox_area_pct = p.bbox_area_pct
            scaled = min(100.0, max(0.0, delta * INTENSITY_SCALE))
            if rec.intensity_ema is None:
                rec.intensity_ema = scaled
            else:
                rec.intensity_ema = INTENSITY_ALPHA * scaled + (1.0 - INTENSITY_ALPHA) * rec.intensity_ema
            if g is not None:
                g.intensity_score = round_half_up(rec.intensity_ema)

        if p.visibility_avg is not None:
            rec.avg_visibility_sum += p.visibility_avg
        if p.bbox_area_pct is not None:
            rec.bbox_area_sum_pct += p.bbox_area_pct
            rec.bbox_area_sum_sq_pct += p.bbox_area_pct * p.bbox_area_pct
        if p.torso_angle is not None:
            rec.torso_angle_sum += p.torso_angle
            rec.torso_angle_sum_sq += p.torso_angle * p.torso_angle
        if p.shoulder_sym is not None:
            rec.shoulder_sym.push(p.shoulder_sym)
        if p.knee_sym is not None:
            rec.knee_sym.push(p.knee_sym)
        if p.joint_angles:
            for name, angle in p.joint_angles.items():
                if angle is None:
                    continue
                rec.joint_stats.setdefault(name, RangeStat()).push(angle)

        if p.posture_issue:
            rec.posture_issues += 1
            if rec.seg_active is not None:
                rec.seg_active.posture_issues += 1

        if p.rep_increment and p.rep_mode:
            rec.reps_by_mode[p.rep_mode] = rec.reps_by_mode.get(p.rep_mode, 0) + 1
            rec.total_reps += 1
            if rec.first_rep_ts is None:
                rec.first_rep_ts = now
            rec.current_streak += 1
            rec.max_rep_streak = max(rec.max_rep_streak, rec.current_streak)
            if rec.seg_active is not None:
                rec.seg_active.reps += 1

    def interrupt(self) -> None:
        """Tracking lost without ending the session: breaks the rep streak."""
        if self.rec.finalized:
            logger.warning("session %s: interrupt after finalize ignored", self.rec.session_id)
            return
        self.rec.interruptions += 1
        self.rec.current_streak = 0

    def _live_detection_rate(self) -> float:
        rec = self.rec
        if rec.detection_rate is not None:
            return rec.detection_rate
        return rec.detection_frames / rec.frame_count if rec.frame_count else 0.0

    def finalize(self, history: Optional[list[SessionRecord]] = None) -> SessionRecord:
        rec = self.rec
        if rec.finalized:
            logger.warning("session %s: already finalized", rec.session_id)
            return rec
        end = self._clock()
        rec.end_ts = end
        rec.duration_sec = (end - rec.start_ts) / 1000.0

        seg = rec.seg_active
        if seg is not None:
            seg.t_end = end
            if seg.duration_ms > MIN_SEGMENT_MS:
                rec.segments.append(seg)
            rec.seg_active = None

        detection_rate = rec.detection_frames / max(1, rec.frame_count)
        rec.detection_rate = detection_rate
        rec.avg_visibility = rec.avg_visibility_sum / rec.detection_frames if rec.detection_frames else 0.0
        rec.form_consistency_score = form_consistency_score(
            rec.shoulder_sym, rec.knee_sym, rec.posture_issues, detection_rate, rec.duration_sec,
        )
        rec.focus_score = detection_rate * 100.0

        g = rec.grappling
        if g is not None:
            g.consistency_rating = rec.form_consistency_score
            total_ms = max(0.0, end - rec.start_ts)
            g.control_time_by_pos[ACTIVE_CONTROL] = round_half_up(total_ms * detection_rate)
            g.control_timeline.append(
                PositionSpan(name=ACTIVE_CONTROL, confidence=ACTIVE_CONTROL_CONFIDENCE, t_start=rec.start_ts, t_end=end)
            )

        rec.quality_flags = SessionQualityFlags(
            short=rec.duration_sec < MIN_VALID_SESSION_SEC,
            low_quality=detection_rate < MIN_DETECTION_RATE,
        )
        rec.finalized = True
        try:
            rec.report = build_session_report(rec, history or [])
        except Exception as e:
            logger.warning("session %s: report build failed: %s", rec.session_id, e)
            rec.errors.append(f"report_build: {e}")

        logger.info(
            "session: finalized %s (duration=%.1fs frames=%s detection_rate=%.2f form=%s reps=%s flags=%s errors=%s)",
            rec.session_id, rec.duration_sec, rec.frame_count, detection_rate,
            rec.form_consistency_score, rec.total_reps, rec.quality_flags.to_dict(), len(rec.errors),
        )
        return rec

    def current_kpis(self) -> Optional[GrapplingKPIs]:
        """Read-only live snapshot for the UI; the record is not modified."""
        rec = self.rec
        g = rec.grappling
        if g is None:
            return None
        if rec.finalized:
            return g.snapshot()
        now = self._clock()
        dur_ms = max(0.0, now - rec.start_ts)
        rate = self._live_detection_rate()
        active_ms = round_half_up(dur_ms * rate)

        snap = g.snapshot()
        snap.control_time_by_pos[ACTIVE_CONTROL] = active_ms
        snap.control_percent_pct = round_half_up(active_ms / max(1.0, dur_ms) * 100.0)
        if snap.intensity_score is None and rec.intensity_ema is not None:
            snap.intensity_score = round_half_up(rec.intensity_ema)
        snap.consistency_rating = form_consistency_score(
            rec.shoulder_sym, rec.knee_sym, rec.posture_issues, rate, dur_ms / 1000.0,
        )
        if snap.reaction_time_ms is None and rec.first_pose_ts is not None and rec.first_rep_ts is not None:
            snap.reaction_time_ms = max(0.0, rec.first_rep_ts - rec.first_pose_ts)
        return snap
