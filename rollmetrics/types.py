"""
Data model for the session metrics engine.

Frame payloads and raw events arrive as camelCase JSON from the browser; records
and reports are serialized back to camelCase so stored documents keep the same
field names the dashboard reads.
"""
from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import SESSION_SCHEMA_VERSION
from .stats import RangeStat

# Technique categories tracked as attempt/success pairs.
ATTEMPT_CATEGORIES = ("submission", "escape", "transition", "takedown", "pass", "sweep")

EVENT_KINDS = frozenset([
    "position_start",
    "position_end",
    "submission_attempt",
    "submission_result",
    "escape_attempt",
    "escape_result",
    "sweep_attempt",
    "sweep_result",
    "pass_attempt",
    "pass_result",
    "transition",
    "scramble_start",
    "scramble_end",
    "intensity_sample",
    "reaction_signal",
    "reaction_move",
])
OUTCOMES = ("success", "fail", "unknown")
SCRAMBLE_WINNERS = ("self", "opponent", "unknown")


def finite_float(val: Any) -> Optional[float]:
    """float(val), or None when missing, non-numeric, or NaN/inf."""
    if val is None or isinstance(val, bool):
        return None
    try:
        f = float(val)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _label(val: Any, allowed: tuple[str, ...]) -> Optional[str]:
    """Known label as-is; anything else the classifier sent counts as "unknown"."""
    if val is None:
        return None
    return val if val in allowed else "unknown"


@dataclass(frozen=True)
class FrameUpdatePayload:
    """Per-frame signals produced by the pose estimator. Every field but has_pose is optional."""

    has_pose: bool
    visibility_avg: Optional[float] = None
    bbox_area_pct: Optional[float] = None
    torso_angle: Optional[float] = None
    shoulder_sym: Optional[float] = None
    knee_sym: Optional[float] = None
    joint_angles: Optional[dict[str, Optional[float]]] = None
    fps: Optional[float] = None
    posture_issue: bool = False
    rep_mode: Optional[str] = None
    rep_increment: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FrameUpdatePayload":
        joints = data.get("jointAngles")
        if isinstance(joints, dict):
            joints = {str(k): finite_float(v) for k, v in joints.items()}
        else:
            joints = None
        rep_mode = data.get("repMode")
        return cls(
            has_pose=bool(data.get("hasPose", False)),
            visibility_avg=finite_float(data.get("visibilityAvg")),
            bbox_area_pct=finite_float(data.get("bboxAreaPct")),
            torso_angle=finite_float(data.get("torsoAngle")),
            shoulder_sym=finite_float(data.get("shoulderSym")),
            knee_sym=finite_float(data.get("kneeSym")),
            joint_angles=joints,
            fps=finite_float(data.get("fps")),
            posture_issue=bool(data.get("postureIssue", False)),
            rep_mode=str(rep_mode) if rep_mode else None,
            rep_increment=bool(data.get("repIncrement", False)),
        )


@dataclass
class SegmentSummary:
    t_start: float
    t_end: float
    reps: int = 0
    posture_issues: int = 0

    @property
    def duration_ms(self) -> float:
        return self.t_end - self.t_start

    def to_dict(self) -> dict[str, Any]:
        return {
            "tStart": self.t_start,
            "tEnd": self.t_end,
            "reps": self.reps,
            "postureIssues": self.posture_issues,
        }


@dataclass
class SessionQualityFlags:
    low_quality: bool = False
    short: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"lowQuality": self.low_quality, "short": self.short}


@dataclass
class PositionSpan:
    name: str
    confidence: float
    t_start: float
    t_end: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "confidence": self.confidence,
            "tStart": self.t_start,
            "tEnd": self.t_end,
        }


@dataclass
class AttemptStats:
    attempts: int = 0
    successes: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"attempts": self.attempts, "successes": self.successes}


@dataclass
class ScrambleStats:
    attempts: int = 0
    wins: int = 0
    losses: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"attempts": self.attempts, "wins": self.wins, "losses": self.losses}


@dataclass
class GrapplingKPIs:
    """
    Live aggregate: mutated frame by frame and read on demand without finalizing.
    Derived percentages stay None until something sets them; the report builder
    falls back to its own formulas in that case.
    """

    control_timeline: list[PositionSpan] = field(default_factory=list)
    control_time_by_pos: dict[str, float] = field(default_factory=dict)
    control_percent_pct: Optional[int] = None
    submission: AttemptStats = field(default_factory=AttemptStats)
    escape: AttemptStats = field(default_factory=AttemptStats)
    transition: AttemptStats = field(default_factory=AttemptStats)
    takedown: AttemptStats = field(default_factory=AttemptStats)
    pass_: AttemptStats = field(default_factory=AttemptStats)
    sweep: AttemptStats = field(default_factory=AttemptStats)
    scramble: ScrambleStats = field(default_factory=ScrambleStats)
    guard_retention_pct: Optional[float] = None
    guard_pass_prevention_pct: Optional[float] = None
    pressure_passing_success_pct: Optional[float] = None
    transition_efficiency_pct: Optional[float] = None
    positional_error_trend: Optional[str] = None
    consistency_rating: Optional[int] = None
    technical_variety_idx: Optional[int] = None
    win_loss_by_position: dict[str, dict[str, int]] = field(default_factory=dict)
    intensity_score: Optional[int] = None
    reaction_time_ms: Optional[float] = None
    recovery_time_ms: Optional[float] = None

    def attempts(self, category: str) -> AttemptStats:
        return self.pass_ if category == "pass" else getattr(self, category)

    def snapshot(self) -> "GrapplingKPIs":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "controlTimeline": [s.to_dict() for s in self.control_timeline],
            "controlTimeByPos": dict(self.control_time_by_pos),
            "controlPercentPct": self.control_percent_pct,
        }
        for cat in ATTEMPT_CATEGORIES:
            out[cat] = self.attempts(cat).to_dict()
        out.update({
            "scramble": self.scramble.to_dict(),
            "guardRetentionPct": self.guard_retention_pct,
            "guardPassPreventionPct": self.guard_pass_prevention_pct,
            "pressurePassingSuccessPct": self.pressure_passing_success_pct,
            "transitionEfficiencyPct": self.transition_efficiency_pct,
            "positionalErrorTrend": self.positional_error_trend,
            "consistencyRating": self.consistency_rating,
            "technicalVarietyIdx": self.technical_variety_idx,
            "winLossByPosition": copy.deepcopy(self.win_loss_by_position),
            "intensityScore": self.intensity_score,
            "reactionTimeMs": self.reaction_time_ms,
            "recoveryTimeMs": self.recovery_time_ms,
        })
        return out


@dataclass
class SessionRecord:
    """
    One training session. Mutated only by SessionTracker; frozen once finalized.
    """

    session_id: str
    user_id: str
    start_ts: float
    model_complexity: int = 1
    mirror_used: bool = False
    schema_version: int = SESSION_SCHEMA_VERSION
    end_ts: Optional[float] = None
    duration_sec: Optional[float] = None
    frame_count: int = 0
    detection_frames: int = 0
    avg_visibility_sum: float = 0.0
    bbox_area_sum_pct: float = 0.0
    bbox_area_sum_sq_pct: float = 0.0
    posture_issues: int = 0
    torso_angle_sum: float = 0.0
    torso_angle_sum_sq: float = 0.0
    shoulder_sym: RangeStat = field(default_factory=RangeStat)
    knee_sym: RangeStat = field(default_factory=RangeStat)
    joint_stats: dict[str, RangeStat] = field(default_factory=dict)
    reps_by_mode: dict[str, int] = field(default_factory=dict)
    total_reps: int = 0
    first_rep_ts: Optional[float] = None
    max_rep_streak: int = 0
    current_streak: int = 0
    interruptions: int = 0
    errors: list[str] = field(default_factory=list)
    segments: list[SegmentSummary] = field(default_factory=list)
    seg_active: Optional[SegmentSummary] = None
    fps_sum: float = 0.0
    fps_sum_sq: float = 0.0
    detection_rate: Optional[float] = None
    avg_visibility: Optional[float] = None
    form_consistency_score: Optional[int] = None
    focus_score: Optional[float] = None
    quality_flags: Optional[SessionQualityFlags] = None
    finalized: bool = False
    grappling: Optional[GrapplingKPIs] = field(default_factory=GrapplingKPIs)
    first_pose_ts: Optional[float] = None
    last_bbox_area_pct: Optional[float] = None
    intensity_ema: Optional[float] = None
    report: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "sessionId": self.session_id,
            "userId": self.user_id,
            "startTs": self.start_ts,
            "endTs": self.end_ts,
            "durationSec": self.duration_sec,
            "frameCount": self.frame_count,
            "modelComplexity": self.model_complexity,
            "mirrorUsed": self.mirror_used,
            "detectionFrames": self.detection_frames,
            "avgVisibilitySum": self.avg_visibility_sum,
            "bboxAreaSumPct": self.bbox_area_sum_pct,
            "bboxAreaSumSqPct": self.bbox_area_sum_sq_pct,
            "postureIssues": self.posture_issues,
            "torsoAngleSum": self.torso_angle_sum,
            "torsoAngleSumSq": self.torso_angle_sum_sq,
            "shoulderSym": self.shoulder_sym.to_dict(),
            "kneeSym": self.knee_sym.to_dict(),
            "jointStats": {k: v.to_dict() for k, v in self.joint_stats.items()},
            "repsByMode": dict(self.reps_by_mode),
            "totalReps": self.total_reps,
            "firstRepTs": self.first_rep_ts,
            "maxRepStreak": self.max_rep_streak,
            "currentStreak": self.current_streak,
            "interruptions": self.interruptions,
            "errors": list(self.errors),
            "segments": [s.to_dict() for s in self.segments],
            "segActive": self.seg_active.to_dict() if self.seg_active else None,
            "fpsSum": self.fps_sum,
            "fpsSumSq": self.fps_sum_sq,
            "detectionRate": self.detection_rate,
            "avgVisibility": self.avg_visibility,
            "formConsistencyScore": self.form_consistency_score,
            "focusScore": self.focus_score,
            "qualityFlags": self.quality_flags.to_dict() if self.quality_flags else None,
            "finalized": self.finalized,
            "grappling": self.grappling.to_dict() if self.grappling else None,
            "firstPoseTs": self.first_pose_ts,
            "lastBboxAreaPct": self.last_bbox_area_pct,
            "intensityEma": self.intensity_ema,
            "report": copy.deepcopy(self.report),
        }


@dataclass(frozen=True)
class RawEvent:
    """
    One discrete, timestamped occurrence from the technique/position classifier.
    `kind` selects which optional fields are meaningful:
      position_start/end -> position; *_result, transition -> outcome;
      scramble_end -> winner; intensity_sample -> value (0..1);
      reaction_signal/move -> id.
    """

    ts: float
    kind: str
    position: Optional[str] = None
    outcome: Optional[str] = None
    winner: Optional[str] = None
    value: Optional[float] = None
    id: Optional[str] = None
    technique: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawEvent":
        kind = data.get("kind")
        if kind not in EVENT_KINDS:
            raise ValueError(f"unknown event kind: {kind!r}")
        ts = finite_float(data.get("ts"))
        if ts is None:
            raise ValueError(f"event {kind} has no timestamp")
        ev_id = data.get("id")
        return cls(
            ts=ts,
            kind=kind,
            position=data.get("position"),
            outcome=_label(data.get("outcome"), OUTCOMES),
            winner=_label(data.get("winner"), SCRAMBLE_WINNERS),
            value=finite_float(data.get("value")),
            id=str(ev_id) if ev_id is not None else None,
            technique=data.get("technique"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ts": self.ts, "kind": self.kind}
        for key in ("position", "outcome", "winner", "value", "id", "technique"):
            val = getattr(self, key)
            if val is not None:
                out[key] = val
        return out
