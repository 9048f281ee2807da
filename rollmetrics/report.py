"""
Session report builders.

Two independent entry points produce the same JSON-ready report dict:
build_session_report() from a finalized SessionRecord (frame accumulator path)
and build_report_from_events() from a raw event log. Every numeric leaf is
nullable: None means "not computed", 0 is a measured value.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Callable, Optional, TypeVar

import numpy as np

from .config import GUARD_POSITIONS, HISTORY_TREND_LEN, SCORECARD_WEIGHTS
from .kpi import (
    KPIContext,
    compute_attempts,
    compute_avg_intensity,
    compute_reaction_avg,
    compute_scramble,
    control_time_pct_by_position,
    count_transitions,
)
from .stats import round_to
from .types import AttemptStats, GrapplingKPIs, RawEvent, SessionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


def pct(numer: Optional[float], denom: Optional[float]) -> Optional[float]:
    """100*n/d clamped to [0, 100]; None when d <= 0 or either side is missing/non-finite."""
    if numer is None or denom is None:
        return None
    if not math.isfinite(numer) or not math.isfinite(denom) or denom <= 0:
        return None
    return max(0.0, min(100.0, numer / denom * 100.0))


def seconds(ms: Optional[float]) -> Optional[float]:
    if ms is None or not math.isfinite(ms):
        return None
    return round_to(ms / 1000.0, 3)


def _pct2(numer: Optional[float], denom: Optional[float]) -> Optional[float]:
    val = pct(numer, denom)
    return round_to(val, 2) if val is not None else None


def _guard(tag: str, errors: list[str], fn: Callable[[], T]) -> Optional[T]:
    """Run one sub-metric; a failure degrades it to None and is recorded as '<tag>: <message>'."""
    try:
        return fn()
    except Exception as e:
        logger.warning("report: %s failed: %s", tag, e)
        errors.append(f"{tag}: {e}")
        return None


def scramble_impact(wins: int, losses: int) -> Optional[str]:
    if wins + losses < 1:
        return None
    if wins > losses:
        return "dominant"
    if wins == losses:
        return "neutral"
    return "disadvantaged"


def empty_report() -> dict[str, Any]:
    """Report shape with every leaf unset; what both builders return for no input."""
    return {
        "corePositionalMetrics": {
            "positionalControlTimes": {},
            "escapes": {"attempts": None, "successPercent": None},
            "reversals": {"count": None, "successPercent": None},
        },
        "guardMetrics": {
            "guardRetentionPercent": None,
            "sweepAttempts": None,
            "sweepSuccessPercent": None,
            "passingAttempts": None,
            "guardPassPreventionPercent": None,
        },
        "transitionMetrics": {
            "transitionEfficiencyPercent": None,
            "errorCounts": {"failedTransition": None, "lostGuard": None, "positionalMistake": None},
        },
        "submissionMetrics": {
            "submissionAttempts": None,
            "submissionSuccessPercent": None,
            "submissionChains": None,
            "submissionDefenses": None,
        },
        "scrambleMetrics": {
            "scrambleFrequency": None,
            "scrambleWinPercent": None,
            "scrambleOutcomeImpact": None,
        },
        "effortEnduranceMetrics": {
            "rollingIntensityScore": None,
            "fatigueCurve": None,
            "enduranceIndicator": None,
            "recoveryTimeBetweenRounds": None,
        },
        "consistencyTrends": {
            "sessionConsistencyRating": None,
            "technicalVarietyIndex": None,
            "positionalErrorTrends": None,
        },
        "summary": {
            "overallSessionScorecard": None,
            "historicalPerformanceTrend": None,
            "winLossRatioByPosition": None,
            "reactionSpeed": None,
        },
    }


def _has_activity(g: Optional[GrapplingKPIs]) -> bool:
    if g is None:
        return False
    if any(st.attempts or st.successes for st in (g.submission, g.escape, g.transition, g.takedown, g.pass_, g.sweep)):
        return True
    return bool(g.scramble.attempts or g.scramble.wins or g.scramble.losses)


def _record_has_data(rec: SessionRecord) -> bool:
    return rec.frame_count > 0 or bool(rec.segments) or _has_activity(rec.grappling)


# ---------------------------------------------------------------------------
# Frame accumulator path
# ---------------------------------------------------------------------------

def _fatigue_curve(rec: SessionRecord) -> Optional[list[float]]:
    """Posture issues per minute for each closed segment."""
    if not rec.segments:
        return None
    return [
        round_to(s.posture_issues / max(1.0, (s.t_end - s.t_start) / 60000.0), 2)
        for s in rec.segments
    ]


def _endurance_indicator(curve: Optional[list[float]]) -> Optional[float]:
    """Relative drop in issues/min from first to last segment; positive = improving."""
    if not isinstance(curve, list) or len(curve) < 2:
        return None
    first, last = curve[0], curve[-1]
    return round_to((first - last) / max(1.0, first) * 100.0, 1)


def _recovery_time(rec: SessionRecord) -> Optional[float]:
    if len(rec.segments) < 2:
        return None
    gaps = [
        rec.segments[i].t_start - rec.segments[i - 1].t_end
        for i in range(1, len(rec.segments))
    ]
    return seconds(float(np.mean(gaps)))


def _positional_error_trends(rec: SessionRecord) -> Optional[list[str]]:
    if not rec.segments:
        return None
    labels = []
    if any(s.posture_issues > 0 for s in rec.segments):
        labels.append("positional mistake")
    return labels or None


def _historical_trend(history: Optional[list[SessionRecord]]) -> Optional[list[float]]:
    if not history:
        return None
    out = []
    for h in history[:HISTORY_TREND_LEN]:
        score = h.report["summary"]["overallSessionScorecard"] if h.report else None
        if score is None:
            score = h.form_consistency_score if h.form_consistency_score is not None else 0
        out.append(score)
    return out


def _win_loss_by_position(g: Optional[GrapplingKPIs]) -> Optional[dict[str, float]]:
    if g is None or not g.win_loss_by_position:
        return None
    out = {}
    for pos, wl in g.win_loss_by_position.items():
        denom = wl["wins"] + wl["losses"]
        out[pos] = round_to(wl["wins"] / denom, 2) if denom else 0.0
    return out


def build_session_report(rec: SessionRecord, history: Optional[list[SessionRecord]] = None) -> dict[str, Any]:
    """
    Report from a finalized record. Sub-metric failures are appended to
    rec.errors and leave that field None; the rest of the report is still built.
    """
    if not _record_has_data(rec):
        return empty_report()

    errors = rec.errors
    g = rec.grappling
    kp = g or GrapplingKPIs()
    dur_ms = (rec.end_ts - rec.start_ts) if rec.end_ts is not None else 0.0

    def _attempts(stats: AttemptStats) -> Optional[int]:
        return stats.attempts if g is not None else None

    positional_control = _guard(
        "positional_control", errors,
        lambda: {pos: pct(ms, dur_ms) for pos, ms in kp.control_time_by_pos.items()},
    )

    sweep, passes, trans = kp.sweep, kp.pass_, kp.transition
    guard_retention = kp.guard_retention_pct
    if guard_retention is None:
        guard_retention = pct(
            sweep.attempts + passes.attempts - passes.successes,
            sweep.attempts + passes.attempts,
        )
    pass_prevention = kp.guard_pass_prevention_pct
    if pass_prevention is None:
        pass_prevention = pct(passes.attempts - passes.successes, passes.attempts)
    transition_efficiency = kp.transition_efficiency_pct
    if transition_efficiency is None:
        transition_efficiency = pct(trans.successes, trans.attempts)

    # failedTransition and lostGuard are not tracked by the frame path yet.
    error_counts = {"failedTransition": 0, "lostGuard": 0, "positionalMistake": rec.posture_issues}

    scramble = kp.scramble
    intensity = kp.intensity_score
    fatigue_curve = _guard("fatigue_curve", errors, lambda: _fatigue_curve(rec))
    endurance = _guard("endurance_indicator", errors, lambda: _endurance_indicator(fatigue_curve))
    recovery = _guard("recovery_time", errors, lambda: _recovery_time(rec))

    consistency = kp.consistency_rating if kp.consistency_rating is not None else rec.form_consistency_score
    variety = kp.technical_variety_idx
    if variety is None and g is not None:
        variety = len(g.control_time_by_pos)
    error_trends = _guard("positional_error_trends", errors, lambda: _positional_error_trends(rec))

    def _scorecard() -> float:
        w_consistency, w_intensity, w_posture = SCORECARD_WEIGHTS
        a = consistency or 0
        b = intensity or 0
        c = max(0, 100 - (rec.posture_issues or 0))
        return round_to(w_consistency * a + w_intensity * b + w_posture * c, 1)

    scorecard = _guard("overall_score", errors, _scorecard)
    trend = _guard("historical_trend", errors, lambda: _historical_trend(history))
    win_loss = _guard("win_loss_by_pos", errors, lambda: _win_loss_by_position(g))

    return {
        "corePositionalMetrics": {
            "positionalControlTimes": positional_control if positional_control is not None else {},
            "escapes": {
                "attempts": _attempts(kp.escape),
                "successPercent": pct(kp.escape.successes, kp.escape.attempts),
            },
            # No reversal classifier yet; transitions stand in.
            "reversals": {
                "count": _attempts(trans),
                "successPercent": pct(trans.successes, trans.attempts),
            },
        },
        "guardMetrics": {
            "guardRetentionPercent": guard_retention,
            "sweepAttempts": _attempts(sweep),
            "sweepSuccessPercent": pct(sweep.successes, sweep.attempts),
            "passingAttempts": _attempts(passes),
            "guardPassPreventionPercent": pass_prevention,
        },
        "transitionMetrics": {
            "transitionEfficiencyPercent": transition_efficiency,
            "errorCounts": error_counts,
        },
        "submissionMetrics": {
            "submissionAttempts": _attempts(kp.submission),
            "submissionSuccessPercent": pct(kp.submission.successes, kp.submission.attempts),
            # Without chain detection, attempts stand in for chains.
            "submissionChains": _attempts(kp.submission),
            "submissionDefenses": None,
        },
        "scrambleMetrics": {
            "scrambleFrequency": scramble.attempts or None,
            "scrambleWinPercent": pct(scramble.wins, scramble.attempts),
            "scrambleOutcomeImpact": scramble_impact(scramble.wins, scramble.losses),
        },
        "effortEnduranceMetrics": {
            "rollingIntensityScore": intensity,
            "fatigueCurve": fatigue_curve,
            "enduranceIndicator": endurance,
            "recoveryTimeBetweenRounds": recovery,
        },
        "consistencyTrends": {
            "sessionConsistencyRating": consistency,
            "technicalVarietyIndex": variety,
            "positionalErrorTrends": error_trends,
        },
        "summary": {
            "overallSessionScorecard": scorecard,
            "historicalPerformanceTrend": trend,
            "winLossRatioByPosition": win_loss,
            "reactionSpeed": seconds(kp.reaction_time_ms),
        },
    }


# ---------------------------------------------------------------------------
# Event log path
# ---------------------------------------------------------------------------

def build_report_from_events(
    events: list[RawEvent],
    start_at: float,
    end_at: float,
    errors: Optional[list[str]] = None,
) -> dict[str, Any]:
    """
    Report from a raw event log. Fatigue, endurance, consistency, history and
    win/loss by position cannot be derived from events and are always None here.
    """
    if not events:
        return empty_report()
    errors = errors if errors is not None else []

    control = _guard(
        "positional_control", errors,
        lambda: control_time_pct_by_position(events, KPIContext(start_at=start_at, end_at=end_at)),
    ) or {}
    submission = compute_attempts(events, "submission_attempt", "submission_result")
    escape = compute_attempts(events, "escape_attempt", "escape_result")
    sweep = compute_attempts(events, "sweep_attempt", "sweep_result")
    passes = compute_attempts(events, "pass_attempt", "pass_result")
    scr = compute_scramble(events)
    trans = count_transitions(events)
    avg_intensity = compute_avg_intensity(events)
    reaction_avg = compute_reaction_avg(events)

    # Here guard retention is the share of the window spent in guard positions.
    guard_pct = round_to(sum(control.get(p, 0.0) for p in GUARD_POSITIONS), 2)

    report = empty_report()
    report["corePositionalMetrics"] = {
        "positionalControlTimes": control,
        "escapes": {
            "attempts": escape["attempts"] or None,
            "successPercent": _pct2(escape["successes"], escape["attempts"]),
        },
        "reversals": {
            "count": trans["total"] or None,
            "successPercent": _pct2(trans["success"], trans["total"]),
        },
    }
    report["guardMetrics"] = {
        "guardRetentionPercent": guard_pct or None,
        "sweepAttempts": sweep["attempts"] or None,
        "sweepSuccessPercent": _pct2(sweep["successes"], sweep["attempts"]),
        "passingAttempts": passes["attempts"] or None,
        "guardPassPreventionPercent": _pct2(passes["attempts"] - passes["successes"], passes["attempts"]),
    }
    report["transitionMetrics"] = {
        "transitionEfficiencyPercent": _pct2(trans["success"], trans["total"]),
        "errorCounts": {
            "failedTransition": trans["total"] - trans["success"] if trans["total"] else 0,
            "lostGuard": 0,
            "positionalMistake": 0,
        },
    }
    report["submissionMetrics"]["submissionAttempts"] = submission["attempts"] or None
    report["submissionMetrics"]["submissionSuccessPercent"] = _pct2(submission["successes"], submission["attempts"])
    report["scrambleMetrics"] = {
        "scrambleFrequency": scr["attempts"] or None,
        "scrambleWinPercent": _pct2(scr["wins"], scr["attempts"]),
        "scrambleOutcomeImpact": scramble_impact(scr["wins"], scr["losses"]),
    }
    report["effortEnduranceMetrics"]["rollingIntensityScore"] = avg_intensity
    report["summary"]["reactionSpeed"] = seconds(reaction_avg)
    return report
