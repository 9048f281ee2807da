"""
Tests for SessionTracker: frame folding, segmentation, finalize and live KPIs.
"""

import json

import pytest

from conftest import leaves
from rollmetrics.config import ACTIVE_CONTROL
from rollmetrics.stats import RangeStat
from rollmetrics.tracker import SessionTracker, form_consistency_score
from rollmetrics.types import FrameUpdatePayload, SessionRecord


def _feed(tracker, clock, payloads, step=100):
    for p in payloads:
        clock.advance(step)
        tracker.update_frame(p)


@pytest.fixture
def tracker(clock, ids):
    return SessionTracker("u1", clock=clock, id_factory=ids)


# ============================================================================
# Frame accumulation
# ============================================================================

class TestFrameAccumulation:

    def test_detection_rate_over_partial_detection(self, tracker, clock):
        # 100 frames, every fifth without a pose -> 80 detected
        payloads = [FrameUpdatePayload(has_pose=(i % 5 != 0)) for i in range(100)]
        _feed(tracker, clock, payloads)
        rec = tracker.finalize()

        assert rec.frame_count == 100
        assert rec.detection_frames == 80
        assert rec.detection_rate == pytest.approx(0.8)
        assert rec.duration_sec == pytest.approx(10.0)
        assert rec.focus_score == pytest.approx(80.0)
        # symmetry 0.4 + detection 0.3*0.8 + posture 0.3
        assert rec.form_consistency_score == 94
        assert rec.quality_flags.short is False
        assert rec.quality_flags.low_quality is False
        assert rec.errors == []

    def test_reaction_proxy_is_time_to_first_pose(self, tracker, clock):
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=False), FrameUpdatePayload(has_pose=True)])
        assert tracker.rec.first_pose_ts == 200
        assert tracker.rec.grappling.reaction_time_ms == 200
        rec = tracker.finalize()
        assert rec.report["summary"]["reactionSpeed"] == 0.2

    def test_rep_streak(self, tracker, clock):
        rep = FrameUpdatePayload(has_pose=True, rep_mode="squat", rep_increment=True)
        _feed(tracker, clock, [rep] * 12)
        rec = tracker.rec
        assert rec.total_reps == 12
        assert rec.reps_by_mode == {"squat": 12}
        assert rec.max_rep_streak == 12
        assert rec.first_rep_ts == 100

    def test_interrupt_breaks_streak(self, tracker, clock):
        rep = FrameUpdatePayload(has_pose=True, rep_mode="pushup", rep_increment=True)
        _feed(tracker, clock, [rep] * 5)
        tracker.interrupt()
        _feed(tracker, clock, [rep] * 3)
        rec = tracker.rec
        assert rec.interruptions == 1
        assert rec.current_streak == 3
        assert rec.max_rep_streak == 5
        assert rec.total_reps == 8

    def test_rep_needs_mode(self, tracker, clock):
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True, rep_increment=True)])
        assert tracker.rec.total_reps == 0

    def test_frames_without_pose_only_count(self, tracker, clock):
        p = FrameUpdatePayload(has_pose=False, shoulder_sym=10.0, posture_issue=True, fps=30.0)
        _feed(tracker, clock, [p] * 3)
        rec = tracker.rec
        assert rec.frame_count == 3
        assert rec.detection_frames == 0
        assert rec.posture_issues == 0
        assert rec.shoulder_sym.count == 0
        assert rec.fps_sum == pytest.approx(90.0)

    def test_signal_sums_and_joint_stats(self, tracker, clock):
        payloads = [
            FrameUpdatePayload(
                has_pose=True, visibility_avg=0.9, torso_angle=80.0, shoulder_sym=2.0, knee_sym=4.0,
                joint_angles={"kneeL": 170.0, "kneeR": None},
            ),
            FrameUpdatePayload(
                has_pose=True, visibility_avg=0.7, torso_angle=100.0, shoulder_sym=6.0, knee_sym=4.0,
                joint_angles={"kneeL": 150.0},
            ),
        ]
        _feed(tracker, clock, payloads)
        rec = tracker.rec
        assert rec.avg_visibility_sum == pytest.approx(1.6)
        assert rec.torso_angle_sum == pytest.approx(180.0)
        assert rec.torso_angle_sum_sq == pytest.approx(80.0 ** 2 + 100.0 ** 2)
        assert (rec.shoulder_sym.min, rec.shoulder_sym.max) == (2.0, 6.0)
        assert rec.shoulder_sym.mean == pytest.approx(4.0)
        assert set(rec.joint_stats) == {"kneeL"}
        assert rec.joint_stats["kneeL"].mean == pytest.approx(160.0)
        assert tracker.finalize().avg_visibility == pytest.approx(0.8)

    def test_intensity_ema(self, tracker, clock):
        _feed(tracker, clock, [
            FrameUpdatePayload(has_pose=True, bbox_area_pct=0.2),
            FrameUpdatePayload(has_pose=True, bbox_area_pct=0.21),
        ])
        # first sample has no delta; second: 0.1 * (0.01 * 4000)
        assert tracker.rec.intensity_ema == pytest.approx(4.0)
        assert tracker.rec.grappling.intensity_score == 4

    def test_intensity_clamped(self, tracker, clock):
        _feed(tracker, clock, [
            FrameUpdatePayload(has_pose=True, bbox_area_pct=0.1),
            FrameUpdatePayload(has_pose=True, bbox_area_pct=0.9),
        ])
        assert tracker.rec.intensity_ema == pytest.approx(10.0)

    def test_invalid_model_complexity(self, clock):
        with pytest.raises(ValueError):
            SessionTracker("u1", model_complexity=3, clock=clock)


# ============================================================================
# Segmentation
# ============================================================================

class TestSegments:

    def test_rollover_every_thirty_seconds(self, tracker, clock):
        for t in range(0, 90001, 100):
            clock.t = t
            tracker.update_frame(FrameUpdatePayload(has_pose=True, posture_issue=(t < 30000 and t % 1000 == 0)))
        rec = tracker.finalize()

        # trailing segment opened at 90000 has zero length and is dropped
        assert [s.t_start for s in rec.segments] == [0, 30000, 60000]
        assert all(s.duration_ms == 30000 for s in rec.segments)
        assert rec.segments[0].posture_issues == 30
        assert rec.seg_active is None

        effort = rec.report["effortEnduranceMetrics"]
        # issues/min with the minute count floored at 1
        assert effort["fatigueCurve"] == [30.0, 0.0, 0.0]
        assert effort["enduranceIndicator"] == 100.0
        assert effort["recoveryTimeBetweenRounds"] == 0.0
        assert rec.report["consistencyTrends"]["positionalErrorTrends"] == ["positional mistake"]

    def test_short_final_segment_dropped(self, tracker, clock):
        for t in range(0, 30501, 100):
            clock.t = t
            tracker.update_frame(FrameUpdatePayload(has_pose=True))
        rec = tracker.finalize()
        assert len(rec.segments) == 1

    def test_final_segment_kept_when_long_enough(self, tracker, clock):
        for t in range(0, 32001, 100):
            clock.t = t
            tracker.update_frame(FrameUpdatePayload(has_pose=True))
        rec = tracker.finalize()
        assert [s.duration_ms for s in rec.segments] == [30000, 2000]

    def test_segment_counts_reps(self, tracker, clock):
        rep = FrameUpdatePayload(has_pose=True, rep_mode="squat", rep_increment=True)
        _feed(tracker, clock, [rep] * 4, step=500)
        rec = tracker.finalize()
        assert rec.segments[0].reps == 4


# ============================================================================
# Finalize
# ============================================================================

class TestFinalize:

    def test_short_session_flagged(self, tracker, clock):
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True)] * 50)
        rec = tracker.finalize()
        assert rec.duration_sec == pytest.approx(5.0)
        assert rec.quality_flags.short is True
        assert rec.quality_flags.low_quality is False

    def test_low_detection_flagged(self, tracker, clock):
        payloads = [FrameUpdatePayload(has_pose=(i < 2)) for i in range(10)]
        _feed(tracker, clock, payloads, step=4000)
        rec = tracker.finalize()
        assert rec.detection_rate == pytest.approx(0.2)
        assert rec.quality_flags.low_quality is True
        assert rec.quality_flags.short is False

    def test_finalize_is_idempotent(self, tracker, clock):
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True)] * 5)
        rec = tracker.finalize()
        end_ts, report = rec.end_ts, rec.report
        clock.advance(5000)
        again = tracker.finalize()
        assert again is rec
        assert again.end_ts == end_ts
        assert again.report is report
        assert tracker.finalized

    def test_updates_after_finalize_ignored(self, tracker, clock):
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True)] * 5)
        tracker.finalize()
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True)] * 5)
        tracker.interrupt()
        assert tracker.rec.frame_count == 5
        assert tracker.rec.interruptions == 0

    def test_active_control_timeline(self, tracker, clock):
        payloads = [FrameUpdatePayload(has_pose=(i % 2 == 0)) for i in range(100)]
        _feed(tracker, clock, payloads)
        rec = tracker.finalize()
        g = rec.grappling
        assert g.control_time_by_pos[ACTIVE_CONTROL] == 5000
        assert g.control_timeline[-1].name == ACTIVE_CONTROL
        assert (g.control_timeline[-1].t_start, g.control_timeline[-1].t_end) == (0, 10000)
        assert g.consistency_rating == rec.form_consistency_score
        assert rec.report["corePositionalMetrics"]["positionalControlTimes"] == {ACTIVE_CONTROL: pytest.approx(50.0)}

    def test_scorecard(self, tracker, clock):
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True)] * 100)
        rec = tracker.finalize()
        # 0.5 * 100 (form) + 0.3 * 0 (no intensity) + 0.2 * 100 (no posture issues)
        assert rec.form_consistency_score == 100
        assert rec.report["summary"]["overallSessionScorecard"] == pytest.approx(70.0)

    def test_empty_session_reports_nothing(self, tracker, clock):
        clock.advance(20000)
        rec = tracker.finalize()
        assert rec.frame_count == 0
        assert rec.detection_rate == 0.0
        assert rec.quality_flags.low_quality is True
        assert all(v is None for _, v in leaves(rec.report))

    def test_report_error_is_tagged_not_raised(self, tracker, clock):
        prior = SessionRecord(session_id="old", user_id="u1", start_ts=0.0, report={"summary": {}})
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True)] * 10)
        rec = tracker.finalize(history=[prior])
        assert any(e.startswith("historical_trend:") for e in rec.errors)
        assert rec.report["summary"]["historicalPerformanceTrend"] is None
        assert rec.report["summary"]["overallSessionScorecard"] is not None


# ============================================================================
# Live KPIs
# ============================================================================

class TestCurrentKPIs:

    def test_live_snapshot_does_not_mutate_record(self, tracker, clock):
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True)] * 10)
        snap = tracker.current_kpis()
        assert snap.control_time_by_pos[ACTIVE_CONTROL] == 1000
        assert snap.control_percent_pct == 100
        assert snap.consistency_rating is not None
        assert ACTIVE_CONTROL not in tracker.rec.grappling.control_time_by_pos
        assert tracker.rec.grappling.control_percent_pct is None
        assert not tracker.finalized

    def test_live_snapshot_tracks_detection(self, tracker, clock):
        payloads = [FrameUpdatePayload(has_pose=(i % 4 != 0)) for i in range(20)]
        _feed(tracker, clock, payloads)
        snap = tracker.current_kpis()
        assert snap.control_time_by_pos[ACTIVE_CONTROL] == 1500
        assert snap.control_percent_pct == 75

    def test_after_finalize_returns_stored_kpis(self, tracker, clock):
        _feed(tracker, clock, [FrameUpdatePayload(has_pose=True)] * 10)
        rec = tracker.finalize()
        snap = tracker.current_kpis()
        assert snap.control_time_by_pos == rec.grappling.control_time_by_pos
        assert snap is not rec.grappling


class TestFormConsistencyScore:

    def test_formula(self):
        shoulder = RangeStat()
        for x in (0.0, 20.0):
            shoulder.push(x)
        # symmetry 0.4 * (1 - 200/400) + detection 0.3 * 1.0 + posture 0.3 * (1 - 4/20)
        assert form_consistency_score(shoulder, RangeStat(), 4, 1.0, 20.0) == 74

    def test_posture_floor_uses_ten_seconds(self):
        # 5 issues over 2 s is judged against 10 s: 0.4 + 0 + 0.3 * 0.5
        assert form_consistency_score(RangeStat(), RangeStat(), 5, 0.0, 2.0) == 55

    def test_symmetry_term_saturates(self):
        knee = RangeStat()
        for x in (0.0, 100.0):
            knee.push(x)
        assert form_consistency_score(RangeStat(), knee, 0, 1.0, 60.0) == 60


class TestNonFiniteInput:

    def test_non_finite_signals_ignored(self, tracker, clock):
        payloads = [
            FrameUpdatePayload.from_dict({
                "hasPose": True, "shoulderSym": "nan", "kneeSym": float("inf"), "bboxAreaPct": "nan",
                "visibilityAvg": float("nan"), "fps": "inf", "jointAngles": {"kneeL": "nan"},
            }),
            FrameUpdatePayload.from_dict({"hasPose": True, "bboxAreaPct": 0.2, "shoulderSym": 3.0}),
        ]
        _feed(tracker, clock, payloads)
        live = tracker.current_kpis().to_dict()
        rec = tracker.finalize()

        assert rec.shoulder_sym.count == 1
        assert rec.knee_sym.count == 0
        assert rec.fps_sum == 0.0
        assert rec.bbox_area_sum_pct == pytest.approx(0.2)
        assert rec.joint_stats == {}
        json.dumps(live, allow_nan=False)
        json.dumps(rec.to_dict(), allow_nan=False)
