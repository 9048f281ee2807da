"""
Tests for event-log KPIs.
"""

import pytest

from rollmetrics.kpi import (
    KPIContext,
    compute_attempts,
    compute_avg_intensity,
    compute_reaction_avg,
    compute_scramble,
    control_time_pct_by_position,
    count_transitions,
)
from rollmetrics.types import RawEvent


def ev(ts, kind, **kw):
    return RawEvent(ts=ts, kind=kind, **kw)


class TestControlTime:

    def test_half_window_in_guard(self):
        events = [
            ev(0, "position_start", position="guard_closed"),
            ev(5000, "position_end", position="guard_closed"),
        ]
        assert control_time_pct_by_position(events, KPIContext(0, 10000)) == {"guard_closed": 50.0}

    def test_first_start_wins(self):
        events = [
            ev(0, "position_start", position="mount"),
            ev(4000, "position_start", position="mount"),
            ev(5000, "position_end", position="mount"),
        ]
        assert control_time_pct_by_position(events, KPIContext(0, 10000)) == {"mount": 50.0}

    def test_open_position_closed_at_window_end(self):
        events = [ev(6000, "position_start", position="side_control")]
        assert control_time_pct_by_position(events, KPIContext(0, 10000)) == {"side_control": 40.0}

    def test_unsorted_input(self):
        events = [
            ev(3000, "position_end", position="back"),
            ev(1000, "position_start", position="back"),
        ]
        assert control_time_pct_by_position(events, KPIContext(0, 4000)) == {"back": 50.0}

    def test_end_without_start_ignored(self):
        events = [ev(3000, "position_end", position="back")]
        assert control_time_pct_by_position(events, KPIContext(0, 4000)) == {}

    def test_rounded_to_two_decimals(self):
        events = [
            ev(0, "position_start", position="half_guard"),
            ev(1000, "position_end", position="half_guard"),
        ]
        assert control_time_pct_by_position(events, KPIContext(0, 3000)) == {"half_guard": 33.33}

    def test_end_defaults_to_now(self, monkeypatch):
        monkeypatch.setattr("rollmetrics.kpi.wall_clock_ms", lambda: 2000.0)
        events = [ev(1000, "position_start", position="mount")]
        assert control_time_pct_by_position(events, KPIContext(start_at=0)) == {"mount": 50.0}

    def test_reentered_position_accumulates(self):
        events = [
            ev(0, "position_start", position="mount"),
            ev(1000, "position_end", position="mount"),
            ev(2000, "position_start", position="mount"),
            ev(3000, "position_end", position="mount"),
        ]
        assert control_time_pct_by_position(events, KPIContext(0, 10000)) == {"mount": 20.0}


class TestCounts:

    def test_attempts_and_successes(self):
        events = [
            ev(1, "submission_attempt"),
            ev(2, "submission_attempt"),
            ev(3, "submission_attempt"),
            ev(4, "submission_result", outcome="success"),
            ev(5, "submission_result", outcome="fail"),
            ev(6, "escape_result", outcome="success"),
        ]
        assert compute_attempts(events, "submission_attempt", "submission_result") == {"attempts": 3, "successes": 1}
        assert compute_attempts(events, "escape_attempt", "escape_result") == {"attempts": 0, "successes": 1}

    def test_scramble(self):
        events = [ev(i, "scramble_start") for i in range(3)] + [
            ev(10, "scramble_end", winner="self"),
            ev(11, "scramble_end", winner="self"),
            ev(12, "scramble_end", winner="opponent"),
            ev(13, "scramble_end", winner="unknown"),
        ]
        assert compute_scramble(events) == {"attempts": 3, "wins": 2, "losses": 1}

    def test_transitions(self):
        events = [
            ev(1, "transition", outcome="success"),
            ev(2, "transition", outcome="fail"),
            ev(3, "transition"),
        ]
        assert count_transitions(events) == {"total": 3, "success": 1}


class TestIntensityAndReaction:

    def test_avg_intensity(self):
        events = [ev(1, "intensity_sample", value=0.2), ev(2, "intensity_sample", value=0.4)]
        assert compute_avg_intensity(events) == 30

    def test_avg_intensity_without_samples(self):
        assert compute_avg_intensity([ev(1, "transition")]) is None

    def test_reaction_pairs_signal_with_next_move(self):
        events = [
            ev(100, "reaction_signal", id="a"),
            ev(400, "reaction_move", id="a"),
            ev(1000, "reaction_signal", id="b"),
            ev(1200, "reaction_move", id="b"),
            ev(1500, "reaction_move", id="b"),
        ]
        assert compute_reaction_avg(events) == 250

    def test_reaction_without_match(self):
        events = [ev(100, "reaction_signal", id="a"), ev(400, "reaction_move", id="z")]
        assert compute_reaction_avg(events) is None

    def test_events_not_mutated(self):
        events = [ev(400, "reaction_move", id="a"), ev(100, "reaction_signal", id="a")]
        before = list(events)
        assert compute_reaction_avg(events) == 300
        assert events == before


class TestRawEventLabels:

    def test_unrecognized_labels_become_unknown(self):
        ev_ = RawEvent.from_dict({"ts": 1, "kind": "transition", "outcome": "WIN"})
        assert ev_.outcome == "unknown"
        scr = RawEvent.from_dict({"ts": 2, "kind": "scramble_end", "winner": "ref"})
        assert scr.winner == "unknown"
        assert RawEvent.from_dict({"ts": 3, "kind": "transition"}).outcome is None
        assert RawEvent.from_dict({"ts": 4, "kind": "pass_result", "outcome": "success"}).outcome == "success"

    def test_unknown_outcome_still_counts_as_transition(self):
        events = [RawEvent.from_dict({"ts": 1, "kind": "transition", "outcome": "WIN"})]
        assert count_transitions(events) == {"total": 1, "success": 0}

    def test_non_finite_timestamp_rejected(self):
        with pytest.raises(ValueError):
            RawEvent.from_dict({"ts": "nan", "kind": "transition"})
