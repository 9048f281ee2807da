"""
KPIs from a discrete event log. Pure functions: events are never mutated and
results depend only on the events and the session window.

Attempts and results are counted independently (no 1:1 pairing by id), so an
adversarial log can report more successes than attempts; percentages built on
top of these counts are clamped by report.pct().
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from .clock import wall_clock_ms
from .stats import round_half_up, round_to
from .types import RawEvent


@dataclass(frozen=True)
class KPIContext:
    start_at: float
    end_at: Optional[float] = None

    def resolved_end(self) -> float:
        return self.end_at if self.end_at is not None else wall_clock_ms()


def _sorted(events: Iterable[RawEvent]) -> list[RawEvent]:
    # sorted() is stable, so same-timestamp events keep log order.
    return sorted(events, key=lambda ev: ev.ts)


def control_time_pct_by_position(events: list[RawEvent], ctx: KPIContext) -> dict[str, float]:
    """
    Share (0-100, 2 decimals) of the session window spent in each position.
    A start for an already-open position is ignored; positions still open at
    the end of the window are closed there.
    """
    end_at = ctx.resolved_end()
    total_ms = max(1.0, end_at - ctx.start_at)
    open_since: dict[str, float] = {}
    accum: dict[str, float] = {}

    for ev in _sorted(events):
        if ev.position is None:
            continue
        if ev.kind == "position_start":
            open_since.setdefault(ev.position, ev.ts)
        elif ev.kind == "position_end":
            t0 = open_since.pop(ev.position, None)
            if t0 is not None:
                accum[ev.position] = accum.get(ev.position, 0.0) + max(0.0, ev.ts - t0)

    for pos, t0 in open_since.items():
        accum[pos] = accum.get(pos, 0.0) + max(0.0, end_at - t0)

    return {
        pos: round_to(max(0.0, min(100.0, ms / total_ms * 100.0)), 2)
        for pos, ms in accum.items()
    }


def compute_attempts(events: list[RawEvent], kind_attempt: str, kind_result: str) -> dict[str, int]:
    attempts = 0
    successes = 0
    for ev in events:
        if ev.kind == kind_attempt:
            attempts += 1
        if ev.kind == kind_result and ev.outcome == "success":
            successes += 1
    return {"attempts": attempts, "successes": successes}


def compute_scramble(events: list[RawEvent]) -> dict[str, int]:
    """Starts count as attempts; ends with an unknown winner count as neither win nor loss."""
    attempts = wins = losses = 0
    for ev in events:
        if ev.kind == "scramble_start":
            attempts += 1
        elif ev.kind == "scramble_end":
            if ev.winner == "self":
                wins += 1
            elif ev.winner == "opponent":
                losses += 1
    return {"attempts": attempts, "wins": wins, "losses": losses}


def compute_avg_intensity(events: list[RawEvent]) -> Optional[int]:
    vals = [ev.value or 0.0 for ev in events if ev.kind == "intensity_sample"]
    if not vals:
        return None
    return round_half_up(float(np.mean(vals)) * 100.0)


def compute_reaction_avg(events: list[RawEvent]) -> Optional[int]:
    """
    Mean ms from each reaction_signal to the next reaction_move with the same id.
    Signals with no matching move are ignored.
    """
    signals: dict[str, float] = {}
    diffs: list[float] = []
    for ev in _sorted(events):
        if ev.id is None:
            continue
        if ev.kind == "reaction_signal":
            signals[ev.id] = ev.ts
        elif ev.kind == "reaction_move":
            t0 = signals.pop(ev.id, None)
            if t0 is not None:
                diffs.append(ev.ts - t0)
    if not diffs:
        return None
    return round_half_up(float(np.mean(diffs)))


def count_transitions(events: list[RawEvent]) -> dict[str, int]:
    total = success = 0
    for ev in events:
        if ev.kind == "transition":
            total += 1
            if ev.outcome == "success":
                success += 1
    return {"total": total, "success": success}
