#!/usr/bin/env python3
"""
Session report from a recorded log.
Usage:
  Frames: python run.py --frames path/to/session.jsonl [--user U]
          (also writes events.jsonl from the frame detectors)
  Events: python run.py --events path/to/events.json --start-at T0 --end-at T1
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional

from rollmetrics.config import LOG_LEVEL, OUTPUT_DIR
from rollmetrics.detectors import FrameFeatures, detect_events
from rollmetrics.io_stream import frame_records, load_events, write_events
from rollmetrics.render import write_report
from rollmetrics.report import build_report_from_events
from rollmetrics.store import record_quality
from rollmetrics.tracker import SessionTracker
from rollmetrics.types import RawEvent, SessionRecord

logger = logging.getLogger("rollmetrics.run")


class ReplayClock:
    """Clock driven by the timestamps in the log instead of the wall clock."""

    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def replay_frames(
    frames_path: str,
    user_id: str = "replay",
    model_complexity: int = 1,
    mirror: bool = False,
    events: Optional[list[RawEvent]] = None,
) -> Optional[SessionRecord]:
    """
    Feed a frame log through a tracker in arrival order and finalize at the last timestamp.
    When `events` is given, detector output for every frame is appended to it.
    """
    clock = ReplayClock()
    tracker: Optional[SessionTracker] = None
    for ts, row_type, payload in frame_records(frames_path):
        clock.t = ts
        if tracker is None:
            tracker = SessionTracker(user_id, model_complexity, mirror, clock=clock)
        if row_type == "interrupt":
            tracker.interrupt()
        else:
            tracker.update_frame(payload)
            if events is not None:
                events.extend(detect_events(FrameFeatures(ts, payload.bbox_area_pct, payload.has_pose)))
    if tracker is None:
        return None
    return tracker.finalize()


def run_frames(frames_path: str, output_dir: str, user_id: str, model_complexity: int, mirror: bool) -> None:
    events: list[RawEvent] = []
    rec = replay_frames(frames_path, user_id=user_id, model_complexity=model_complexity, mirror=mirror, events=events)
    if rec is None:
        print(f"Error: no frames in {frames_path}", file=sys.stderr)
        sys.exit(1)
    record = rec.to_dict()
    report = record.pop("report") or {}
    write_report(report, output_dir, source="frames", record=record)
    # Detector events, replayable with --events
    write_events(os.path.join(output_dir, "events.jsonl"), events)
    print(
        f"Frames done. Session {rec.session_id}: {rec.frame_count} frames, {len(events)} events, "
        f"quality={record_quality(rec)}. Report: {output_dir}/report.html"
    )


def run_events(events_path: str, output_dir: str, start_at: Optional[float], end_at: Optional[float]) -> None:
    events = load_events(events_path)
    if start_at is None:
        start_at = min((ev.ts for ev in events), default=0.0)
    if end_at is None:
        end_at = max((ev.ts for ev in events), default=start_at)
    errors: list[str] = []
    report = build_report_from_events(events, start_at, end_at, errors=errors)
    write_report(report, output_dir, source="events", record={"errors": errors} if errors else None)
    print(f"Events done. {len(events)} events. Report: {output_dir}/report.html")


def main() -> None:
    ap = argparse.ArgumentParser(description="Session metrics report from a frame log or an event log")
    ap.add_argument("--frames", type=str, default=None, help="JSON Lines frame log (frame accumulator path)")
    ap.add_argument("--events", type=str, default=None, help="JSON / JSON Lines raw event log (event path)")
    ap.add_argument("--user", type=str, default="replay", help="User id stamped on the session")
    ap.add_argument("--model-complexity", type=int, default=1, choices=(0, 1, 2), help="Pose model complexity")
    ap.add_argument("--mirror", action="store_true", help="Mark the session as mirrored")
    ap.add_argument("--start-at", type=float, default=None, help="Event window start (ms); default first event")
    ap.add_argument("--end-at", type=float, default=None, help="Event window end (ms); default last event")
    ap.add_argument("--output-dir", type=str, default=OUTPUT_DIR, help="Output directory")
    args = ap.parse_args()

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.frames and args.events:
        print("Error: provide exactly one of --frames or --events", file=sys.stderr)
        sys.exit(1)
    if not args.frames and not args.events:
        print("Error: provide --frames PATH or --events PATH", file=sys.stderr)
        sys.exit(1)
    path = args.frames or args.events
    if not os.path.isfile(path):
        print(f"Error: file not found: {path}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.frames:
            run_frames(args.frames, args.output_dir, args.user, args.model_complexity, args.mirror)
        else:
            run_events(args.events, args.output_dir, args.start_at, args.end_at)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
