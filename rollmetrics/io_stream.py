"""
Readers for recorded sessions: JSON Lines frame logs and raw event logs.
"""
from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Generator

from .types import FrameUpdatePayload, RawEvent

logger = logging.getLogger(__name__)

FRAME_ROW_TYPES = ("frame", "interrupt")


def frame_records(path: str | Path) -> Generator[tuple[float, str, FrameUpdatePayload | None], None, None]:
    """
    Yield (ts_ms, type, payload) from a frame log, one JSON object per line.
    Rows look like {"ts": 1200, "type": "frame", "payload": {"hasPose": true, ...}};
    "type" defaults to "frame" and the payload may also sit at the top level.
    Interrupt rows yield payload None. Bad rows are skipped with a warning.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Cannot open frame log: {path}")
    with path.open() as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
                ts = float(row["ts"])
                if not math.isfinite(ts):
                    raise ValueError(f"non-finite ts {ts}")
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning("frame log %s:%s skipped: %s", path.name, lineno, e)
                continue
            row_type = row.get("type", "frame")
            if row_type not in FRAME_ROW_TYPES:
                logger.warning("frame log %s:%s skipped: unknown type %r", path.name, lineno, row_type)
                continue
            if row_type == "interrupt":
                yield (ts, row_type, None)
                continue
            data = row.get("payload", row)
            if not isinstance(data, dict):
                logger.warning("frame log %s:%s skipped: payload is not an object", path.name, lineno)
                continue
            yield (ts, row_type, FrameUpdatePayload.from_dict(data))


def _event_rows(text: str) -> list[Any]:
    text = text.strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            rows = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"malformed event log: {e}") from e
        return rows
    rows = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            rows.append(json.loads(line))
        except json.JSONDecodeError as e:
            logger.warning("event log line %s skipped: %s", lineno, e)
    return rows


def parse_events(rows: list[Any]) -> list[RawEvent]:
    events = []
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            logger.warning("event %s skipped: not an object", i)
            continue
        try:
            events.append(RawEvent.from_dict(row))
        except ValueError as e:
            logger.warning("event %s skipped: %s", i, e)
    return events


def load_events(path: str | Path) -> list[RawEvent]:
    """Read a JSON array or JSON Lines file of raw events. A broken JSON array raises ValueError."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Cannot open event log: {path}")
    return parse_events(_event_rows(path.read_text()))


def write_events(path: str | Path, events: list[RawEvent]) -> Path:
    """Write events as JSON Lines, readable back with load_events."""
    path = Path(path)
    with path.open("w") as f:
        for ev in events:
            f.write(json.dumps(ev.to_dict()) + "\n")
    return path
