"""
Default host collaborators: millisecond wall clock and session id generator.
Both are injectable on SessionTracker so replays and tests control time.
"""
from __future__ import annotations

import time
import uuid


def wall_clock_ms() -> float:
    return time.time() * 1000.0


def new_session_id() -> str:
    return str(uuid.uuid4())
